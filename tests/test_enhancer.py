"""Tests for routing: merchant rules, history, recurrence, blended confidence and direction."""

from datetime import date, timedelta

from conftest import categorized
from sqlalchemy.orm import Session

from app.core.db import BankStatement, MerchantRule, ReviewQueueEntry, Transaction
from app.core.models import Frequency, ProfileType, TransactionType
from app.services.enhancer import TransactionEnhancer, blend_confidence, transaction_type_for
from app.services.persister import TransactionPersister


def _statement(session: Session, profile_id: str | None = None) -> BankStatement:
    statement = BankStatement(
        user_id="u1", business_profile_id=profile_id, file_name="s.pdf", file_type="PDF", storage_key="local://s.pdf"
    )
    session.add(statement)
    session.commit()
    return statement


def _history(session: Session, merchant: str, category: str, profile_id: str, days: list[date], amount: float) -> None:
    for day in days:
        session.add(
            Transaction(
                user_id="u1",
                business_profile_id=profile_id,
                date=day,
                amount=amount,
                signed_amount=-amount,
                description=f"{merchant} charge",
                merchant=merchant,
                category=category,
                type=TransactionType.EXPENSE.value,
                confidence=0.9,
            )
        )
    session.commit()


def test_stripe_payout_is_income() -> None:
    """Processor wording keeps the sign-derived type even with a transfer-like category."""
    kind = transaction_type_for(1250.0, "STRIPE PAYOUT", "Transfers")
    if kind != TransactionType.INCOME:
        msg = f"Expected STRIPE PAYOUT to be INCOME, got {kind}"
        raise AssertionError(msg)


def test_transfer_language_and_income_categories() -> None:
    cases = [
        ((-500.0, "ONLINE TRANSFER TO SAVINGS 1234", "Other"), TransactionType.TRANSFER),
        ((300.0, "Transfer from checking", "Other"), TransactionType.TRANSFER),
        ((-50.0, "AMAZON", "Office Supplies"), TransactionType.EXPENSE),
        ((-25.0, "BANK ADJ", "Interest"), TransactionType.INCOME),
        ((-900.0, "VENMO PAYMENT", "Transfers"), TransactionType.EXPENSE),
    ]
    for args, expected in cases:
        kind = transaction_type_for(*args)
        if kind != expected:
            msg = f"transaction_type_for{args} = {kind}, expected {expected}"
            raise AssertionError(msg)


def test_blend_confidence() -> None:
    checks = [
        (blend_confidence(0.5, merchant_rule=True, historical_confidence=0.0, is_recurring=False), 0.95),
        (blend_confidence(0.98, merchant_rule=True, historical_confidence=0.0, is_recurring=True), 0.99),
        (blend_confidence(0.7, merchant_rule=False, historical_confidence=0.8, is_recurring=False), 0.78),
        (blend_confidence(0.7, merchant_rule=False, historical_confidence=0.0, is_recurring=True), 0.75),
    ]
    for value, expected in checks:
        if abs(value - expected) > 1e-9:  # noqa: PLR2004
            msg = f"Expected {expected}, got {value}"
            raise AssertionError(msg)


def test_merchant_rule_wins_and_skips_review(session: Session, profiles: dict[str, str]) -> None:
    """A rule-matched transaction ends at >= 0.90 and is never queued for review."""
    session.add(
        MerchantRule(
            user_id="u1",
            merchant_name="Corner Deli",
            suggested_category="Client Entertainment",
            profile_type=ProfileType.BUSINESS.value,
            priority=80,
        )
    )
    session.commit()
    statement = _statement(session, profiles["personal"])
    enhancer = TransactionEnhancer(session)
    context = enhancer.build_context(statement)
    decisions = enhancer.enhance_all(
        [categorized("CORNER DELI #12", -42.0, "Dining & Restaurants", 0.35, ProfileType.PERSONAL, "corner deli")],
        context,
    )
    decision = decisions[0]
    if not decision.merchant_rule_applied or decision.confidence < 0.90:  # noqa: PLR2004
        msg = f"Expected a rule match with confidence >= 0.90, got {decision}"
        raise AssertionError(msg)
    if decision.category != "Client Entertainment" or decision.target_profile_id != profiles["business"]:
        msg = f"Rule must override category and profile: {decision.category}, {decision.target_profile_id}"
        raise AssertionError(msg)

    TransactionPersister(session).persist(statement, decisions)
    session.commit()
    if session.query(ReviewQueueEntry).count() != 0:
        msg = "Rule-matched transactions must not be queued for review"
        raise AssertionError(msg)
    rule = session.query(MerchantRule).one()
    if rule.applied_count != 1 or rule.last_applied is None:
        msg = f"Expected the rule usage to be recorded, got {rule.applied_count}"
        raise AssertionError(msg)


def test_pattern_rule_and_invalid_pattern(session: Session, profiles: dict[str, str]) -> None:
    session.add_all(
        [
            MerchantRule(
                user_id="u1",
                merchant_name="broken",
                merchant_pattern="([unclosed",
                suggested_category="Other",
                profile_type="BUSINESS",
                priority=90,
            ),
            MerchantRule(
                user_id="u1",
                merchant_name="aws",
                merchant_pattern=r"^aws\b",
                suggested_category="Website & Hosting",
                profile_type="BUSINESS",
                priority=10,
            ),
        ]
    )
    session.commit()
    enhancer = TransactionEnhancer(session)
    context = enhancer.build_context(_statement(session, profiles["business"]))
    decision = enhancer.enhance(categorized("AWS EMEA", -120.0, "Other", 0.6, merchant="AWS EMEA"), context)
    if decision.category != "Website & Hosting":
        msg = f"Expected the regex rule to match, got {decision.category}"
        raise AssertionError(msg)


def test_historical_pattern_adopted_when_stronger(session: Session, profiles: dict[str, str]) -> None:
    days = [date(2024, 1, 3), date(2024, 1, 17), date(2024, 2, 6), date(2024, 2, 20)]
    _history(session, "FIGMA", "Software & SaaS", profiles["business"], days, 15.0)
    enhancer = TransactionEnhancer(session)
    context = enhancer.build_context(_statement(session))
    decision = enhancer.enhance(
        categorized("FIGMA", -45.0, "Personal Shopping", 0.55, ProfileType.PERSONAL, "FIGMA", date(2024, 3, 5)),
        context,
    )
    if decision.category != "Software & SaaS" or decision.profile_type != ProfileType.BUSINESS:
        msg = f"Expected the historical pattern to win, got {decision.category}/{decision.profile_type}"
        raise AssertionError(msg)
    if abs(decision.confidence - (0.55 + 0.10)) > 1e-9:  # noqa: PLR2004
        msg = f"Expected historical boost of 0.10 * 1.0, got {decision.confidence}"
        raise AssertionError(msg)


def test_recurring_detected_from_monthly_history(session: Session, profiles: dict[str, str]) -> None:
    today = date(2024, 4, 1)
    days = [today - timedelta(days=offset) for offset in (91, 61, 30)]
    _history(session, "NETFLIX", "Subscriptions", profiles["personal"], days, 15.49)
    enhancer = TransactionEnhancer(session)
    context = enhancer.build_context(_statement(session))
    decision = enhancer.enhance(
        categorized("NETFLIX.COM", -15.49, "Subscriptions", 0.9, ProfileType.PERSONAL, "NETFLIX", today), context
    )
    if not decision.is_recurring or decision.recurring_frequency != Frequency.MONTHLY:
        msg = f"Expected a monthly recurring pattern, got {decision.recurring_frequency}"
        raise AssertionError(msg)
    if decision.target_profile_id != profiles["personal"]:
        msg = "PERSONAL transactions route to the personal profile"
        raise AssertionError(msg)


def test_merchant_history_lookup_treats_wildcards_literally(session: Session, profiles: dict[str, str]) -> None:
    days = [date(2024, 1, 3), date(2024, 1, 17), date(2024, 2, 6), date(2024, 2, 20)]
    _history(session, "A1B GYM", "Health & Fitness", profiles["business"], days, 15.0)
    enhancer = TransactionEnhancer(session)
    context = enhancer.build_context(_statement(session))
    decision = enhancer.enhance(
        categorized("A_B GYM", -45.0, "Personal Shopping", 0.55, ProfileType.PERSONAL, "A_B GYM", date(2024, 3, 5)),
        context,
    )
    if decision.category != "Personal Shopping" or decision.profile_type != ProfileType.PERSONAL:
        msg = f"'_' in a merchant name must not match other merchants' history, got {decision.category}"
        raise AssertionError(msg)
