"""Tests for persistence: amount/type invariants, review queue, categories and recurring charges."""

from datetime import date

from conftest import categorized
from sqlalchemy.orm import Session

from app.core.db import BankStatement, Category, RecurringCharge, ReviewQueueEntry, Transaction
from app.core.models import Frequency, ProfileType, RoutingDecision, Severity, TransactionType
from app.services.persister import TransactionPersister, next_due


def _statement(session: Session) -> BankStatement:
    statement = BankStatement(user_id="u1", file_name="s.csv", file_type="CSV", storage_key="local://s.csv")
    session.add(statement)
    session.commit()
    return statement


def _decision(
    description: str,
    amount: float,
    confidence: float,
    category: str = "Office Supplies",
    kind: TransactionType = TransactionType.EXPENSE,
    is_recurring: bool = False,
    merchant: str | None = None,
    profile_id: str | None = None,
) -> RoutingDecision:
    return RoutingDecision(
        categorized=categorized(description, amount, category, confidence, merchant=merchant, day=date(2024, 1, 31)),
        category=category,
        profile_type=ProfileType.BUSINESS,
        transaction_type=kind,
        confidence=confidence,
        is_recurring=is_recurring,
        target_profile_id=profile_id,
    )


def test_amounts_are_positive_and_types_valid(session: Session) -> None:
    statement = _statement(session)
    decisions = [
        _decision("STAPLES", -45.10, 0.95),
        _decision("CLIENT INVOICE 1001", 2500.0, 0.97, "Business Revenue", TransactionType.INCOME),
        _decision("TRANSFER TO SAVINGS", -300.0, 0.9, "Transfers", TransactionType.TRANSFER),
    ]
    outcome = TransactionPersister(session).persist(statement, decisions)
    session.commit()
    rows = session.query(Transaction).all()
    if len(rows) != 3 or len(outcome.transaction_ids) != 3:  # noqa: PLR2004
        msg = f"Expected 3 persisted transactions, got {len(rows)}"
        raise AssertionError(msg)
    for row in rows:
        if row.amount < 0:
            msg = f"Stored amount must be positive: {row.description} {row.amount}"
            raise AssertionError(msg)
        if row.type not in {kind.value for kind in TransactionType}:
            msg = f"Invalid transaction type {row.type}"
            raise AssertionError(msg)
        if abs(row.amount) != abs(row.signed_amount):
            msg = "signed_amount must keep the raw value"
            raise AssertionError(msg)


def test_review_queue_severity_escalates(session: Session) -> None:
    statement = _statement(session)
    decisions = [
        _decision("A", -1.0, 0.95),
        _decision("B", -1.0, 0.80),
        _decision("C", -1.0, 0.60),
        _decision("D", -1.0, 0.30),
    ]
    outcome = TransactionPersister(session).persist(statement, decisions)
    session.commit()
    if outcome.review_count != 3:  # noqa: PLR2004
        msg = f"Expected 3 review entries, got {outcome.review_count}"
        raise AssertionError(msg)
    entries = {
        txn.description: review
        for review, txn in session.query(ReviewQueueEntry, Transaction).join(
            Transaction, Transaction.id == ReviewQueueEntry.transaction_id
        )
    }
    if entries["B"].issue_severity != Severity.MEDIUM.value:
        msg = "0.80 confidence should be MEDIUM"
        raise AssertionError(msg)
    if entries["C"].issue_severity != Severity.HIGH.value or "may be miscategorized" not in entries["C"].issue_description:
        msg = f"0.60 confidence should be HIGH 'may be miscategorized': {entries['C'].issue_description}"
        raise AssertionError(msg)
    if "likely miscategorization" not in entries["D"].issue_description:
        msg = f"0.30 confidence should read 'likely miscategorization': {entries['D'].issue_description}"
        raise AssertionError(msg)
    if entries["D"].alternative.get("category") != "Office Supplies":
        msg = f"The alternative must carry the considered category: {entries['D'].alternative}"
        raise AssertionError(msg)


def test_categories_created_once_with_style(session: Session) -> None:
    statement = _statement(session)
    persister = TransactionPersister(session)
    persister.persist(statement, [_decision("X", -1.0, 0.9, "Groceries"), _decision("Y", -2.0, 0.9, "Groceries")])
    TransactionPersister(session).persist(statement, [_decision("Z", -3.0, 0.9, "Groceries")])
    session.commit()
    categories = session.query(Category).filter(Category.name == "Groceries").all()
    if len(categories) != 1:
        msg = f"Expected exactly one Groceries category, got {len(categories)}"
        raise AssertionError(msg)
    if categories[0].icon != "shopping-cart":
        msg = f"Expected the Groceries icon, got {categories[0].icon}"
        raise AssertionError(msg)


def test_recurring_charge_derivation_is_idempotent(session: Session) -> None:
    """Running derivation twice for the same merchant/profile creates one RecurringCharge."""
    statement = _statement(session)
    decisions = [
        _decision("NETFLIX.COM 866-579", -15.49, 0.9, "Subscriptions", is_recurring=True, merchant="Netflix"),
        _decision("NETFLIX.COM 866-579", -15.49, 0.9, "Subscriptions", is_recurring=True, merchant="netflix"),
        _decision("ADOBE ANNUAL PLAN", -239.88, 0.9, "Software & SaaS", is_recurring=True, merchant="Adobe"),
        _decision("PAYROLL DEPOSIT", 4000.0, 0.9, "Salary", TransactionType.INCOME, is_recurring=True),
    ]
    first = TransactionPersister(session).persist(statement, decisions)
    session.commit()
    second = TransactionPersister(session).persist(statement, decisions)
    session.commit()
    charges = session.query(RecurringCharge).order_by(RecurringCharge.name).all()
    if [charge.name for charge in charges] != ["Adobe", "Netflix"]:
        msg = f"Expected one charge per merchant, got {[charge.name for charge in charges]}"
        raise AssertionError(msg)
    if first.recurring_created != 2 or second.recurring_created != 0:  # noqa: PLR2004
        msg = f"Expected 2 then 0 charges created, got {first.recurring_created}, {second.recurring_created}"
        raise AssertionError(msg)
    adobe = charges[0]
    if adobe.frequency != Frequency.ANNUALLY.value or adobe.next_due_date != date(2025, 1, 31):
        msg = f"Expected an annual charge due 2025-01-31, got {adobe.frequency} {adobe.next_due_date}"
        raise AssertionError(msg)
    if charges[1].annual_amount != 15.49 * 12:  # noqa: PLR2004
        msg = f"Expected monthly annual_amount {15.49 * 12}, got {charges[1].annual_amount}"
        raise AssertionError(msg)


def test_next_due_clamps_month_end() -> None:
    if next_due(date(2024, 1, 31), Frequency.MONTHLY) != date(2024, 2, 29):
        msg = "Jan 31 + 1 month should clamp to Feb 29 in a leap year"
        raise AssertionError(msg)


def test_recurring_charge_lookup_treats_wildcards_literally(session: Session) -> None:
    statement = _statement(session)
    session.add(
        RecurringCharge(
            user_id="u1",
            name="A1B Gym",
            amount=30.0,
            frequency=Frequency.MONTHLY.value,
            next_due_date=date(2024, 2, 29),
            annual_amount=360.0,
        )
    )
    session.commit()
    decisions = [_decision("A_B GYM 0042", -30.0, 0.9, "Health & Fitness", is_recurring=True, merchant="A_B Gym")]
    result = TransactionPersister(session).persist(statement, decisions)
    session.commit()
    names = sorted(charge.name for charge in session.query(RecurringCharge).all())
    if result.recurring_created != 1 or names != ["A1B Gym", "A_B Gym"]:
        msg = f"'_' in a merchant name must not match an unrelated charge, got {names}"
        raise AssertionError(msg)
