"""Enhancer / router stage: layer merchant rules, history and recurrence over the model's answer.

Signals are applied in priority order (merchant rule, historical pattern, recurring detection,
raw model output) and collapsed into one blended confidence and one destination profile.
"""

import re
from collections import Counter
from datetime import date, timedelta

from pydantic import BaseModel, Field
from sqlalchemy import Select, or_, select
from sqlalchemy.orm import Session

from app.core.db import BankStatement, BusinessProfile, MerchantRule, RecurringCharge, Transaction
from app.core.models import CategorizedTransaction, Frequency, ProfileType, RoutingDecision, TransactionType
from app.core.thresholds import (
    HISTORICAL_BOOST,
    HISTORICAL_PATTERN_FLOOR,
    MAX_BLENDED_CONFIDENCE,
    MERCHANT_RULE_CONFIDENCE,
    RECURRING_BOOST,
)
from app.core.utils import get_logger, utcnow

logger = get_logger("statement-pipeline.enhancer")

MERCHANT_PREFIX_LEN = 20
HISTORY_LIMIT = 20
RECURRING_LOOKBACK_DAYS = 400
RECURRING_AMOUNT_TOLERANCE = 0.10
RECURRING_MIN_PRIOR = 2
FREQUENCY_WINDOWS = (
    (Frequency.WEEKLY, 6, 8),
    (Frequency.MONTHLY, 25, 35),
    (Frequency.QUARTERLY, 85, 95),
    (Frequency.ANNUALLY, 355, 375),
)

# Known heuristic gap: processors not listed here fall through to the transfer/income checks.
PROCESSOR_WORDS = ("stripe", "paypal", "venmo", "zelle", "square", "payout")
TRANSFER_LANGUAGE = re.compile(
    r"\b(transfer\s+(to|from)|online\s+transfer|internal\s+transfer|xfer\s+(to|from))\b", re.IGNORECASE
)
INCOME_KEYWORDS = ("salary", "dividend", "income", "freelance", "interest", "refund")


class RoutingContext(BaseModel):
    """Per-statement lookup data shared by every routing decision of one run."""

    user_id: str
    statement_id: str | None = None
    statement_profile_id: str | None = None
    business_profile_id: str | None = None
    personal_profile_id: str | None = None
    profile_types: dict[str, ProfileType] = Field(default_factory=dict)

    def profile_for(self, profile_type: ProfileType) -> str | None:
        """Destination profile id for a BUSINESS/PERSONAL classification."""
        if profile_type == ProfileType.BUSINESS and self.business_profile_id:
            return self.business_profile_id
        if profile_type == ProfileType.PERSONAL and self.personal_profile_id:
            return self.personal_profile_id
        return self.statement_profile_id


class HistoricalPattern(BaseModel):
    category: str
    profile_type: ProfileType | None
    confidence: float


def transaction_type_for(amount: float, description: str, category: str) -> TransactionType:
    """Derive the direction of a transaction from its sign, wording and category."""
    signed_type = TransactionType.INCOME if amount > 0 else TransactionType.EXPENSE
    lowered = description.lower()
    if any(word in lowered for word in PROCESSOR_WORDS):
        return signed_type
    if TRANSFER_LANGUAGE.search(description) or "transfer" in category.lower():
        return TransactionType.TRANSFER
    if signed_type == TransactionType.EXPENSE and any(word in category.lower() for word in INCOME_KEYWORDS):
        logger.warning(
            f"[Enhancer] Income category '{category}' on negative amount {amount} for '{description}', "
            "treating as INCOME"
        )
        return TransactionType.INCOME
    return signed_type


def blend_confidence(
    base: float, *, merchant_rule: bool, historical_confidence: float, is_recurring: bool
) -> float:
    """Collapse the model confidence and supporting signals into one score in [0, 0.99]."""
    if merchant_rule:
        confidence = max(MERCHANT_RULE_CONFIDENCE, base)
    else:
        confidence = base + HISTORICAL_BOOST * historical_confidence
    if is_recurring:
        confidence += RECURRING_BOOST
    return min(max(confidence, 0.0), MAX_BLENDED_CONFIDENCE)


def frequency_for_interval(days: float) -> Frequency | None:
    for frequency, low, high in FREQUENCY_WINDOWS:
        if low <= days <= high:
            return frequency
    return None


class TransactionEnhancer:
    """Resolves the final category, profile, type and confidence for categorized transactions."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def build_context(self, statement: BankStatement) -> RoutingContext:
        """Load the user's active profiles once per statement."""
        profiles = self.session.scalars(
            select(BusinessProfile)
            .where(BusinessProfile.user_id == statement.user_id, BusinessProfile.is_active.is_(True))
            .order_by(BusinessProfile.is_default.desc(), BusinessProfile.name)
        ).all()
        business = next((p.id for p in profiles if p.type == ProfileType.BUSINESS.value), None)
        personal = next((p.id for p in profiles if p.type == ProfileType.PERSONAL.value), None)
        return RoutingContext(
            user_id=statement.user_id,
            statement_id=statement.id,
            statement_profile_id=statement.business_profile_id,
            business_profile_id=business,
            personal_profile_id=personal,
            profile_types={p.id: ProfileType(p.type) for p in profiles},
        )

    def enhance_all(self, categorized: list[CategorizedTransaction], context: RoutingContext) -> list[RoutingDecision]:
        rules = self._load_rules(context)
        return [self.enhance(item, context, rules) for item in categorized]

    def enhance(
        self,
        categorized: CategorizedTransaction,
        context: RoutingContext,
        rules: list[MerchantRule] | None = None,
    ) -> RoutingDecision:
        """Resolve one transaction; see the module docstring for the signal order."""
        if rules is None:
            rules = self._load_rules(context)
        txn = categorized.original
        merchant = categorized.merchant or txn.description
        category = categorized.suggested_category
        profile_type = categorized.profile_type

        rule = self.match_rule(merchant, rules)
        historical_confidence = 0.0
        if rule is not None:
            category = rule.suggested_category
            profile_type = ProfileType(rule.profile_type)
        else:
            pattern = self.historical_pattern(merchant, context)
            if pattern is not None:
                historical_confidence = pattern.confidence
                if pattern.confidence > max(HISTORICAL_PATTERN_FLOOR, categorized.confidence):
                    logger.info(
                        f"[Enhancer] Historical pattern for '{merchant}': {pattern.category} "
                        f"({pattern.confidence:.0%})"
                    )
                    category = pattern.category
                    profile_type = pattern.profile_type or profile_type

        target_profile_id = context.profile_for(profile_type)
        frequency = self.detect_recurring(merchant, abs(txn.amount), txn.date, target_profile_id, context)
        is_recurring = categorized.is_recurring or frequency is not None

        confidence = blend_confidence(
            categorized.confidence,
            merchant_rule=rule is not None,
            historical_confidence=historical_confidence,
            is_recurring=is_recurring,
        )
        return RoutingDecision(
            categorized=categorized,
            category=category,
            profile_type=profile_type,
            transaction_type=transaction_type_for(txn.amount, txn.description, category),
            confidence=confidence,
            is_recurring=is_recurring,
            target_profile_id=target_profile_id,
            merchant_rule_applied=rule is not None,
            historical_confidence=historical_confidence,
            recurring_frequency=frequency,
        )

    # -- signals ------------------------------------------------------------------------------

    def _load_rules(self, context: RoutingContext) -> list[MerchantRule]:
        stmt = select(MerchantRule).where(
            MerchantRule.user_id == context.user_id,
            MerchantRule.is_active.is_(True),
            MerchantRule.auto_apply.is_(True),
        )
        if context.statement_profile_id:
            stmt = stmt.where(
                or_(
                    MerchantRule.business_profile_id.is_(None),
                    MerchantRule.business_profile_id == context.statement_profile_id,
                )
            )
        else:
            stmt = stmt.where(MerchantRule.business_profile_id.is_(None))
        return list(self.session.scalars(stmt.order_by(MerchantRule.priority.desc())).all())

    def match_rule(self, merchant: str, rules: list[MerchantRule]) -> MerchantRule | None:
        """Exact case-insensitive name match first, then regex patterns, by priority."""
        lowered = merchant.strip().lower()
        matched = next((rule for rule in rules if rule.merchant_name.strip().lower() == lowered), None)
        if matched is None:
            for rule in rules:
                if not rule.merchant_pattern:
                    continue
                try:
                    if re.search(rule.merchant_pattern, merchant, re.IGNORECASE):
                        matched = rule
                        break
                except re.error as exc:
                    logger.error(f"[Enhancer] Invalid pattern on merchant rule {rule.id}: {exc}")
        if matched is None:
            return None
        matched.applied_count = (matched.applied_count or 0) + 1
        matched.last_applied = utcnow()
        logger.info(f"[Enhancer] Merchant rule matched: {merchant} -> {matched.suggested_category}")
        return matched

    def _prior_transactions(self, merchant: str, context: RoutingContext) -> Select:
        stmt = select(Transaction).where(
            Transaction.user_id == context.user_id,
            Transaction.merchant.icontains(merchant[:MERCHANT_PREFIX_LEN], autoescape=True),
        )
        if context.statement_id:
            stmt = stmt.where(
                or_(Transaction.bank_statement_id.is_(None), Transaction.bank_statement_id != context.statement_id)
            )
        return stmt

    def historical_pattern(self, merchant: str, context: RoutingContext) -> HistoricalPattern | None:
        """Most common past category/profile for this merchant, when both hold a 70% share."""
        if not merchant.strip():
            return None
        history = self.session.scalars(
            self._prior_transactions(merchant, context).order_by(Transaction.date.desc()).limit(HISTORY_LIMIT)
        ).all()
        if not history:
            return None
        category, category_hits = Counter(t.category for t in history).most_common(1)[0]
        profile_id, profile_hits = Counter(t.business_profile_id for t in history).most_common(1)[0]
        category_share = category_hits / len(history)
        profile_share = profile_hits / len(history)
        if category_share < HISTORICAL_PATTERN_FLOOR or profile_share < HISTORICAL_PATTERN_FLOOR:
            return None
        return HistoricalPattern(
            category=category,
            profile_type=context.profile_types.get(profile_id) if profile_id else None,
            confidence=(category_share + profile_share) / 2,
        )

    def detect_recurring(
        self, merchant: str, amount: float, txn_date: date, profile_id: str | None, context: RoutingContext
    ) -> Frequency | None:
        """Frequency of a known or newly observed recurring charge for this merchant, if any."""
        if not merchant.strip():
            return None
        existing = self.session.scalars(
            select(RecurringCharge).where(
                RecurringCharge.user_id == context.user_id,
                RecurringCharge.is_active.is_(True),
                RecurringCharge.name.icontains(merchant[:MERCHANT_PREFIX_LEN], autoescape=True),
            )
        ).first()
        if existing is not None:
            return Frequency(existing.frequency)

        stmt = self._prior_transactions(merchant, context).where(
            Transaction.date >= txn_date - timedelta(days=RECURRING_LOOKBACK_DAYS),
            Transaction.date < txn_date,
        )
        stmt = stmt.where(
            Transaction.business_profile_id.is_(None)
            if profile_id is None
            else Transaction.business_profile_id == profile_id
        )
        prior = [
            t
            for t in self.session.scalars(stmt.order_by(Transaction.date)).all()
            if amount and abs(t.amount - amount) / amount <= RECURRING_AMOUNT_TOLERANCE
        ]
        if len(prior) < RECURRING_MIN_PRIOR:
            return None
        dates = sorted({t.date for t in prior} | {txn_date})
        if len(dates) < 2:  # noqa: PLR2004
            return None
        mean_interval = (dates[-1] - dates[0]).days / (len(dates) - 1)
        frequency = frequency_for_interval(mean_interval)
        if frequency is not None:
            logger.info(f"[Enhancer] Recurring pattern for '{merchant}': {frequency} (~{mean_interval:.0f} days)")
        return frequency
