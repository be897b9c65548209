"""Persister stage: write transactions, categories, review entries and recurring charges."""

from collections import defaultdict
from datetime import date

import pandas as pd
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.db import BankStatement, Category, RecurringCharge, ReviewQueueEntry, Transaction, insert_ignore
from app.core.models import Frequency, IssueType, RoutingDecision, Severity, TransactionType
from app.core.thresholds import HIGH_SEVERITY_THRESHOLD, REVIEW_THRESHOLD, VERY_LOW_THRESHOLD
from app.core.utils import get_logger

logger = get_logger("statement-pipeline.persister")

DEFAULT_STYLE = ("#3B82F6", "folder")
CATEGORY_STYLES = {
    "Dining & Restaurants": ("#FF6B6B", "utensils"),
    "Transportation": ("#4ECDC4", "car"),
    "Gas & Fuel": ("#4ECDC4", "fuel"),
    "Personal Shopping": ("#45B7D1", "shopping-bag"),
    "Entertainment": ("#96CEB4", "film"),
    "Home Utilities": ("#FFEAA7", "zap"),
    "Business Utilities": ("#FFEAA7", "zap"),
    "Healthcare": ("#DDA0DD", "heart"),
    "Education": ("#98D8C8", "book"),
    "Business Travel": ("#F7DC6F", "plane"),
    "Personal Travel": ("#F7DC6F", "plane"),
    "Business Revenue": ("#2ECC71", "trending-up"),
    "Freelance Income": ("#2ECC71", "trending-up"),
    "Salary": ("#27AE60", "dollar-sign"),
    "Bank Fees": ("#E74C3C", "alert-circle"),
    "Groceries": ("#F39C12", "shopping-cart"),
    "Software & SaaS": ("#8B5CF6", "cloud"),
    "Subscriptions": ("#8B5CF6", "repeat"),
    "Transfers": ("#64748B", "shuffle"),
}

ANNUAL_MULTIPLIER = {
    Frequency.WEEKLY: 52,
    Frequency.MONTHLY: 12,
    Frequency.QUARTERLY: 4,
    Frequency.ANNUALLY: 1,
}
PERIOD_OFFSET = {
    Frequency.WEEKLY: pd.DateOffset(weeks=1),
    Frequency.MONTHLY: pd.DateOffset(months=1),
    Frequency.QUARTERLY: pd.DateOffset(months=3),
    Frequency.ANNUALLY: pd.DateOffset(years=1),
}


class PersistOutcome(BaseModel):
    """What one persist run wrote."""

    transaction_ids: list[str] = Field(default_factory=list)
    review_count: int = 0
    recurring_created: int = 0


def category_style(name: str) -> tuple[str, str]:
    """Deterministic (color, icon) for a category name."""
    return CATEGORY_STYLES.get(name, DEFAULT_STYLE)


def frequency_from_description(description: str) -> Frequency | None:
    lowered = description.lower()
    if "weekly" in lowered:
        return Frequency.WEEKLY
    if "quarter" in lowered:
        return Frequency.QUARTERLY
    if "annual" in lowered or "yearly" in lowered:
        return Frequency.ANNUALLY
    if "monthly" in lowered:
        return Frequency.MONTHLY
    return None


def next_due(from_date: date, frequency: Frequency) -> date:
    return (pd.Timestamp(from_date) + PERIOD_OFFSET[frequency]).date()


def review_issue(confidence: float) -> tuple[Severity, str]:
    """Severity and wording for a review entry at the given blended confidence."""
    if confidence < VERY_LOW_THRESHOLD:
        return Severity.HIGH, f"Very low confidence ({confidence:.0%}): likely miscategorization"
    if confidence < HIGH_SEVERITY_THRESHOLD:
        return Severity.HIGH, f"Low confidence ({confidence:.0%}): transaction may be miscategorized"
    return Severity.MEDIUM, f"Low confidence ({confidence:.0%}): please confirm the category"


class TransactionPersister:
    """Writes routing decisions for one statement into the database session (no commit)."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self._categories: dict[str, str] = {}

    def ensure_category(self, user_id: str, name: str, profile_id: str | None, kind: TransactionType) -> str:
        """Find or create a category by (user, name) and return its id."""
        if name in self._categories:
            return self._categories[name]
        color, icon = category_style(name)
        created = insert_ignore(
            self.session,
            Category,
            {
                "user_id": user_id,
                "name": name,
                "business_profile_id": profile_id,
                "type": kind.value,
                "color": color,
                "icon": icon,
            },
            ["user_id", "name"],
        )
        if created:
            logger.info(f"[Persister] Created category '{name}'")
        category_id = self.session.scalars(
            select(Category.id).where(Category.user_id == user_id, Category.name == name)
        ).one()
        self._categories[name] = category_id
        return category_id

    def persist(self, statement: BankStatement, decisions: list[RoutingDecision]) -> PersistOutcome:
        """Create one Transaction per decision, review entries and recurring charges."""
        outcome = PersistOutcome()
        persisted: list[tuple[RoutingDecision, Transaction]] = []
        for decision in decisions:
            txn = decision.categorized.original
            category_id = self.ensure_category(
                statement.user_id, decision.category, decision.target_profile_id, decision.transaction_type
            )
            row = Transaction(
                user_id=statement.user_id,
                business_profile_id=decision.target_profile_id,
                bank_statement_id=statement.id,
                date=txn.date,
                amount=abs(txn.amount),
                signed_amount=txn.amount,
                description=txn.description,
                merchant=decision.categorized.merchant or None,
                category=decision.category,
                category_id=category_id,
                type=decision.transaction_type.value,
                confidence=decision.confidence,
                is_recurring=decision.is_recurring,
                ai_categorized=not decision.merchant_rule_applied,
            )
            self.session.add(row)
            self.session.flush()
            outcome.transaction_ids.append(row.id)
            persisted.append((decision, row))
            if self.queue_for_review(statement.user_id, decision, row):
                outcome.review_count += 1

        outcome.recurring_created = self.derive_recurring_charges(statement.user_id, persisted)
        logger.info(
            f"[Persister] Statement {statement.id}: {len(outcome.transaction_ids)} transactions, "
            f"{outcome.review_count} queued for review, {outcome.recurring_created} recurring charges created"
        )
        return outcome

    def queue_for_review(self, user_id: str, decision: RoutingDecision, row: Transaction) -> bool:
        if decision.merchant_rule_applied or decision.confidence >= REVIEW_THRESHOLD:
            return False
        severity, description = review_issue(decision.confidence)
        merchant = decision.categorized.merchant or row.description
        self.session.add(
            ReviewQueueEntry(
                user_id=user_id,
                transaction_id=row.id,
                business_profile_id=row.business_profile_id,
                confidence=decision.confidence,
                alternative={
                    "category": decision.category,
                    "profile": decision.profile_type.value,
                    "merchant": merchant,
                    "reasoning": decision.categorized.reasoning,
                },
                issue_type=IssueType.LOW_CONFIDENCE.value,
                issue_severity=severity.value,
                issue_description=description,
                suggested_fix=(
                    f"Confirm '{decision.category}' for '{row.description}', "
                    f"or add a merchant rule for '{merchant}'"
                ),
            )
        )
        logger.info(f"[Persister] Queued for review: {row.description} ({decision.confidence:.0%}, {severity})")
        return True

    def derive_recurring_charges(self, user_id: str, persisted: list[tuple[RoutingDecision, Transaction]]) -> int:
        """One RecurringCharge attempt per distinct (profile, merchant) among recurring expenses."""
        by_profile: dict[str | None, dict[str, tuple[RoutingDecision, Transaction]]] = defaultdict(dict)
        for decision, row in persisted:
            if not decision.is_recurring or decision.transaction_type != TransactionType.EXPENSE:
                continue
            merchant = (decision.categorized.merchant or row.description).strip()
            by_profile[row.business_profile_id].setdefault(merchant.lower(), (decision, row))

        created = 0
        for profile_id, merchants in by_profile.items():
            for decision, row in merchants.values():
                if self._create_recurring(user_id, profile_id, decision, row):
                    created += 1
        return created

    def _create_recurring(
        self, user_id: str, profile_id: str | None, decision: RoutingDecision, row: Transaction
    ) -> bool:
        name = (decision.categorized.merchant or row.description).strip()
        stmt = select(RecurringCharge.id).where(
            RecurringCharge.user_id == user_id,
            RecurringCharge.name.icontains(name, autoescape=True),
            RecurringCharge.business_profile_id.is_(None)
            if profile_id is None
            else RecurringCharge.business_profile_id == profile_id,
        )
        if self.session.scalars(stmt).first() is not None:
            logger.info(f"[Persister] Recurring charge for '{name}' already exists, skipping")
            return False
        frequency = (
            frequency_from_description(row.description) or decision.recurring_frequency or Frequency.MONTHLY
        )
        self.session.add(
            RecurringCharge(
                user_id=user_id,
                business_profile_id=profile_id,
                name=name,
                amount=row.amount,
                frequency=frequency.value,
                category=row.category,
                next_due_date=next_due(row.date, frequency),
                annual_amount=row.amount * ANNUAL_MULTIPLIER[frequency],
            )
        )
        self.session.flush()
        logger.info(f"[Persister] Created {frequency} recurring charge '{name}' ({row.amount:.2f})")
        return True
