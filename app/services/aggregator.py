"""Aggregator: recompute budgets and financial metrics from persisted transactions."""

from datetime import timedelta

import pandas as pd
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.db import Budget, FinancialMetrics, Transaction, insert_ignore
from app.core.models import TransactionType
from app.core.utils import get_logger, utcnow

logger = get_logger("statement-pipeline.aggregator")

BUDGET_HEADROOM = 1.2
MIN_BUDGET_AMOUNT = 100.0
METRICS_WINDOW_DAYS = 30


class Aggregator:
    """Full-scan recomputation; every call yields the same rows for the same transactions."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def recompute_budgets(self, user_id: str, profile_id: str | None = None) -> int:
        """Overwrite ``spent`` for every (profile, category, month, year) with expenses; returns groups touched."""
        try:
            stmt = select(
                Transaction.business_profile_id, Transaction.category, Transaction.date, Transaction.amount
            ).where(Transaction.user_id == user_id, Transaction.type == TransactionType.EXPENSE.value)
            if profile_id is not None:
                stmt = stmt.where(Transaction.business_profile_id == profile_id)
            rows = self.session.execute(stmt).all()
            if not rows:
                return 0
            frame = pd.DataFrame(rows, columns=["profile_id", "category", "date", "amount"])
            dates = pd.to_datetime(frame["date"])
            frame["month"] = dates.dt.month
            frame["year"] = dates.dt.year
            grouped = frame.groupby(["profile_id", "category", "month", "year"], dropna=False)["amount"].sum()
            for (group_profile, category, month, year), spent in grouped.items():
                self._upsert_budget(
                    user_id,
                    None if pd.isna(group_profile) else group_profile,
                    category,
                    int(month),
                    int(year),
                    round(float(spent), 2),
                )
            self.session.commit()
            logger.info(f"[Aggregator] Recomputed {len(grouped)} budgets for user {user_id}")
            return len(grouped)
        except Exception:
            self.session.rollback()
            logger.exception(f"[Aggregator] Budget recomputation failed for user {user_id}")
            return 0

    def _upsert_budget(
        self, user_id: str, profile_id: str | None, category: str, month: int, year: int, spent: float
    ) -> None:
        profile_clause = (
            Budget.business_profile_id.is_(None) if profile_id is None else Budget.business_profile_id == profile_id
        )
        period_clause = (
            Budget.user_id == user_id,
            profile_clause,
            Budget.category == category,
            Budget.month == month,
            Budget.year == year,
        )
        # NULL profile ids never collide on the unique constraint, so look before inserting
        exists = self.session.scalars(select(Budget.id).where(*period_clause)).first() is not None
        if not exists:
            insert_ignore(
                self.session,
                Budget,
                {
                    "user_id": user_id,
                    "business_profile_id": profile_id,
                    "category": category,
                    "month": month,
                    "year": year,
                    "amount": max(spent * BUDGET_HEADROOM, MIN_BUDGET_AMOUNT),
                    "spent": spent,
                    "type": "MONTHLY",
                    "name": f"{category} {year}-{month:02d}",
                },
                ["user_id", "business_profile_id", "category", "month", "year"],
            )
        self.session.execute(update(Budget).where(*period_clause).values(spent=spent))

    def recompute_metrics(self, user_id: str) -> FinancialMetrics | None:
        """Trailing-30-day income, expenses and burn rate, upserted into one row per user."""
        try:
            since = (utcnow() - timedelta(days=METRICS_WINDOW_DAYS)).date()
            rows = self.session.execute(
                select(Transaction.type, Transaction.amount).where(
                    Transaction.user_id == user_id, Transaction.date >= since
                )
            ).all()
            income = sum(amount for kind, amount in rows if kind == TransactionType.INCOME.value)
            expenses = sum(amount for kind, amount in rows if kind == TransactionType.EXPENSE.value)
            metrics = self.session.scalars(
                select(FinancialMetrics).where(FinancialMetrics.user_id == user_id)
            ).one_or_none()
            if metrics is None:
                metrics = FinancialMetrics(user_id=user_id)
                self.session.add(metrics)
            metrics.monthly_income = round(income, 2)
            metrics.monthly_expenses = round(expenses, 2)
            metrics.monthly_burn_rate = round(expenses - income, 2)
            metrics.last_calculated = utcnow()
            self.session.commit()
            logger.info(
                f"[Aggregator] Metrics for user {user_id}: income {income:.2f}, expenses {expenses:.2f}, "
                f"burn {expenses - income:.2f}"
            )
            return metrics
        except Exception:
            self.session.rollback()
            logger.exception(f"[Aggregator] Metrics recomputation failed for user {user_id}")
            return None
