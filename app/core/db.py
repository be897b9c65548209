"""DB connection, ORM entities and helpers for the statement pipeline."""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    select,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.models import ReviewStatus, StatementStatus

Base = declarative_base()


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(UTC)


class BusinessProfile(Base):
    """A business or personal profile that transactions are routed to."""

    __tablename__ = "business_profiles"
    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)
    industry = Column(String, nullable=True)
    business_type = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)


class BankStatement(Base):
    """An uploaded statement file and its processing state."""

    __tablename__ = "bank_statements"
    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, nullable=False, index=True)
    business_profile_id = Column(String, nullable=True)
    file_name = Column(String, nullable=False)
    file_type = Column(String, nullable=False)
    file_size = Column(Integer, nullable=True)
    storage_key = Column(String, nullable=False)
    status = Column(String, nullable=False, default=StatementStatus.PENDING.value)
    processing_stage = Column(String, nullable=False, default="UPLOADED")
    error_log = Column(Text, nullable=True)
    bank_name = Column(String, nullable=True)
    account_number = Column(String, nullable=True)
    account_type = Column(String, nullable=True)
    statement_period = Column(String, nullable=True)
    beginning_balance = Column(Float, nullable=True)
    ending_balance = Column(Float, nullable=True)
    extracted_data = Column(JSON, nullable=True)
    extraction_method = Column(String, nullable=True)
    failed_pages = Column(JSON, nullable=True)
    record_count = Column(Integer, default=0, nullable=False)
    transaction_count = Column(Integer, default=0, nullable=False)
    review_count = Column(Integer, default=0, nullable=False)
    validation_confidence = Column(Float, nullable=True)
    validation_issues = Column(JSON, nullable=True)
    validated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)


class Category(Base):
    """A per-user transaction category, created lazily by the persister."""

    __tablename__ = "categories"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_category_user_name"),)
    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, nullable=False, index=True)
    business_profile_id = Column(String, nullable=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)
    color = Column(String, nullable=False)
    icon = Column(String, nullable=False)


class Transaction(Base):
    """A persisted transaction. ``amount`` is always positive; direction lives in ``type``."""

    __tablename__ = "transactions"
    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, nullable=False, index=True)
    business_profile_id = Column(String, nullable=True, index=True)
    bank_statement_id = Column(String, nullable=True, index=True)
    date = Column(Date, nullable=False, index=True)
    amount = Column(Float, nullable=False)
    signed_amount = Column(Float, nullable=False)
    description = Column(String, nullable=False)
    merchant = Column(String, nullable=True)
    category = Column(String, nullable=False)
    category_id = Column(String, nullable=True)
    type = Column(String, nullable=False)
    confidence = Column(Float, nullable=False)
    is_recurring = Column(Boolean, default=False, nullable=False)
    ai_categorized = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class ReviewQueueEntry(Base):
    """A low-confidence transaction waiting for a human decision."""

    __tablename__ = "review_queue"
    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, nullable=False, index=True)
    transaction_id = Column(String, nullable=False, index=True)
    business_profile_id = Column(String, nullable=True)
    confidence = Column(Float, nullable=False)
    alternative = Column(JSON, nullable=True)
    issue_type = Column(String, nullable=True)
    issue_severity = Column(String, nullable=True)
    issue_description = Column(Text, nullable=True)
    suggested_fix = Column(Text, nullable=True)
    status = Column(String, nullable=False, default=ReviewStatus.PENDING.value)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class RecurringCharge(Base):
    """A subscription or bill derived from recurring expense transactions."""

    __tablename__ = "recurring_charges"
    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, nullable=False, index=True)
    business_profile_id = Column(String, nullable=True)
    name = Column(String, nullable=False)
    amount = Column(Float, nullable=False)
    frequency = Column(String, nullable=False)
    category = Column(String, nullable=True)
    next_due_date = Column(Date, nullable=False)
    annual_amount = Column(Float, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class Budget(Base):
    """Monthly spend per (user, profile, category); ``spent`` is recomputed from scratch."""

    __tablename__ = "budgets"
    __table_args__ = (
        UniqueConstraint("user_id", "business_profile_id", "category", "month", "year", name="uq_budget_period"),
    )
    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, nullable=False, index=True)
    business_profile_id = Column(String, nullable=True)
    category = Column(String, nullable=False)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    amount = Column(Float, nullable=False)
    spent = Column(Float, nullable=False, default=0.0)
    type = Column(String, nullable=False, default="MONTHLY")
    name = Column(String, nullable=True)


class FinancialMetrics(Base):
    """One row per user with trailing-30-day income, expenses and burn rate."""

    __tablename__ = "financial_metrics"
    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, nullable=False, unique=True)
    monthly_income = Column(Float, nullable=False, default=0.0)
    monthly_expenses = Column(Float, nullable=False, default=0.0)
    monthly_burn_rate = Column(Float, nullable=False, default=0.0)
    last_calculated = Column(DateTime(timezone=True), nullable=True)


class Notification(Base):
    """A user-facing notification emitted when a statement finishes."""

    __tablename__ = "notifications"
    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class MerchantRule(Base):
    """A user-defined override mapping a merchant to a category and profile."""

    __tablename__ = "merchant_rules"
    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, nullable=False, index=True)
    business_profile_id = Column(String, nullable=True)
    merchant_name = Column(String, nullable=False)
    merchant_pattern = Column(String, nullable=True)
    suggested_category = Column(String, nullable=False)
    profile_type = Column(String, nullable=False)
    priority = Column(Integer, default=50, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    auto_apply = Column(Boolean, default=True, nullable=False)
    applied_count = Column(Integer, default=0, nullable=False)
    last_applied = Column(DateTime(timezone=True), nullable=True)


def get_engine(url: str | None = None) -> Engine:
    """Create a SQLAlchemy engine using the configured database URL."""
    if url is None:
        from app.core.settings import get_settings

        url = get_settings().database_url
    if url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url)


@lru_cache
def get_session_factory(url: str | None = None) -> sessionmaker:
    """Build (once per URL) a session factory bound to a fresh engine with all tables created."""
    engine = get_engine(url)
    Base.metadata.create_all(engine)
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def insert_ignore(session: Session, model: type, values: dict[str, Any], conflict_columns: list[str]) -> bool:
    """Insert a row unless it collides with a unique constraint. Return True when a row was written.

    Uses ``INSERT ... ON CONFLICT DO NOTHING`` on SQLite and PostgreSQL; other dialects fall back
    to a savepoint that swallows the IntegrityError.
    """
    dialect = session.get_bind().dialect.name
    values = {"id": _new_id(), **values}
    if dialect in ("sqlite", "postgresql"):
        insert_fn: Callable = sqlite_insert if dialect == "sqlite" else pg_insert
        stmt = insert_fn(model).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
        result = session.execute(stmt)
        return bool(result.rowcount)
    try:
        with session.begin_nested():
            session.add(model(**values))
    except IntegrityError:
        return False
    return True


class DBHelper:
    """Helper class for read-side queries used by the API."""

    def __init__(self, session: Session) -> None:
        """Initialize the DBHelper with a SQLAlchemy session."""
        self.session = session

    def get_statement(self, statement_id: str) -> BankStatement | None:
        """Retrieve a bank statement by its ID."""
        return self.session.get(BankStatement, statement_id)

    def get_statement_status(self, statement_id: str) -> dict[str, Any] | None:
        """Retrieve the status and metadata for a statement by its ID."""
        statement = self.get_statement(statement_id)
        if not statement:
            return None
        return {
            "id": statement.id,
            "status": statement.status,
            "processing_stage": statement.processing_stage,
            "created_at": statement.created_at,
            "processed_at": statement.processed_at,
            "error": statement.error_log,
            "transaction_count": statement.transaction_count,
            "review_count": self.count_pending_reviews(statement.id),
            "validation_confidence": statement.validation_confidence,
            "failed_pages": statement.failed_pages or [],
        }

    def count_pending_reviews(self, statement_id: str) -> int:
        """Count pending review entries for the transactions of one statement."""
        stmt = (
            select(func.count(ReviewQueueEntry.id))
            .join(Transaction, Transaction.id == ReviewQueueEntry.transaction_id)
            .where(
                Transaction.bank_statement_id == statement_id,
                ReviewQueueEntry.status == ReviewStatus.PENDING.value,
            )
        )
        return self.session.execute(stmt).scalar_one()

    def list_pending_reviews(self, user_id: str, business_profile_id: str | None = None) -> list[dict[str, Any]]:
        """List pending review entries for a user, most severe first."""
        stmt = select(ReviewQueueEntry, Transaction).join(
            Transaction, Transaction.id == ReviewQueueEntry.transaction_id
        )
        stmt = stmt.where(
            ReviewQueueEntry.user_id == user_id,
            ReviewQueueEntry.status == ReviewStatus.PENDING.value,
        )
        if business_profile_id:
            stmt = stmt.where(ReviewQueueEntry.business_profile_id == business_profile_id)
        rows = self.session.execute(stmt.order_by(ReviewQueueEntry.confidence.asc())).all()
        return [
            {
                "id": review.id,
                "transaction_id": txn.id,
                "description": txn.description,
                "amount": txn.amount,
                "date": txn.date.isoformat(),
                "category": txn.category,
                "confidence": review.confidence,
                "issue_type": review.issue_type,
                "issue_severity": review.issue_severity,
                "issue_description": review.issue_description,
                "suggested_fix": review.suggested_fix,
                "alternative": review.alternative,
            }
            for review, txn in rows
        ]

    def close(self) -> None:
        """Close the SQLAlchemy session."""
        self.session.close()
