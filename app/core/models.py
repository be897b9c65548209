"""Pydantic models and enumerations for the statement pipeline.

These are the ephemeral shapes that flow between pipeline stages: raw records coming out of the
extractor, categorized records coming out of the categorizer, routing decisions made by the
enhancer, and the validation report. Persisted entities live in ``app.core.db``.
"""

from datetime import date, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class StatementStatus(StrEnum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ProcessingStage(StrEnum):
    UPLOADED = "UPLOADED"
    EXTRACTING_DATA = "EXTRACTING_DATA"
    CATEGORIZING_TRANSACTIONS = "CATEGORIZING_TRANSACTIONS"
    ANALYZING_PATTERNS = "ANALYZING_PATTERNS"
    DISTRIBUTING_DATA = "DISTRIBUTING_DATA"
    VALIDATING = "VALIDATING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class FileType(StrEnum):
    PDF = "PDF"
    CSV = "CSV"


class TransactionType(StrEnum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"


class ProfileType(StrEnum):
    BUSINESS = "BUSINESS"
    PERSONAL = "PERSONAL"


class Frequency(StrEnum):
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    ANNUALLY = "ANNUALLY"


class Severity(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class IssueType(StrEnum):
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    DUPLICATE = "DUPLICATE"
    CATEGORY_MISMATCH = "CATEGORY_MISMATCH"
    PROFILE_MISMATCH = "PROFILE_MISMATCH"
    MATH_ERROR = "MATH_ERROR"
    MISSING_DATA = "MISSING_DATA"
    OUT_OF_PERIOD = "OUT_OF_PERIOD"


class ReviewStatus(StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    CORRECTED = "CORRECTED"


class RawTransaction(BaseModel):
    """A transaction as extracted from a statement, after date/amount normalization."""

    date: date
    description: str
    amount: float
    type: str | None = None
    category: str | None = None
    merchant: str | None = None


class BankInfo(BaseModel):
    """Statement-level metadata, taken from the first page only."""

    bank_name: str | None = None
    account_number: str | None = None
    account_type: str | None = None
    statement_period: str | None = None
    beginning_balance: float | None = None
    ending_balance: float | None = None
    declared_count: int | None = None


class PageDiagnostics(BaseModel):
    """Per-page outcome of page-by-page extraction."""

    page: int
    minimum: int
    count: int = 0
    estimated_count: int | None = None
    attempts: int = 0
    failed: bool = False
    below_minimum: bool = False
    error: str | None = None


class ExtractionResult(BaseModel):
    """Output of the extractor stage."""

    bank_info: BankInfo = Field(default_factory=BankInfo)
    transactions: list[RawTransaction] = Field(default_factory=list)
    method: str = ""
    column_mapping: dict[str, Any] | None = None
    pages: list[PageDiagnostics] = Field(default_factory=list)
    failed_pages: list[int] = Field(default_factory=list)
    dropped_records: int = 0


class UserContext(BaseModel):
    """Who the statement belongs to; steers BUSINESS/PERSONAL classification."""

    user_id: str
    industry: str | None = None
    business_type: str | None = None
    company_name: str | None = None
    default_profile_type: ProfileType = ProfileType.BUSINESS


class CategorizedTransaction(BaseModel):
    """A raw transaction plus the categorizer's suggestion."""

    original: RawTransaction
    suggested_category: str
    confidence: float = Field(ge=0.0, le=1.0)
    merchant: str = ""
    is_recurring: bool = False
    profile_type: ProfileType = ProfileType.BUSINESS
    reasoning: str = ""
    is_fallback: bool = False


class RoutingDecision(BaseModel):
    """Final category/profile/confidence for one transaction, ready to persist."""

    categorized: CategorizedTransaction
    category: str
    profile_type: ProfileType
    transaction_type: TransactionType
    confidence: float
    is_recurring: bool
    target_profile_id: str | None = None
    merchant_rule_applied: bool = False
    historical_confidence: float = 0.0
    recurring_frequency: Frequency | None = None


class ValidationIssue(BaseModel):
    """One problem found by the rule checker or the AI re-validation."""

    type: IssueType
    severity: Severity
    description: str
    transaction_id: str | None = None
    suggested_fix: str | None = None
    source: str = "rules"
    confidence: float | None = None
    suggested_category: str | None = None
    suggested_profile: ProfileType | None = None
    auto_applied: bool = False


class ValidationResult(BaseModel):
    """Merged rule/AI validation report for one statement."""

    statement_id: str
    confidence: float
    issues: list[ValidationIssue] = Field(default_factory=list)
    is_valid: bool = True
    rule_confidence: float = 1.0
    ai_confidence: float | None = None
    balance_reconciled: bool | None = None
    corrections_applied: int = 0
    validated_at: datetime | None = None


class StatementStatusResponse(BaseModel):
    """Pydantic model representing the processing status of a bank statement."""

    id: str
    status: StatementStatus
    processing_stage: ProcessingStage
    created_at: datetime
    processed_at: datetime | None = None
    error: str | None = None
    transaction_count: int = 0
    review_count: int = 0
    validation_confidence: float | None = None
    failed_pages: list[int] = Field(default_factory=list)


class MerchantRuleIn(BaseModel):
    """Request body for creating a merchant rule."""

    user_id: str
    merchant_name: str
    suggested_category: str
    profile_type: ProfileType
    merchant_pattern: str | None = None
    business_profile_id: str | None = None
    priority: int = 50
    auto_apply: bool = True
