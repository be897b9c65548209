"""Versioned response schemas for completion output.

Completions are free-form JSON. Each payload is decoded leniently: unknown keys are ignored,
non-object list items are discarded, and camelCase keys map onto snake_case attributes.
"""

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

SCHEMA_VERSION = "v1"


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def _objects_only(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    text = value if isinstance(value, int | float) else str(value).replace("$", "").replace(",", "").strip()
    try:
        number = float(text)
    except (ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _clamp_confidence(value: Any) -> float:
    number = _to_float(value)
    if number is None:
        return 0.5
    if number > 1.0:
        number = number / 100.0
    return min(max(number, 0.0), 1.0)


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "y", "1")
    return bool(value)


def _version(value: Any) -> str:
    return SCHEMA_VERSION if value is None else str(value)


class BankInfoPayload(_Payload):
    bank_name: str | None = Field(default=None, alias="bankName")
    account_number: str | None = Field(default=None, alias="accountNumber")
    account_type: str | None = Field(default=None, alias="accountType")
    statement_period: str | None = Field(default=None, alias="statementPeriod")

    @field_validator("bank_name", "account_number", "account_type", "statement_period", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> str | None:
        return None if value is None else str(value)


class SummaryPayload(_Payload):
    beginning_balance: float | None = Field(default=None, alias="beginningBalance")
    starting_balance: float | None = Field(default=None, alias="startingBalance")
    ending_balance: float | None = Field(default=None, alias="endingBalance")
    transaction_count: int | None = Field(default=None, alias="transactionCount")

    @field_validator("beginning_balance", "starting_balance", "ending_balance", mode="before")
    @classmethod
    def _money(cls, value: Any) -> float | None:
        return _to_float(value)

    @field_validator("transaction_count", mode="before")
    @classmethod
    def _count(cls, value: Any) -> int | None:
        number = _to_float(value)
        return None if number is None else int(number)


class StatementPayload(_Payload):
    """Extraction output: statement metadata plus raw transaction dicts."""

    schema_version: str = Field(default=SCHEMA_VERSION, alias="schemaVersion")
    bank_info: BankInfoPayload = Field(default_factory=BankInfoPayload, alias="bankInfo")
    transaction_count: int | None = Field(default=None, alias="transactionCount")
    transactions: list[dict[str, Any]] = Field(default_factory=list)
    summary: SummaryPayload = Field(default_factory=SummaryPayload)
    column_mapping: dict[str, Any] | None = Field(default=None, alias="columnMapping")

    @field_validator("schema_version", mode="before")
    @classmethod
    def _schema_version(cls, value: Any) -> str:
        return _version(value)

    @field_validator("transactions", mode="before")
    @classmethod
    def _transactions(cls, value: Any) -> list[dict[str, Any]]:
        return _objects_only(value)

    @field_validator("bank_info", "summary", mode="before")
    @classmethod
    def _object_or_empty(cls, value: Any) -> dict[str, Any]:
        return value if isinstance(value, dict) else {}

    @field_validator("column_mapping", mode="before")
    @classmethod
    def _mapping(cls, value: Any) -> dict[str, Any] | None:
        return value if isinstance(value, dict) else None

    @field_validator("transaction_count", mode="before")
    @classmethod
    def _count(cls, value: Any) -> int | None:
        number = _to_float(value)
        return None if number is None else int(number)

    @property
    def beginning_balance(self) -> float | None:
        if self.summary.beginning_balance is not None:
            return self.summary.beginning_balance
        return self.summary.starting_balance


class CategorizedItemPayload(_Payload):
    index: int | None = None
    description: str | None = None
    date: str | None = None
    amount: float | None = None
    suggested_category: str | None = Field(default=None, alias="suggestedCategory")
    confidence: float = 0.5
    reasoning: str | None = None
    merchant: str | None = None
    is_recurring: bool = Field(default=False, alias="isRecurring")
    profile_type: str | None = Field(default=None, alias="profileType")

    @field_validator("index", mode="before")
    @classmethod
    def _index(cls, value: Any) -> int | None:
        number = _to_float(value)
        return None if number is None else int(number)

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, value: Any) -> float | None:
        return _to_float(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, value: Any) -> float:
        return _clamp_confidence(value)

    @field_validator("description", "date", "merchant", "reasoning", "suggested_category", "profile_type", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str | None:
        return None if value is None else str(value)

    @field_validator("is_recurring", mode="before")
    @classmethod
    def _recurring(cls, value: Any) -> bool:
        return _flag(value)


class CategorizationPayload(_Payload):
    schema_version: str = Field(default=SCHEMA_VERSION, alias="schemaVersion")
    categorized_transactions: list[CategorizedItemPayload] = Field(
        default_factory=list, alias="categorizedTransactions"
    )

    @field_validator("schema_version", mode="before")
    @classmethod
    def _schema_version(cls, value: Any) -> str:
        return _version(value)

    @field_validator("categorized_transactions", mode="before")
    @classmethod
    def _items(cls, value: Any) -> list[dict[str, Any]]:
        return _objects_only(value)


class ValidatedItemPayload(_Payload):
    transaction_id: str | None = Field(default=None, alias="transactionId")
    original_category: str | None = Field(default=None, alias="originalCategory")
    validated_category: str | None = Field(default=None, alias="validatedCategory")
    original_profile: str | None = Field(default=None, alias="originalProfile")
    validated_profile: str | None = Field(default=None, alias="validatedProfile")
    confidence: float = 0.5
    has_issue: bool = Field(default=False, alias="hasIssue")
    issue_type: str | None = Field(default=None, alias="issueType")
    issue_severity: str | None = Field(default=None, alias="issueSeverity")
    issue_description: str | None = Field(default=None, alias="issueDescription")
    suggested_fix: str | None = Field(default=None, alias="suggestedFix")

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, value: Any) -> float:
        return _clamp_confidence(value)

    @field_validator(
        "transaction_id",
        "original_category",
        "validated_category",
        "original_profile",
        "validated_profile",
        "issue_type",
        "issue_severity",
        "issue_description",
        "suggested_fix",
        mode="before",
    )
    @classmethod
    def _id(cls, value: Any) -> str | None:
        return None if value is None else str(value)

    @field_validator("has_issue", mode="before")
    @classmethod
    def _has_issue(cls, value: Any) -> bool:
        return _flag(value)


class ValidationPayload(_Payload):
    schema_version: str = Field(default=SCHEMA_VERSION, alias="schemaVersion")
    validated_transactions: list[ValidatedItemPayload] = Field(default_factory=list, alias="validatedTransactions")

    @field_validator("schema_version", mode="before")
    @classmethod
    def _schema_version(cls, value: Any) -> str:
        return _version(value)

    @field_validator("validated_transactions", mode="before")
    @classmethod
    def _items(cls, value: Any) -> list[dict[str, Any]]:
        return _objects_only(value)
