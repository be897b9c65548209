"""Tests for statement validation: rule checks, AI re-validation and score merging."""

from datetime import date
from typing import Any

import pytest
from conftest import ScriptedClient
from sqlalchemy.orm import Session

from app.agents.validation_agent import ValidationAgent
from app.core.db import BankStatement, Transaction
from app.core.errors import ExtractionError
from app.core.models import BankInfo, ExtractionResult, IssueType, Severity
from app.core.settings import Settings
from app.services.validator import StatementValidator, penalized

PERIOD = "2024-03-01 to 2024-03-31"


def _setup(session: Session, rows: list[tuple[date, str, float, str]]) -> tuple[BankStatement, list[Transaction]]:
    statement = BankStatement(user_id="u1", file_name="s.pdf", file_type="PDF", storage_key="local://s.pdf")
    session.add(statement)
    session.flush()
    transactions = []
    for day, description, signed, category in rows:
        txn = Transaction(
            user_id="u1",
            bank_statement_id=statement.id,
            date=day,
            amount=abs(signed),
            signed_amount=signed,
            description=description,
            merchant=description,
            category=category,
            type="INCOME" if signed > 0 else "EXPENSE",
            confidence=0.9,
        )
        session.add(txn)
        transactions.append(txn)
    session.commit()
    return statement, transactions


def _extracted(**info: Any) -> ExtractionResult:
    return ExtractionResult(bank_info=BankInfo(bank_name="First Bank", statement_period=PERIOD, **info))


ROWS = [
    (date(2024, 3, 2), "STAPLES 0042", -50.0, "Office Supplies"),
    (date(2024, 3, 9), "CLIENT PAYMENT", 200.0, "Business Revenue"),
    (date(2024, 3, 15), "UBER TRIP", -25.0, "Transportation"),
]


def test_clean_statement_without_ai_scores_rule_times_point_nine(session: Session, settings: Settings) -> None:
    statement, transactions = _setup(session, ROWS)
    result = StatementValidator(session, None, settings).validate(
        statement.id, _extracted(beginning_balance=1000.0, ending_balance=1125.0, declared_count=3), transactions
    )
    if result.issues or not result.balance_reconciled:
        msg = f"Expected a clean reconciled statement, got {result.issues}"
        raise AssertionError(msg)
    if abs(result.confidence - 0.9) > 1e-9:  # noqa: PLR2004
        msg = f"Expected 1.0 * 0.9 without AI, got {result.confidence}"
        raise AssertionError(msg)
    if statement.validation_confidence != result.confidence or statement.validated_at is None:
        msg = "The verdict must be stored on the statement"
        raise AssertionError(msg)


def test_rule_checks_flag_balance_duplicates_period_and_count(session: Session, settings: Settings) -> None:
    rows = [
        *ROWS,
        (date(2024, 3, 15), "UBER TRIP", -25.0, "Transportation"),
        (date(2024, 4, 2), "LATE FEE", -5.0, "Bank Fees"),
    ]
    statement, transactions = _setup(session, rows)
    result = StatementValidator(session, None, settings).validate(
        statement.id, _extracted(beginning_balance=1000.0, ending_balance=1125.0, declared_count=6), transactions
    )
    kinds = {issue.type for issue in result.issues}
    expected = {IssueType.MATH_ERROR, IssueType.DUPLICATE, IssueType.OUT_OF_PERIOD, IssueType.MISSING_DATA}
    if kinds != expected:
        msg = f"Expected issue types {expected}, got {kinds}"
        raise AssertionError(msg)
    if result.balance_reconciled is not False or result.is_valid:
        msg = "An unreconciled balance must make the statement invalid"
        raise AssertionError(msg)
    # HIGH balance + HIGH count (1 short) + MEDIUM duplicate + MEDIUM out of period
    if abs(result.rule_confidence - penalized(1.0, result.issues)) > 1e-9 or abs(result.rule_confidence - 0.6) > 1e-9:  # noqa: PLR2004
        msg = f"Expected rule confidence 0.6, got {result.rule_confidence}"
        raise AssertionError(msg)


def test_balance_check_skipped_without_both_balances(session: Session, settings: Settings) -> None:
    statement, transactions = _setup(session, ROWS)
    result = StatementValidator(session, None, settings).validate(
        statement.id, _extracted(beginning_balance=1000.0), transactions
    )
    if result.balance_reconciled is not None:
        msg = "Balance reconciliation needs both balances"
        raise AssertionError(msg)


def test_ai_corrections_applied_above_threshold(session: Session, settings: Settings) -> None:
    statement, transactions = _setup(session, ROWS)
    staples, client_payment, uber = transactions

    def handler(_: dict[str, Any]) -> dict[str, Any]:
        return {
            "validatedTransactions": [
                {"transactionId": staples.id, "validatedCategory": "Office Supplies", "confidence": 0.95},
                {
                    "transactionId": uber.id,
                    "validatedCategory": "Business Travel",
                    "confidence": 0.92,
                    "hasIssue": True,
                    "issueType": "CATEGORY_MISMATCH",
                    "issueSeverity": "LOW",
                    "issueDescription": "Ride during a client visit",
                },
                {
                    "transactionId": client_payment.id,
                    "validatedCategory": "Freelance Income",
                    "confidence": 0.6,
                    "hasIssue": True,
                    "issueSeverity": "MEDIUM",
                },
            ]
        }

    validator = StatementValidator(session, ValidationAgent(ScriptedClient(handler), settings), settings)
    result = validator.validate(statement.id, _extracted(), transactions)
    session.commit()

    if uber.category != "Business Travel" or uber.category_id is None:
        msg = f"Expected the high-confidence correction to be applied, got {uber.category}"
        raise AssertionError(msg)
    if client_payment.category != "Business Revenue":
        msg = "Low-confidence suggestions must stay informational"
        raise AssertionError(msg)
    if result.corrections_applied != 1:
        msg = f"Expected 1 correction, got {result.corrections_applied}"
        raise AssertionError(msg)
    ai_issues = [issue for issue in result.issues if issue.source == "ai"]
    if len(ai_issues) != 2 or not any(issue.auto_applied for issue in ai_issues):  # noqa: PLR2004
        msg = f"Unexpected AI issues: {ai_issues}"
        raise AssertionError(msg)
    expected_ai = (0.95 + 0.92 + 0.6) / 3 - 0.02 - 0.05
    if result.ai_confidence is None or abs(result.ai_confidence - expected_ai) > 1e-9:  # noqa: PLR2004
        msg = f"Expected AI confidence {expected_ai}, got {result.ai_confidence}"
        raise AssertionError(msg)
    if abs(result.confidence - (result.rule_confidence + expected_ai) / 2) > 1e-9:  # noqa: PLR2004
        msg = "Overall confidence must be the mean of the rule and AI scores"
        raise AssertionError(msg)


def test_failed_ai_batch_is_skipped(session: Session, settings: Settings) -> None:
    statement, transactions = _setup(session, ROWS)
    validator = StatementValidator(session, ValidationAgent(ScriptedClient(lambda _: "nope"), settings), settings)
    result = validator.validate(statement.id, _extracted(), transactions)
    if result.ai_confidence is not None:
        msg = "A failed AI batch contributes nothing"
        raise AssertionError(msg)
    if any(issue.severity == Severity.HIGH for issue in result.issues):
        msg = f"Unexpected HIGH issues: {result.issues}"
        raise AssertionError(msg)


def test_unknown_statement_raises(session: Session, settings: Settings) -> None:
    with pytest.raises(LookupError):
        StatementValidator(session, None, settings).validate("missing", _extracted(), [])


def test_loosely_typed_ai_answer_is_accepted(session: Session, settings: Settings) -> None:
    statement, transactions = _setup(session, ROWS)

    def handler(_: dict[str, Any]) -> dict[str, Any]:
        return {
            "schemaVersion": 1,
            "validatedTransactions": [
                {"transactionId": txn.id, "confidence": 0.8, "hasIssue": None, "issueType": None}
                for txn in transactions
            ],
        }

    validator = StatementValidator(session, ValidationAgent(ScriptedClient(handler), settings), settings)
    result = validator.validate(statement.id, _extracted(), transactions)
    if result.ai_confidence is None or abs(result.ai_confidence - 0.8) > 1e-9:  # noqa: PLR2004
        msg = f"Expected the AI batch to count with confidence 0.8, got {result.ai_confidence}"
        raise AssertionError(msg)
    if any(issue.source == "ai" for issue in result.issues):
        msg = "A null hasIssue must not raise an AI issue"
        raise AssertionError(msg)
    if statement.validated_at is None:
        msg = "The verdict must be stored on the statement"
        raise AssertionError(msg)


def test_ai_answer_that_fails_schema_validation_is_skipped(
    session: Session, settings: Settings, monkeypatch: pytest.MonkeyPatch
) -> None:
    statement, transactions = _setup(session, ROWS)

    def reject(*_: Any) -> None:
        msg = "Re-validate: response does not match ValidationPayload"
        raise ExtractionError(msg)

    monkeypatch.setattr(ValidationAgent, "parse", reject)
    agent = ValidationAgent(ScriptedClient(lambda _: {"validatedTransactions": []}), settings)
    result = StatementValidator(session, agent, settings).validate(statement.id, _extracted(), transactions)
    if result.ai_confidence is not None or statement.validated_at is None:
        msg = "A batch whose answer fails validation contributes nothing and the run still completes"
        raise AssertionError(msg)
