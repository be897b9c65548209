"""Validator stage: rule checks plus AI re-validation, merged into one confidence score."""

from collections.abc import Iterable
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.agents.validation_agent import ValidationAgent
from app.core.db import BankStatement, BusinessProfile, Transaction
from app.core.errors import CompletionError, ExtractionError
from app.core.models import (
    ExtractionResult,
    IssueType,
    ProfileType,
    Severity,
    TransactionType,
    ValidationIssue,
    ValidationResult,
)
from app.core.settings import Settings
from app.core.thresholds import AUTO_APPLY_THRESHOLD
from app.core.utils import get_logger, utcnow

from .normalizer import parse_period
from .persister import TransactionPersister

logger = get_logger("statement-pipeline.validator")

BALANCE_TOLERANCE = 0.10
DUPLICATE_PREFIX_LEN = 20
SEVERITY_PENALTY = {Severity.HIGH: 0.15, Severity.MEDIUM: 0.05, Severity.LOW: 0.02}
NO_AI_FACTOR = 0.9


def penalized(start: float, issues: Iterable[ValidationIssue]) -> float:
    """Subtract the per-severity penalty of every issue, clamped to [0, 1]."""
    score = start - sum(SEVERITY_PENALTY[issue.severity] for issue in issues)
    return min(max(score, 0.0), 1.0)


def _severity(value: str | None) -> Severity:
    try:
        return Severity(str(value).upper())
    except ValueError:
        return Severity.MEDIUM


def _issue_type(value: str | None) -> IssueType:
    try:
        return IssueType(str(value).upper())
    except ValueError:
        return IssueType.CATEGORY_MISMATCH


def _profile(value: str | None) -> ProfileType | None:
    try:
        return ProfileType(str(value).upper())
    except ValueError:
        return None


def rule_issues(extracted: ExtractionResult, transactions: list[Transaction]) -> tuple[list[ValidationIssue], bool | None]:
    """Deterministic checks over persisted rows; returns the issues and the balance verdict."""
    issues: list[ValidationIssue] = []
    info = extracted.bank_info

    if not info.bank_name or not info.statement_period:
        issues.append(
            ValidationIssue(
                type=IssueType.MISSING_DATA,
                severity=Severity.LOW,
                description="Statement metadata is incomplete (bank name or statement period missing)",
            )
        )
    for txn in transactions:
        if not (txn.description or "").strip() or not txn.amount or not txn.category:
            issues.append(
                ValidationIssue(
                    type=IssueType.MISSING_DATA,
                    severity=Severity.MEDIUM,
                    description=f"Transaction is missing a description, amount or category: {txn.description!r}",
                    transaction_id=txn.id,
                    suggested_fix="Fill in the missing fields from the original statement",
                )
            )

    period = parse_period(info.statement_period)
    if period is not None:
        start, end = period
        for txn in transactions:
            if not start <= txn.date <= end:
                issues.append(
                    ValidationIssue(
                        type=IssueType.OUT_OF_PERIOD,
                        severity=Severity.MEDIUM,
                        description=f"{txn.date.isoformat()} is outside the statement period {start} to {end}",
                        transaction_id=txn.id,
                        suggested_fix="Check the transaction date against the statement",
                    )
                )

    seen: dict[tuple[Any, ...], str] = {}
    for txn in transactions:
        key = (txn.date, round(txn.signed_amount, 2), (txn.description or "")[:DUPLICATE_PREFIX_LEN].lower())
        if key in seen:
            issues.append(
                ValidationIssue(
                    type=IssueType.DUPLICATE,
                    severity=Severity.MEDIUM,
                    description=f"Possible duplicate of transaction {seen[key]}: {txn.description}",
                    transaction_id=txn.id,
                    suggested_fix="Delete one of the duplicates if they are the same charge",
                )
            )
        else:
            seen[key] = txn.id

    reconciled = None
    if info.beginning_balance is not None and info.ending_balance is not None:
        expected = info.beginning_balance + sum(txn.signed_amount for txn in transactions)
        difference = abs(expected - info.ending_balance)
        reconciled = difference <= BALANCE_TOLERANCE
        if not reconciled:
            issues.append(
                ValidationIssue(
                    type=IssueType.MATH_ERROR,
                    severity=Severity.HIGH,
                    description=(
                        f"Balances do not reconcile: {info.beginning_balance:.2f} + transactions = {expected:.2f}, "
                        f"statement says {info.ending_balance:.2f} (off by {difference:.2f})"
                    ),
                    suggested_fix="Look for missing or duplicated transactions",
                )
            )

    if info.declared_count is not None and info.declared_count != len(transactions):
        fewer = len(transactions) < info.declared_count
        issues.append(
            ValidationIssue(
                type=IssueType.MISSING_DATA,
                severity=Severity.HIGH if fewer else Severity.LOW,
                description=f"Statement declares {info.declared_count} transactions, {len(transactions)} were saved",
                suggested_fix="Re-process the statement or add the missing transactions" if fewer else None,
            )
        )
    return issues, reconciled


class StatementValidator:
    """Audits a statement's persisted transactions and stores the verdict on the statement."""

    def __init__(self, session: Session, agent: ValidationAgent | None, settings: Settings) -> None:
        self.session = session
        self.agent = agent
        self.settings = settings

    def validate(self, statement_id: str, extracted: ExtractionResult, transactions: list[Transaction]) -> ValidationResult:
        statement = self.session.get(BankStatement, statement_id)
        if statement is None:
            msg = f"Statement {statement_id} not found"
            raise LookupError(msg)

        issues, reconciled = rule_issues(extracted, transactions)
        rule_score = penalized(1.0, issues)
        ai_issues, ai_confidences, corrections = self._ai_review(statement, transactions)
        if ai_confidences:
            ai_score = penalized(sum(ai_confidences) / len(ai_confidences), ai_issues)
            confidence = (rule_score + ai_score) / 2
        else:
            ai_score = None
            confidence = rule_score * NO_AI_FACTOR
        all_issues = issues + ai_issues

        result = ValidationResult(
            statement_id=statement_id,
            confidence=confidence,
            issues=all_issues,
            is_valid=not any(issue.severity == Severity.HIGH for issue in all_issues),
            rule_confidence=rule_score,
            ai_confidence=ai_score,
            balance_reconciled=reconciled,
            corrections_applied=corrections,
            validated_at=utcnow(),
        )
        statement.validation_confidence = result.confidence
        statement.validation_issues = [issue.model_dump(mode="json") for issue in all_issues]
        statement.validated_at = result.validated_at
        logger.info(
            f"[Validator] Statement {statement_id}: confidence {confidence:.2f} "
            f"(rules {rule_score:.2f}, ai {'n/a' if ai_score is None else f'{ai_score:.2f}'}), "
            f"{len(all_issues)} issues, {corrections} corrections applied"
        )
        return result

    def _ai_review(
        self, statement: BankStatement, transactions: list[Transaction]
    ) -> tuple[list[ValidationIssue], list[float], int]:
        if self.agent is None or not transactions:
            return [], [], 0
        profile_types = dict(
            self.session.execute(
                select(BusinessProfile.id, BusinessProfile.type).where(BusinessProfile.user_id == statement.user_id)
            ).all()
        )
        by_id = {txn.id: txn for txn in transactions}
        size = max(1, self.settings.validation_batch_size)
        issues: list[ValidationIssue] = []
        confidences: list[float] = []
        corrections = 0
        persister = TransactionPersister(self.session)
        batches = [transactions[start : start + size] for start in range(0, len(transactions), size)]
        for number, batch in enumerate(batches, start=1):
            items = [
                {
                    "transactionId": txn.id,
                    "date": txn.date.isoformat(),
                    "description": txn.description,
                    "amount": txn.signed_amount,
                    "type": txn.type,
                    "category": txn.category,
                    "profile": profile_types.get(txn.business_profile_id),
                }
                for txn in batch
            ]
            label = f"Re-validate {number}/{len(batches)}"
            try:
                validated = self.agent.validate_batch(items, label)
            except (CompletionError, ExtractionError) as exc:
                logger.error(f"[Validator] {label} failed, skipping: {exc}")
                continue
            for item in validated:
                txn = by_id.get(item.transaction_id or "")
                if txn is None:
                    continue
                confidences.append(item.confidence)
                new_category = (item.validated_category or "").strip()
                category_changed = bool(new_category) and new_category != txn.category
                if not item.has_issue and not category_changed:
                    continue
                auto_applied = category_changed and item.confidence > AUTO_APPLY_THRESHOLD
                if auto_applied:
                    logger.info(f"[Validator] Correcting '{txn.description}': {txn.category} -> {new_category}")
                    txn.category_id = persister.ensure_category(
                        txn.user_id, new_category, txn.business_profile_id, TransactionType(txn.type)
                    )
                    txn.category = new_category
                    corrections += 1
                issues.append(
                    ValidationIssue(
                        type=_issue_type(item.issue_type),
                        severity=_severity(item.issue_severity),
                        description=item.issue_description or f"Category may be wrong: {txn.category}",
                        transaction_id=txn.id,
                        suggested_fix=item.suggested_fix,
                        source="ai",
                        confidence=item.confidence,
                        suggested_category=new_category or None,
                        suggested_profile=_profile(item.validated_profile),
                        auto_applied=auto_applied,
                    )
                )
        return issues, confidences, corrections
