"""Extractor stage: statement bytes in, normalized transactions and bank metadata out.

Large PDFs are split into single pages and sent to the vision model one page at a time, with
per-page minimum counts and a bounded retry per page. When that yields nothing, the extractor
falls back to the text layer and then to a direct whole-PDF call, and keeps the richest result.
CSV files go through a single completion call that also reports the detected column mapping.
"""

import io
import time
from collections.abc import Callable

import pandas as pd
from pandas.errors import EmptyDataError, ParserError

from app.agents.extraction_agent import ExtractionAgent
from app.agents.schemas import StatementPayload
from app.core.errors import CompletionError, ExtractionError
from app.core.models import BankInfo, ExtractionResult, FileType, PageDiagnostics, RawTransaction
from app.core.settings import Settings
from app.core.utils import RetryPolicy, get_logger, retry_with_backoff

from .normalizer import normalize_records, parse_period
from .pdf_service import PdfService

logger = get_logger("statement-pipeline.extractor")

FIRST_PAGE_MINIMUM = 5
LAST_PAGE_MINIMUM = 3
MIDDLE_PAGE_MINIMUM = 10


def page_minimum(index: int, total: int) -> int:
    """Expected minimum transaction count for a 0-based page index."""
    if index == total - 1:
        return LAST_PAGE_MINIMUM
    if index == 0:
        return FIRST_PAGE_MINIMUM
    return MIDDLE_PAGE_MINIMUM


def _retryable(exc: Exception) -> bool:
    return isinstance(exc, CompletionError | ExtractionError)


def bank_info_from(payload: StatementPayload, *, whole_document: bool = True) -> BankInfo:
    """Statement metadata from one payload; page payloads only trust the summary count."""
    declared = payload.summary.transaction_count
    if declared is None and whole_document:
        declared = payload.transaction_count
    return BankInfo(
        bank_name=payload.bank_info.bank_name,
        account_number=payload.bank_info.account_number,
        account_type=payload.bank_info.account_type,
        statement_period=payload.bank_info.statement_period,
        beginning_balance=payload.beginning_balance,
        ending_balance=payload.summary.ending_balance,
        declared_count=declared,
    )


class StatementExtractor:
    """Turns an uploaded statement into an ExtractionResult."""

    def __init__(
        self,
        agent: ExtractionAgent,
        pdf_service: PdfService,
        settings: Settings,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.agent = agent
        self.pdf = pdf_service
        self.settings = settings
        self.sleep = sleep

    def extract(self, file_bytes: bytes, file_name: str, file_type: FileType | str) -> ExtractionResult:
        """Extract transactions from a PDF or CSV statement.

        Raises:
            ExtractionError: when no strategy produced a single transaction.
            CompletionError: when the only strategy tried (small PDF, CSV) could not reach the model.

        """
        file_type = FileType(str(file_type).upper())
        logger.info(f"[Extractor] Starting {file_type} extraction for {file_name} ({len(file_bytes)} bytes)")
        if file_type == FileType.CSV:
            result = self._extract_csv(file_bytes)
        else:
            result = self._extract_pdf(file_bytes, file_name)
        logger.info(
            f"[Extractor] {file_name}: {len(result.transactions)} transactions via {result.method}, "
            f"{result.dropped_records} dropped, failed pages {result.failed_pages}"
        )
        return result

    # -- PDF ----------------------------------------------------------------------------------

    def _extract_pdf(self, pdf_bytes: bytes, file_name: str) -> ExtractionResult:
        size = len(pdf_bytes)
        if size <= self.settings.page_vision_min_bytes:
            logger.info(f"[Extractor] Small PDF ({size} bytes), using direct extraction")
            return self._extract_direct(pdf_bytes, file_name)

        candidates: list[ExtractionResult] = []
        errors: list[str] = []
        paged: ExtractionResult | None = None
        try:
            paged = self._extract_pages(pdf_bytes, file_name)
            candidates.append(paged)
        except ExtractionError as exc:
            logger.error(f"[Extractor] Page-by-page extraction failed: {exc}")
            errors.append(str(exc))

        if not any(candidate.transactions for candidate in candidates):
            logger.warning("[Extractor] Page-by-page extraction found nothing, trying the text layer")
            try:
                text_result = self._extract_text(pdf_bytes)
            except (CompletionError, ExtractionError) as exc:
                logger.error(f"[Extractor] Text extraction failed: {exc}")
                errors.append(str(exc))
                text_result = None
            if text_result is not None:
                candidates.append(text_result)

        if not any(candidate.transactions for candidate in candidates):
            logger.warning("[Extractor] Text extraction found nothing, trying direct PDF extraction")
            try:
                candidates.append(self._extract_direct(pdf_bytes, file_name))
            except (CompletionError, ExtractionError) as exc:
                logger.error(f"[Extractor] Direct PDF extraction failed: {exc}")
                errors.append(str(exc))

        best = max(candidates, key=lambda candidate: len(candidate.transactions), default=None)
        if best is None or not best.transactions:
            detail = "; ".join(errors) or "every strategy returned zero transactions"
            msg = f"No transactions could be extracted from {file_name}: {detail}"
            raise ExtractionError(msg)
        if paged is not None and best is not paged:
            best.pages = paged.pages
            best.failed_pages = paged.failed_pages
            if best.bank_info.statement_period is None:
                best.bank_info = paged.bank_info
        return best

    def _extract_pages(self, pdf_bytes: bytes, file_name: str) -> ExtractionResult:
        pages = self.pdf.split_pages(pdf_bytes)
        total = len(pages)
        logger.info(f"[Extractor] Processing {total} pages individually")
        result = ExtractionResult(method="page_vision")
        period_end = None
        for index, page_pdf in enumerate(pages):
            if index > 0 and self.settings.inter_page_delay > 0:
                self.sleep(self.settings.inter_page_delay)
            number = index + 1
            minimum = page_minimum(index, total) if total > 1 else LAST_PAGE_MINIMUM
            diagnostics = PageDiagnostics(page=number, minimum=minimum)
            result.pages.append(diagnostics)

            def attempt(
                attempt_number: int,
                page_pdf: bytes = page_pdf,
                number: int = number,
                diagnostics: PageDiagnostics = diagnostics,
            ) -> tuple[StatementPayload, list[RawTransaction], int]:
                diagnostics.attempts = attempt_number
                payload = self.agent.extract_page(page_pdf, number, total, file_name)
                records, dropped = normalize_records(payload.transactions, period_end, label=f"Page {number}")
                return payload, records, dropped

            try:
                payload, records, dropped = retry_with_backoff(
                    attempt,
                    RetryPolicy(
                        max_attempts=self.settings.page_retries + 1,
                        base_delay=self.settings.page_retry_base_delay,
                    ),
                    should_retry=_retryable,
                    is_acceptable=lambda outcome, minimum=minimum: len(outcome[1]) >= minimum,
                    score=lambda outcome: len(outcome[1]),
                    label=f"Page {number}/{total}",
                    sleep=self.sleep,
                )
            except (CompletionError, ExtractionError) as exc:
                diagnostics.failed = True
                diagnostics.error = str(exc)
                result.failed_pages.append(number)
                logger.error(f"[Extractor] Page {number}/{total} failed after {diagnostics.attempts} attempts: {exc}")
                continue

            diagnostics.count = len(records)
            diagnostics.estimated_count = payload.transaction_count
            diagnostics.below_minimum = len(records) < minimum
            if diagnostics.below_minimum:
                logger.warning(
                    f"[Extractor] Page {number}/{total} returned {len(records)} transactions, "
                    f"below the expected minimum of {minimum}; keeping the best attempt"
                )
            else:
                logger.info(f"[Extractor] Page {number}/{total}: {len(records)} transactions")
            if index == 0:
                result.bank_info = bank_info_from(payload, whole_document=False)
                period = parse_period(result.bank_info.statement_period)
                period_end = period[1] if period else None
            result.transactions.extend(records)
            result.dropped_records += dropped
        return result

    def _extract_text(self, pdf_bytes: bytes) -> ExtractionResult | None:
        text = self.pdf.extract_text(pdf_bytes)
        if len(text.strip()) < self.settings.min_text_chars:
            logger.warning(f"[Extractor] Text layer too short ({len(text.strip())} chars), skipping")
            return None
        payload = self.agent.extract_text(text)
        return self._result_from(payload, "text")

    def _extract_direct(self, pdf_bytes: bytes, file_name: str) -> ExtractionResult:
        model = None
        if len(pdf_bytes) > self.settings.light_model_min_bytes:
            model = self.settings.llm_light_model
            logger.info(f"[Extractor] Large PDF, using {model} for direct extraction")
        payload = retry_with_backoff(
            lambda _: self.agent.extract_pdf(pdf_bytes, file_name, model=model),
            self._document_policy(),
            should_retry=_retryable,
            label="Direct PDF extraction",
            sleep=self.sleep,
        )
        return self._result_from(payload, "direct_pdf")

    # -- CSV ----------------------------------------------------------------------------------

    def _extract_csv(self, csv_bytes: bytes) -> ExtractionResult:
        text = csv_bytes.decode("utf-8-sig", errors="replace")
        if not text.strip():
            msg = "CSV file is empty"
            raise ExtractionError(msg)
        payload = retry_with_backoff(
            lambda _: self.agent.extract_csv(tidy_csv(text)),
            self._document_policy(),
            should_retry=_retryable,
            label="CSV extraction",
            sleep=self.sleep,
        )
        result = self._result_from(payload, "csv")
        result.column_mapping = payload.column_mapping
        if not result.transactions:
            msg = "No transactions could be extracted from the CSV file"
            raise ExtractionError(msg)
        return result

    # -- helpers ------------------------------------------------------------------------------

    def _document_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.settings.direct_retries + 1,
            base_delay=self.settings.page_retry_base_delay,
        )

    @staticmethod
    def _result_from(payload: StatementPayload, method: str) -> ExtractionResult:
        bank_info = bank_info_from(payload)
        period = parse_period(bank_info.statement_period)
        records, dropped = normalize_records(payload.transactions, period[1] if period else None, label=method)
        return ExtractionResult(bank_info=bank_info, transactions=records, method=method, dropped_records=dropped)


def tidy_csv(text: str) -> str:
    """Drop fully blank rows and columns; hand back the raw text when pandas cannot parse it."""
    try:
        frame = pd.read_csv(io.StringIO(text), dtype=str, skip_blank_lines=True)
    except (EmptyDataError, ParserError, UnicodeDecodeError) as exc:
        logger.info(f"[Extractor] CSV not tabular enough to tidy ({exc}), sending raw text")
        return text
    frame = frame.dropna(how="all").dropna(axis=1, how="all")
    if frame.empty:
        return text
    return frame.to_csv(index=False)
