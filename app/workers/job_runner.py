"""Background processing of uploaded bank statements.

A statement moves PENDING -> PROCESSING -> COMPLETED | FAILED while its processing stage walks
UPLOADED -> EXTRACTING_DATA -> CATEGORIZING_TRANSACTIONS -> ANALYZING_PATTERNS ->
DISTRIBUTING_DATA -> VALIDATING -> COMPLETED. Every stage change is committed so status polling
sees progress. Persisted transactions are committed before validation and are never deleted
when a later stage fails.
"""

import time
from collections.abc import Callable

from groq import Groq
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from app.agents import AgentRegistry
from app.core.db import BankStatement, BusinessProfile, DBHelper, Notification, Transaction
from app.core.models import FileType, ProcessingStage, ProfileType, StatementStatus, UserContext
from app.core.settings import Settings
from app.core.utils import get_logger, utcnow
from app.services.aggregator import Aggregator
from app.services.categorizer import TransactionCategorizer
from app.services.enhancer import TransactionEnhancer
from app.services.extractor import StatementExtractor
from app.services.file_service import FileService
from app.services.pdf_service import PdfService
from app.services.persister import TransactionPersister
from app.services.s3_file_service import S3FileService
from app.services.validator import StatementValidator

logger = get_logger("statement-pipeline.worker")

MAX_ERROR_LOG_LEN = 2000


def has_transactions(session: Session, statement_id: str) -> bool:
    """Whether an earlier run already persisted transactions for this statement."""
    found = session.execute(
        select(Transaction.id).where(Transaction.bank_statement_id == statement_id).limit(1)
    ).first()
    return found is not None


def build_llm_client(settings: Settings) -> Groq:
    """Completion client; SDK retries are off so the pipeline's own bounded retries apply."""
    return Groq(api_key=settings.llm_api_key, base_url=settings.llm_base_url, max_retries=0)


def build_file_service(settings: Settings) -> FileService:
    """S3-backed storage when enabled, local ``local://`` storage otherwise."""
    s3_service = S3FileService(settings) if settings.use_s3 else None
    return FileService(s3_service, settings.local_storage_root)


class StatementProcessor:
    """Runs the extraction -> categorization -> routing -> persistence -> validation pipeline."""

    def __init__(
        self,
        session_factory: sessionmaker,
        file_service: FileService,
        llm_client: object,
        settings: Settings,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the processor and build its agents from the registry."""
        self.Session = session_factory
        self.file_service = file_service
        self.settings = settings
        self.extractor = StatementExtractor(
            AgentRegistry.build("extraction", llm_client, settings), PdfService(), settings, sleep=sleep
        )
        self.categorizer = TransactionCategorizer(
            AgentRegistry.build("categorization", llm_client, settings), settings, sleep=sleep
        )
        self.validation_agent = AgentRegistry.build("validation", llm_client, settings)

    def process(self, statement_id: str) -> StatementStatus | None:
        """Process one statement end to end and return its final status."""
        session = self.Session()
        try:
            statement = session.get(BankStatement, statement_id)
            if statement is None:
                logger.error(f"Statement not found: {statement_id}")
                return None
            if has_transactions(session, statement_id):
                logger.warning(f"Statement {statement_id} already has transactions, not reprocessing")
                return StatementStatus(statement.status)
            logger.info(f"Starting statement {statement_id}: {statement.file_name} ({statement.file_type})")
            statement.status = StatementStatus.PROCESSING.value
            statement.processing_stage = ProcessingStage.UPLOADED.value
            statement.error_log = None
            session.commit()
            try:
                self._run_stages(session, statement)
            except Exception as exc:
                logger.exception(f"Error processing statement {statement_id}")
                self._mark_failed(session, statement_id, exc)
                return StatementStatus.FAILED
            self._aggregate(session, statement.user_id)
            return StatementStatus.COMPLETED
        finally:
            session.close()

    def _set_stage(self, session: Session, statement: BankStatement, stage: ProcessingStage) -> None:
        statement.processing_stage = stage.value
        session.commit()
        logger.info(f"Statement {statement.id}: {stage}")

    def _run_stages(self, session: Session, statement: BankStatement) -> None:
        self._set_stage(session, statement, ProcessingStage.EXTRACTING_DATA)
        data = self.file_service.download_file(statement.storage_key)
        extracted = self.extractor.extract(data, statement.file_name, statement.file_type)
        info = extracted.bank_info
        statement.bank_name = info.bank_name
        statement.account_number = info.account_number
        statement.account_type = info.account_type
        statement.statement_period = info.statement_period
        statement.beginning_balance = info.beginning_balance
        statement.ending_balance = info.ending_balance
        statement.extraction_method = extracted.method
        statement.failed_pages = extracted.failed_pages
        statement.record_count = len(extracted.transactions)
        statement.extracted_data = extracted.model_dump(mode="json", exclude={"transactions"})

        self._set_stage(session, statement, ProcessingStage.CATEGORIZING_TRANSACTIONS)
        categorized = self.categorizer.categorize(extracted.transactions, self.user_context(session, statement))

        self._set_stage(session, statement, ProcessingStage.ANALYZING_PATTERNS)
        enhancer = TransactionEnhancer(session)
        decisions = enhancer.enhance_all(categorized, enhancer.build_context(statement))

        self._set_stage(session, statement, ProcessingStage.DISTRIBUTING_DATA)
        outcome = TransactionPersister(session).persist(statement, decisions)
        statement.transaction_count = len(outcome.transaction_ids)
        session.commit()

        self._set_stage(session, statement, ProcessingStage.VALIDATING)
        rows = session.scalars(
            select(Transaction).where(Transaction.bank_statement_id == statement.id).order_by(Transaction.date)
        ).all()
        StatementValidator(session, self.validation_agent, self.settings).validate(statement.id, extracted, list(rows))
        session.commit()

        review_count = DBHelper(session).count_pending_reviews(statement.id)
        statement.review_count = review_count
        statement.status = StatementStatus.COMPLETED.value
        statement.processing_stage = ProcessingStage.COMPLETED.value
        statement.processed_at = utcnow()
        csv = statement.file_type == FileType.CSV.value
        session.add(
            Notification(
                user_id=statement.user_id,
                type="CSV_PROCESSED" if csv else "STATEMENT_PROCESSED",
                title="Bank Statement Processed",
                message=(
                    f"{statement.transaction_count} transactions imported from {statement.file_name}"
                    + (f", {review_count} need review" if review_count else "")
                ),
            )
        )
        session.commit()
        logger.info(
            f"Statement {statement.id} completed: {statement.transaction_count} transactions, "
            f"{review_count} for review, validation confidence {statement.validation_confidence:.2f}"
        )

    def user_context(self, session: Session, statement: BankStatement) -> UserContext:
        """Categorization context from the statement's profile, if it has one."""
        profile = session.get(BusinessProfile, statement.business_profile_id) if statement.business_profile_id else None
        if profile is None:
            return UserContext(user_id=statement.user_id)
        profile_type = ProfileType(profile.type)
        return UserContext(
            user_id=statement.user_id,
            industry=profile.industry,
            business_type=profile.business_type,
            company_name=profile.name if profile_type == ProfileType.BUSINESS else None,
            default_profile_type=profile_type,
        )

    def _mark_failed(self, session: Session, statement_id: str, exc: Exception) -> None:
        session.rollback()
        statement = session.get(BankStatement, statement_id)
        statement.status = StatementStatus.FAILED.value
        statement.processing_stage = ProcessingStage.FAILED.value
        statement.error_log = f"{type(exc).__name__}: {exc}"[:MAX_ERROR_LOG_LEN]
        statement.processed_at = utcnow()
        session.commit()

    def _aggregate(self, session: Session, user_id: str) -> None:
        aggregator = Aggregator(session)
        aggregator.recompute_budgets(user_id)
        aggregator.recompute_metrics(user_id)
