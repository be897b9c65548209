"""FastAPI endpoints for the statement pipeline API.

This module defines the routes for uploading bank statements, (re)starting processing, checking
processing status, listing the review queue, managing merchant rules, and health checks. It wires
together the file service, the database session and the statement processor.
"""

import io
import re
from pathlib import Path

from fastapi import APIRouter, BackgroundTasks, Depends, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.dependencies import get_db, get_file_service, get_processor
from app.core.db import BankStatement, DBHelper, MerchantRule
from app.core.errors import StorageError
from app.core.models import FileType, MerchantRuleIn, ProcessingStage, StatementStatus, StatementStatusResponse
from app.core.utils import get_logger
from app.services.file_service import FileService
from app.workers.job_runner import StatementProcessor, has_transactions

router = APIRouter()
logger = get_logger("statement-pipeline.api")

CONTENT_TYPES = {FileType.PDF: "application/pdf", FileType.CSV: "text/csv"}


def _file_type(file_name: str) -> FileType:
    suffix = Path(file_name).suffix.lower().lstrip(".")
    try:
        return FileType(suffix.upper())
    except ValueError as exc:
        raise HTTPException(400, "Only PDF and CSV statements accepted") from exc


def _rule_dict(rule: MerchantRule) -> dict:
    return {
        "id": rule.id,
        "user_id": rule.user_id,
        "business_profile_id": rule.business_profile_id,
        "merchant_name": rule.merchant_name,
        "merchant_pattern": rule.merchant_pattern,
        "suggested_category": rule.suggested_category,
        "profile_type": rule.profile_type,
        "priority": rule.priority,
        "is_active": rule.is_active,
        "auto_apply": rule.auto_apply,
        "applied_count": rule.applied_count,
    }


@router.post(
    "/statements",
    status_code=202,
    summary="Upload a bank statement and start processing",
    description=(
        "Upload a PDF or CSV bank statement. The file is stored, a PENDING statement is created and "
        "a background job extracts, categorizes, routes, persists and validates its transactions.\n\n"
        "**Request:**\n"
        "- Content-Type: multipart/form-data\n"
        "- Form fields: `file` (PDF or CSV), `user_id`, optional `business_profile_id`\n\n"
        "**Response:**\n"
        "- 202 Accepted: `{ 'statement_id': '<id>', 'status': 'PENDING' }`\n"
        "- 400 Bad Request: unsupported or empty file.\n"
        "- 502 Bad Gateway: the file could not be stored."
    ),
    response_description="Statement accepted. Returns statement_id.",
    responses={
        202: {
            "description": "Statement accepted.",
            "content": {"application/json": {"example": {"statement_id": "3f2c9b...", "status": "PENDING"}}},
        },
        400: {
            "description": "Unsupported or empty file.",
            "content": {"application/json": {"example": {"detail": "Only PDF and CSV statements accepted"}}},
        },
    },
)
async def upload_statement(
    background_tasks: BackgroundTasks,
    file: UploadFile,
    user_id: str = Form(...),
    business_profile_id: str | None = Form(None),
    db: Session = Depends(get_db),
    file_service: FileService = Depends(get_file_service),
    processor: StatementProcessor = Depends(get_processor),
) -> JSONResponse:
    """Store an uploaded statement and schedule its processing."""
    logger.info(f"Received upload request: filename={file.filename}, user={user_id}")
    file_type = _file_type(file.filename or "")
    data = await file.read()
    if not data:
        raise HTTPException(400, "Uploaded file is empty")
    try:
        storage_key = file_service.save_upload(file.filename, data, CONTENT_TYPES[file_type])
    except StorageError as exc:
        logger.exception("Failed to store upload")
        raise HTTPException(502, "Could not store the uploaded file") from exc
    statement = BankStatement(
        user_id=user_id,
        business_profile_id=business_profile_id,
        file_name=file.filename,
        file_type=file_type.value,
        file_size=len(data),
        storage_key=storage_key,
        status=StatementStatus.PENDING.value,
        processing_stage=ProcessingStage.UPLOADED.value,
    )
    db.add(statement)
    db.commit()
    background_tasks.add_task(processor.process, statement.id)
    logger.info(f"Background processing scheduled: statement_id={statement.id}, key={storage_key}")
    return JSONResponse({"statement_id": statement.id, "status": statement.status}, status_code=202)


@router.post(
    "/statements/{statement_id}/process",
    status_code=202,
    summary="Re-run processing for a statement",
    description=(
        "Schedule processing again for a statement that has no persisted transactions, typically one that "
        "FAILED during extraction. 409 while it is running or once it owns transactions."
    ),
    responses={
        404: {"description": "Statement not found."},
        409: {"description": "Statement is being processed or already has transactions."},
    },
)
async def reprocess_statement(
    statement_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    processor: StatementProcessor = Depends(get_processor),
) -> JSONResponse:
    """Reset a statement to PENDING and schedule processing."""
    statement = db.get(BankStatement, statement_id)
    if statement is None:
        raise HTTPException(404, "Statement not found")
    if statement.status == StatementStatus.PROCESSING.value:
        raise HTTPException(409, "Statement is already being processed")
    if has_transactions(db, statement_id):
        raise HTTPException(409, "Statement already has transactions; upload it again to start over")
    statement.status = StatementStatus.PENDING.value
    statement.processing_stage = ProcessingStage.UPLOADED.value
    db.commit()
    background_tasks.add_task(processor.process, statement_id)
    return JSONResponse({"statement_id": statement_id, "status": statement.status}, status_code=202)


@router.get(
    "/statements/{statement_id}/status",
    response_model=StatementStatusResponse,
    summary="Get statement processing status",
    description=(
        "Check the status of a statement by id: status, processing stage, error if any, transaction "
        "and pending review counts, validation confidence and pages that failed extraction."
    ),
    response_description="Statement status and metadata.",
    responses={
        200: {
            "description": "Statement found.",
            "content": {
                "application/json": {
                    "example": {
                        "id": "3f2c9b...",
                        "status": "COMPLETED",
                        "processing_stage": "COMPLETED",
                        "created_at": "2025-05-18T10:30:49Z",
                        "processed_at": "2025-05-18T10:31:10Z",
                        "error": None,
                        "transaction_count": 42,
                        "review_count": 3,
                        "validation_confidence": 0.91,
                        "failed_pages": [],
                    }
                }
            },
        },
        404: {
            "description": "Statement not found.",
            "content": {"application/json": {"example": {"detail": "Statement not found"}}},
        },
    },
)
async def get_status(statement_id: str, db: Session = Depends(get_db)) -> dict:
    """Get the processing status of a statement."""
    row = DBHelper(db).get_statement_status(statement_id)
    if not row:
        raise HTTPException(404, "Statement not found")
    return row


@router.get(
    "/statements/{statement_id}/file",
    response_model=None,
    summary="Download the original statement file",
    description="Returns a signed URL for S3-stored files, or streams locally stored files.",
    responses={404: {"description": "Statement or file not found."}},
)
async def download_statement(
    statement_id: str,
    db: Session = Depends(get_db),
    file_service: FileService = Depends(get_file_service),
) -> JSONResponse | StreamingResponse:
    """Download the uploaded statement file."""
    statement = db.get(BankStatement, statement_id)
    if statement is None:
        raise HTTPException(404, "Statement not found")
    url = file_service.download_url(statement.storage_key)
    if url:
        return JSONResponse({"url": url})
    try:
        data = file_service.download_file(statement.storage_key)
    except StorageError as exc:
        raise HTTPException(404, "Statement file missing from storage") from exc
    return StreamingResponse(
        io.BytesIO(data),
        media_type=CONTENT_TYPES[FileType(statement.file_type)],
        headers={"Content-Disposition": f"attachment; filename={statement.file_name}"},
    )


@router.get(
    "/reviews",
    summary="List pending review entries",
    description="Low-confidence transactions waiting for a human decision, least confident first.",
)
async def list_reviews(user_id: str, business_profile_id: str | None = None, db: Session = Depends(get_db)) -> list:
    """List pending review queue entries for a user."""
    return DBHelper(db).list_pending_reviews(user_id, business_profile_id)


@router.post(
    "/merchant-rules",
    status_code=201,
    summary="Create a merchant rule",
    description=(
        "Map a merchant (exact name, or a case-insensitive regex in `merchant_pattern`) to a category "
        "and BUSINESS/PERSONAL profile. Matching transactions skip the review queue."
    ),
    responses={400: {"description": "Invalid merchant pattern."}},
)
async def create_merchant_rule(body: MerchantRuleIn, db: Session = Depends(get_db)) -> dict:
    """Create a merchant rule."""
    if body.merchant_pattern:
        try:
            re.compile(body.merchant_pattern)
        except re.error as exc:
            raise HTTPException(400, f"Invalid merchant pattern: {exc}") from exc
    rule = MerchantRule(
        user_id=body.user_id,
        business_profile_id=body.business_profile_id,
        merchant_name=body.merchant_name,
        merchant_pattern=body.merchant_pattern,
        suggested_category=body.suggested_category,
        profile_type=body.profile_type.value,
        priority=body.priority,
        auto_apply=body.auto_apply,
    )
    db.add(rule)
    db.commit()
    logger.info(f"Created merchant rule {rule.id}: {rule.merchant_name} -> {rule.suggested_category}")
    return _rule_dict(rule)


@router.get("/merchant-rules", summary="List merchant rules", description="Active merchant rules, by priority.")
async def list_merchant_rules(user_id: str, db: Session = Depends(get_db)) -> list:
    """List a user's active merchant rules."""
    rules = db.scalars(
        select(MerchantRule)
        .where(MerchantRule.user_id == user_id, MerchantRule.is_active.is_(True))
        .order_by(MerchantRule.priority.desc())
    ).all()
    return [_rule_dict(rule) for rule in rules]


@router.get(
    "/health",
    summary="Health check",
    description="Simple health check endpoint. Returns status ok.",
    response_description="Status ok.",
    responses={200: {"description": "API is healthy.", "content": {"application/json": {"example": {"status": "ok"}}}}},
)
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}
