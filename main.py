"""Main entrypoint and application factory for the statement pipeline API.

This module initializes the FastAPI application, configures logging, sets up the database, and exposes the Scalar API reference endpoint for interactive OpenAPI documentation. It also includes the main entrypoint for running the app with Uvicorn.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.responses import HTMLResponse
from scalar_fastapi import get_scalar_api_reference
from sqlalchemy.exc import OperationalError, ProgrammingError

from app.api.dependencies import get_settings
from app.api.routes import router
from app.core.db import get_session_factory
from app.core.utils import ensure_dir, get_logger

PIPELINE_LOGGERS = (
    "statement-pipeline.api",
    "statement-pipeline.worker",
    "statement-pipeline.agent",
    "statement-pipeline.retry",
    "statement-pipeline.extractor",
    "statement-pipeline.normalizer",
    "statement-pipeline.categorizer",
    "statement-pipeline.enhancer",
    "statement-pipeline.persister",
    "statement-pipeline.validator",
    "statement-pipeline.aggregator",
    "statement-pipeline.storage",
)


# --- Logging Setup ---
def setup_logging(log_file: str) -> None:
    """Add a plain-text file handler to every pipeline logger, next to the colored console output."""
    ensure_dir(Path(log_file).parent)
    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    for name in PIPELINE_LOGGERS:
        logger = get_logger(name)
        if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
            logger.addHandler(file_handler)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan event handler that configures file logging and creates the database tables."""
    _ = app  # Silence unused argument warning
    settings = get_settings()
    setup_logging(settings.log_file)
    if settings.database_url.startswith("sqlite:///") and ":memory:" not in settings.database_url:
        ensure_dir(Path(settings.database_url.removeprefix("sqlite:///")).parent)
    try:
        get_session_factory(settings.database_url)
    except (OperationalError, ProgrammingError):
        get_logger("statement-pipeline.api").exception("Failed to create database tables")
        raise
    yield


app = FastAPI(
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    title="Statement Pipeline API",
    description="""
    The Statement Pipeline API ingests bank statements (PDF or CSV), extracts their transactions with an LLM, categorizes and routes them to business or personal profiles, queues low-confidence ones for review and validates the result.

    **Endpoints:**
    - `POST /statements`: Upload a statement and start processing. Returns a `statement_id`.
    - `POST /statements/{statement_id}/process`: Re-run processing for a statement.
    - `GET /statements/{statement_id}/status`: Processing status, stage, counts and validation confidence.
    - `GET /statements/{statement_id}/file`: Download the original file.
    - `GET /reviews`: Pending review entries for a user.
    - `POST /merchant-rules`, `GET /merchant-rules`: Manage merchant rules.
    - `GET /health`: Health check endpoint.
    - `GET /scalar`: Interactive Scalar OpenAPI documentation.
    """,
    version="1.0.0",
)
app.include_router(router)


@app.get("/scalar", include_in_schema=False)
async def scalar_docs() -> HTMLResponse:
    """Return Scalar API reference."""
    return get_scalar_api_reference(openapi_url=app.openapi_url, title=app.title)


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("main:app", host=settings.server_host, port=settings.server_port, reload=True)
