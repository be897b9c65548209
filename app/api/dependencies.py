"""FastAPI dependencies for DI (settings, DB session, storage, statement processor).

Every collaborator is built once per process and can be swapped in tests through
``app.dependency_overrides``.
"""

from collections.abc import Generator
from functools import lru_cache

from sqlalchemy.orm import Session

from app.core.db import get_session_factory
from app.core.settings import Settings
from app.core.settings import get_settings as load_settings
from app.services.file_service import FileService
from app.workers.job_runner import StatementProcessor, build_file_service, build_llm_client


@lru_cache
def get_settings() -> Settings:
    """Provide the application settings, read once from the environment."""
    return load_settings()


def get_db() -> Generator[Session, None, None]:
    """Provide a SQLAlchemy session that is closed after the request."""
    session = get_session_factory(get_settings().database_url)()
    try:
        yield session
    finally:
        session.close()


@lru_cache
def get_file_service() -> FileService:
    """Provide the statement storage service."""
    return build_file_service(get_settings())


@lru_cache
def get_processor() -> StatementProcessor:
    """Provide a StatementProcessor wired to the configured database, storage and LLM endpoint."""
    settings = get_settings()
    return StatementProcessor(
        get_session_factory(settings.database_url),
        get_file_service(),
        build_llm_client(settings),
        settings,
    )
