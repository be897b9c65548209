"""Core package: provides models, database helpers, settings, and shared utilities."""

from .db import Base, DBHelper, get_session_factory  # noqa: F401
from .errors import CompletionError, ExtractionError, PipelineError, StorageError  # noqa: F401
from .models import CategorizedTransaction, RawTransaction, StatementStatus  # noqa: F401
from .settings import Settings, get_settings  # noqa: F401
from .utils import get_logger  # noqa: F401
