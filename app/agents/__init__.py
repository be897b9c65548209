"""Agents package: provides agent registry, base class, and completion-backed agents for the pipeline."""

from .base import BaseAgent, decode_json_content  # noqa: F401
from .categorization_agent import CategorizationAgent  # noqa: F401
from .extraction_agent import ExtractionAgent  # noqa: F401
from .registry import AgentRegistry  # noqa: F401
from .validation_agent import ValidationAgent  # noqa: F401
