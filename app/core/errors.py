"""Exception types raised by the statement pipeline."""


class PipelineError(Exception):
    """Base class for statement pipeline failures."""


class CompletionError(PipelineError):
    """A completion call failed: transport error, HTTP error, timeout or empty response."""


class ExtractionError(PipelineError):
    """Transactions could not be extracted, or a completion response could not be decoded."""


class StorageError(PipelineError):
    """A statement file could not be read from storage."""
