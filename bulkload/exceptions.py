"""Error taxonomy for the bulk loader."""
from typing import Optional


class BulkLoadError(Exception):
    """Base class for all loader errors."""


class ConfigError(BulkLoadError):
    """Missing or invalid configuration (fatal)."""


class RecordSourceError(BulkLoadError):
    """The input stream could not be opened or read (fatal)."""


class IndexSetupError(BulkLoadError):
    """An index lifecycle step failed before any document was sent (fatal)."""

    def __init__(self, step: str, message: str):
        super().__init__(f"{step}: {message}")
        self.step = step


class MalformedDocument(BulkLoadError):
    """A single record could not be parsed or has no usable id."""

    def __init__(self, message: str, record: str = ""):
        super().__init__(message)
        self.record = record


class SubmissionFailed(BulkLoadError):
    """A bulk request failed as a whole; its documents are lost, not retried."""

    def __init__(self, message: str, size: int, status: Optional[int] = None):
        super().__init__(message)
        self.size = size
        self.status = status


class WorkerPoolError(BulkLoadError):
    """Every worker stopped while records were still being read (fatal)."""
