"""Error taxonomy for the POEditor term sync."""
import enum
from typing import Any, List, Optional


class ErrorKind(enum.Enum):
    """Classification of a failed remote call."""
    THROTTLED = "throttled"
    UNAVAILABLE = "unavailable"
    CREDENTIAL = "credential"
    APPLICATION = "application"
    HTTP = "http"
    TRANSPORT = "transport"


RETRYABLE_KINDS = frozenset({ErrorKind.THROTTLED, ErrorKind.UNAVAILABLE})


class TermSyncError(Exception):
    """Base class for every error raised by termsync."""


class ConfigurationError(TermSyncError):
    """Raised for missing credentials or invalid configuration values."""


class InvalidInputError(TermSyncError, ValueError):
    """Raised when a plan or a local key inventory is malformed."""


class ApiError(TermSyncError):
    """
    A normalized remote failure.

    Attributes:
        status: The HTTP status code, when one was received.
        retry_after_ms: The server-supplied retry hint in milliseconds, if any.
        kind: The ErrorKind used by the retry policy.
    """

    def __init__(self, message: str, status: Optional[int] = None,
                 retry_after_ms: Optional[int] = None,
                 kind: ErrorKind = ErrorKind.HTTP):
        super().__init__(message)
        self.message = message
        self.status = status
        self.retry_after_ms = retry_after_ms
        self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class RequestFailedError(ApiError):
    """Raised by the executor once an operation is definitively failed."""

    def __init__(self, message: str, status: Optional[int] = None,
                 kind: ErrorKind = ErrorKind.HTTP, attempts: int = 1):
        super().__init__(message, status=status, kind=kind)
        self.attempts = attempts


class BatchFailedError(TermSyncError):
    """
    Raised when one batch of a changeset fails.

    Carries the results of every batch that completed before the failure so
    callers can still aggregate partial progress.
    """

    def __init__(self, message: str, completed: List[Any], batch_index: int, total_batches: int):
        super().__init__(message)
        self.completed = completed
        self.batch_index = batch_index
        self.total_batches = total_batches


def parse_retry_after(header: Optional[str]) -> Optional[int]:
    """
    Parse a Retry-After header into milliseconds.

    Accepts a plain number of seconds ("30") or an explicit millisecond value
    ("1500ms"). Anything else, including HTTP dates, yields None.
    """
    if not header:
        return None
    value = header.strip()
    if value.isdigit():
        return int(value) * 1000
    if value.endswith("ms") and value[:-2].strip().isdigit():
        return int(value[:-2].strip())
    return None
