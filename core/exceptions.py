"""
Domain-specific exception hierarchy for the person service.

Errors are split along the two axes the pipeline cares about:
- Client errors (4xx) vs dependency errors (5xx)
- Transient failures (retry the unit of work) vs permanent ones (abort)

The CRUD layer never retries; it maps every error to a terminal HTTP status.
The stream poller retries whole relay batches on transient errors, and the
event router retries individual consumer deliveries.
"""


# ============================================================================
# Base Exception Hierarchy
# ============================================================================


class PersonServiceError(Exception):
    """
    Base exception for all person service errors.

    Lets callers catch every domain error while system errors
    (MemoryError, KeyboardInterrupt) still propagate.
    """

    def __init__(self, message: str, details: dict = None):
        """
        Initialize exception with message and optional context.

        Args:
            message: Human-readable error description
            details: Additional context for debugging (person_id, event_id, etc.)
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class TransientError(PersonServiceError):
    """
    Error that may succeed on retry.

    RETRY STRATEGY: bounded attempts with exponential backoff, owned by the
    caller's scheduler (stream poller or router delivery worker).
    """
    pass


class PermanentError(PersonServiceError):
    """
    Error that will never succeed with retries.

    ABORT: fix the input or the system state first.
    """
    pass


# ============================================================================
# Client Errors
# ============================================================================


class ValidationError(PermanentError):
    """
    Malformed or missing input.

    Surfaced as 400 by the API and never retried.
    """
    pass


class NotFoundError(PermanentError):
    """
    The requested resource does not exist. Surfaced as 404.
    """
    pass


class RecordNotFoundError(NotFoundError):
    """
    No person record exists for the requested id.

    Update never upserts, so this is also raised for updates of unknown ids.
    """
    pass


class DeadLetterNotFoundError(NotFoundError):
    """
    No dead letter exists for the requested id (already redriven or evicted).
    """
    pass


class OperationNotSupportedError(PermanentError):
    """
    Operation is advertised but has no implementation (person deletion).
    """
    pass


# ============================================================================
# Change Capture Errors
# ============================================================================


class CheckpointExpiredError(PermanentError):
    """
    A reader asked for entries after a checkpoint that lies behind the
    retention window.

    RECOVERY: restart from the trim horizon. Trimmed entries are lost to
    that reader.
    """
    pass


# ============================================================================
# Dependency Errors (transient)
# ============================================================================


class StoreUnavailable(TransientError):
    """
    The record store could not complete the operation.

    SEEN: write lock not acquired within the timeout, WAL write failure.
    """
    pass


class RouterUnavailable(TransientError):
    """
    The event router did not accept a publish call.

    SEEN: router stopped, delivery queue full, publish timed out.
    The relay surfaces this as a whole-batch failure.
    """
    pass


class ConsumerFailure(TransientError):
    """
    A consumer failed to process one event.

    Isolated to that consumer's delivery; retried per consumer and
    dead-lettered once retries are exhausted.
    """
    pass


# ============================================================================
# Exception Helpers
# ============================================================================


def is_retryable(error: Exception) -> bool:
    """
    Check if error is transient and the unit of work should be retried.

    Returns:
        True if error is transient, False if permanent.
    """
    return isinstance(error, TransientError)


def get_http_status(error: Exception) -> int:
    """
    Map domain exception to HTTP status code.

    Returns:
        HTTP status code (400, 404, 410, 501, 503, 500).
    """
    if isinstance(error, NotFoundError):
        return 404
    elif isinstance(error, ValidationError):
        return 400
    elif isinstance(error, CheckpointExpiredError):
        return 410  # Gone
    elif isinstance(error, OperationNotSupportedError):
        return 501
    elif isinstance(error, (StoreUnavailable, RouterUnavailable)):
        return 503
    else:
        return 500
