"""
Unified exception hierarchy for the audit stream bridge.

Provides typed exceptions with retry classification so the stream client,
the retry wrapper and the orchestration layer agree on which failures are
worth retrying and which end a shard reader.
"""

# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.types import ErrorCategory


class BridgeError(Exception):
    """
    Base exception for all bridge errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.AUTH,
            ErrorCategory.UNKNOWN,
        )

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Retry categories
# =============================================================================


class AuthError(BridgeError):
    """Credentials rejected or expired."""

    category = ErrorCategory.AUTH


class TransientError(BridgeError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.TRANSIENT


class ThrottlingError(TransientError):
    """Read or write throughput exceeded - should back off."""


class PermanentError(BridgeError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Stream, channel and sink errors
# =============================================================================


class StreamError(BridgeError):
    """A stream service call failed.

    The category follows the classified cause, so a throttled GetRecords is
    transient while an unknown stream is permanent.
    """

    def __init__(
        self,
        message: str,
        operation: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        context = dict(context or {})
        context.setdefault("operation", operation)
        super().__init__(message, cause, context)
        self.operation = operation
        self.category = category


class ChannelClosedError(PermanentError):
    """The consumer end of the event channel is gone."""

    def __init__(self, message: str = "Event channel is closed"):
        super().__init__(message)


class SinkError(BridgeError):
    """Writing an event to the storage sink failed."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.category = category


class UnstorableEvent(SinkError):
    """The sink cannot represent this event (e.g. a number DynamoDB rejects).

    Scoped to one event: the consumer skips it and keeps draining.
    """

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, ErrorCategory.PERMANENT, cause, context)


# =============================================================================
# Decode errors (never fatal to a shard reader)
# =============================================================================


class DecodeError(PermanentError):
    """Base class for payloads that cannot become an audit event."""


class MalformedPayload(DecodeError):
    """Payload bytes are not valid JSON."""


class NotAnObject(DecodeError):
    """Payload is valid JSON but not an object."""


class MissingDiscriminatorKey(DecodeError):
    """Payload has neither ProjectId nor AccountId."""

    def __init__(self, message: str = "Payload has neither ProjectId nor AccountId"):
        super().__init__(message)


class InvalidProjectEvent(DecodeError):
    """Payload has ProjectId but does not match the project event schema."""


class InvalidAccountEvent(DecodeError):
    """Payload has AccountId but does not match the account event schema."""


# =============================================================================
# Error Classification Utilities
# =============================================================================

# Markers for string-based detection (fallback for non-BridgeError exceptions)
AUTH_ERROR_MARKERS = frozenset(
    {
        "401",
        "unauthorized",
        "authentication",
        "token expired",
        "expiredtoken",
        "invalid token",
        "security token",
        "signature",
    }
)


def classify_exception(exc: Exception) -> ErrorCategory:
    """Classify an exception into error category."""
    if isinstance(exc, BridgeError):
        return exc.category

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    connection_markers = (
        "connectionerror",
        "connection refused",
        "connection reset",
        "connection aborted",
        "could not connect",
        "name resolution",
        "broken pipe",
    )
    if any(m in exc_type or m in exc_str for m in connection_markers):
        return ErrorCategory.TRANSIENT

    if "timeout" in exc_type or "timeout" in exc_str or "timed out" in exc_str:
        return ErrorCategory.TRANSIENT

    if any(m in exc_str for m in AUTH_ERROR_MARKERS):
        return ErrorCategory.AUTH

    if "429" in exc_str or "throttl" in exc_str or "rate limit" in exc_str:
        return ErrorCategory.TRANSIENT

    if "503" in exc_str or "502" in exc_str or "504" in exc_str:
        return ErrorCategory.TRANSIENT

    if "access denied" in exc_str or "not found" in exc_str or "404" in exc_str:
        return ErrorCategory.PERMANENT

    return ErrorCategory.UNKNOWN


def wrap_exception(
    exc: Exception,
    context: dict | None = None,
) -> BridgeError:
    """Wrap a generic exception in the BridgeError subclass matching its category."""
    if isinstance(exc, BridgeError):
        if context:
            exc.context.update(context)
        return exc

    category = classify_exception(exc)
    exc_str = str(exc).lower()
    context = context or {}

    if category == ErrorCategory.AUTH:
        return AuthError(str(exc), cause=exc, context=context)

    if category == ErrorCategory.TRANSIENT:
        if "throttl" in exc_str or "429" in exc_str:
            return ThrottlingError(str(exc), cause=exc, context=context)
        return TransientError(str(exc), cause=exc, context=context)

    if category == ErrorCategory.PERMANENT:
        return PermanentError(str(exc), cause=exc, context=context)

    return BridgeError(str(exc), cause=exc, context=context)
