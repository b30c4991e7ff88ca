"""
Core types used across modules.

Shared enums so that error handling and retry decisions stay consistent
between the stream client, the shard readers and the storage sink.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that may succeed on retry
                   (e.g., network timeouts, throttled reads)
        AUTH: Credential failures (expired session, missing signature)
        PERMANENT: Failures that won't succeed on retry
                   (e.g., unknown stream, expired iterator, bad payload)
        UNKNOWN: Unclassified errors, may retry conservatively
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


__all__ = [
    "ErrorCategory",
]
