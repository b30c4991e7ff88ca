"""
Error classification and exception hierarchy.

Provides:
- BridgeError hierarchy for typed exceptions
- Decode errors raised while turning stream records into audit events
- Classification utilities for error handling
- AWS error classifier for Kinesis and DynamoDB calls
"""

from core.errors.aws_classifier import (
    AWS_ERROR_CODES,
    AwsErrorClassifier,
    classify_aws_error,
)
from core.errors.exceptions import (
    AuthError,
    BridgeError,
    ChannelClosedError,
    DecodeError,
    # Enums
    ErrorCategory,
    InvalidAccountEvent,
    InvalidProjectEvent,
    MalformedPayload,
    MissingDiscriminatorKey,
    NotAnObject,
    PermanentError,
    SinkError,
    StreamError,
    ThrottlingError,
    TransientError,
    UnstorableEvent,
    classify_exception,
    wrap_exception,
)

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "BridgeError",
    "AuthError",
    "TransientError",
    "ThrottlingError",
    "PermanentError",
    # Bridge errors
    "StreamError",
    "ChannelClosedError",
    "SinkError",
    "UnstorableEvent",
    # Decode errors
    "DecodeError",
    "MalformedPayload",
    "NotAnObject",
    "MissingDiscriminatorKey",
    "InvalidProjectEvent",
    "InvalidAccountEvent",
    # Classification utilities
    "classify_exception",
    "wrap_exception",
    # AWS classifiers
    "AWS_ERROR_CODES",
    "AwsErrorClassifier",
    "classify_aws_error",
]
