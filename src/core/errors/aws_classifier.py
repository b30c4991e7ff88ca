"""
AWS error classification for stream and storage operations.

Maps botocore exceptions (Kinesis, DynamoDB) onto the ErrorCategory scheme so
callers can wrap them into StreamError / SinkError with a retry decision
attached.
"""

from decimal import DecimalException

from botocore.exceptions import (
    ClientError,
    ConnectionError as BotoConnectionError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from core.errors.exceptions import (
    BridgeError,
    SinkError,
    StreamError,
    UnstorableEvent,
    classify_exception,
)
from core.types import ErrorCategory

# AWS error codes, as reported in ClientError.response["Error"]["Code"]
AWS_ERROR_CODES = {
    # Transient errors (retry recommended)
    "transient": [
        "InternalFailure",
        "InternalServerError",
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "KMSThrottlingException",
        "RequestTimeout",
        "RequestTimeoutException",
    ],
    # Throttling (backoff needed)
    "throttling": [
        "ProvisionedThroughputExceededException",
        "LimitExceededException",
        "ThrottlingException",
        "Throttling",
        "RequestLimitExceeded",
    ],
    # Credential errors
    "auth": [
        "ExpiredTokenException",
        "ExpiredToken",
        "UnrecognizedClientException",
        "InvalidSignatureException",
        "MissingAuthenticationToken",
        "IncompleteSignature",
    ],
    # Permanent errors (don't retry)
    "permanent": [
        "ResourceNotFoundException",
        "ResourceInUseException",
        "ExpiredIteratorException",
        "InvalidArgumentException",
        "ValidationException",
        "AccessDeniedException",
        "KMSAccessDeniedException",
        "KMSDisabledException",
        "KMSNotFoundException",
        "ConditionalCheckFailedException",
    ],
}

_CATEGORY_BY_LABEL = {
    "transient": ErrorCategory.TRANSIENT,
    "throttling": ErrorCategory.TRANSIENT,
    "auth": ErrorCategory.AUTH,
    "permanent": ErrorCategory.PERMANENT,
}


def get_error_code(error: Exception) -> str | None:
    """Return the AWS error code carried by a ClientError, if any."""
    if not isinstance(error, ClientError):
        return None
    return error.response.get("Error", {}).get("Code")


def classify_error_code(code: str | None) -> str | None:
    """
    Classify an AWS error code.

    Returns:
        "transient", "throttling", "auth", "permanent", or None if unknown
    """
    if not code:
        return None
    for label, codes in AWS_ERROR_CODES.items():
        if code in codes:
            return label
    return None


def classify_aws_error(error: Exception) -> ErrorCategory:
    """Classify a botocore (or any) exception into an ErrorCategory."""
    if isinstance(error, BridgeError):
        return error.category

    if isinstance(error, ClientError):
        label = classify_error_code(get_error_code(error))
        if label:
            return _CATEGORY_BY_LABEL[label]
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if status and status >= 500:
            return ErrorCategory.TRANSIENT
        return classify_exception(error)

    if isinstance(
        error,
        (EndpointConnectionError, BotoConnectionError, ConnectTimeoutError, ReadTimeoutError),
    ):
        return ErrorCategory.TRANSIENT

    if isinstance(error, NoCredentialsError):
        return ErrorCategory.AUTH

    # Remaining BotoCoreError subclasses fall back to message markers
    return classify_exception(error)


class AwsErrorClassifier:
    """
    Centralized error classification for AWS calls made by the bridge.

    Builds typed StreamError / SinkError instances that keep the original
    exception as their cause.
    """

    @staticmethod
    def to_stream_error(
        error: Exception,
        operation: str,
        context: dict | None = None,
    ) -> StreamError:
        """
        Wrap a failed stream call.

        Args:
            error: Original exception from the SDK call
            operation: Stream operation that failed (e.g. "get_records")
            context: Additional context (stream name, shard id)

        Returns:
            StreamError whose category follows the classified cause
        """
        if isinstance(error, StreamError):
            return error

        ctx = {"service": "kinesis"}
        if context:
            ctx.update(context)
        code = get_error_code(error)
        if code:
            ctx["error_code"] = code

        return StreamError(
            f"Failed to {operation.replace('_', ' ')}",
            operation=operation,
            category=classify_aws_error(error),
            cause=error,
            context=ctx,
        )

    @staticmethod
    def to_sink_error(error: Exception, context: dict | None = None) -> SinkError:
        """Wrap a failed storage write.

        boto3 serializes the item before sending it; a TypeError (unsupported
        value type) or a decimal signal (number outside DynamoDB's 38 digit,
        1E-130..1E+126 range) means this one item can never be stored, so it
        becomes an UnstorableEvent rather than a retryable failure.
        """
        if isinstance(error, SinkError):
            return error

        ctx = {"service": "dynamodb"}
        if context:
            ctx.update(context)
        code = get_error_code(error)
        if code:
            ctx["error_code"] = code

        if isinstance(error, (TypeError, DecimalException)):
            return UnstorableEvent(
                f"Audit event cannot be stored: {error!r}", cause=error, context=ctx
            )

        return SinkError(
            "Failed to write audit event",
            category=classify_aws_error(error),
            cause=error,
            context=ctx,
        )
