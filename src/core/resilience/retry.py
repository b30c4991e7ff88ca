"""
Retry utilities with exception-aware handling.

Uses the exception hierarchy to make retry decisions:
- Transient errors (throttled reads, timeouts): retry with exponential backoff
- Auth errors: retry, since botocore refreshes session credentials between calls
- Permanent errors (unknown stream, expired iterator, bad payload): fail immediately

The bridge core never retries on its own. These helpers belong to the
wrapping layer (see audit_bridge.kinesis.RetryingStreamClient).
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from core.errors.exceptions import (
    BridgeError,
    classify_exception,
    wrap_exception,
)
from core.types import ErrorCategory

logger = logging.getLogger(__name__)


def _extract_error_category(wrapped: Exception) -> str:
    """Return a string error category from a wrapped exception."""
    if isinstance(wrapped, BridgeError):
        cat = wrapped.category
    else:
        cat = classify_exception(wrapped)
    return cat.value if hasattr(cat, "value") else str(cat)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0

    def __post_init__(self):
        """Ensure proper types from YAML/env vars."""
        self.max_attempts = int(self.max_attempts)
        self.base_delay = float(self.base_delay)
        self.max_delay = float(self.max_delay)
        self.exponential_base = float(self.exponential_base)
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")

    def get_delay(self, attempt: int) -> float:
        """
        Calculate delay with equal jitter to prevent synchronized retries
        across shard readers.

        Args:
            attempt: 0-indexed attempt number

        Returns:
            Delay in seconds
        """
        base_delay = self.base_delay * (self.exponential_base**attempt)

        # Equal jitter: half fixed, half random
        jitter = random.uniform(0, base_delay / 2)
        delay = (base_delay / 2) + jitter

        return min(delay, self.max_delay)

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """
        Determine if error should be retried.

        Args:
            error: The exception that occurred
            attempt: 0-indexed current attempt

        Returns:
            True if should retry
        """
        if attempt >= self.max_attempts - 1:
            return False

        if isinstance(error, BridgeError):
            return error.is_retryable

        return classify_exception(error) in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.AUTH,
            ErrorCategory.UNKNOWN,
        )


DEFAULT_RETRY = RetryConfig(max_attempts=3, base_delay=1.0)


async def call_with_retry(
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    config: RetryConfig | None = None,
    operation: str | None = None,
    **kwargs: Any,
) -> Any:
    """
    Await func(*args, **kwargs), retrying retryable failures with backoff.

    Non-BridgeError exceptions are wrapped before classification and the
    wrapped error is raised once retries are exhausted. BridgeErrors are
    re-raised as-is.
    """
    config = config or DEFAULT_RETRY
    operation = operation or getattr(func, "__name__", "operation")

    for attempt in range(config.max_attempts):
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            wrapped = e if isinstance(e, BridgeError) else wrap_exception(e)
            error_category = _extract_error_category(wrapped)

            if not config.should_retry(wrapped, attempt):
                if not wrapped.is_retryable:
                    logger.warning(
                        "Permanent error for %s, not retrying: %s",
                        operation,
                        str(e)[:200],
                        extra={
                            "operation": operation,
                            "error_category": error_category,
                        },
                    )
                else:
                    logger.error(
                        "Max retries exhausted for %s: %s",
                        operation,
                        str(e)[:200],
                        extra={
                            "operation": operation,
                            "attempt": attempt + 1,
                            "max_attempts": config.max_attempts,
                            "error_category": error_category,
                        },
                    )
                if wrapped is e:
                    raise
                raise wrapped from e

            delay = config.get_delay(attempt)
            logger.warning(
                "Retryable error for %s, will retry",
                operation,
                extra={
                    "operation": operation,
                    "attempt": attempt + 1,
                    "max_attempts": config.max_attempts,
                    "error_category": error_category,
                    "delay_seconds": round(delay, 2),
                    "error_message": str(e)[:200],
                },
            )
            await asyncio.sleep(delay)
        else:
            if attempt > 0:
                logger.info(
                    "Retry succeeded for %s after %d attempts",
                    operation,
                    attempt + 1,
                    extra={"operation": operation, "attempt": attempt + 1},
                )
            return result

    # Unreachable: the final attempt either returns or raises
    raise RuntimeError(f"Retry loop for {operation} exited without a result")


__all__ = [
    "RetryConfig",
    "DEFAULT_RETRY",
    "call_with_retry",
]
