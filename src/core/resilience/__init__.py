"""
Resilience patterns module.

Components:
    - RetryConfig: Exponential backoff configuration
    - call_with_retry: Retry with jitter for coroutines
"""

from .retry import (
    DEFAULT_RETRY,
    RetryConfig,
    call_with_retry,
)

__all__ = [
    "RetryConfig",
    "DEFAULT_RETRY",
    "call_with_retry",
]
