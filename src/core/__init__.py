"""
Core library: infrastructure-agnostic building blocks for the bridge.

Modules:
    errors      - Error classification and exception hierarchy
    logging     - Structured JSON logging with context propagation
    resilience  - Retry with exponential backoff
    utils       - JSON serialization and worker identifiers
"""

from .types import ErrorCategory

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
]
