"""Shared JSON serialization utilities for type-safe JSON encoding."""

from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any
from uuid import UUID


def _serialize_known_type(obj: Any) -> tuple[bool, Any]:
    """Try to serialize by known type. Returns (handled, result)."""
    if isinstance(obj, (datetime, date)):
        return True, obj.isoformat()
    if isinstance(obj, Decimal):
        # DynamoDB numbers come back as Decimal; keep integers integral
        return True, int(obj) if obj == obj.to_integral_value() else float(obj)
    if isinstance(obj, UUID):
        return True, str(obj)
    if isinstance(obj, Path):
        return True, str(obj)
    if isinstance(obj, bytes):
        return True, obj.decode("utf-8", errors="replace")
    return False, None


def json_serializer(obj: Any) -> Any:
    """
    Type-safe JSON serializer used as ``json.dumps(default=...)``.

    - datetime/date -> ISO 8601 string
    - Decimal -> int or float
    - UUID/Path -> string
    - bytes -> lossy UTF-8 string
    - Enums -> value
    - Everything else -> string (fallback)
    """
    handled, result = _serialize_known_type(obj)
    if handled:
        return result
    if hasattr(obj, "value"):
        return obj.value
    return str(obj)


__all__ = ["json_serializer"]
