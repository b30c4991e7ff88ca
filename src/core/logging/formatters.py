"""Log formatters for JSON and console output."""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from core.logging.context import get_log_context
from core.utils.json_serializers import json_serializer


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        # Stream position
        "stream",
        "shard_id",
        "shard_count",
        "sequence_number",
        "partition_key",
        "millis_behind_latest",
        # Records and events
        "payload",
        "event_kind",
        "batch_size",
        "fetches",
        "records_received",
        "events_published",
        "events_written",
        "events_rejected",
        "decode_failures",
        "failed_shards",
        "poll_interval_ms",
        # Errors
        "error",
        "error_type",
        "error_category",
        "error_message",
        "error_code",
        # Resilience
        "operation",
        "attempt",
        "max_attempts",
        "delay_seconds",
        "duration_ms",
        # Storage
        "table",
        "region",
        "endpoint_url",
    ]

    # Numeric fields are coerced so downstream log queries can aggregate them
    NUMERIC_FIELDS = {
        "duration_ms": float,
        "delay_seconds": float,
        "shard_count": int,
        "millis_behind_latest": int,
        "batch_size": int,
        "fetches": int,
        "records_received": int,
        "events_published": int,
        "events_written": int,
        "events_rejected": int,
        "decode_failures": int,
        "poll_interval_ms": int,
        "attempt": int,
        "max_attempts": int,
    }

    CONTEXT_FIELDS = ["worker_id", "stage", "stream", "shard_id"]

    def _ensure_type(self, field: str, value: Any) -> Any:
        """Coerce a numeric field to its expected type, or None if that fails."""
        if field not in self.NUMERIC_FIELDS or value is None:
            return value

        expected_type = self.NUMERIC_FIELDS[field]
        try:
            return expected_type(value)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _base_log_entry(record: logging.LogRecord) -> dict[str, Any]:
        return {
            "ts": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

    def _inject_context(self, log_entry: dict[str, Any], log_context: dict[str, Any]) -> None:
        for field in self.CONTEXT_FIELDS:
            if log_context.get(field):
                log_entry[field] = log_context[field]

    @staticmethod
    def _should_include_source_location(record: logging.LogRecord) -> bool:
        return record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL)

    def _inject_extra_fields(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = self._ensure_type(field, value)

    def _inject_exception(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        if not record.exc_info:
            return

        exc_type, exc_value, _ = record.exc_info
        log_entry["exception"] = {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc_value) if exc_value else None,
            "stacktrace": self.formatException(record.exc_info),
        }

    def format(self, record: logging.LogRecord) -> str:
        log_entry = self._base_log_entry(record)

        self._inject_context(log_entry, get_log_context())

        if self._should_include_source_location(record):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        # Record extras win over context (a reader may log about another shard)
        self._inject_extra_fields(log_entry, record)
        self._inject_exception(log_entry, record)

        return json.dumps(log_entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter with color-coded log levels.

    Colors are auto-disabled when output is not a TTY (pipes, files).
    """

    COLORS = {
        logging.DEBUG: "\033[36m",  # Cyan
        logging.INFO: "\033[32m",  # Green
        logging.WARNING: "\033[33m",  # Yellow
        logging.ERROR: "\033[31m",  # Red
        logging.CRITICAL: "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def _format_level_name(self, record: logging.LogRecord) -> str:
        level_name = record.levelname
        if not self._use_colors:
            return level_name

        color = self.COLORS.get(record.levelno, "")
        if not color:
            return level_name

        return f"{color}{level_name}{self.RESET}"

    @staticmethod
    def _build_prefix(level_name: str, log_context: dict[str, Any]) -> str:
        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            level_name,
        ]

        if log_context["stream"]:
            parts.append(f"[{log_context['stream']}]")
        if log_context["shard_id"]:
            parts.append(f"[{log_context['shard_id']}]")

        return " - ".join(parts)

    def format(self, record: logging.LogRecord) -> str:
        log_context = get_log_context()

        level_name = self._format_level_name(record)
        prefix = self._build_prefix(level_name, log_context)
        message = f"{prefix} - {record.getMessage()}"

        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message
