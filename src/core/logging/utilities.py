"""Logging utility functions."""

import logging
from typing import Any

# Reserved LogRecord attribute names that cannot be used in extra dict
_RESERVED_LOG_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "asctime",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)

# Raw payloads are logged for diagnosis; cap them so one bad record can't flood the log
MAX_LOGGED_PAYLOAD_CHARS = 1000


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **kwargs: Any,
) -> None:
    """
    Log with structured context fields.

    Example:
        log_with_context(
            logger, logging.INFO, "Fetched batch",
            shard_id=shard_id,
            batch_size=len(records),
        )
    """
    exc_info = kwargs.pop("exc_info", None)
    extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_LOG_KEYS}
    logger.log(level, msg, exc_info=exc_info, extra=extra)


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log exception with context and optional traceback.

    Extracts error_category from BridgeError subclasses.

    Example:
        try:
            await client.fetch(cursor)
        except StreamError as e:
            log_exception(logger, e, "Shard reader failed", shard_id=shard_id)
    """
    if kwargs.get("error_category") is None and hasattr(exc, "category"):
        cat = exc.category
        kwargs["error_category"] = cat.value if hasattr(cat, "value") else str(cat)

    error_msg = str(exc)
    if len(error_msg) > 500:
        error_msg = error_msg[:500] + "..."
    kwargs["error_message"] = error_msg
    kwargs.setdefault("error_type", type(exc).__name__)

    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=kwargs)
    else:
        logger.log(level, msg, extra=kwargs)


def format_payload(payload: bytes) -> str:
    """Render raw record bytes for a log line (lossy UTF-8, truncated)."""
    text = payload.decode("utf-8", errors="replace")
    if len(text) > MAX_LOGGED_PAYLOAD_CHARS:
        return text[:MAX_LOGGED_PAYLOAD_CHARS] + "..."
    return text


_BANNER_FIELDS: list[tuple[str, str]] = [
    ("worker_id", "Worker:       {}"),
    ("stream", "Stream:       {}"),
    ("region", "Region:       {}"),
    ("endpoint_url", "Endpoint:     {}"),
    ("table", "Sink Table:   {}"),
    ("metrics_port", "Metrics:      http://localhost:{}"),
]


def log_startup_banner(
    logger: logging.Logger,
    worker_name: str,
    **kwargs: Any,
) -> None:
    """
    Log startup banner with worker configuration.

    Example:
        log_startup_banner(
            logger,
            worker_name="Audit Stream Bridge",
            stream="audit-events",
            table="AuditLog",
        )
    """
    separator = "=" * 50

    lines = ["", separator, worker_name]

    version = kwargs.get("version")
    if version:
        lines.append(f"Version: {version}")

    lines.append(separator)

    for field_name, fmt in _BANNER_FIELDS:
        value = kwargs.get(field_name)
        if value:
            lines.append(fmt.format(value))

    lines.append(separator)
    lines.append("")

    logger.info("\n".join(lines))
