"""Context managers for structured logging."""

from typing import Dict, Optional

from core.logging.context import get_log_context, set_log_context


class LogContext:
    """
    Context manager for temporary log context.

    asyncio tasks copy the current context when they are created, so a
    LogContext entered inside a shard reader task only tags that reader's logs.

    Usage:
        with LogContext(stream="audit-events", shard_id="shardId-000000000000"):
            # All logs in this block carry stream and shard_id
            await reader.run()
    """

    def __init__(
        self,
        worker_id: Optional[str] = None,
        stage: Optional[str] = None,
        stream: Optional[str] = None,
        shard_id: Optional[str] = None,
    ):
        self.new_context = {
            "worker_id": worker_id,
            "stage": stage,
            "stream": stream,
            "shard_id": shard_id,
        }
        self.old_context: Dict[str, str] = {}

    def __enter__(self) -> "LogContext":
        self.old_context = get_log_context()
        set_log_context(**self.new_context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_log_context(**self.old_context)
        return False
