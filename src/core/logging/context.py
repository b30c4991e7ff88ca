"""Context variables for structured logging."""

from contextvars import ContextVar
from typing import Dict, Optional

_worker_id: ContextVar[str] = ContextVar("worker_id", default="")
_stage_name: ContextVar[str] = ContextVar("stage_name", default="")
_stream: ContextVar[str] = ContextVar("stream", default="")
_shard_id: ContextVar[str] = ContextVar("shard_id", default="")


def set_log_context(
    worker_id: Optional[str] = None,
    stage: Optional[str] = None,
    stream: Optional[str] = None,
    shard_id: Optional[str] = None,
) -> None:
    if worker_id is not None:
        _worker_id.set(worker_id)
    if stage is not None:
        _stage_name.set(stage)
    if stream is not None:
        _stream.set(stream)
    if shard_id is not None:
        _shard_id.set(shard_id)


def get_log_context() -> Dict[str, str]:
    return {
        "worker_id": _worker_id.get(),
        "stage": _stage_name.get(),
        "stream": _stream.get(),
        "shard_id": _shard_id.get(),
    }


def clear_log_context() -> None:
    _worker_id.set("")
    _stage_name.set("")
    _stream.set("")
    _shard_id.set("")
