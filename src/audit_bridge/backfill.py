"""Backfill: push a JSON file of audit events through decode and into the sink."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from core.errors.exceptions import DecodeError
from core.logging import log_exception, log_with_context

from audit_bridge.events import decode
from audit_bridge.sink import EventSink

logger = logging.getLogger(__name__)


@dataclass
class BackfillResult:
    events_written: int = 0
    decode_failures: int = 0


def load_events_file(path: Path) -> list[dict[str, Any]]:
    """Read a JSON array of event objects.

    Raises:
        ValueError: The file is not a JSON array
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON array of events, got {type(data).__name__}")
    return data


async def backfill(path: Path, sink: EventSink) -> BackfillResult:
    """
    Write every valid event in the file to the sink.

    Each entry goes through the same decoder as stream records, so invalid
    entries are logged and counted exactly like bad records on a shard.
    """
    entries = load_events_file(Path(path))
    result = BackfillResult()

    for index, entry in enumerate(entries):
        payload = json.dumps(entry, ensure_ascii=False).encode("utf-8")
        try:
            event = decode(payload)
        except DecodeError as e:
            result.decode_failures += 1
            log_exception(
                logger,
                e,
                f"Skipping invalid event at index {index}",
                level=logging.WARNING,
                include_traceback=False,
            )
            continue

        await sink.write(event)
        result.events_written += 1

    log_with_context(
        logger,
        logging.INFO,
        f"Backfilled {path}",
        events_written=result.events_written,
        decode_failures=result.decode_failures,
    )
    return result


__all__ = ["BackfillResult", "backfill", "load_events_file"]
