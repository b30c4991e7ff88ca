"""
Bridge orchestration.

Discovers the shards of the stream, runs one ShardReader task per shard and a
single consumer task draining the shared event channel into the sink, then
applies the shard failure policy:

- ``continue``: a failed shard is recorded and the other shards run on.
- ``abort``: the first failure cancels the remaining readers and is re-raised
  once the consumer has written what was already decoded.

A consumer (sink) failure always cancels the readers and is re-raised.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from core.logging import log_exception, log_with_context

from audit_bridge.channel import EventChannel
from audit_bridge.kinesis import StreamClient
from audit_bridge.metrics import shard_failures_counter
from audit_bridge.shard_reader import DEFAULT_POLL_INTERVAL, ShardReader, ShardReaderStats
from audit_bridge.sink import EventSink, consume_events

logger = logging.getLogger(__name__)

SHARD_ERROR_CONTINUE = "continue"
SHARD_ERROR_ABORT = "abort"


@dataclass(frozen=True)
class BridgeSettings:
    poll_interval: float = DEFAULT_POLL_INTERVAL
    on_shard_error: str = SHARD_ERROR_CONTINUE

    def __post_init__(self):
        if self.on_shard_error not in (SHARD_ERROR_CONTINUE, SHARD_ERROR_ABORT):
            raise ValueError(
                f"on_shard_error must be '{SHARD_ERROR_CONTINUE}' or '{SHARD_ERROR_ABORT}', "
                f"got '{self.on_shard_error}'"
            )
        if self.poll_interval < 0:
            raise ValueError(f"poll_interval must be >= 0, got {self.poll_interval}")

    @classmethod
    def from_config(cls, config) -> "BridgeSettings":
        """Build settings from a config.BridgeConfig."""
        return cls(
            poll_interval=config.poll_interval_seconds,
            on_shard_error=config.on_shard_error,
        )


@dataclass
class BridgeResult:
    shards: list[str]
    events_written: int = 0
    reader_stats: dict[str, ShardReaderStats] = field(default_factory=dict)
    failed_shards: dict[str, BaseException] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed_shards


class AuditStreamBridge:
    """
    Runs the stream-to-sink bridge for every shard of one stream.

    Example:
        client = RetryingStreamClient(KinesisStreamClient("audit-events", boto_client))
        bridge = AuditStreamBridge(client, DynamoEventSink(table))
        result = await bridge.run()
    """

    def __init__(
        self,
        stream_client: StreamClient,
        sink: EventSink,
        settings: BridgeSettings | None = None,
    ):
        self.stream_client = stream_client
        self.sink = sink
        self.settings = settings or BridgeSettings()

    async def run(self) -> BridgeResult:
        """Run until every shard is closed.

        Raises:
            StreamError: Describing the stream failed, or a shard failed
                under the abort policy
            Exception: The sink failed
        """
        stream_name = getattr(self.stream_client, "stream_name", "")
        shard_ids = await self.stream_client.describe_stream()
        result = BridgeResult(shards=list(shard_ids))

        if not shard_ids:
            log_with_context(logger, logging.WARNING, "Stream has no shards", stream=stream_name)
            return result

        channel = EventChannel()
        readers = [
            ShardReader(
                shard_id,
                self.stream_client,
                channel.sender(),
                poll_interval=self.settings.poll_interval,
                stream_name=stream_name,
            )
            for shard_id in shard_ids
        ]

        consumer = asyncio.create_task(
            consume_events(channel.receiver, self.sink), name="audit-bridge-consumer"
        )
        reader_tasks = {
            asyncio.create_task(reader.run(), name=f"shard-reader-{reader.shard_id}"): reader
            for reader in readers
        }

        log_with_context(
            logger,
            logging.INFO,
            "Started shard readers",
            stream=stream_name,
            shard_count=len(readers),
        )

        try:
            await self._await_readers(reader_tasks, consumer, result)
            result.events_written = await consumer
        except BaseException:
            await self._cancel_all([*reader_tasks, consumer])
            raise

        log_with_context(
            logger,
            logging.INFO,
            "Bridge finished",
            stream=stream_name,
            shard_count=len(shard_ids),
            events_written=result.events_written,
            failed_shards=sorted(result.failed_shards),
        )
        return result

    async def _await_readers(
        self,
        reader_tasks: dict[asyncio.Task, ShardReader],
        consumer: asyncio.Task,
        result: BridgeResult,
    ) -> None:
        pending: set[asyncio.Task] = set(reader_tasks)
        watching: set[asyncio.Task] = pending | {consumer}

        while pending:
            done, _ = await asyncio.wait(watching, return_when=asyncio.FIRST_COMPLETED)

            for task in done:
                watching.discard(task)
                if task is consumer:
                    if task.exception() is not None:
                        raise task.exception()
                    continue

                pending.discard(task)
                reader = reader_tasks[task]
                error = task.exception()
                if error is None:
                    result.reader_stats[reader.shard_id] = task.result()
                    continue

                result.reader_stats[reader.shard_id] = reader.stats
                result.failed_shards[reader.shard_id] = error
                shard_failures_counter.labels(
                    error_category=getattr(getattr(error, "category", None), "value", "unknown")
                ).inc()

                if self.settings.on_shard_error == SHARD_ERROR_ABORT:
                    log_exception(
                        logger,
                        error,
                        "Shard failed, aborting remaining readers",
                        include_traceback=False,
                        shard_id=reader.shard_id,
                    )
                    await self._cancel_all(pending)
                    # Readers close their senders when cancelled, so the consumer drains and ends
                    await asyncio.gather(consumer, return_exceptions=True)
                    raise error

                log_exception(
                    logger,
                    error,
                    "Shard failed, continuing with remaining shards",
                    level=logging.WARNING,
                    include_traceback=False,
                    shard_id=reader.shard_id,
                )

    @staticmethod
    async def _cancel_all(tasks) -> None:
        tasks = [task for task in tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


__all__ = [
    "AuditStreamBridge",
    "BridgeResult",
    "BridgeSettings",
    "SHARD_ERROR_ABORT",
    "SHARD_ERROR_CONTINUE",
]
