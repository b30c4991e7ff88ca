"""
Shard reader: the consumption loop for one shard.

    STARTING -> POLLING -> DECODING -> POLLING ... -> CLOSED

The reader takes a TRIM_HORIZON cursor, then fetches, decodes and publishes
batch after batch, sleeping poll_interval between fetches, until the stream
stops handing out a next cursor (the shard is closed and fully read).

Records that fail to decode are logged with their raw payload and skipped.
Stream errors and a closed channel end the reader with the error; the
orchestrator decides what that means for the other shards.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from enum import Enum

from core.errors.exceptions import DecodeError
from core.logging import LogContext, format_payload, log_exception, log_with_context

from audit_bridge.channel import EventSender
from audit_bridge.events import decode
from audit_bridge.kinesis import FetchResult, RawRecord, StreamClient
from audit_bridge.metrics import (
    millis_behind_latest_gauge,
    record_decode_failure,
    record_event_published,
    records_received_counter,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.2


class ReaderState(str, Enum):
    STARTING = "starting"
    POLLING = "polling"
    DECODING = "decoding"
    CLOSED = "closed"


@dataclass
class ShardReaderStats:
    shard_id: str
    fetches: int = 0
    records_received: int = 0
    events_published: int = 0
    decode_failures: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class ShardReader:
    """
    Reads one shard from the trim horizon until it closes.

    The stream client and sender are handed in at construction and owned by
    this reader for its lifetime; the sender is closed when run() returns or
    raises.

    Example:
        reader = ShardReader("shardId-000000000000", client, channel.sender())
        stats = await reader.run()
    """

    def __init__(
        self,
        shard_id: str,
        client: StreamClient,
        sender: EventSender,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        stream_name: str = "",
    ):
        if poll_interval < 0:
            raise ValueError(f"poll_interval must be >= 0, got {poll_interval}")

        self.shard_id = shard_id
        self.stream_name = stream_name or getattr(client, "stream_name", "")
        self.poll_interval = poll_interval
        self.state = ReaderState.STARTING
        self.stats = ShardReaderStats(shard_id=shard_id)
        self._client = client
        self._sender = sender

    async def run(self) -> ShardReaderStats:
        """Consume the shard to its end.

        Returns:
            Counters for this reader once the shard is closed

        Raises:
            StreamError: Obtaining the cursor or a fetch failed
            ChannelClosedError: The consumer went away
        """
        with LogContext(stream=self.stream_name, shard_id=self.shard_id):
            try:
                await self._consume()
            except asyncio.CancelledError:
                logger.info("Shard reader cancelled")
                raise
            except Exception as e:
                log_exception(
                    logger,
                    e,
                    "Shard reader terminated with error",
                    state=self.state.value,
                    **self._stats_fields(),
                )
                raise
            finally:
                self.state = ReaderState.CLOSED
                self._sender.close()

            log_with_context(logger, logging.INFO, "Shard closed", **self._stats_fields())
            return self.stats

    async def _consume(self) -> None:
        cursor = await self._client.get_initial_cursor(self.shard_id)
        logger.debug("Obtained initial shard iterator")

        while True:
            self.state = ReaderState.POLLING
            result = await self._client.fetch(cursor)
            self.stats.fetches += 1
            self._observe_fetch(result)

            self.state = ReaderState.DECODING
            for record in result.records:
                await self._handle_record(record)

            if result.next_cursor is None:
                return
            cursor = result.next_cursor
            await asyncio.sleep(self.poll_interval)

    def _observe_fetch(self, result: FetchResult) -> None:
        count = len(result.records)
        self.stats.records_received += count
        records_received_counter.labels(shard_id=self.shard_id).inc(count)
        if result.millis_behind_latest is not None:
            millis_behind_latest_gauge.labels(shard_id=self.shard_id).set(
                result.millis_behind_latest
            )

        if count:
            log_with_context(
                logger,
                logging.DEBUG,
                "Fetched batch",
                batch_size=count,
                millis_behind_latest=result.millis_behind_latest,
            )

    async def _handle_record(self, record: RawRecord) -> None:
        try:
            event = decode(record.payload)
        except DecodeError as e:
            self.stats.decode_failures += 1
            record_decode_failure(self.shard_id, type(e).__name__)
            log_exception(
                logger,
                e,
                "Failed to decode record",
                include_traceback=False,
                sequence_number=record.sequence_number,
                partition_key=record.partition_key,
                payload=format_payload(record.payload),
            )
            return

        await self._sender.send(event)
        self.stats.events_published += 1
        record_event_published(self.shard_id, event.kind.value)

    def _stats_fields(self) -> dict:
        return {
            "fetches": self.stats.fetches,
            "records_received": self.stats.records_received,
            "events_published": self.stats.events_published,
            "decode_failures": self.stats.decode_failures,
        }


__all__ = ["DEFAULT_POLL_INTERVAL", "ReaderState", "ShardReader", "ShardReaderStats"]
