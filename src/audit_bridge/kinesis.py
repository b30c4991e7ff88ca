"""Kinesis stream client.

Thin async wrapper over a boto3 Kinesis client exposing the three calls a
shard reader needs. Each call is a single round trip run in a worker thread
(boto3 is blocking) with no retry of its own; failures surface as StreamError
naming the operation that failed, with the SDK exception chained as cause.

Retries live in RetryingStreamClient, which wraps any stream client.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

from core.errors.aws_classifier import AwsErrorClassifier
from core.errors.exceptions import StreamError
from core.resilience.retry import RetryConfig, call_with_retry
from core.types import ErrorCategory

from audit_bridge.metrics import fetch_duration_seconds

logger = logging.getLogger(__name__)

TRIM_HORIZON = "TRIM_HORIZON"

# Shard cursors are opaque tokens issued by the stream service
ShardCursor = str


@dataclass(frozen=True)
class RawRecord:
    """One record as returned by GetRecords. Consumed immediately by decode."""

    sequence_number: str
    partition_key: str
    payload: bytes


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one GetRecords call.

    next_cursor is None once the shard is closed and fully read.
    """

    records: tuple[RawRecord, ...]
    next_cursor: ShardCursor | None
    millis_behind_latest: int | None = None

    @property
    def shard_closed(self) -> bool:
        return self.next_cursor is None


class StreamClient(Protocol):
    """The stream operations used by the bridge core."""

    stream_name: str

    async def describe_stream(self) -> list[str]: ...

    async def get_initial_cursor(self, shard_id: str) -> ShardCursor: ...

    async def fetch(self, cursor: ShardCursor) -> FetchResult: ...


def _missing(operation: str, what: str, context: dict) -> StreamError:
    return StreamError(
        f"Failed to {operation.replace('_', ' ')}: response has no {what}",
        operation=operation,
        category=ErrorCategory.PERMANENT,
        context=context,
    )


class KinesisStreamClient:
    """Kinesis implementation of StreamClient.

    The boto3 client is thread-safe for independent calls, so one instance is
    shared by every shard reader.
    """

    def __init__(self, stream_name: str, client: Any, fetch_limit: int | None = None):
        """
        Args:
            stream_name: Kinesis stream name
            client: boto3 Kinesis client (``boto3.client("kinesis")``)
            fetch_limit: Optional max records per GetRecords call
        """
        self.stream_name = stream_name
        self._client = client
        self.fetch_limit = fetch_limit

    async def _call(self, operation: str, context: dict, **params: Any) -> dict:
        method = getattr(self._client, operation)
        try:
            return await asyncio.to_thread(method, **params)
        except Exception as e:
            raise AwsErrorClassifier.to_stream_error(e, operation, context) from e

    async def describe_stream(self) -> list[str]:
        """Return the ids of the stream's shards."""
        context = {"stream": self.stream_name}
        response = await self._call("describe_stream", context, StreamName=self.stream_name)

        description = response.get("StreamDescription")
        if not description or description.get("Shards") is None:
            raise _missing("describe_stream", "shard list", context)

        if description.get("HasMoreShards"):
            # TODO: page with ExclusiveStartShardId once a stream outgrows one DescribeStream page
            logger.warning(
                "Stream has more shards than one DescribeStream page returns",
                extra={"stream": self.stream_name},
            )

        shard_ids = [shard["ShardId"] for shard in description["Shards"]]
        logger.info(
            "Described stream",
            extra={"stream": self.stream_name, "shard_count": len(shard_ids)},
        )
        return shard_ids

    async def get_initial_cursor(self, shard_id: str) -> ShardCursor:
        """Return an iterator at the oldest retained record of the shard."""
        context = {"stream": self.stream_name, "shard_id": shard_id}
        response = await self._call(
            "get_shard_iterator",
            context,
            StreamName=self.stream_name,
            ShardId=shard_id,
            ShardIteratorType=TRIM_HORIZON,
        )

        cursor = response.get("ShardIterator")
        if not cursor:
            raise _missing("get_shard_iterator", "shard iterator", context)
        return cursor

    async def fetch(self, cursor: ShardCursor) -> FetchResult:
        """Read the next batch of records at cursor."""
        params: dict[str, Any] = {"ShardIterator": cursor}
        if self.fetch_limit:
            params["Limit"] = self.fetch_limit

        started = time.perf_counter()
        response = await self._call("get_records", {"stream": self.stream_name}, **params)
        fetch_duration_seconds.observe(time.perf_counter() - started)

        records = tuple(
            RawRecord(
                sequence_number=record["SequenceNumber"],
                partition_key=record.get("PartitionKey", ""),
                payload=bytes(record["Data"]),
            )
            for record in response.get("Records", [])
        )
        return FetchResult(
            records=records,
            next_cursor=response.get("NextShardIterator") or None,
            millis_behind_latest=response.get("MillisBehindLatest"),
        )


class RetryingStreamClient:
    """Wraps a StreamClient, retrying transient failures with backoff.

    Permanent failures (unknown stream or shard, expired iterator, access
    denied) are raised on the first attempt. A fetch is only ever retried
    with the cursor that failed, never one that already produced records.
    """

    def __init__(self, inner: StreamClient, retry_config: RetryConfig | None = None):
        self._inner = inner
        self.retry_config = retry_config or RetryConfig()

    @property
    def stream_name(self) -> str:
        return self._inner.stream_name

    async def describe_stream(self) -> list[str]:
        return await call_with_retry(
            self._inner.describe_stream,
            config=self.retry_config,
            operation="describe_stream",
        )

    async def get_initial_cursor(self, shard_id: str) -> ShardCursor:
        return await call_with_retry(
            self._inner.get_initial_cursor,
            shard_id,
            config=self.retry_config,
            operation="get_shard_iterator",
        )

    async def fetch(self, cursor: ShardCursor) -> FetchResult:
        return await call_with_retry(
            self._inner.fetch,
            cursor,
            config=self.retry_config,
            operation="get_records",
        )


def create_kinesis_client(region: str, endpoint_url: str | None = None) -> Any:
    """Build a boto3 Kinesis client, pointing at LocalStack when endpoint_url is set."""
    import boto3

    return boto3.client("kinesis", region_name=region, endpoint_url=endpoint_url)


__all__ = [
    "FetchResult",
    "KinesisStreamClient",
    "RawRecord",
    "RetryingStreamClient",
    "ShardCursor",
    "StreamClient",
    "TRIM_HORIZON",
    "create_kinesis_client",
]
