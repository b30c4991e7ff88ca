"""Tests for the Kinesis stream client and its retrying wrapper."""

from unittest.mock import AsyncMock, Mock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from core.errors.exceptions import StreamError
from core.resilience.retry import RetryConfig
from core.types import ErrorCategory

from audit_bridge.kinesis import (
    TRIM_HORIZON,
    FetchResult,
    KinesisStreamClient,
    RawRecord,
    RetryingStreamClient,
)


def _client_error(code: str, operation: str = "GetRecords") -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": 400}},
        operation,
    )


def _make_client(boto_client=None, fetch_limit=None) -> KinesisStreamClient:
    return KinesisStreamClient("audit-events", boto_client or Mock(), fetch_limit=fetch_limit)


class TestDescribeStream:
    @pytest.mark.asyncio
    async def test_returns_shard_ids(self):
        boto = Mock()
        boto.describe_stream.return_value = {
            "StreamDescription": {
                "Shards": [{"ShardId": "shardId-000000000000"}, {"ShardId": "shardId-000000000001"}],
                "HasMoreShards": False,
            }
        }

        shard_ids = await _make_client(boto).describe_stream()

        assert shard_ids == ["shardId-000000000000", "shardId-000000000001"]
        boto.describe_stream.assert_called_once_with(StreamName="audit-events")

    @pytest.mark.asyncio
    async def test_missing_shard_list_is_permanent(self):
        boto = Mock()
        boto.describe_stream.return_value = {"StreamDescription": {}}

        with pytest.raises(StreamError) as exc_info:
            await _make_client(boto).describe_stream()

        assert exc_info.value.operation == "describe_stream"
        assert exc_info.value.category == ErrorCategory.PERMANENT

    @pytest.mark.asyncio
    async def test_unknown_stream(self):
        boto = Mock()
        cause = _client_error("ResourceNotFoundException", "DescribeStream")
        boto.describe_stream.side_effect = cause

        with pytest.raises(StreamError) as exc_info:
            await _make_client(boto).describe_stream()

        assert exc_info.value.category == ErrorCategory.PERMANENT
        assert exc_info.value.cause is cause
        assert exc_info.value.__cause__ is cause


class TestGetInitialCursor:
    @pytest.mark.asyncio
    async def test_trim_horizon(self):
        boto = Mock()
        boto.get_shard_iterator.return_value = {"ShardIterator": "iter-0"}

        cursor = await _make_client(boto).get_initial_cursor("shardId-000000000000")

        assert cursor == "iter-0"
        boto.get_shard_iterator.assert_called_once_with(
            StreamName="audit-events",
            ShardId="shardId-000000000000",
            ShardIteratorType=TRIM_HORIZON,
        )

    @pytest.mark.asyncio
    async def test_missing_iterator(self):
        boto = Mock()
        boto.get_shard_iterator.return_value = {}

        with pytest.raises(StreamError) as exc_info:
            await _make_client(boto).get_initial_cursor("shardId-000000000000")

        assert exc_info.value.operation == "get_shard_iterator"
        assert exc_info.value.context["shard_id"] == "shardId-000000000000"


class TestFetch:
    @pytest.mark.asyncio
    async def test_maps_records(self):
        boto = Mock()
        boto.get_records.return_value = {
            "Records": [
                {"SequenceNumber": "1", "PartitionKey": "42", "Data": b'{"AccountId": 42}'},
                {"SequenceNumber": "2", "PartitionKey": "43", "Data": bytearray(b"{")},
            ],
            "NextShardIterator": "iter-1",
            "MillisBehindLatest": 0,
        }

        result = await _make_client(boto).fetch("iter-0")

        assert result == FetchResult(
            records=(
                RawRecord("1", "42", b'{"AccountId": 42}'),
                RawRecord("2", "43", b"{"),
            ),
            next_cursor="iter-1",
            millis_behind_latest=0,
        )
        assert not result.shard_closed
        boto.get_records.assert_called_once_with(ShardIterator="iter-0")

    @pytest.mark.asyncio
    async def test_closed_shard(self):
        boto = Mock()
        boto.get_records.return_value = {"Records": []}

        result = await _make_client(boto).fetch("iter-0")

        assert result.records == ()
        assert result.next_cursor is None
        assert result.shard_closed

    @pytest.mark.asyncio
    async def test_fetch_limit(self):
        boto = Mock()
        boto.get_records.return_value = {"Records": [], "NextShardIterator": "iter-1"}

        await _make_client(boto, fetch_limit=100).fetch("iter-0")

        boto.get_records.assert_called_once_with(ShardIterator="iter-0", Limit=100)

    @pytest.mark.asyncio
    async def test_expired_iterator_is_permanent(self):
        boto = Mock()
        boto.get_records.side_effect = _client_error("ExpiredIteratorException")

        with pytest.raises(StreamError) as exc_info:
            await _make_client(boto).fetch("iter-0")

        assert exc_info.value.operation == "get_records"
        assert not exc_info.value.is_retryable

    @pytest.mark.asyncio
    async def test_throttled_is_transient(self):
        boto = Mock()
        boto.get_records.side_effect = _client_error("ProvisionedThroughputExceededException")

        with pytest.raises(StreamError) as exc_info:
            await _make_client(boto).fetch("iter-0")

        assert exc_info.value.category == ErrorCategory.TRANSIENT
        assert exc_info.value.context["error_code"] == "ProvisionedThroughputExceededException"

    @pytest.mark.asyncio
    async def test_no_internal_retry(self):
        boto = Mock()
        boto.get_records.side_effect = EndpointConnectionError(endpoint_url="http://localhost:4566")

        with pytest.raises(StreamError):
            await _make_client(boto).fetch("iter-0")

        assert boto.get_records.call_count == 1


class TestRetryingStreamClient:
    @pytest.fixture(autouse=True)
    def no_sleep(self):
        with patch("core.resilience.retry.asyncio.sleep", new_callable=AsyncMock):
            yield

    def _transient(self, operation="get_records"):
        return StreamError("Failed", operation=operation, category=ErrorCategory.TRANSIENT)

    @pytest.mark.asyncio
    async def test_retries_transient_fetch_with_same_cursor(self):
        inner = Mock(stream_name="audit-events")
        expected = FetchResult(records=(), next_cursor="iter-1")
        inner.fetch = AsyncMock(side_effect=[self._transient(), expected])

        client = RetryingStreamClient(inner, RetryConfig(max_attempts=3, base_delay=0.01))
        result = await client.fetch("iter-0")

        assert result is expected
        assert [c.args for c in inner.fetch.await_args_list] == [("iter-0",), ("iter-0",)]

    @pytest.mark.asyncio
    async def test_permanent_not_retried(self):
        inner = Mock(stream_name="audit-events")
        inner.get_initial_cursor = AsyncMock(
            side_effect=StreamError(
                "gone", operation="get_shard_iterator", category=ErrorCategory.PERMANENT
            )
        )

        client = RetryingStreamClient(inner, RetryConfig(max_attempts=5))
        with pytest.raises(StreamError):
            await client.get_initial_cursor("shardId-000000000000")

        inner.get_initial_cursor.assert_awaited_once_with("shardId-000000000000")

    @pytest.mark.asyncio
    async def test_describe_gives_up_after_max_attempts(self):
        inner = Mock(stream_name="audit-events")
        inner.describe_stream = AsyncMock(side_effect=self._transient("describe_stream"))

        client = RetryingStreamClient(inner, RetryConfig(max_attempts=3, base_delay=0.01))
        with pytest.raises(StreamError):
            await client.describe_stream()

        assert inner.describe_stream.await_count == 3

    def test_stream_name_passthrough(self):
        assert RetryingStreamClient(Mock(stream_name="audit-events")).stream_name == "audit-events"
