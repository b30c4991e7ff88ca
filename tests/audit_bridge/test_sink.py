"""Tests for event sinks and the consumer task."""

import logging
from decimal import Decimal, Inexact
from unittest.mock import AsyncMock, Mock, patch
from uuid import UUID

import pytest
from botocore.exceptions import ClientError

from core.errors.exceptions import ChannelClosedError, SinkError, UnstorableEvent
from core.resilience.retry import RetryConfig
from core.types import ErrorCategory

from audit_bridge.channel import EventChannel
from audit_bridge.events import AccountEvent, ProjectEvent
from audit_bridge.sink import (
    EVENT_ATTRIBUTE,
    EVENT_TIMESTAMP_KEY,
    PARTITION_KEY_ATTRIBUTE,
    DynamoEventSink,
    LoggingEventSink,
    consume_events,
    event_to_item,
)

PROJECT_ID = "7b0c3f2e-9d4a-4c1b-8e2f-1a2b3c4d5e6f"


def _project_event(**extra) -> ProjectEvent:
    return ProjectEvent(
        project_id=UUID(PROJECT_ID), entity_type="Document", entity_id="doc-1", extra=extra
    )


def _throttled() -> ClientError:
    return ClientError(
        {"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "slow"}},
        "PutItem",
    )


class TestEventToItem:
    def test_project_item(self):
        item = event_to_item(_project_event(Action="Created"), timestamp_ms=1700000000000)

        assert item == {
            PARTITION_KEY_ATTRIBUTE: PROJECT_ID,
            EVENT_TIMESTAMP_KEY: 1700000000000,
            EVENT_ATTRIBUTE: {
                "ProjectId": PROJECT_ID,
                "EntityType": "Document",
                "EntityId": "doc-1",
                "Action": "Created",
            },
        }

    def test_account_item_keyed_by_account_id(self):
        item = event_to_item(AccountEvent(account_id=7, extra={}), timestamp_ms=5)

        assert item == {
            PARTITION_KEY_ATTRIBUTE: "7",
            EVENT_TIMESTAMP_KEY: 5,
            EVENT_ATTRIBUTE: {"AccountId": 7},
        }

    def test_payload_keys_named_like_table_key_are_kept(self):
        event = AccountEvent(account_id=1, extra={"PartitionKey": "orig", "EventTimestamp": 5})

        item = event_to_item(event, timestamp_ms=99)

        assert item[PARTITION_KEY_ATTRIBUTE] == "1"
        assert item[EVENT_TIMESTAMP_KEY] == 99
        assert item[EVENT_ATTRIBUTE] == {"AccountId": 1, "PartitionKey": "orig", "EventTimestamp": 5}

    def test_floats_become_decimal(self):
        item = event_to_item(_project_event(Score=1.5, Nested={"vals": [0.25, 2]}), timestamp_ms=1)

        payload = item[EVENT_ATTRIBUTE]
        assert payload["Score"] == Decimal("1.5")
        assert payload["Nested"] == {"vals": [Decimal("0.25"), 2]}
        assert isinstance(payload["Nested"]["vals"][1], int)

    def test_default_timestamp_is_now(self):
        with patch("audit_bridge.sink.time.time", return_value=1700000000.5):
            item = event_to_item(AccountEvent(account_id=1, extra={}))
        assert item[EVENT_TIMESTAMP_KEY] == 1700000000500


class TestDynamoEventSink:
    @pytest.fixture(autouse=True)
    def no_sleep(self):
        with patch("core.resilience.retry.asyncio.sleep", new_callable=AsyncMock):
            yield

    @pytest.mark.asyncio
    async def test_puts_item(self):
        table = Mock()
        table.name = "AuditLog"

        await DynamoEventSink(table).write(AccountEvent(account_id=42, extra={"Action": "login"}))

        table.put_item.assert_called_once()
        item = table.put_item.call_args.kwargs["Item"]
        assert item[PARTITION_KEY_ATTRIBUTE] == "42"
        assert item[EVENT_ATTRIBUTE] == {"AccountId": 42, "Action": "login"}
        assert EVENT_TIMESTAMP_KEY in item

    @pytest.mark.asyncio
    async def test_retries_throttled_write(self):
        table = Mock()
        table.put_item.side_effect = [_throttled(), None]

        await DynamoEventSink(table, RetryConfig(max_attempts=3, base_delay=0.01)).write(
            AccountEvent(account_id=1, extra={})
        )

        assert table.put_item.call_count == 2

    @pytest.mark.asyncio
    async def test_raises_sink_error(self):
        table = Mock()
        table.name = "AuditLog"
        table.put_item.side_effect = ClientError(
            {"Error": {"Code": "ResourceNotFoundException", "Message": "no table"}}, "PutItem"
        )

        with pytest.raises(SinkError) as exc_info:
            await DynamoEventSink(table, RetryConfig(max_attempts=3)).write(
                AccountEvent(account_id=1, extra={})
            )

        assert exc_info.value.category == ErrorCategory.PERMANENT
        assert exc_info.value.context["table"] == "AuditLog"
        assert table.put_item.call_count == 1

    @pytest.mark.asyncio
    async def test_unserializable_item_is_not_retried(self):
        table = Mock()
        table.name = "AuditLog"
        table.put_item.side_effect = Inexact()

        with pytest.raises(UnstorableEvent) as exc_info:
            await DynamoEventSink(table, RetryConfig(max_attempts=3)).write(
                AccountEvent(account_id=1, extra={"Huge": 10**40})
            )

        assert exc_info.value.category == ErrorCategory.PERMANENT
        assert table.put_item.call_count == 1


class TestLoggingEventSink:
    @pytest.mark.asyncio
    async def test_logs_event(self, caplog):
        sink = LoggingEventSink()
        with caplog.at_level(logging.INFO, logger="audit_bridge.sink"):
            await sink.write(AccountEvent(account_id=7, extra={"Action": "login"}))

        record = caplog.records[-1]
        assert record.getMessage() == "Audit event"
        assert record.event_kind == "account"
        assert record.partition_key == "7"
        assert '"Action": "login"' in record.payload
        assert sink.events_logged == 1


class TestConsumeEvents:
    @pytest.mark.asyncio
    async def test_drains_until_end_of_stream(self):
        channel = EventChannel()
        sender = channel.sender()
        for n in range(3):
            await sender.send(AccountEvent(account_id=n, extra={}))
        sender.close()

        sink = Mock()
        sink.write = AsyncMock()

        assert await consume_events(channel.receiver, sink) == 3
        assert [c.args[0].account_id for c in sink.write.await_args_list] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_sink_failure_closes_channel(self):
        channel = EventChannel()
        sender = channel.sender()
        await sender.send(AccountEvent(account_id=1, extra={}))

        sink = Mock()
        sink.write = AsyncMock(side_effect=SinkError("boom", category=ErrorCategory.PERMANENT))

        with pytest.raises(SinkError):
            await consume_events(channel.receiver, sink)

        with pytest.raises(ChannelClosedError):
            await sender.send(AccountEvent(account_id=2, extra={}))

    @pytest.mark.asyncio
    async def test_unstorable_event_is_skipped(self, caplog):
        channel = EventChannel()
        sender = channel.sender()
        for n in range(3):
            await sender.send(AccountEvent(account_id=n, extra={}))
        sender.close()

        async def write(event):
            if event.account_id == 1:
                raise UnstorableEvent("Audit event cannot be stored")

        sink = Mock()
        sink.write = AsyncMock(side_effect=write)

        with caplog.at_level(logging.WARNING, logger="audit_bridge.sink"):
            assert await consume_events(channel.receiver, sink) == 2

        assert sink.write.await_count == 3
        skipped = [r for r in caplog.records if r.getMessage() == "Skipping event the sink cannot store"]
        assert len(skipped) == 1
        assert skipped[0].partition_key == "1"
        assert not channel.is_closed
