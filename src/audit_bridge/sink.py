"""
Event sinks and the downstream consumer task.

The consumer drains the event channel and hands each event to a sink. An
event the sink cannot represent is skipped; any other sink failure closes the
channel so the shard readers stop publishing, then propagates to the
orchestrator.
"""

import asyncio
import json
import logging
import time
from decimal import Decimal
from typing import Any, Protocol

from core.errors.aws_classifier import AwsErrorClassifier
from core.errors.exceptions import UnstorableEvent
from core.logging import log_exception, log_with_context
from core.resilience.retry import RetryConfig, call_with_retry

from audit_bridge.channel import EventReceiver
from audit_bridge.events import AuditEvent
from audit_bridge.metrics import record_event_written

logger = logging.getLogger(__name__)

PARTITION_KEY_ATTRIBUTE = "PartitionKey"
EVENT_TIMESTAMP_KEY = "EventTimestamp"
# The wire payload is nested so its keys never collide with the table key
EVENT_ATTRIBUTE = "Event"

# Audit table key: one partition per project or account, ordered by write time
AUDIT_TABLE_KEY_SCHEMA = [
    {"AttributeName": PARTITION_KEY_ATTRIBUTE, "KeyType": "HASH"},
    {"AttributeName": EVENT_TIMESTAMP_KEY, "KeyType": "RANGE"},
]
AUDIT_TABLE_ATTRIBUTES = [
    {"AttributeName": PARTITION_KEY_ATTRIBUTE, "AttributeType": "S"},
    {"AttributeName": EVENT_TIMESTAMP_KEY, "AttributeType": "N"},
]


class EventSink(Protocol):
    """Destination for decoded audit events."""

    async def write(self, event: AuditEvent) -> None: ...


def _now_millis() -> int:
    return int(time.time() * 1000)


def event_to_item(event: AuditEvent, timestamp_ms: int | None = None) -> dict[str, Any]:
    """
    Build the audit table item for an event.

    PartitionKey (the project or account id) and EventTimestamp (epoch millis)
    key the table; the event's wire payload is stored verbatim as the Event
    map. DynamoDB rejects Python floats, so JSON numbers with a fraction become
    Decimal; nested objects and arrays map onto DynamoDB maps and lists.
    """
    return {
        PARTITION_KEY_ATTRIBUTE: event.partition_key,
        EVENT_TIMESTAMP_KEY: _now_millis() if timestamp_ms is None else timestamp_ms,
        EVENT_ATTRIBUTE: json.loads(json.dumps(event.to_payload()), parse_float=Decimal),
    }


class DynamoEventSink:
    """Writes one item per event to the audit table.

    Args:
        table: boto3 DynamoDB Table resource
        retry_config: Backoff for transient write failures (throttling, 5xx)
    """

    name = "dynamodb"

    def __init__(self, table: Any, retry_config: RetryConfig | None = None):
        self.table = table
        self.retry_config = retry_config or RetryConfig()

    async def write(self, event: AuditEvent) -> None:
        item = event_to_item(event)
        try:
            await call_with_retry(
                self._put_item,
                item,
                config=self.retry_config,
                operation="put_item",
            )
        except Exception:
            record_event_written(self.name, success=False)
            raise
        record_event_written(self.name)

    async def _put_item(self, item: dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self.table.put_item, Item=item)
        except Exception as e:
            raise AwsErrorClassifier.to_sink_error(
                e, {"table": getattr(self.table, "name", None)}
            ) from e


def create_audit_table(dynamodb: Any, table_name: str) -> Any:
    """Create the audit table (LocalStack and tests) and wait until it exists."""
    table = dynamodb.create_table(
        TableName=table_name,
        KeySchema=AUDIT_TABLE_KEY_SCHEMA,
        AttributeDefinitions=AUDIT_TABLE_ATTRIBUTES,
        BillingMode="PAY_PER_REQUEST",
    )
    table.wait_until_exists()
    logger.info("Created audit table", extra={"table": table_name})
    return table


class LoggingEventSink:
    """Logs each event instead of storing it (dry runs)."""

    name = "logging"

    def __init__(self, level: int = logging.INFO):
        self.level = level
        self.events_logged = 0

    async def write(self, event: AuditEvent) -> None:
        self.events_logged += 1
        log_with_context(
            logger,
            self.level,
            "Audit event",
            event_kind=event.kind.value,
            partition_key=event.partition_key,
            payload=json.dumps(event.to_payload(), ensure_ascii=False),
        )
        record_event_written(self.name)


async def consume_events(receiver: EventReceiver, sink: EventSink) -> int:
    """
    Drain the channel into the sink until every sender has closed.

    An event the sink can never store (UnstorableEvent) is logged and
    skipped, like a record that fails to decode. Any other sink failure ends
    the consumer.

    Returns:
        Number of events written

    Raises:
        Whatever the sink raised; the receiver is closed first so that
        readers fail fast with ChannelClosedError.
    """
    written = 0
    rejected = 0
    try:
        async for event in receiver:
            try:
                await sink.write(event)
            except UnstorableEvent as e:
                rejected += 1
                log_exception(
                    logger,
                    e,
                    "Skipping event the sink cannot store",
                    level=logging.WARNING,
                    include_traceback=False,
                    event_kind=event.kind.value,
                    partition_key=event.partition_key,
                )
                continue
            written += 1
    except asyncio.CancelledError:
        receiver.close()
        raise
    except Exception as e:
        receiver.close()
        log_exception(logger, e, "Event consumer failed", events_written=written)
        raise

    log_with_context(
        logger,
        logging.INFO,
        "Event channel drained",
        events_written=written,
        events_rejected=rejected,
    )
    return written


__all__ = [
    "AUDIT_TABLE_ATTRIBUTES",
    "AUDIT_TABLE_KEY_SCHEMA",
    "DynamoEventSink",
    "EVENT_ATTRIBUTE",
    "EVENT_TIMESTAMP_KEY",
    "EventSink",
    "LoggingEventSink",
    "PARTITION_KEY_ATTRIBUTE",
    "consume_events",
    "create_audit_table",
    "event_to_item",
]
