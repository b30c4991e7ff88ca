"""
Audit stream bridge.

Consumes every shard of a Kinesis stream, decodes each record into a typed
audit event and fans the events into one consumer that writes them to the
audit table.
"""

__version__ = "0.1.0"

from audit_bridge.bridge import AuditStreamBridge, BridgeResult, BridgeSettings
from audit_bridge.channel import EventChannel, EventReceiver, EventSender
from audit_bridge.events import AccountEvent, AuditEvent, EventKind, ProjectEvent, classify, decode
from audit_bridge.kinesis import (
    FetchResult,
    KinesisStreamClient,
    RawRecord,
    RetryingStreamClient,
    StreamClient,
)
from audit_bridge.shard_reader import ReaderState, ShardReader, ShardReaderStats
from audit_bridge.sink import DynamoEventSink, EventSink, LoggingEventSink, consume_events

__all__ = [
    "__version__",
    "AccountEvent",
    "AuditEvent",
    "AuditStreamBridge",
    "BridgeResult",
    "BridgeSettings",
    "DynamoEventSink",
    "EventChannel",
    "EventKind",
    "EventReceiver",
    "EventSender",
    "EventSink",
    "FetchResult",
    "KinesisStreamClient",
    "LoggingEventSink",
    "ProjectEvent",
    "RawRecord",
    "ReaderState",
    "RetryingStreamClient",
    "ShardReader",
    "ShardReaderStats",
    "StreamClient",
    "classify",
    "consume_events",
    "decode",
]
