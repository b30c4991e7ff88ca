"""
Fan-in event channel.

Many shard readers publish into one unbounded queue drained by a single
consumer task. Each reader owns its own EventSender; the receiver sees
end-of-stream once every sender has closed and the buffered events have been
drained.

Example:
    channel = EventChannel()
    sender = channel.sender()
    await sender.send(event)
    sender.close()
    async for event in channel.receiver:
        ...
"""

import asyncio
import logging

from core.errors.exceptions import ChannelClosedError

from audit_bridge.events import AuditEvent

logger = logging.getLogger(__name__)

# Queued after the last sender closes
_END_OF_STREAM = object()


class EventChannel:
    """Multi-producer, single-consumer channel of audit events."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._open_senders = 0
        self._receiver_closed = False
        self.receiver = EventReceiver(self)

    def sender(self) -> "EventSender":
        """Create a new producer end. Fails once the receiver is closed."""
        if self._receiver_closed:
            raise ChannelClosedError("Cannot open a sender on a closed channel")
        self._open_senders += 1
        return EventSender(self)

    @property
    def open_senders(self) -> int:
        return self._open_senders

    @property
    def is_closed(self) -> bool:
        return self._receiver_closed

    def _put(self, event: AuditEvent) -> None:
        if self._receiver_closed:
            raise ChannelClosedError()
        self._queue.put_nowait(event)

    def _release_sender(self) -> None:
        self._open_senders -= 1
        if self._open_senders == 0:
            self._queue.put_nowait(_END_OF_STREAM)

    def _close_receiver(self) -> None:
        if self._receiver_closed:
            return
        self._receiver_closed = True
        dropped = self._queue.qsize()
        # Drop buffered events and wake a pending receive()
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_END_OF_STREAM)
        if dropped:
            logger.warning("Event channel closed with undelivered events", extra={"batch_size": dropped})


class EventSender:
    """Producer end owned by one shard reader."""

    def __init__(self, channel: EventChannel):
        self._channel = channel
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed or self._channel.is_closed

    async def send(self, event: AuditEvent) -> None:
        """Enqueue an event. Never blocks.

        Raises:
            ChannelClosedError: This sender or the receiver has been closed
        """
        if self._closed:
            raise ChannelClosedError("Sender is closed")
        self._channel._put(event)

    def close(self) -> None:
        """Release this producer end. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._channel._release_sender()


class EventReceiver:
    """Consumer end. Async-iterable until end-of-stream."""

    def __init__(self, channel: EventChannel):
        self._channel = channel
        self._done = False

    async def receive(self) -> AuditEvent | None:
        """Wait for the next event; None once the channel has ended."""
        if self._done:
            return None
        item = await self._channel._queue.get()
        if item is _END_OF_STREAM:
            self._done = True
            return None
        return item

    def close(self) -> None:
        """Sever the channel. Later sends raise ChannelClosedError."""
        self._channel._close_receiver()

    def __aiter__(self):
        return self

    async def __anext__(self) -> AuditEvent:
        event = await self.receive()
        if event is None:
            raise StopAsyncIteration
        return event


__all__ = ["EventChannel", "EventReceiver", "EventSender"]
