"""
Message Channels

Design Decision: Channel Abstraction
====================================

The sender and receiver never see the transport. They see a thin
capability modelled on a WebRTC data channel:

- send(text | bytes)            queue one message, never blocks
- buffered_amount               bytes queued but not yet handed to the peer
- on_buffered_amount_low(cb)    fires once each time buffered_amount drops
                                to buffered_amount_low_threshold or below
- on_open / on_message / on_close

Implementations:
1. MemoryChannel - in-process pair, delivery can be paused (tests, local use)
2. StreamChannel - framed messages over an asyncio TCP stream

StreamChannel Frame Format:
```
+----------------+----------+------------------+
| Length (4B)    | Kind (1B)| Payload          |
+----------------+----------+------------------+
Kind: 0x01 = UTF-8 text, 0x02 = binary
```
"""

import asyncio
import logging
import struct
from collections import deque
from enum import Enum
from typing import Callable, Deque, Optional, Tuple

from .protocol import Message, message_size

logger = logging.getLogger(__name__)

MAX_FRAME_SIZE = 64 * 1024 * 1024  # 64MB

KIND_TEXT = 0x01
KIND_BINARY = 0x02

MessageCallback = Callable[[Message], None]
EventCallback = Callable[[], None]


class ChannelState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class Channel:
    """
    Ordered bidirectional message transport.

    Callbacks run on the event loop and must not block.
    """

    def __init__(self, label: str = "file"):
        self.label = label
        self.state = ChannelState.CONNECTING
        self.buffered_amount_low_threshold = 0

        self._on_open: Optional[EventCallback] = None
        self._on_message: Optional[MessageCallback] = None
        self._on_close: Optional[EventCallback] = None
        self._on_buffered_amount_low: Optional[EventCallback] = None

    @property
    def is_open(self) -> bool:
        return self.state is ChannelState.OPEN

    @property
    def buffered_amount(self) -> int:
        raise NotImplementedError

    def send(self, data: Message):
        raise NotImplementedError

    async def close(self):
        raise NotImplementedError

    # === Event registration ===

    def on_open(self, callback: EventCallback):
        self._on_open = callback

    def on_message(self, callback: MessageCallback):
        self._on_message = callback

    def on_close(self, callback: EventCallback):
        self._on_close = callback

    def on_buffered_amount_low(self, callback: EventCallback):
        self._on_buffered_amount_low = callback

    # === Event emission ===

    def _emit_open(self):
        self.state = ChannelState.OPEN
        logger.debug(f"Channel {self.label} open")
        if self._on_open:
            self._on_open()

    def _emit_message(self, data: Message):
        if self._on_message:
            self._on_message(data)

    def _emit_close(self):
        if self.state is ChannelState.CLOSED:
            return
        self.state = ChannelState.CLOSED
        logger.debug(f"Channel {self.label} closed")
        if self._on_close:
            self._on_close()

    def _emit_buffered_amount_low(self):
        if self._on_buffered_amount_low:
            self._on_buffered_amount_low()

    def _check_sendable(self):
        if not self.is_open:
            raise ConnectionError(f"Channel {self.label} is {self.state.value}")


class MemoryChannel(Channel):
    """
    One end of an in-process channel pair.

    Messages sit in this end's queue (counted in buffered_amount) until a
    pump task hands them to the peer. pause_delivery() stalls the pump,
    which is how tests make the buffer fill up.
    """

    def __init__(self, label: str = "file", latency: float = 0.0):
        super().__init__(label)
        self.latency = latency
        self.peer: Optional['MemoryChannel'] = None
        self.sent_messages = 0

        self._queue: Deque[Message] = deque()
        self._buffered = 0
        self._has_data = asyncio.Event()
        self._deliverable = asyncio.Event()
        self._deliverable.set()
        self._pump_task: Optional[asyncio.Task] = None

    @classmethod
    def pair(cls, latency: float = 0.0) -> Tuple['MemoryChannel', 'MemoryChannel']:
        """Create two connected ends. Call open() on each to start them."""
        a = cls("a", latency)
        b = cls("b", latency)
        a.peer, b.peer = b, a
        return a, b

    @property
    def buffered_amount(self) -> int:
        return self._buffered

    def open(self):
        if self.state is not ChannelState.CONNECTING:
            return
        self._pump_task = asyncio.create_task(self._pump())
        self._emit_open()

    def send(self, data: Message):
        self._check_sendable()
        self._queue.append(data)
        self._buffered += message_size(data)
        self.sent_messages += 1
        self._has_data.set()

    def pause_delivery(self):
        self._deliverable.clear()

    def resume_delivery(self):
        self._deliverable.set()

    async def _pump(self):
        try:
            while True:
                await self._has_data.wait()
                await self._deliverable.wait()
                if self.latency:
                    await asyncio.sleep(self.latency)
                else:
                    await asyncio.sleep(0)

                if not self._queue:
                    self._has_data.clear()
                    continue
                if not self._deliverable.is_set():
                    continue

                data = self._queue.popleft()
                before = self._buffered
                self._buffered -= message_size(data)

                peer = self.peer
                if peer is not None and peer.state is ChannelState.OPEN:
                    peer._emit_message(data)

                threshold = self.buffered_amount_low_threshold
                if before > threshold >= self._buffered:
                    self._emit_buffered_amount_low()
        except asyncio.CancelledError:
            pass

    async def close(self):
        """Close both ends; queued messages are dropped."""
        if self.state is ChannelState.CLOSED:
            return
        self.state = ChannelState.CLOSING
        if self._pump_task is not None:
            self._pump_task.cancel()
            if self._pump_task is not asyncio.current_task():
                await asyncio.gather(self._pump_task, return_exceptions=True)
        self._queue.clear()
        self._buffered = 0
        self._emit_close()

        peer = self.peer
        if peer is not None and peer.state is not ChannelState.CLOSED:
            await peer.close()


class StreamChannel(Channel):
    """
    Channel over an asyncio stream pair.

    buffered_amount is the transport's unsent write buffer. The write
    buffer limits are set so the transport pauses as soon as it holds
    more than the low threshold; StreamWriter.drain() then returns
    exactly when it has drained back to the threshold, which is when
    the buffered-amount-low event fires.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                 label: str = "file"):
        super().__init__(label)
        self.reader = reader
        self.writer = writer
        self._read_task: Optional[asyncio.Task] = None
        self._drain_task: Optional[asyncio.Task] = None

    @property
    def remote_address(self):
        return self.writer.get_extra_info('peername')

    @property
    def buffered_amount(self) -> int:
        transport = self.writer.transport
        if transport is None or transport.is_closing():
            return 0
        return transport.get_write_buffer_size()

    def open(self):
        """Start reading frames and mark the channel open."""
        if self.state is not ChannelState.CONNECTING:
            return
        self._apply_buffer_limits()
        self._read_task = asyncio.create_task(self._read_loop())
        self._emit_open()

    def _apply_buffer_limits(self):
        threshold = self.buffered_amount_low_threshold
        self.writer.transport.set_write_buffer_limits(high=threshold, low=threshold)

    def send(self, data: Message):
        self._check_sendable()
        self.writer.write(encode_frame(data))
        if self.buffered_amount > self.buffered_amount_low_threshold:
            self._watch_drain()

    def _watch_drain(self):
        if self._drain_task is not None and not self._drain_task.done():
            return
        self._apply_buffer_limits()
        self._drain_task = asyncio.create_task(self._wait_drained())

    async def _wait_drained(self):
        try:
            await self.writer.drain()
        except (ConnectionError, asyncio.CancelledError):
            return
        if self.is_open:
            self._emit_buffered_amount_low()

    async def _read_loop(self):
        try:
            while True:
                message = await read_frame(self.reader)
                if message is None:
                    break
                self._emit_message(message)
        except (ConnectionError, ValueError) as e:
            logger.warning(f"Channel {self.label} read error: {e}")
        except asyncio.CancelledError:
            pass
        finally:
            self._emit_close()

    async def close(self):
        if self.state is ChannelState.CLOSED:
            return
        self.state = ChannelState.CLOSING
        for task in (self._drain_task, self._read_task):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except ConnectionError:
            pass
        self._emit_close()


def encode_frame(data: Message) -> bytes:
    """Serialize one message into a length-prefixed frame."""
    if isinstance(data, str):
        kind, payload = KIND_TEXT, data.encode('utf-8')
    else:
        kind, payload = KIND_BINARY, bytes(data)
    return struct.pack('>IB', len(payload), kind) + payload


async def read_frame(reader: asyncio.StreamReader) -> Optional[Message]:
    """
    Read one frame from a stream.

    Returns:
        The message, or None at end of stream
    """
    try:
        header = await reader.readexactly(5)
    except asyncio.IncompleteReadError:
        return None

    length, kind = struct.unpack('>IB', header)
    if length > MAX_FRAME_SIZE:
        raise ValueError(f"Frame too large: {length}")

    try:
        payload = await reader.readexactly(length) if length else b''
    except asyncio.IncompleteReadError:
        return None

    if kind == KIND_TEXT:
        # Bad UTF-8 becomes unrecognized control text, not a channel error
        return payload.decode('utf-8', errors='replace')
    if kind == KIND_BINARY:
        return payload
    raise ValueError(f"Unknown frame kind: {kind}")
