"""
Signaling Client

Speaks the signaling server's WebSocket protocol: requests carry an id
and are answered by an ack with the same id, while pushes such as
answer-ready arrive unprompted.
"""

import asyncio
import itertools
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import websockets

from ..errors import rendezvous_error_from_message
from .service import ANSWER_READY

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], None]


class SignalingClient:
    """
    Client side of the rendezvous exchange.

    Usage:
        client = SignalingClient("ws://localhost:3000/ws")
        await client.connect()
        pin = await client.create_room(offer)
        answer = await client.wait_for_answer(pin)
    """

    def __init__(self, url: str, request_timeout: float = 10.0):
        self.url = url
        self.request_timeout = request_timeout
        self.connection_id: Optional[str] = None

        self._ws = None
        self._reader_task: Optional[asyncio.Task] = None
        self._ids = itertools.count(1)
        self._pending: Dict[int, asyncio.Future] = {}
        self._answers: Dict[str, asyncio.Future] = {}
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._connected: Optional[asyncio.Future] = None

    @property
    def is_connected(self) -> bool:
        return self._reader_task is not None and not self._reader_task.done()

    def on(self, event: str, handler: EventHandler):
        """Register a handler for a pushed event."""
        self._handlers.setdefault(event, []).append(handler)

    async def connect(self):
        """Open the signaling connection and wait for the server's hello."""
        loop = asyncio.get_running_loop()
        self._connected = loop.create_future()
        self._ws = await asyncio.wait_for(
            websockets.connect(self.url, max_size=None),
            timeout=self.request_timeout,
        )
        self._reader_task = asyncio.create_task(self._read_loop())
        self.connection_id = await asyncio.wait_for(
            asyncio.shield(self._connected), timeout=self.request_timeout
        )
        logger.info(f"Connected to signaling server {self.url}")

    async def close(self):
        """Close the connection; rooms we take part in are deleted server-side."""
        if self._ws is not None:
            await self._ws.close()
        if self._reader_task is not None:
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        self._ws = None
        self._reader_task = None

    async def _read_loop(self):
        try:
            async for raw in self._ws:
                try:
                    frame = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Ignoring malformed frame from server")
                    continue
                self._handle_frame(frame)
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            error = ConnectionError("Signaling connection closed")
            for future in list(self._pending.values()) + list(self._answers.values()):
                if not future.done():
                    future.set_exception(error)
            if self._connected is not None and not self._connected.done():
                self._connected.set_exception(error)
            self._pending.clear()

    def _handle_frame(self, frame: dict):
        event = frame.get('event')
        data = frame.get('data')

        if event == 'ack':
            future = self._pending.pop(frame.get('id'), None)
            if future is not None and not future.done():
                future.set_result(data or {})
            return

        if event == 'connected':
            if self._connected is not None and not self._connected.done():
                self._connected.set_result((data or {}).get('id'))
        elif event == ANSWER_READY and isinstance(data, dict):
            future = self._answer_future(str(data.get('pin')))
            if not future.done():
                future.set_result(data.get('answer'))
        elif event == 'error':
            logger.warning(f"Signaling error: {(data or {}).get('message')}")

        for handler in self._handlers.get(event, []):
            try:
                handler(data)
            except Exception as e:
                logger.error(f"Error in {event} handler: {e}", exc_info=True)

    def _answer_future(self, pin: str) -> asyncio.Future:
        future = self._answers.get(pin)
        if future is None:
            future = asyncio.get_running_loop().create_future()
            self._answers[pin] = future
        return future

    async def request(self, event: str, data: Any) -> dict:
        """Send a request and return the ack payload."""
        if not self.is_connected:
            raise ConnectionError("Not connected to signaling server")

        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        await self._ws.send(json.dumps({'id': request_id, 'event': event, 'data': data}))
        try:
            return await asyncio.wait_for(future, timeout=self.request_timeout)
        finally:
            self._pending.pop(request_id, None)

    async def _checked(self, event: str, data: Any) -> dict:
        result = await self.request(event, data)
        if not result.get('success'):
            raise rendezvous_error_from_message(result.get('message', ''))
        return result

    # === Rendezvous Operations ===

    async def create_room(self, offer: Any) -> str:
        """Publish an offer; returns the room PIN."""
        result = await self._checked('create-room', offer)
        pin = result['pin']
        self._answer_future(pin)
        return pin

    async def join_room(self, pin: str) -> Any:
        """Join a room; returns the offerer's offer."""
        result = await self._checked('join-room', pin)
        return result.get('offer')

    async def send_answer(self, pin: str, answer: Any):
        """Hand our answer to the offerer via the server."""
        await self._checked('send-answer', {'pin': pin, 'answer': answer})

    async def wait_for_answer(self, pin: str, timeout: float = None) -> Any:
        """Wait for the answer-ready push for a room we created."""
        future = self._answer_future(pin)
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
        finally:
            if future.done():
                self._answers.pop(pin, None)
