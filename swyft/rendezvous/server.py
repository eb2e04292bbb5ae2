"""
Signaling Server

Design Decision: Signaling Transport
====================================

Options Considered:
1. REST endpoints + polling for the answer
   - Simple, but the offerer has to poll until the joiner answers

2. Server-Sent Events for pushes, REST for requests
   - Two connections per client

3. One WebSocket per client
   - Requests and the answer-ready push share a connection
   - The connection's lifetime doubles as presence (disconnect cleanup)

Decision: FastAPI WebSocket endpoint
- Disconnect of either party deletes their rooms immediately
- Same stack as the rest of the API (FastAPI + uvicorn)

Frame Format (JSON text):
```
request:  {"id": 1, "event": "create-room", "data": <offer>}
reply:    {"id": 1, "event": "ack", "data": {"success": true, "pin": "123456"}}
push:     {"event": "answer-ready", "data": {"pin": "123456", "answer": <answer>}}
```
"""

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, Optional, Tuple
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError

from .. import __version__
from ..config import Config
from ..errors import RendezvousError
from .service import RendezvousService, RendezvousResult

logger = logging.getLogger(__name__)


# === Pydantic Models ===

class SignalMessage(BaseModel):
    """A request frame from a signaling client."""
    id: Optional[int] = None
    event: str
    data: Any = None


class SendAnswerRequest(BaseModel):
    """Payload of a send-answer request."""
    pin: str
    answer: Any


class ServerStatus(BaseModel):
    """Server status response."""
    running: bool
    rooms: int
    connections: int


MALFORMED_REPLY = {'success': False, 'message': 'Malformed message'}


def parse_frame(text: Optional[str]) -> Tuple[Optional[int], Optional[SignalMessage]]:
    """
    Split a client frame into its request id and validated message.

    Either part is None when it cannot be read; binary frames have no text.
    """
    if text is None:
        return None, None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None, None
    if not isinstance(data, dict):
        return None, None

    request_id = data.get('id')
    if not isinstance(request_id, int) or isinstance(request_id, bool):
        request_id = None

    try:
        return request_id, SignalMessage.model_validate(data)
    except ValidationError:
        return request_id, None


class ConnectionManager:
    """
    Tracks live signaling connections by connection id.

    Sends are serialized per connection, since a push for one client
    can race with the reply to that client's own request.
    """

    def __init__(self):
        self._connections: Dict[str, WebSocket] = {}
        self._send_locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def register(self, connection_id: str, websocket: WebSocket):
        self._connections[connection_id] = websocket
        self._send_locks[connection_id] = asyncio.Lock()

    def unregister(self, connection_id: str):
        self._connections.pop(connection_id, None)
        self._send_locks.pop(connection_id, None)

    async def send(self, connection_id: str, message: dict) -> bool:
        websocket = self._connections.get(connection_id)
        if websocket is None:
            return False
        async with self._send_locks[connection_id]:
            await websocket.send_text(json.dumps(message))
        return True

    async def push(self, connection_id: str, event: str, payload: dict) -> bool:
        """Notifier used by the rendezvous service."""
        delivered = await self.send(connection_id, {'event': event, 'data': payload})
        if not delivered:
            logger.warning(f"Cannot push {event}: {connection_id} is gone")
        return delivered


# === API Creation ===

def create_app(service: RendezvousService = None, config: Config = None) -> FastAPI:
    """
    Create the signaling application.

    Args:
        service: Rendezvous service to expose (created from config if omitted)
        config: Server configuration

    Returns:
        FastAPI application
    """
    config = config or Config()
    manager = ConnectionManager()

    if service is None:
        service = RendezvousService(
            ttl=config.room_ttl,
            sweep_interval=config.sweep_interval,
        )
    if service.notifier is None:
        service.notifier = manager.push

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown."""
        logger.info("Signaling server starting...")
        await service.start()
        yield
        await service.stop()
        logger.info("Signaling server stopping...")

    app = FastAPI(
        title="Swyft Signaling",
        description="PIN rendezvous for direct peer-to-peer file transfer",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.state.service = service
    app.state.connections = manager

    async def dispatch(connection_id: str, message: SignalMessage) -> RendezvousResult:
        if message.event == 'create-room':
            if message.data is None:
                return RendezvousResult.failure(RendezvousError("Missing offer"))
            return await service.create_room(message.data, connection_id)

        if message.event == 'join-room':
            pin = message.data
            if isinstance(pin, dict):
                pin = pin.get('pin')
            return await service.join_room(str(pin).strip(), connection_id)

        if message.event == 'send-answer':
            try:
                request = SendAnswerRequest.model_validate(message.data)
            except ValidationError:
                return RendezvousResult.failure(RendezvousError("Malformed send-answer"))
            return await service.submit_answer(request.pin.strip(), request.answer)

        return RendezvousResult.failure(
            RendezvousError(f"Unknown event: {message.event}")
        )

    # === Endpoints ===

    @app.get("/", tags=["General"])
    async def root():
        """API root - basic info."""
        return {
            "name": "Swyft Signaling Server",
            "version": __version__,
            "status": "running" if service.is_running else "not running",
        }

    @app.get("/status", response_model=ServerStatus, tags=["General"])
    async def get_status():
        """Live room and connection counts."""
        stats = await service.get_stats()
        return ServerStatus(
            running=service.is_running,
            rooms=stats['rooms'],
            connections=len(manager),
        )

    @app.websocket("/ws")
    async def signaling(websocket: WebSocket):
        """One signaling connection per client."""
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        manager.register(connection_id, websocket)
        logger.info(f"Client connected: {connection_id}")

        try:
            await manager.send(connection_id, {
                'event': 'connected',
                'data': {'id': connection_id},
            })

            while True:
                frame = await websocket.receive()
                if frame['type'] == 'websocket.disconnect':
                    raise WebSocketDisconnect(frame.get('code', 1000))

                request_id, message = parse_frame(frame.get('text'))
                if message is None:
                    logger.warning(f"Malformed frame from {connection_id}")
                    # A readable id gets a failure ack so the request resolves
                    reply = {'event': 'error', 'data': MALFORMED_REPLY}
                    if request_id is not None:
                        reply = {'id': request_id, 'event': 'ack', 'data': MALFORMED_REPLY}
                    await manager.send(connection_id, reply)
                    continue

                result = await dispatch(connection_id, message)
                await manager.send(connection_id, {
                    'id': message.id,
                    'event': 'ack',
                    'data': result.to_dict(),
                })

        except WebSocketDisconnect:
            pass
        finally:
            manager.unregister(connection_id)
            removed = await service.disconnect(connection_id)
            logger.info(f"Client disconnected: {connection_id} "
                        f"({len(removed)} rooms removed)")

    return app


async def run_signaling_server(config: Config = None):
    """
    Run the signaling server.

    Args:
        config: Server configuration (host, port, room TTL)
    """
    import uvicorn

    config = config or Config()
    app = create_app(config=config)

    server_config = uvicorn.Config(
        app,
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )
    server = uvicorn.Server(server_config)
    await server.serve()
