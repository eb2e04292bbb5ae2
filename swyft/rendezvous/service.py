r"""
Rendezvous Service

Matches an offering peer with a joining peer through a one-time PIN and
relays each side's negotiation blob exactly once.

Room lifecycle:
```
create-room   join-room    send-answer   answer pushed
  CREATED  ->  JOINED  ->  ANSWERED  ->  CONSUMED
     \___________\____________\_____________\____ deleted on TTL or disconnect
```

Every operation returns a RendezvousResult. Failures are values, not
exceptions, so nothing is raised across the signaling connection.
"""

import asyncio
import logging
import secrets
import weakref
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..config import ROOM_TTL, SWEEP_INTERVAL
from ..errors import (
    RendezvousError, RoomNotFound, RoomFull, AnswerAlreadySubmitted, PinExhausted
)
from .store import Room, RoomStore, MemoryRoomStore

logger = logging.getLogger(__name__)

ANSWER_READY = "answer-ready"
PIN_ATTEMPTS = 100

# (connection_id, event, payload) -> delivered?
Notifier = Callable[[str, str, Dict[str, Any]], Awaitable[bool]]


def generate_pin() -> str:
    """Uniformly random 6-digit PIN without a leading zero."""
    return str(100000 + secrets.randbelow(900000))


def is_valid_pin(pin: Any) -> bool:
    return isinstance(pin, str) and len(pin) == 6 and pin.isascii() and pin.isdigit()


@dataclass
class RendezvousResult:
    """Tagged outcome of a rendezvous operation."""
    success: bool
    pin: Optional[str] = None
    offer: Any = None
    message: Optional[str] = None
    error: Optional[RendezvousError] = None

    @classmethod
    def ok(cls, pin: str = None, offer: Any = None) -> 'RendezvousResult':
        return cls(success=True, pin=pin, offer=offer)

    @classmethod
    def failure(cls, error: RendezvousError) -> 'RendezvousResult':
        return cls(success=False, message=error.message, error=error)

    def to_dict(self) -> dict:
        """Wire representation sent back on the signaling connection."""
        if not self.success:
            return {'success': False, 'message': self.message}
        data = {'success': True}
        if self.pin is not None:
            data['pin'] = self.pin
        if self.offer is not None:
            data['offer'] = self.offer
        return data


class RendezvousService:
    """
    PIN-based room matching over an injected RoomStore.

    Mutations on a given PIN are serialized with a per-PIN lock, which
    makes join's check-and-set atomic even when the store awaits.
    """

    def __init__(self, store: RoomStore = None, notifier: Notifier = None,
                 ttl: float = ROOM_TTL, sweep_interval: float = SWEEP_INTERVAL):
        self.store = store or MemoryRoomStore()
        self.notifier = notifier
        self.ttl = ttl
        self.sweep_interval = sweep_interval

        # Locks disappear once no coroutine holds or waits on them
        self._pin_locks: 'weakref.WeakValueDictionary[str, asyncio.Lock]' = (
            weakref.WeakValueDictionary()
        )
        self._create_lock = asyncio.Lock()
        self._sweep_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    def _lock_for(self, pin: str) -> asyncio.Lock:
        lock = self._pin_locks.get(pin)
        if lock is None:
            lock = self._pin_locks[pin] = asyncio.Lock()
        return lock

    def _is_expired(self, room: Room) -> bool:
        return room.age(self.store.clock()) > self.ttl

    async def _get_live_room(self, pin: str) -> Optional[Room]:
        """Fetch a room, treating an expired one as already gone."""
        room = await self.store.get(pin)
        if room is not None and self._is_expired(room):
            await self._delete(pin)
            logger.info(f"Room {pin} expired")
            return None
        return room

    async def _delete(self, pin: str) -> bool:
        return await self.store.delete(pin)

    # === Lifecycle ===

    async def start(self):
        """Start the periodic expiry sweep."""
        if self.is_running:
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(f"Rendezvous service started (ttl={self.ttl:.0f}s, "
                    f"sweep every {self.sweep_interval:.0f}s)")

    async def stop(self):
        """Stop sweeping and drop every room."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        await self.store.clear()
        self._pin_locks.clear()
        logger.info("Rendezvous service stopped")

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep_expired()
            except Exception as e:
                logger.error(f"Room sweep failed: {e}", exc_info=True)

    async def sweep_expired(self) -> int:
        """Delete every room older than the TTL, whatever its state."""
        removed = 0
        for room in await self.store.rooms():
            if self._is_expired(room):
                async with self._lock_for(room.pin):
                    if await self._delete(room.pin):
                        removed += 1
                        logger.info(f"Cleaned up room: {room.pin}")
        return removed

    # === Operations ===

    async def create_room(self, offer: Any, offerer_id: str) -> RendezvousResult:
        """Store an offer under a fresh PIN."""
        async with self._create_lock:
            for _ in range(PIN_ATTEMPTS):
                pin = generate_pin()
                if await self._get_live_room(pin) is None:
                    break
            else:
                logger.error("Could not allocate an unused PIN")
                return RendezvousResult.failure(PinExhausted())

            room = Room(
                pin=pin,
                offer=offer,
                offerer_id=offerer_id,
                created_at=self.store.clock(),
            )
            await self.store.put(room)

        logger.info(f"Room created: {pin}")
        return RendezvousResult.ok(pin=pin)

    async def join_room(self, pin: str, caller_id: str) -> RendezvousResult:
        """Claim the joiner slot of a room and hand back its offer."""
        if not is_valid_pin(pin):
            return RendezvousResult.failure(RoomNotFound("Invalid PIN"))

        async with self._lock_for(pin):
            room = await self._get_live_room(pin)
            if room is None:
                logger.warning(f"Join failed: room {pin} not found")
                return RendezvousResult.failure(RoomNotFound("Invalid PIN"))

            if room.joiner_id is not None:
                logger.warning(f"Join failed: room {pin} is full")
                return RendezvousResult.failure(RoomFull())

            room.joiner_id = caller_id
            await self.store.put(room)

        logger.info(f"Client joined room: {pin}")
        return RendezvousResult.ok(offer=room.offer)

    async def submit_answer(self, pin: str, answer: Any) -> RendezvousResult:
        """Attach the joiner's answer and push it to the offerer once."""
        if not is_valid_pin(pin):
            return RendezvousResult.failure(RoomNotFound())

        async with self._lock_for(pin):
            room = await self._get_live_room(pin)
            if room is None:
                return RendezvousResult.failure(RoomNotFound())

            if room.answer is not None:
                return RendezvousResult.failure(AnswerAlreadySubmitted())

            room.answer = answer
            await self.store.put(room)

            room.answer_delivered = await self._deliver(
                room.offerer_id, ANSWER_READY, {'pin': pin, 'answer': answer}
            )
            await self.store.put(room)

        logger.info(f"Answer sent for room: {pin}")
        return RendezvousResult.ok()

    async def disconnect(self, connection_id: str) -> List[str]:
        """Delete every room the departing connection takes part in."""
        removed = []
        for room in await self.store.rooms():
            if room.involves(connection_id):
                async with self._lock_for(room.pin):
                    if await self._delete(room.pin):
                        removed.append(room.pin)
                        logger.info(f"Cleaned up room: {room.pin}")
        return removed

    async def _deliver(self, connection_id: str, event: str, payload: dict) -> bool:
        if self.notifier is None:
            logger.warning(f"No notifier configured, dropping {event}")
            return False
        try:
            return await self.notifier(connection_id, event, payload)
        except Exception as e:
            logger.error(f"Failed to push {event} to {connection_id}: {e}")
            return False

    async def get_stats(self) -> dict:
        rooms = await self.store.rooms()
        by_state: Dict[str, int] = {}
        for room in rooms:
            by_state[room.state.value] = by_state.get(room.state.value, 0) + 1
        return {
            'rooms': len(rooms),
            'by_state': by_state,
            'ttl': self.ttl,
        }
