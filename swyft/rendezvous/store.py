"""
Room Store

Design Decision: Storage Strategy
==================================

Options Considered:
1. Module-level dict shared by all handlers
   - Simplest, but ambient state is hard to reset between tests

2. Redis hash per room with key TTL
   - Survives restarts, scales across instances
   - Requires a server for what is short-lived data

3. Store interface with an in-memory implementation
   - Owned by the service, created empty and dropped on shutdown
   - Another backend can be plugged in later

Decision: Async store interface + MemoryRoomStore
- Rooms live for at most 10 minutes, persistence buys nothing
- Async methods so a networked backend fits the same interface
- The clock is injectable so expiry is testable without sleeping
"""

import time
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class RoomState(Enum):
    """Derived lifecycle state of a room."""
    CREATED = "created"
    JOINED = "joined"
    ANSWERED = "answered"
    CONSUMED = "consumed"


@dataclass
class Room:
    """A rendezvous room keyed by its PIN."""
    pin: str
    offer: Any
    offerer_id: str
    created_at: float
    answer: Any = None
    joiner_id: Optional[str] = None
    answer_delivered: bool = False

    @property
    def state(self) -> RoomState:
        if self.answer_delivered:
            return RoomState.CONSUMED
        if self.answer is not None:
            return RoomState.ANSWERED
        if self.joiner_id is not None:
            return RoomState.JOINED
        return RoomState.CREATED

    def age(self, now: float) -> float:
        return now - self.created_at

    def involves(self, connection_id: str) -> bool:
        """Whether the connection is this room's offerer or joiner."""
        return connection_id in (self.offerer_id, self.joiner_id)


class RoomStore:
    """
    Interface for PIN -> Room storage.

    Implementations only store; matching rules and locking belong to
    the rendezvous service.
    """

    def __init__(self, clock: Clock = time.monotonic):
        self.clock = clock

    async def get(self, pin: str) -> Optional[Room]:
        raise NotImplementedError

    async def put(self, room: Room) -> None:
        raise NotImplementedError

    async def delete(self, pin: str) -> bool:
        raise NotImplementedError

    async def contains(self, pin: str) -> bool:
        return await self.get(pin) is not None

    async def rooms(self) -> List[Room]:
        raise NotImplementedError

    async def clear(self) -> None:
        raise NotImplementedError

    def __len__(self) -> int:
        raise NotImplementedError


class MemoryRoomStore(RoomStore):
    """In-process room store backed by a dict."""

    def __init__(self, clock: Clock = time.monotonic):
        super().__init__(clock)
        self._rooms: Dict[str, Room] = {}

    async def get(self, pin: str) -> Optional[Room]:
        return self._rooms.get(pin)

    async def put(self, room: Room) -> None:
        self._rooms[room.pin] = room

    async def delete(self, pin: str) -> bool:
        return self._rooms.pop(pin, None) is not None

    async def rooms(self) -> List[Room]:
        return list(self._rooms.values())

    async def clear(self) -> None:
        count = len(self._rooms)
        self._rooms.clear()
        if count:
            logger.debug(f"Dropped {count} rooms")

    def __len__(self) -> int:
        return len(self._rooms)
