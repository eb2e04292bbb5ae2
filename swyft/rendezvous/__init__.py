"""
Rendezvous Module - PIN Rooms and Signaling

Pairs two peers by a 6-digit PIN and relays their offer/answer over a
WebSocket signaling server.
"""

from .store import Room, RoomState, RoomStore, MemoryRoomStore
from .service import RendezvousService, RendezvousResult, generate_pin
from .server import create_app, run_signaling_server
from .client import SignalingClient

__all__ = [
    'Room',
    'RoomState',
    'RoomStore',
    'MemoryRoomStore',
    'RendezvousService',
    'RendezvousResult',
    'generate_pin',
    'create_app',
    'run_signaling_server',
    'SignalingClient',
]
