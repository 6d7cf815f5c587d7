"""Multiplayer session-synchronization core shared by the arcade games."""

from roomsync.errors import (
    GameInProgress,
    RoomFull,
    RoomNotFound,
    SessionError,
    TransportUnavailable,
)
from roomsync.session.actions import GameAction
from roomsync.session.adapter import GameAdapter, GameConfig
from roomsync.session.manager import RoomOptions, SessionManager
from roomsync.store.memory import MemoryBackend, MemoryStore
from roomsync.store.models import Position

__all__ = [
    "GameAction",
    "GameAdapter",
    "GameConfig",
    "GameInProgress",
    "MemoryBackend",
    "MemoryStore",
    "Position",
    "RoomFull",
    "RoomNotFound",
    "RoomOptions",
    "SessionError",
    "SessionManager",
    "TransportUnavailable",
]
