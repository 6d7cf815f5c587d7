# roomsync/errors.py
from __future__ import annotations


class SessionError(Exception):
    """Base for errors surfaced to the caller of a session operation."""

    code = "SESSION_ERROR"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class TransportUnavailable(SessionError):
    """Store unreachable or not initialized. Not retried."""

    code = "TRANSPORT_UNAVAILABLE"


class RoomNotFound(SessionError):
    code = "ROOM_NOT_FOUND"

    def __init__(self, room_code: str) -> None:
        super().__init__(f"Room {room_code} not found")
        self.room_code = room_code


class RoomFull(SessionError):
    code = "ROOM_FULL"

    def __init__(self, room_code: str, capacity: int) -> None:
        super().__init__(f"Room {room_code} is full (max {capacity} players)")
        self.room_code = room_code
        self.capacity = capacity


class GameInProgress(SessionError):
    code = "GAME_IN_PROGRESS"

    def __init__(self, room_code: str) -> None:
        super().__init__(f"Room {room_code} already has a game in progress")
        self.room_code = room_code
