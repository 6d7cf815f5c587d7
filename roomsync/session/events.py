# roomsync/session/events.py
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from roomsync.store.models import RosterPlayer

logger = logging.getLogger(__name__)


# =========================
# Local session events
# =========================

class EventBase(BaseModel):
    type: str


class RoomCreated(EventBase):
    type: Literal["roomCreated"] = "roomCreated"
    room_code: str


class RoomJoined(EventBase):
    type: Literal["roomJoined"] = "roomJoined"
    room_code: str


class RoomLeft(EventBase):
    type: Literal["roomLeft"] = "roomLeft"
    room_code: str


class PlayersChanged(EventBase):
    """Full roster snapshot, ordered by seat."""
    type: Literal["playersChanged"] = "playersChanged"
    players: List[RosterPlayer]


class GameStart(EventBase):
    type: Literal["gameStart"] = "gameStart"


class GameEnd(EventBase):
    type: Literal["gameEnd"] = "gameEnd"
    results: Dict[str, Any] = Field(default_factory=dict)


class ChatMessage(EventBase):
    type: Literal["chatMessage"] = "chatMessage"
    key: str
    player_id: str
    player_name: str
    message: str
    timestamp: Optional[int] = None


class ReadyChanged(EventBase):
    type: Literal["readyChanged"] = "readyChanged"
    ready: bool


SessionEvent = Union[
    RoomCreated,
    RoomJoined,
    RoomLeft,
    PlayersChanged,
    GameStart,
    GameEnd,
    ChatMessage,
    ReadyChanged,
]

EVENT_TYPES = (
    "roomCreated",
    "roomJoined",
    "roomLeft",
    "playersChanged",
    "gameStart",
    "gameEnd",
    "chatMessage",
    "readyChanged",
)

EventCallback = Callable[[Any], None]


class EventBus:
    """
    In-process pub/sub owned by one session.
    Dispatch is synchronous, in subscription order; a failing callback is
    logged and the rest still run.
    """

    def __init__(self) -> None:
        self._callbacks: Dict[str, List[EventCallback]] = {}

    def on(self, event: str, callback: EventCallback) -> None:
        if event not in EVENT_TYPES:
            raise ValueError(f"Unknown event: {event}")
        self._callbacks.setdefault(event, []).append(callback)

    def off(self, event: str, callback: EventCallback) -> None:
        callbacks = self._callbacks.get(event)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)

    def emit(self, event: EventBase) -> None:
        for cb in list(self._callbacks.get(event.type, [])):
            try:
                cb(event)
            except Exception:
                logger.exception("%s subscriber %r failed", event.type, cb)

    def clear(self) -> None:
        self._callbacks.clear()
