# roomsync/store/models.py
from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


Mode = Literal["coop", "versus", "spectate"]
RoomState = Literal["waiting", "playing", "finished"]


class PlayerColor(BaseModel):
    fill: str
    stroke: str
    name: str


class Position(BaseModel):
    model_config = ConfigDict(extra="allow")

    x: float = 0
    y: float = 0


class PlayerEntry(BaseModel):
    """
    One roster entry. Per-game state synced by the owner (lives, direction,
    anything the adapter sends) is kept as extra fields.
    """
    model_config = ConfigDict(extra="allow")

    name: str
    color: PlayerColor
    index: int                      # seat, fixed at join
    position: Optional[Position] = None
    score: float = 0
    is_host: bool = False
    ready: bool = False
    last_active_at: Optional[int] = None

    def custom_state(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class RosterPlayer(PlayerEntry):
    """Player entry as seen in a roster snapshot: the key travels with it."""
    id: str


class RoomDocument(BaseModel):
    game_id: str
    host_id: str
    mode: Mode
    capacity: int
    state: RoomState = "waiting"
    settings: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[int] = None
    started_at: Optional[int] = None
    finished_at: Optional[int] = None
    results: Optional[Dict[str, Any]] = None
    players: Dict[str, PlayerEntry] = Field(default_factory=dict)


class ActionRecord(BaseModel):
    """Append-only. Timestamp is assigned by the store."""
    type: str
    player_id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[int] = None


class ChatRecord(BaseModel):
    player_id: str
    player_name: str
    message: str
    timestamp: Optional[int] = None
