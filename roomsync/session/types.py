# roomsync/session/types.py
from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel

from roomsync.store.models import Mode, PlayerColor

ConnectionState = Literal[
    "disconnected",
    "connecting",
    "connected",
    "lobby",
    "playing",
    "spectating",
    "error",
]

IN_GAME_STATES = ("playing", "spectating")

# Upper bound on seats per room.
MAX_ROOM_CAPACITY = 10


class ModeInfo(BaseModel):
    id: Mode
    name: str
    description: str
    default_max_players: int


MODES: Dict[str, ModeInfo] = {
    "coop": ModeInfo(id="coop", name="Co-op", description="Work together as a team", default_max_players=4),
    "versus": ModeInfo(id="versus", name="Versus", description="Compete against each other", default_max_players=2),
    "spectate": ModeInfo(id="spectate", name="Spectate", description="Watch others play", default_max_players=10),
}

# Indexed by seat, cycled once a room outgrows it.
PLAYER_COLORS: List[PlayerColor] = [
    PlayerColor(fill="#ffff00", stroke="#cccc00", name="Yellow"),
    PlayerColor(fill="#00ffff", stroke="#00cccc", name="Cyan"),
    PlayerColor(fill="#ff66ff", stroke="#cc44cc", name="Pink"),
    PlayerColor(fill="#66ff66", stroke="#44cc44", name="Green"),
    PlayerColor(fill="#ff9933", stroke="#cc7722", name="Orange"),
    PlayerColor(fill="#9966ff", stroke="#7744cc", name="Purple"),
]


def color_for_seat(seat: int) -> PlayerColor:
    return PLAYER_COLORS[seat % len(PLAYER_COLORS)]


class RoomInfo(BaseModel):
    room_code: Optional[str]
    game_id: str
    mode: Mode
    is_host: bool
    player_count: int
    connection_state: ConnectionState
