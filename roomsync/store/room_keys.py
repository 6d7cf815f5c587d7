# roomsync/store/room_keys.py
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RK:
    """
    Store path builder for room-scoped nodes.
    Every game gets its own namespace: /<room_prefix>_rooms/<room_code>/...
    """
    room_prefix: str
    room_code: str = ""

    # ---- Core ----
    def rooms(self) -> str:
        return f"{self.room_prefix}_rooms"  # all rooms of this game

    def room(self) -> str:
        return f"{self.rooms()}/{self.room_code}"  # room document

    def state(self) -> str:
        return f"{self.room()}/state"  # waiting | playing | finished

    def results(self) -> str:
        return f"{self.room()}/results"

    def settings(self) -> str:
        return f"{self.room()}/settings"

    # ---- Roster ----
    def players(self) -> str:
        return f"{self.room()}/players"  # pid -> player entry

    def player(self, pid: str) -> str:
        return f"{self.players()}/{pid}"

    def player_field(self, pid: str, name: str) -> str:
        return f"{self.player(pid)}/{name}"

    # ---- Append-only logs ----
    def actions(self) -> str:
        return f"{self.room()}/actions"  # push key -> action record

    def chat(self) -> str:
        return f"{self.room()}/chat"  # push key -> chat record
