# roomsync/session/adapter.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Type

from pydantic import BaseModel, Field

from roomsync.session.actions import GameAction
from roomsync.store.models import Mode, Position, RosterPlayer

logger = logging.getLogger(__name__)


class GameConfig(BaseModel):
    # None: use the chosen mode's default capacity
    capacity: Optional[int] = None
    supported_modes: List[Mode] = Field(default_factory=lambda: ["coop", "versus"])
    sync_rate_ms: int = 50
    room_prefix: str


class GameAdapter:
    """
    The game side of a session. Subclass and override what the game needs:

        class PacmanSession(GameAdapter):
            def __init__(self, game):
                super().__init__("pacman")
                self.game = game

            def on_game_start(self):
                self.game.start_multiplayer()
    """

    def __init__(self, game_id: str) -> None:
        self.game_id = game_id

    def get_game_config(self) -> GameConfig:
        return GameConfig(room_prefix=self.game_id)

    def get_start_positions(self) -> List[Position]:
        return [Position(x=0, y=0), Position(x=1, y=0), Position(x=0, y=1), Position(x=1, y=1)]

    def action_models(self) -> Sequence[Type[GameAction]]:
        """Declared action variants. Empty: accept any action as GameAction."""
        return ()

    def on_game_start(self) -> None:
        logger.debug("%s: game starting", self.game_id)

    def on_game_end(self, results: Dict[str, Any]) -> None:
        pass

    def on_game_action(self, action: GameAction) -> None:
        logger.debug("%s: received action %s", self.game_id, action.type)

    def on_player_state_update(self, player_id: str, player: RosterPlayer) -> None:
        pass
