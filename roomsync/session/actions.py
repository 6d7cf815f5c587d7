# roomsync/session/actions.py
from __future__ import annotations

from typing import Any, Dict, Iterable, Optional, Type

from pydantic import BaseModel, Field


class GameAction(BaseModel):
    """
    A one-shot game event as delivered to the adapter.

    Games declare their closed set of actions by subclassing with a literal
    tag and a typed payload:

        class Fired(GameAction):
            type: Literal["fired"] = "fired"
            data: ShotData
    """
    type: str
    player_id: str
    data: Any = Field(default_factory=dict)
    timestamp: Optional[int] = None


ActionModels = Dict[str, Type[GameAction]]


def build_action_map(models: Iterable[Type[GameAction]]) -> ActionModels:
    out: ActionModels = {}
    for cls in models:
        tag = cls.model_fields["type"].default
        if not isinstance(tag, str):
            raise ValueError(f"{cls.__name__} must give 'type' a literal default")
        if tag in out:
            raise ValueError(f"Duplicate action type: {tag}")
        out[tag] = cls
    return out


def parse_action(payload: Dict[str, Any], models: ActionModels) -> GameAction:
    """
    Convert a raw action record -> its declared variant.
    With no declared variants every record parses as a plain GameAction.
    Raises ValueError (incl. ValidationError) for unknown or invalid records.
    """
    t = payload.get("type")
    if not isinstance(t, str):
        raise ValueError("Missing/invalid action type")
    if not models:
        return GameAction.model_validate(payload)

    cls = models.get(t)
    if cls is None:
        raise ValueError(f"Unknown action type: {t}")
    return cls.model_validate(payload)
