"""Durable client-side storage for the cached display name.

The name is kept per game under "<game_id>_player_name" and reused across
sessions. Nothing else is persisted locally.
"""

import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol

logger = logging.getLogger(__name__)

_NAMES_FILE = "names.json"


def name_key(game_id: str) -> str:
    return f"{game_id}_player_name"


class NameStore(Protocol):
    """Protocol for persisting display names."""

    def load(self, key: str) -> Optional[str]: ...

    def save(self, key: str, value: str) -> None: ...


class MemoryNameStore:
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self.values: Dict[str, str] = dict(initial or {})

    def load(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def save(self, key: str, value: str) -> None:
        self.values[key] = value


class LocalNameStore:
    """Keeps names in one JSON file under state_dir.

    Writes go through a temp file and rename.
    """

    def __init__(self, state_dir: str) -> None:
        self._dir = Path(state_dir).expanduser()
        self._path = self._dir / _NAMES_FILE

    def _read_all(self) -> Dict[str, str]:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError):
            logger.warning("unreadable name cache at %s, starting fresh", self._path)
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)} if isinstance(data, dict) else {}

    def load(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    def save(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        self._dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self._dir), suffix=".tmp", prefix=".names_")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            Path(tmp_path).replace(self._path)
        except BaseException:
            with contextlib.suppress(OSError):
                Path(tmp_path).unlink()
            raise
