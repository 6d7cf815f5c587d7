import contextlib
import itertools

import pytest
import pytest_asyncio

from roomsync.errors import TransportUnavailable
from roomsync.session.adapter import GameAdapter, GameConfig
from roomsync.session.manager import SessionManager
from roomsync.session.name_store import MemoryNameStore
from roomsync.settings import Settings
from roomsync.store.memory import MemoryBackend


class RecordingAdapter(GameAdapter):
    """Adapter that records every hook call."""

    def __init__(
        self,
        game_id="pacman",
        *,
        capacity=None,
        sync_rate_ms=50,
        modes=("coop", "versus", "spectate"),
        models=(),
    ):
        super().__init__(game_id)
        self._config = GameConfig(
            capacity=capacity,
            supported_modes=list(modes),
            sync_rate_ms=sync_rate_ms,
            room_prefix=game_id,
        )
        self._models = models
        self.started = 0
        self.ended = []
        self.actions = []
        self.state_updates = []

    def get_game_config(self):
        return self._config

    def action_models(self):
        return self._models

    def on_game_start(self):
        self.started += 1

    def on_game_end(self, results):
        self.ended.append(results)

    def on_game_action(self, action):
        self.actions.append(action)

    def on_player_state_update(self, player_id, player):
        self.state_updates.append((player_id, player))


class FakeClock:
    def __init__(self, t=0.0):
        self.t = t

    def __call__(self):
        return self.t

    def advance(self, ms):
        self.t += ms


@pytest.fixture
def backend():
    # strictly increasing store clock keeps timestamps distinct
    ticks = itertools.count(1_700_000_000_000)
    return MemoryBackend(clock=lambda: next(ticks))


@pytest.fixture
def settings():
    return Settings(HEARTBEAT_INTERVAL_SEC=3600)


@pytest_asyncio.fixture
async def make_session(backend, settings):
    made = []

    def _make(adapter=None, *, name=None, clock=None, store=None, **kwargs):
        adapter = adapter or RecordingAdapter(**kwargs)
        names = MemoryNameStore({f"{adapter.game_id}_player_name": name} if name else {})
        m = SessionManager(
            adapter,
            store or backend.connect(),
            settings=settings,
            name_store=names,
            clock=clock,
        )
        made.append(m)
        return m

    yield _make

    for m in made:
        with contextlib.suppress(TransportUnavailable):
            await m.leave_room()
    # a host leaving closes the room for everyone still in it
    for m in made:
        await m._heartbeat.stop()
        if m._release_task is not None:
            await m._release_task
