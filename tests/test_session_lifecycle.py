import pytest

from roomsync.errors import GameInProgress, RoomFull, RoomNotFound, TransportUnavailable
from roomsync.session.types import PLAYER_COLORS
from roomsync.util.ids import is_valid_room_code


def _codes(monkeypatch, *codes):
    it = iter(codes)
    monkeypatch.setattr("roomsync.session.manager.gen_room_code", lambda: next(it))


@pytest.mark.asyncio
async def test_create_room_makes_creator_host_at_seat_zero(make_session, backend):
    host = make_session(name="Ana")
    created = []
    host.on("roomCreated", created.append)

    code = await host.create_room("coop")

    assert is_valid_room_code(code)
    assert host.connection_state == "lobby"
    assert host.is_host is True
    me = host.players[host.player_id]
    assert me.is_host is True
    assert me.index == 0
    assert me.color == PLAYER_COLORS[0]
    assert me.name == "Ana"
    assert [e.room_code for e in created] == [code]
    assert backend.snapshot(f"pacman_rooms/{code}/host_id") == host.player_id


@pytest.mark.asyncio
async def test_create_room_capacity_defaults(make_session):
    versus = make_session()
    await versus.create_room("versus")
    assert (await versus.repo.get_room(versus.room_code)).capacity == 2

    configured = make_session(capacity=3)
    await configured.create_room("coop")
    assert (await configured.repo.get_room(configured.room_code)).capacity == 3

    explicit = make_session()
    await explicit.create_room("coop", {"max_players": 50, "settings": {"map": "classic"}})
    doc = await explicit.repo.get_room(explicit.room_code)
    assert doc.capacity == 10
    assert doc.settings == {"map": "classic"}


@pytest.mark.asyncio
async def test_create_room_rejects_unsupported_mode(make_session):
    host = make_session(modes=("coop",))
    with pytest.raises(ValueError):
        await host.create_room("versus")
    assert host.room_code is None


@pytest.mark.asyncio
async def test_create_room_retries_taken_codes(make_session, monkeypatch):
    first = make_session()
    _codes(monkeypatch, "AAAAAA", "AAAAAA", "BBBBBB")
    assert await first.create_room() == "AAAAAA"

    second = make_session()
    assert await second.create_room() == "BBBBBB"
    # the first room still belongs to the first host
    assert (await second.repo.get_room("AAAAAA")).host_id == first.player_id


@pytest.mark.asyncio
async def test_create_room_gives_up_after_attempts(make_session, monkeypatch, settings):
    first = make_session()
    _codes(monkeypatch, *["AAAAAA"] * (settings.ROOM_CODE_ATTEMPTS + 1))
    await first.create_room()

    second = make_session()
    with pytest.raises(TransportUnavailable):
        await second.create_room()
    assert second.room_code is None


@pytest.mark.asyncio
async def test_create_room_without_store_fails(make_session, backend):
    store = backend.connect()
    store.go_offline()
    host = make_session(store=store)
    with pytest.raises(TransportUnavailable):
        await host.create_room()
    assert host.connection_state == "error"
    assert backend.snapshot() == {}


@pytest.mark.asyncio
async def test_init_transitions(make_session, backend):
    ok = make_session()
    assert await ok.init() is True
    assert ok.connection_state == "connected"

    store = backend.connect()
    store.go_offline()
    down = make_session(store=store)
    assert await down.init() is False
    assert down.connection_state == "error"

    store.go_online()
    assert await down.init() is True
    assert down.connection_state == "connected"


@pytest.mark.asyncio
async def test_joiners_get_increasing_seats_and_distinct_colors(make_session):
    host = make_session()
    code = await host.create_room("coop", {"max_players": 4})

    joiners = [make_session() for _ in range(3)]
    for j in joiners:
        assert await j.join_room(code) is True

    seats = [j.player_index for j in joiners]
    assert seats == [1, 2, 3]
    colors = [host.player_color] + [j.player_color for j in joiners]
    assert len({c.name for c in colors}) == 4
    assert len(host.players) == 4

    late = make_session()
    with pytest.raises(RoomFull):
        await late.join_room(code)
    assert late.room_code is None
    assert len(host.players) == 4


@pytest.mark.asyncio
async def test_colors_cycle_past_palette(make_session):
    host = make_session()
    code = await host.create_room("spectate", {"max_players": 8})
    joiners = [make_session() for _ in range(7)]
    for j in joiners:
        await j.join_room(code)
    assert joiners[5].player_index == 6
    assert joiners[5].player_color == PLAYER_COLORS[0]


@pytest.mark.asyncio
async def test_join_unknown_room(make_session):
    guest = make_session()
    with pytest.raises(RoomNotFound) as exc:
        await guest.join_room("ZZZZZZ")
    assert exc.value.code == "ROOM_NOT_FOUND"
    assert guest.room_code is None


@pytest.mark.asyncio
async def test_join_is_case_insensitive(make_session, monkeypatch):
    _codes(monkeypatch, "AB3K9Z")
    host = make_session()
    await host.create_room()
    guest = make_session()
    assert await guest.join_room(" ab3k9z ") is True
    assert guest.room_code == "AB3K9Z"


@pytest.mark.asyncio
async def test_join_game_in_progress_writes_nothing(make_session, backend):
    host = make_session()
    code = await host.create_room()
    await host.start_game()

    before = list(backend.journal)
    late = make_session()
    with pytest.raises(GameInProgress):
        await late.join_room(code)
    assert backend.journal == before
    assert late.player_id not in host.players


@pytest.mark.asyncio
async def test_leave_room_is_idempotent(make_session, backend):
    host = make_session()
    code = await host.create_room()
    guest = make_session()
    await guest.join_room(code)

    left = []
    guest.on("roomLeft", left.append)
    await guest.leave_room()
    removes = backend.writes("remove")
    await guest.leave_room()

    assert backend.writes("remove") == removes
    assert [e.room_code for e in left] == [code]
    assert guest.connection_state == "disconnected"
    assert guest.room_code is None


@pytest.mark.asyncio
async def test_host_only_gate(make_session, backend):
    host = make_session()
    code = await host.create_room()
    guest = make_session()
    await guest.join_room(code)

    await guest.start_game()
    await guest.return_to_lobby()
    await guest.update_settings({"map": "hacked"})

    assert backend.snapshot(f"pacman_rooms/{code}/state") == "waiting"
    assert backend.snapshot(f"pacman_rooms/{code}/settings") is None
    assert guest.connection_state == "lobby"
    assert guest.adapter.started == 0


@pytest.mark.asyncio
async def test_start_game_moves_everyone_in_lockstep(make_session):
    host = make_session()
    code = await host.create_room()
    guest = make_session()
    await guest.join_room(code)
    starts = []
    guest.on("gameStart", starts.append)

    await host.start_game()
    await host.start_game()   # already playing: no second start

    assert host.connection_state == "playing"
    assert guest.connection_state == "playing"
    assert host.adapter.started == 1
    assert guest.adapter.started == 1
    assert len(starts) == 1


@pytest.mark.asyncio
async def test_spectate_room_guests_watch(make_session):
    host = make_session()
    code = await host.create_room("spectate")
    guest = make_session()
    await guest.join_room(code)

    await host.start_game()
    assert host.connection_state == "playing"
    assert guest.connection_state == "spectating"
    assert await guest.sync_state({"score": 5}) is False


@pytest.mark.asyncio
async def test_end_game_by_any_player_returns_to_lobby(make_session, backend):
    host = make_session()
    code = await host.create_room()
    guest = make_session()
    await guest.join_room(code)
    ends = []
    host.on("gameEnd", ends.append)

    await host.start_game()
    await guest.end_game({"winner": guest.player_id})

    assert host.connection_state == "lobby"
    assert guest.connection_state == "lobby"
    assert backend.snapshot(f"pacman_rooms/{code}/state") == "finished"
    assert host.adapter.ended == [{"winner": guest.player_id}]
    assert ends[0].results == {"winner": guest.player_id}
    # room and roster untouched
    assert len(host.players) == 2

    await host.return_to_lobby()
    assert backend.snapshot(f"pacman_rooms/{code}/state") == "waiting"
    assert backend.snapshot(f"pacman_rooms/{code}/results") is None

    await host.start_game()
    assert guest.adapter.started == 2


@pytest.mark.asyncio
async def test_joining_a_finished_room_does_not_replay_game_end(make_session):
    host = make_session()
    code = await host.create_room()
    await host.start_game()
    await host.end_game({"winner": host.player_id})

    guest = make_session()
    await guest.join_room(code)
    assert guest.connection_state == "lobby"
    assert guest.adapter.ended == []


@pytest.mark.asyncio
async def test_room_info_and_queries(make_session):
    host = make_session()
    code = await host.create_room("versus")
    guest = make_session()
    await guest.join_room(code)

    info = host.get_room_info()
    assert info.room_code == code
    assert info.mode == "versus"
    assert info.is_host is True
    assert info.player_count == 2
    assert [p.id for p in host.get_other_players()] == [guest.player_id]


@pytest.mark.asyncio
async def test_end_to_end_scenario(make_session, monkeypatch):
    _codes(monkeypatch, "AB3K9Z")
    host = make_session(capacity=4)
    guest = make_session(capacity=4)
    third = make_session(capacity=4)

    code = await host.create_room("coop")
    assert code == "AB3K9Z"

    assert await guest.join_room(code) is True
    assert len(host.players) == 2
    assert guest.player_index == 1

    await host.set_ready(True)
    assert host.all_players_ready() is False
    assert guest.all_players_ready() is False
    await guest.set_ready(True)
    assert host.all_players_ready() is True
    assert guest.all_players_ready() is True

    await host.start_game()
    assert host.connection_state == "playing"
    assert guest.connection_state == "playing"
    assert host.adapter.started == 1
    assert guest.adapter.started == 1

    await guest.leave_room()
    assert len(host.players) == 1
    assert await host.repo.room_exists(code) is True

    await host.leave_room()
    assert await third.repo.room_exists(code) is False
    with pytest.raises(RoomNotFound):
        await third.join_room("AB3K9Z")


@pytest.mark.asyncio
async def test_seats_stay_unique_after_a_guest_leaves(make_session):
    host = make_session()
    code = await host.create_room("coop", {"max_players": 4})
    a, b, c = make_session(), make_session(), make_session()
    await a.join_room(code)
    await b.join_room(code)
    await a.leave_room()

    await c.join_room(code)

    seats = [p.index for p in host.players.values()]
    assert sorted(seats) == [0, 2, 3]
    assert c.player_index == 3
    assert c.player_color != b.player_color


@pytest.mark.asyncio
async def test_adapter_capacity_caps_requested_size(make_session):
    host = make_session(capacity=4)
    code = await host.create_room("coop", {"max_players": 8})
    assert (await host.repo.get_room(code)).capacity == 4

    smaller = make_session(capacity=4)
    code = await smaller.create_room("coop", {"max_players": 2})
    assert (await smaller.repo.get_room(code)).capacity == 2


@pytest.mark.asyncio
async def test_failed_leave_keeps_disconnect_cleanup(make_session, backend):
    host = make_session()
    code = await host.create_room()
    store = backend.connect()
    guest = make_session(store=store)
    await guest.join_room(code)

    store.go_offline()
    with pytest.raises(TransportUnavailable):
        await guest.leave_room()
    assert guest.connection_state == "error"
    assert guest.room_code is None
    assert guest.player_id in host.players

    # the entry is still removed when the connection finally drops
    store.disconnect()
    assert list(host.players) == [host.player_id]


@pytest.mark.asyncio
async def test_guests_leave_when_the_room_is_closed(make_session):
    host = make_session()
    code = await host.create_room()
    guest = make_session()
    await guest.join_room(code)
    left = []
    guest.on("roomLeft", left.append)

    await host.leave_room()

    assert [e.room_code for e in left] == [code]
    assert guest.room_code is None
    assert guest.connection_state == "disconnected"
    assert guest.players == {}

    await guest._release_task
    assert guest.store.subscriptions == []
    # a fresh room can be joined right away
    other = make_session()
    code2 = await other.create_room()
    assert await guest.join_room(code2) is True
    assert guest.connection_state == "lobby"
