import pytest


async def _pair(make_session, host_name="Ana", guest_name="Bo"):
    host = make_session(name=host_name)
    code = await host.create_room()
    guest = make_session(name=guest_name)
    await guest.join_room(code)
    return host, guest, code


@pytest.mark.asyncio
async def test_chat_reaches_everyone_including_sender(make_session):
    host, guest, _ = await _pair(make_session)
    got_host, got_guest = [], []
    host.on("chatMessage", got_host.append)
    guest.on("chatMessage", got_guest.append)

    key = await guest.send_chat("  gg  ")

    assert key is not None
    for got in (got_host, got_guest):
        assert len(got) == 1
        msg = got[0]
        assert msg.key == key
        assert msg.message == "gg"
        assert msg.player_id == guest.player_id
        assert msg.player_name == "Bo"
        assert msg.timestamp is not None


@pytest.mark.asyncio
async def test_blank_chat_is_rejected_without_a_write(make_session, backend):
    host, _, code = await _pair(make_session)

    assert await host.send_chat("") is None
    assert await host.send_chat("   \n\t") is None
    assert await host.send_chat(None) is None
    assert backend.writes("push", f"pacman_rooms/{code}/chat") == []


@pytest.mark.asyncio
async def test_long_messages_are_truncated(make_session, backend, settings):
    host, _, code = await _pair(make_session)
    key = await host.send_chat("x" * (settings.CHAT_MAX_LENGTH + 100))
    stored = backend.snapshot(f"pacman_rooms/{code}/chat/{key}")
    assert len(stored["message"]) == settings.CHAT_MAX_LENGTH


@pytest.mark.asyncio
async def test_new_joiner_sees_the_recent_history(make_session, settings):
    host = make_session()
    code = await host.create_room()
    for i in range(settings.CHAT_HISTORY_LIMIT + 10):
        await host.send_chat(f"msg {i}")

    late = make_session()
    seen = []
    late.on("chatMessage", seen.append)
    await late.join_room(code)

    assert len(seen) == settings.CHAT_HISTORY_LIMIT
    assert seen[0].message == "msg 10"
    assert seen[-1].message == f"msg {settings.CHAT_HISTORY_LIMIT + 9}"
    timestamps = [m.timestamp for m in seen]
    assert timestamps == sorted(timestamps)

    await host.send_chat("welcome")
    assert seen[-1].message == "welcome"
    assert len(seen) == settings.CHAT_HISTORY_LIMIT + 1


@pytest.mark.asyncio
async def test_chat_outside_a_room(make_session):
    s = make_session()
    assert await s.send_chat("hello?") is None
