import time
import asyncio

import pytest

import tapioca
from tapioca.gateway import GatewayState

from conftest import FixedRandom, ready_payload

pytestmark = pytest.mark.asyncio


async def _stop(ws, task):
    await ws.close()
    await asyncio.wait_for(task, 5)


async def _ready(ws, conn, url, seq=1):
    await conn.expect(2)
    await conn.dispatch("READY", ready_payload(url), seq)
    await asyncio.wait_for(ws.wait_until_ready(), 5)


async def test_identify_then_dispatch(gateway_server, make_gateway):
    ws = make_gateway()
    sub = ws.dispatcher.subscribe("MESSAGE_CREATE")
    task = asyncio.ensure_future(ws.run())

    conn = await gateway_server.next_connection()
    assert conn.query == {'v': "10", "encoding": "json", "compress": "zlib-stream"}

    identify = await conn.expect(2)
    d = identify['d']
    assert d["token"] == "token"
    assert d["intents"] == tapioca.Intents.default()
    assert d["properties"]["browser"] == "tapioca"
    assert d["compress"] is False
    assert "shard" not in d

    await conn.dispatch("READY", ready_payload(gateway_server.url), 1)
    await asyncio.wait_for(ws.wait_until_ready(), 5)

    assert ws.state is GatewayState.RUNNING
    assert ws.gateway_session.session_id == "s1"
    assert ws.user_id == 100

    await conn.dispatch("MESSAGE_CREATE", {"content": "hi"}, 2)
    event = await asyncio.wait_for(sub.get(), 5)

    assert event.sequence == 2
    assert event.data == {"content": "hi"}
    assert ws.gateway_session.sequence == 2

    await _stop(ws, task)
    assert ws.state is GatewayState.DISCONNECTED
    assert not ws.gateway_session.is_resumable()


async def test_reconnect_request_resumes(gateway_server, make_gateway):
    ws = make_gateway()
    sub = ws.dispatcher.subscribe("MESSAGE_CREATE")
    task = asyncio.ensure_future(ws.run())

    first = await gateway_server.next_connection()
    await _ready(ws, first, gateway_server.url)
    await first.dispatch("MESSAGE_CREATE", {'n': 2}, 2)
    assert (await asyncio.wait_for(sub.get(), 5)).sequence == 2

    await first.send({"op": 7, 'd': None})
    await asyncio.wait_for(first.closed.wait(), 5)
    assert first.close_code == 4000

    second = await gateway_server.next_connection()
    resume = await second.expect(6)
    assert resume['d'] == {"token": "token", "session_id": "s1", "seq": 2}

    # the server replays what it is not sure we got
    await second.dispatch("MESSAGE_CREATE", {'n': 2}, 2)
    await second.dispatch("RESUMED", {}, 3)
    await second.dispatch("MESSAGE_CREATE", {'n': 4}, 4)

    event = await asyncio.wait_for(sub.get(), 5)
    assert event.sequence == 4
    assert sub.dropped == 0
    assert ws.state is GatewayState.RUNNING

    await _stop(ws, task)


async def test_invalid_session_identifies_again(gateway_server, make_gateway):
    ws = make_gateway(rng=FixedRandom())
    task = asyncio.ensure_future(ws.run())

    first = await gateway_server.next_connection()
    await _ready(ws, first, gateway_server.url)

    start = time.monotonic()
    await first.send({"op": 9, 'd': False})

    second = await gateway_server.next_connection()
    await second.expect(2)

    assert time.monotonic() - start >= 0.95
    assert first.close_code == 1000

    await _stop(ws, task)


async def test_resumable_invalid_session_resumes(gateway_server, make_gateway):
    ws = make_gateway()
    task = asyncio.ensure_future(ws.run())

    first = await gateway_server.next_connection()
    await _ready(ws, first, gateway_server.url)
    await first.send({"op": 9, 'd': True})

    second = await gateway_server.next_connection()
    resume = await second.expect(6)
    assert resume['d']["seq"] == 1

    await _stop(ws, task)


async def test_missed_heartbeat_ack_reconnects(gateway_server, make_gateway):
    gateway_server.heartbeat_interval = 100
    gateway_server.auto_ack = False

    ws = make_gateway()
    task = asyncio.ensure_future(ws.run())

    first = await gateway_server.next_connection()
    start = time.monotonic()
    await _ready(ws, first, gateway_server.url)

    await asyncio.wait_for(first.closed.wait(), 5)
    assert time.monotonic() - start < 0.45
    assert first.close_code == 4000
    assert first.heartbeats >= 1

    second = await gateway_server.next_connection()
    await second.expect(6)

    await _stop(ws, task)


async def test_heartbeat_request_is_answered(gateway_server, make_gateway):
    ws = make_gateway()
    task = asyncio.ensure_future(ws.run())

    conn = await gateway_server.next_connection()
    await _ready(ws, conn, gateway_server.url)

    before = conn.heartbeats
    await conn.send({"op": 1, 'd': None})

    for _ in range(50):
        if conn.heartbeats > before:
            break
        await asyncio.sleep(0.02)

    assert conn.heartbeats > before

    await _stop(ws, task)


async def test_sequence_gap_resumes(gateway_server, make_gateway):
    ws = make_gateway()
    task = asyncio.ensure_future(ws.run())

    first = await gateway_server.next_connection()
    await _ready(ws, first, gateway_server.url)
    await first.dispatch("MESSAGE_CREATE", {}, 3)

    second = await gateway_server.next_connection()
    resume = await second.expect(6)
    assert resume['d']["seq"] == 1

    await _stop(ws, task)


async def test_fatal_close_code_stops(gateway_server, make_gateway):
    ws = make_gateway()
    task = asyncio.ensure_future(ws.run())

    conn = await gateway_server.next_connection()
    await conn.expect(2)
    await conn.close(4004)

    with pytest.raises(tapioca.errors.ConnectionClosed) as info:
        await asyncio.wait_for(task, 5)

    assert info.value.code == 4004
    assert ws.state is GatewayState.FAILED

    with pytest.raises(tapioca.errors.ConnectionClosed):
        await ws.wait_until_ready()

    assert len(gateway_server.connections) == 1


async def test_session_close_code_identifies_again(gateway_server, make_gateway):
    ws = make_gateway()
    task = asyncio.ensure_future(ws.run())

    first = await gateway_server.next_connection()
    await _ready(ws, first, gateway_server.url)
    await first.close(4009)

    second = await gateway_server.next_connection()
    await second.expect(2)
    assert ws.gateway_session.session_id is None

    await _stop(ws, task)


async def test_other_close_codes_resume(gateway_server, make_gateway):
    ws = make_gateway()
    task = asyncio.ensure_future(ws.run())

    first = await gateway_server.next_connection()
    await _ready(ws, first, gateway_server.url)
    await first.close(4001)

    second = await gateway_server.next_connection()
    await second.expect(6)

    await _stop(ws, task)


async def test_commands_wait_until_ready(gateway_server, make_gateway):
    ws = make_gateway()
    task = asyncio.ensure_future(ws.run())

    conn = await gateway_server.next_connection()
    await conn.expect(2)

    command = asyncio.ensure_future(ws.update_voice_state(1, 2, self_deaf=True))
    await asyncio.sleep(0.05)
    assert conn.received.empty()
    assert not command.done()

    await conn.dispatch("READY", ready_payload(gateway_server.url), 1)
    payload = await conn.expect(4)
    await command

    assert payload['d'] == {"guild_id": "1", "channel_id": "2", "self_mute": False, "self_deaf": True}

    await _stop(ws, task)


async def test_shard_and_presence_in_identify(gateway_server, make_gateway):
    presence = {"since": None, "activities": [], "status": "idle", "afk": False}
    ws = make_gateway(shard=(1, 4), presence=presence, compress=False)
    task = asyncio.ensure_future(ws.run())

    conn = await gateway_server.next_connection()
    assert "compress" not in conn.query

    identify = await conn.expect(2)
    assert identify['d']["shard"] == [1, 4]
    assert identify['d']["presence"] == presence

    await _stop(ws, task)


async def test_close_before_ready_wakes_waiters(gateway_server, make_gateway):
    ws = make_gateway()
    task = asyncio.ensure_future(ws.run())

    conn = await gateway_server.next_connection()
    await conn.expect(2)

    waiter = asyncio.ensure_future(ws.wait_until_ready())
    await _stop(ws, task)

    with pytest.raises(tapioca.errors.WebSocketClosed):
        await waiter


async def test_hello_without_interval_reconnects(gateway_server, make_gateway):
    gateway_server.hellos.append({})

    ws = make_gateway()
    task = asyncio.ensure_future(ws.run())

    first = await gateway_server.next_connection()
    await asyncio.wait_for(first.closed.wait(), 5)
    assert first.close_code == 4000
    assert first.received.empty()

    second = await gateway_server.next_connection()
    await _ready(ws, second, gateway_server.url)
    assert not task.done()

    await _stop(ws, task)


async def test_ready_without_session_identifies_again(gateway_server, make_gateway):
    ws = make_gateway()
    task = asyncio.ensure_future(ws.run())

    first = await gateway_server.next_connection()
    await first.expect(2)
    await first.dispatch("READY", {"v": 10, "user": {"id": "100"}}, 1)

    await asyncio.wait_for(first.closed.wait(), 5)
    assert first.close_code == 1000
    assert not ws.is_ready()

    second = await gateway_server.next_connection()
    await _ready(ws, second, gateway_server.url)
    assert ws.gateway_session.session_id == "s1"

    await _stop(ws, task)


async def test_malformed_dispatch_is_skipped(gateway_server, make_gateway):
    ws = make_gateway()
    sub = ws.dispatcher.subscribe("MESSAGE_CREATE")
    task = asyncio.ensure_future(ws.run())

    conn = await gateway_server.next_connection()
    await _ready(ws, conn, gateway_server.url)

    await conn.send({"op": 0, 'd': {'n': 1}, 's': "one", 't': "MESSAGE_CREATE"})
    await conn.dispatch("MESSAGE_CREATE", {'n': 2}, 2)

    event = await asyncio.wait_for(sub.get(), 5)
    assert event.data == {'n': 2}
    assert ws.gateway_session.sequence == 2
    assert len(gateway_server.connections) == 1
    assert not task.done()

    await _stop(ws, task)
