import asyncio

import aiohttp
import pytest

from tapioca import errors
from tapioca.ws import Payload, WebSocketConnection

pytestmark = pytest.mark.asyncio


@pytest.fixture
async def session():
    session = aiohttp.ClientSession()
    yield session

    await session.close()


async def test_inflates_a_split_stream(gateway_server, session):
    ws = await WebSocketConnection.connect(session, gateway_server.url + "/?compress=zlib-stream", compress=True)
    conn = await gateway_server.next_connection()

    hello = await ws.receive(timeout=5)
    assert hello.op == 10
    assert hello.data == {"heartbeat_interval": 45000}

    # one zlib context spans the whole connection
    big = {"content": "tapioca " * 2000}
    for seq in (1, 2, 3):
        await conn.dispatch("MESSAGE_CREATE", big, seq)

    received = [await ws.receive(timeout=5) for _ in range(3)]

    assert [p.sequence for p in received] == [1, 2, 3]
    assert all(p.type == "MESSAGE_CREATE" and p.data == big for p in received)

    await ws.close()


async def test_plain_text_frames(gateway_server, session):
    ws = await WebSocketConnection.connect(session, gateway_server.url + "/", compress=False)

    hello = await ws.receive(timeout=5)
    assert hello.op == 10

    await ws.close()


async def test_sends_are_written_in_order(gateway_server, session):
    ws = await WebSocketConnection.connect(session, gateway_server.url + "/")
    conn = await gateway_server.next_connection()

    await asyncio.gather(*(ws.send({"op": 3, 'd': i}) for i in range(20)))

    received = [(await conn.expect(3))['d'] for _ in range(20)]
    assert received == list(range(20))

    await ws.close()


async def test_server_close_code_is_reported(gateway_server, session):
    ws = await WebSocketConnection.connect(session, gateway_server.url + "/")
    conn = await gateway_server.next_connection()
    await ws.receive(timeout=5)

    await conn.close(4009)

    with pytest.raises(errors.WebSocketClosed) as info:
        await ws.receive(timeout=5)

    assert info.value.code == 4009
    assert ws.is_closed()

    with pytest.raises(errors.WebSocketClosed):
        await ws.send({"op": 1, 'd': None})


async def test_own_close_code_is_kept(gateway_server, session):
    ws = await WebSocketConnection.connect(session, gateway_server.url + "/")
    conn = await gateway_server.next_connection()

    await ws.close(4000)
    await asyncio.wait_for(conn.closed.wait(), 5)

    assert ws.close_code == 4000
    assert conn.close_code == 4000


async def test_receive_timeout(gateway_server, session):
    ws = await WebSocketConnection.connect(session, gateway_server.url + "/")
    await ws.receive(timeout=5)

    with pytest.raises(asyncio.TimeoutError):
        await ws.receive(timeout=0.05)

    await ws.close()


async def test_unreachable_gateway(session):
    with pytest.raises(errors.WebSocketClosed):
        await WebSocketConnection.connect(session, "ws://127.0.0.1:9/", timeout=2)


async def test_payload_dict():
    payload = Payload.from_dict({"op": 0, 'd': {"a": 1}, 's': 5, 't': "READY"})

    assert (payload.op, payload.data, payload.sequence, payload.type) == (0, {"a": 1}, 5, "READY")
    assert payload.to_dict() == {"op": 0, 'd': {"a": 1}}
