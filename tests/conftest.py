import os
import json
import zlib
import random
import asyncio
from typing import Any, Dict, List, Optional

import pytest
import dotenv
from aiohttp import web, WSMsgType
from aiohttp.test_utils import TestServer

import tapioca

dotenv.load_dotenv(override=True)  # type: ignore


@pytest.fixture
async def http():
    token: Optional[str] = os.getenv("TEST_TOKEN")
    if not token:
        pytest.skip("The 'TEST_TOKEN' env var is not defined")

    client = tapioca.DiscordHTTPClient(token)
    yield client

    await client.close()


class FixedRandom(random.Random):
    """Jitter without the wait: `uniform` always picks the lower bound."""

    def uniform(self, a: float, b: float) -> float:
        return a


# REST

class FakeREST:
    """Replays scripted responses and records every request it gets."""

    def __init__(self) -> None:
        self.requests: List[Dict[str, Any]] = []
        self.responses: List[web.Response] = []
        self.default = lambda: web.json_response({})
        self.delay = 0.0
        self.base = ""

    def reply(self, status: int = 200, body: Any = None, headers: Optional[Dict[str, str]] = None) -> None:
        if body is None:
            self.responses.append(web.Response(status=status, headers=headers))
        else:
            self.responses.append(web.json_response(body, status=status, headers=headers))

    async def handler(self, request: web.Request) -> web.StreamResponse:
        record: Dict[str, Any] = {
            "method": request.method,
            "path": request.path,
            "query": list(request.query.items()),
            "headers": dict(request.headers),
            "loop_time": asyncio.get_running_loop().time(),
        }

        if request.content_type.startswith("multipart/"):
            parts = []
            reader = await request.multipart()
            async for part in reader:
                parts.append((part.name, part.filename, part.headers.get("Content-Type"), await part.read()))
            record["parts"] = parts
        elif request.can_read_body:
            record["json"] = await request.json()

        self.requests.append(record)

        if self.delay:
            await asyncio.sleep(self.delay)

        if self.responses:
            return self.responses.pop(0)

        return self.default()


@pytest.fixture
async def rest_server():
    fake = FakeREST()

    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", fake.handler)

    server = TestServer(app)
    await server.start_server()
    fake.base = f"http://{server.host}:{server.port}/api/v10"

    yield fake

    await server.close()


@pytest.fixture
async def rest(rest_server: FakeREST):
    client = tapioca.HTTPClient("secret", base=rest_server.base, retry_delay=0)
    yield client

    await client.close()


# Gateway

class FakeConnection:
    def __init__(self, ws: web.WebSocketResponse, query: Dict[str, str], server: "FakeGateway") -> None:
        self.ws = ws
        self.query = query
        self.server = server
        self.received: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
        self.heartbeats = 0
        self.closed = asyncio.Event()
        self.close_code: Optional[int] = None
        self.compressor = zlib.compressobj() if query.get("compress") == "zlib-stream" else None

    async def send(self, payload: Dict[str, Any]) -> None:
        text = json.dumps(payload)

        if self.compressor is None:
            await self.ws.send_str(text)
            return

        data = self.compressor.compress(text.encode()) + self.compressor.flush(zlib.Z_SYNC_FLUSH)
        # split the message to exercise buffering
        await self.ws.send_bytes(data[:3])
        await self.ws.send_bytes(data[3:])

    async def dispatch(self, name: str, data: Any, seq: int) -> None:
        await self.send({"op": 0, 'd': data, 's': seq, 't': name})

    async def expect(self, op: int, timeout: float = 5.0) -> Dict[str, Any]:
        while True:
            payload = await asyncio.wait_for(self.received.get(), timeout)
            if payload["op"] == op:
                return payload

    async def close(self, code: int) -> None:
        await self.ws.close(code=code)


class FakeGateway:
    def __init__(self) -> None:
        self.heartbeat_interval = 45000
        self.auto_ack = True
        # Hello bodies for the next connections, then the default one
        self.hellos: List[Any] = []
        self.connections: List[FakeConnection] = []
        self.accepted: "asyncio.Queue[FakeConnection]" = asyncio.Queue()
        self.url = ""

    async def next_connection(self, timeout: float = 5.0) -> FakeConnection:
        return await asyncio.wait_for(self.accepted.get(), timeout)

    async def handler(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        conn = FakeConnection(ws, dict(request.query), self)
        self.connections.append(conn)
        await self.accepted.put(conn)

        hello = self.hellos.pop(0) if self.hellos else {"heartbeat_interval": self.heartbeat_interval}
        await conn.send({"op": 10, 'd': hello})

        async for msg in ws:
            if msg.type is not WSMsgType.TEXT:
                continue

            payload = json.loads(msg.data)

            if payload["op"] == 1:
                conn.heartbeats += 1
                if self.auto_ack:
                    await conn.send({"op": 11, 'd': None})
                continue

            await conn.received.put(payload)

        conn.close_code = ws.close_code
        conn.closed.set()
        return ws


@pytest.fixture
async def gateway_server():
    fake = FakeGateway()

    app = web.Application()
    app.router.add_get("/", fake.handler)

    server = TestServer(app)
    await server.start_server()
    fake.url = f"ws://{server.host}:{server.port}"

    yield fake

    await server.close()


def ready_payload(url: str, session_id: str = "s1", user_id: str = "100") -> Dict[str, Any]:
    return {
        "v": 10,
        "session_id": session_id,
        "resume_gateway_url": url,
        "user": {"id": user_id, "username": "tapioca", "discriminator": "0", "avatar": None},
        "guilds": [],
    }


@pytest.fixture
async def make_gateway(gateway_server: FakeGateway):
    created: List[tapioca.DiscordWebSocket] = []

    def factory(**kwargs: Any) -> tapioca.DiscordWebSocket:
        kwargs.setdefault("url", gateway_server.url)
        kwargs.setdefault("backoff", tapioca.ExponentialBackoff(0.01, 0.05))
        ws = tapioca.DiscordWebSocket("token", tapioca.Intents.default(), **kwargs)
        created.append(ws)
        return ws

    yield factory

    for ws in created:
        await ws.close()
