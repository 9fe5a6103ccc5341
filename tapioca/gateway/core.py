import sys
import enum
import random
import asyncio
import logging
import typing as t
from urllib.parse import urlencode

import aiohttp

from .. import errors, utils
from ..backoff import ExponentialBackoff
from ..dispatcher import Event, EventDispatcher
from ..snowflake import Snowflake, SnowflakeLike
from ..ws import Payload, WebSocketConnection
from ..types import Packet, UpdateStatus
from .identify import Identifier
from .keep_alive import KeepAlive, CLOSE_ZOMBIE
from .ratelimit import GatewayRatelimiter

_log = logging.getLogger(__name__)

DEFAULT_URL = "wss://gateway.discord.gg"

FATAL_CLOSE_CODES = frozenset({4004, 4010, 4011, 4012, 4013, 4014})
"""Authentication failed, invalid shard, sharding required, invalid API
version, invalid or disallowed intents: retrying cannot help."""

SESSION_CLOSE_CODES = frozenset({4007, 4009})
"""Invalid sequence and session timed out: the session is gone."""


class GatewayState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    HELLO = "hello"
    IDENTIFYING = "identifying"
    RESUMING = "resuming"
    RUNNING = "running"
    RECONNECTING = "reconnecting"
    CLOSING = "closing"
    FAILED = "failed"


class GatewaySession:
    """What is needed to resume: created by READY, dropped on invalidation."""

    __slots__ = (
        "session_id",
        "sequence",
        "resume_gateway_url",
        "shard",
    )

    def __init__(self, shard: t.Optional[t.Tuple[int, int]] = None) -> None:
        self.session_id: t.Optional[str] = None
        self.sequence: t.Optional[int] = None
        self.resume_gateway_url: t.Optional[str] = None
        self.shard = shard

    def __repr__(self) -> str:
        return "<GatewaySession session_id={0.session_id!r} sequence={0.sequence} shard={0.shard}>".format(self)

    def is_resumable(self) -> bool:
        return self.session_id is not None

    def invalidate(self) -> None:
        self.session_id = None
        self.sequence = None
        self.resume_gateway_url = None


class DiscordWebSocket:
    # https://discord.com/developers/docs/topics/opcodes-and-status-codes
    DISPATCH                = 0
    HEARTBEAT               = 1
    IDENTIFY                = 2
    PRESENCE_UPDATE         = 3
    VOICE_STATE_UPDATE      = 4
    RESUME                  = 6
    RECONNECT               = 7
    REQUEST_GUILD_MEMBERS   = 8
    INVALID_SESSION         = 9
    HELLO                   = 10
    HEARTBEAT_ACK           = 11

    VERSION: t.ClassVar[int] = 10
    HELLO_TIMEOUT: t.ClassVar[float] = 20.0

    __slots__ = (
        "token",
        "intents",
        "url",
        "dispatcher",
        "session",
        "identifier",
        "presence",
        "compress",
        "large_threshold",
        "backoff",
        "ratelimiter",

        "state",
        "socket",
        "gateway_session",
        "keep_alive",
        "heartbeat_interval",
        "user_id",
        "_rng",
        "_ready",
        "_closed",
        "_close_event",
        "_error",
        "_owns_session",
    )

    def __init__(
        self,
        token: str,
        intents: int,
        *,
        url: str = DEFAULT_URL,
        dispatcher: t.Optional[EventDispatcher] = None,
        shard: t.Optional[t.Tuple[int, int]] = None,
        session: t.Optional[aiohttp.ClientSession] = None,
        identifier: t.Optional[Identifier] = None,
        presence: t.Optional[UpdateStatus] = None,
        compress: bool = True,
        large_threshold: int = 50,
        backoff: t.Optional[ExponentialBackoff] = None,
        ratelimiter: t.Optional[GatewayRatelimiter] = None,
        rng: t.Optional[random.Random] = None,
    ) -> None:
        self.token = token
        self.intents = int(intents)
        self.url = url
        self.dispatcher = dispatcher or EventDispatcher()
        self.session = session
        self.identifier = identifier
        self.presence = presence
        self.compress = compress
        self.large_threshold = large_threshold
        self.backoff = backoff or ExponentialBackoff()
        self.ratelimiter = ratelimiter or GatewayRatelimiter()

        self.state = GatewayState.DISCONNECTED
        self.socket: t.Optional[WebSocketConnection] = None
        self.gateway_session = GatewaySession(shard)
        self.keep_alive: t.Optional[KeepAlive] = None
        self.heartbeat_interval: t.Optional[float] = None
        self.user_id: t.Optional[Snowflake] = None
        self._rng = rng or random.Random()
        self._ready = asyncio.Event()
        self._closed = False
        self._close_event = asyncio.Event()
        self._error: t.Optional[BaseException] = None
        self._owns_session = session is None

    def __repr__(self) -> str:
        return f"<DiscordWebSocket state={self.state.value} shard={self.shard}>"

    @property
    def shard(self) -> t.Optional[t.Tuple[int, int]]:
        return self.gateway_session.shard

    @property
    def shard_id(self) -> int:
        return self.shard[0] if self.shard else 0

    @property
    def latency(self) -> t.Optional[float]:
        if self.keep_alive:
            return self.keep_alive.latency

        return None

    def is_closed(self) -> bool:
        return self._closed

    def is_ready(self) -> bool:
        return self.state is GatewayState.RUNNING

    async def wait_until_ready(self) -> None:
        """Waits for READY or RESUMED, raising if the connection failed."""
        await self._ready.wait()

        if self._error is not None:
            raise self._error

    # Connection

    def _gateway_url(self, resume: bool) -> str:
        url = self.url
        if resume and self.gateway_session.resume_gateway_url:
            url = self.gateway_session.resume_gateway_url

        query = {'v': self.VERSION, "encoding": "json"}
        if self.compress:
            query["compress"] = "zlib-stream"

        return url.rstrip('/') + "/?" + urlencode(query)

    async def connect(self, resume: bool = False) -> None:
        """Dials, waits for Hello, then identifies or resumes."""
        if self.session is None:
            self.session = aiohttp.ClientSession()

        resume = resume and self.gateway_session.is_resumable()

        self.state = GatewayState.CONNECTING
        self.socket = await WebSocketConnection.connect(self.session, self._gateway_url(resume), compress=self.compress)

        self.state = GatewayState.HELLO
        payload = await self._receive(self.HELLO_TIMEOUT)

        if payload.op != self.HELLO:
            _log.warning("Expected Hello, got op %s.", payload.op)
            await self._close_socket(CLOSE_ZOMBIE)
            raise errors.ReconnectWebSocket(resume=resume)

        await self.handle_payload(payload)

        if resume:
            self.state = GatewayState.RESUMING
            _log.info("Shard %s resuming session %s.", self.shard_id, self.gateway_session.session_id)
            await self.send(self.resume())
            return

        if self.identifier is not None:
            await self.identifier.wait(self.shard_id)

        self.state = GatewayState.IDENTIFYING
        await self.send(self.identify())

    async def run(self) -> None:
        """Keeps the connection alive until `close` or a fatal close code."""
        resume = False
        delay: t.Optional[float] = None

        while not self._closed:
            try:
                if delay:
                    await self._sleep(delay)
                    if self._closed:
                        break

                await self.connect(resume=resume)

                while True:
                    await self.poll_event()
            except errors.ReconnectWebSocket as exc:
                resume = exc.resume
                delay = exc.delay if exc.delay is not None else self.backoff.delay()
            except errors.ConnectionClosed as exc:
                await self._fail(exc)
                raise
            except (errors.WebSocketClosed, OSError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
                resume = self.gateway_session.is_resumable()
                delay = self.backoff.delay()

                if not self._closed:
                    _log.warning("Shard %s lost its connection (%s), reconnecting in %.2fs.", self.shard_id, exc, delay)

            self._stop_heartbeat()
            if self.socket is not None:
                await self._close_socket(CLOSE_ZOMBIE)

            if not self._closed:
                self.state = GatewayState.RECONNECTING
                self._ready.clear()

        self.state = GatewayState.DISCONNECTED

    async def _sleep(self, delay: float) -> None:
        with utils.suppress_all(asyncio.TimeoutError):
            await asyncio.wait_for(self._close_event.wait(), delay)

    async def _fail(self, exc: BaseException) -> None:
        _log.error("Shard %s closed for good: %s", self.shard_id, exc)

        self.state = GatewayState.FAILED
        self._error = exc
        self._stop_heartbeat()
        self.gateway_session.invalidate()
        self._ready.set()

    async def _receive(self, timeout: t.Optional[float]) -> Payload:
        assert self.socket

        try:
            return await self.socket.receive(timeout=timeout)
        except asyncio.TimeoutError:
            _log.warning("Shard %s received nothing for %ss.", self.shard_id, timeout)
            await self._close_socket(CLOSE_ZOMBIE)
            raise errors.ReconnectWebSocket(resume=True) from None
        except errors.WebSocketClosed as exc:
            self._stop_heartbeat()
            raise self._close_error(exc) from None

    def _close_error(self, exc: errors.WebSocketClosed) -> errors.GatewayError:
        code = exc.code

        if self._closed:
            return errors.ReconnectWebSocket(resume=False)

        if code in FATAL_CLOSE_CODES:
            return errors.ConnectionClosed(code, exc.message)

        if code in SESSION_CLOSE_CODES:
            _log.info("Shard %s session invalidated by close code %s.", self.shard_id, code)
            self.gateway_session.invalidate()
            return errors.ReconnectWebSocket(resume=False)

        _log.info("Shard %s closed with %s, resuming.", self.shard_id, code)
        return errors.ReconnectWebSocket(resume=True)

    async def poll_event(self) -> None:
        interval = self.heartbeat_interval or 30.0
        payload = await self._receive(interval * 2 + 20)

        if self.keep_alive:
            self.keep_alive.recv()

        try:
            await self.handle_payload(payload)
        except (KeyError, TypeError, ValueError) as exc:
            _log.warning("Shard %s skipped a malformed %r: %r", self.shard_id, payload, exc)

    async def handle_payload(self, payload: Payload) -> None:
        op = payload.op
        d = payload.data

        if op == self.DISPATCH:
            return await self._handle_dispatch(payload)

        if op == self.HEARTBEAT:
            return await self.send_heartbeat(self.heartbeat())

        if op == self.HEARTBEAT_ACK:
            if self.keep_alive:
                self.keep_alive.ack()
            return

        if op == self.HELLO:
            try:
                interval = float(d["heartbeat_interval"]) / 1000
            except (KeyError, TypeError, ValueError):
                _log.warning("Shard %s got a Hello without a heartbeat interval.", self.shard_id)
                await self._close_socket(CLOSE_ZOMBIE)
                raise errors.ReconnectWebSocket(resume=True) from None

            self.heartbeat_interval = interval
            self.ratelimiter.reserve_heartbeats(interval)

            self._stop_heartbeat()
            self.keep_alive = KeepAlive(self, interval, rng=self._rng)
            return self.keep_alive.start()

        if op == self.RECONNECT:
            _log.info("Shard %s was asked to reconnect.", self.shard_id)
            await self._close_socket(CLOSE_ZOMBIE)
            raise errors.ReconnectWebSocket(resume=True, delay=0)

        if op == self.INVALID_SESSION:
            if d is True:
                _log.info("Shard %s session invalidated, resuming.", self.shard_id)
                await self._close_socket(CLOSE_ZOMBIE)
                raise errors.ReconnectWebSocket(resume=True, delay=0)

            delay = self._rng.uniform(1, 5)
            _log.info("Shard %s session invalidated, identifying again in %.2fs.", self.shard_id, delay)

            self.gateway_session.invalidate()
            await self._close_socket(1000)
            raise errors.ReconnectWebSocket(resume=False, delay=delay)

        await self._unknown_payload(payload)

    async def _handle_dispatch(self, payload: Payload) -> None:
        seq = payload.sequence
        session = self.gateway_session

        if seq is not None:
            if not isinstance(seq, int):
                raise TypeError(f"sequence {seq!r} is not an integer")

            last = session.sequence

            if last is not None and seq <= last:
                _log.debug("Shard %s skipping replayed sequence %s.", self.shard_id, seq)
                return

            if last is not None and seq > last + 1:
                _log.warning("Shard %s missed events %s..%s, resuming.", self.shard_id, last + 1, seq - 1)
                await self._close_socket(CLOSE_ZOMBIE)
                raise errors.ReconnectWebSocket(resume=True, delay=0)

            session.sequence = seq

        name = payload.type or ""
        d = payload.data

        if name == "READY":
            if not isinstance(d, dict) or not d.get("session_id"):
                _log.warning("Shard %s got a READY without a session id, identifying again.", self.shard_id)
                session.invalidate()
                await self._close_socket(1000)
                raise errors.ReconnectWebSocket(resume=False)

            session.session_id = d["session_id"]
            session.resume_gateway_url = d.get("resume_gateway_url")

            with utils.suppress_all((TypeError, ValueError)):
                if d.get("shard"):
                    session.shard = tuple(int(i) for i in d["shard"])  # type: ignore

            with utils.suppress_all((KeyError, TypeError, ValueError)):
                self.user_id = Snowflake(d["user"]["id"])

            _log.info("Shard %s is ready, session %s.", self.shard_id, session.session_id)
            self._set_running()

        elif name == "RESUMED":
            _log.info("Shard %s resumed session %s.", self.shard_id, session.session_id)
            self._set_running()

        self.dispatcher.dispatch(Event(name, d, seq, self.shard))

    def _set_running(self) -> None:
        self.state = GatewayState.RUNNING
        self.backoff.reset()
        self._ready.set()

    async def _unknown_payload(self, payload: Payload, /) -> None:
        _log.debug("Shard %s ignoring unknown payload %r.", self.shard_id, payload)

    # Sending

    async def send(self, data: Packet) -> None:
        """Writes `data` right away, bypassing the command rate limit."""
        if self.socket is None:
            raise errors.WebSocketClosed(None, "not connected")

        await self.socket.send(data)

    async def send_command(self, data: Packet) -> None:
        await self.wait_until_ready()
        await self.ratelimiter.block()
        await self.send(data)

    async def send_heartbeat(self, packet: Packet) -> None:
        await self.send(packet)

    async def close_zombie(self) -> None:
        await self._close_socket(CLOSE_ZOMBIE)

    def _stop_heartbeat(self) -> None:
        if self.keep_alive:
            self.keep_alive.stop()
            self.keep_alive = None

    async def _close_socket(self, code: int) -> None:
        self._stop_heartbeat()

        if self.socket is not None:
            await self.socket.close(code)

    async def close(self, code: int = 1000) -> None:
        """Closes for good. A 1000 close also ends the session on Discord's side."""
        if self._closed:
            return

        self._closed = True
        self.state = GatewayState.CLOSING
        self._close_event.set()

        await self._close_socket(code)

        if code == 1000:
            self.gateway_session.invalidate()

        if self._error is None:
            self._error = errors.WebSocketClosed(code, "closed")
        self._ready.set()

        if self.session is not None and self._owns_session:
            with utils.suppress_all():
                await self.session.close()
            self.session = None

        self.state = GatewayState.DISCONNECTED

    # Commands

    async def update_voice_state(
        self,
        guild_id: SnowflakeLike,
        channel_id: t.Optional[SnowflakeLike],
        *,
        self_mute: bool = False,
        self_deaf: bool = False,
    ) -> None:
        """Joins, moves or leaves (``channel_id=None``) a voice channel."""
        await self.send_command({
            "op": self.VOICE_STATE_UPDATE,
            'd': {
                "guild_id": str(guild_id),
                "channel_id": str(channel_id) if channel_id is not None else None,
                "self_mute": self_mute,
                "self_deaf": self_deaf,
            },
        })

    async def request_guild_members(
        self,
        guild_id: SnowflakeLike,
        *,
        query: t.Optional[str] = None,
        limit: int = 0,
        user_ids: t.Optional[t.List[SnowflakeLike]] = None,
        presences: bool = False,
        nonce: t.Optional[str] = None,
    ) -> None:
        d: t.Dict[str, t.Any] = {
            "guild_id": str(guild_id),
            "limit": limit,
            "presences": presences,
        }

        if user_ids:
            d["user_ids"] = [str(u) for u in user_ids]
        else:
            d["query"] = query or ""

        if nonce:
            d["nonce"] = nonce

        await self.send_command({"op": self.REQUEST_GUILD_MEMBERS, 'd': d})

    async def update_status(
        self,
        status: str = "online",
        *,
        activities: t.Optional[t.List[t.Dict[str, t.Any]]] = None,
        since: t.Optional[int] = None,
        afk: bool = False,
    ) -> None:
        presence: UpdateStatus = {
            "since": since,
            "activities": activities or [],
            "status": status,
            "afk": afk,
        }

        self.presence = presence
        await self.send_command({"op": self.PRESENCE_UPDATE, 'd': presence})

    # Packets

    def identify(self) -> Packet:
        """Returns the `IDENTIFY` packet."""
        d: t.Dict[str, t.Any] = {
            "token": self.token,
            "intents": self.intents,
            "properties": {
                "os": sys.platform,
                "browser": "tapioca",
                "device": "tapioca",
            },
            "compress": False,
            "large_threshold": self.large_threshold,
        }

        if self.shard is not None:
            d["shard"] = list(self.shard)

        if self.presence is not None:
            d["presence"] = self.presence

        return {"op": self.IDENTIFY, 'd': d}

    def resume(self) -> Packet:
        """Returns the `RESUME` packet."""
        return {
            "op": self.RESUME,
            'd': {
                "token": self.token,
                "session_id": self.gateway_session.session_id,
                "seq": self.gateway_session.sequence,
            }
        }

    def heartbeat(self) -> Packet:
        """Returns the `HEARTBEAT` packet."""
        return {
            "op": self.HEARTBEAT,
            'd': self.gateway_session.sequence,
        }
