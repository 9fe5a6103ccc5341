import asyncio
import logging
import typing as t
from urllib.parse import urlsplit

import aiohttp

from .. import errors
from ..gateway.keep_alive import VoiceKeepAlive, CLOSE_ZOMBIE
from ..types import Packet, VoiceReady, SessionDescription
from ..ws import Payload, WebSocketConnection

_log = logging.getLogger(__name__)

FATAL_VOICE_CLOSE_CODES = frozenset({4004, 4006, 4011, 4014})
"""Authentication failed, session invalid, server not found and
disconnected (kicked, moved out or channel deleted)."""


def voice_url(endpoint: str, version: int) -> str:
    """``wss://<endpoint>/?v=<version>``, an endpoint with a scheme is kept."""
    if urlsplit(endpoint).scheme in ("ws", "wss"):
        url = endpoint
    else:
        url = "wss://" + endpoint

    if '?' in url:
        return url

    return url.rstrip('/') + f"/?v={version}"


class DiscordVoiceWebSocket:
    IDENTIFY            = 0
    SELECT_PROTOCOL     = 1
    READY               = 2
    HEARTBEAT           = 3
    SESSION_DESCRIPTION = 4
    SPEAKING            = 5
    HEARTBEAT_ACK       = 6
    RESUME              = 7
    HELLO               = 8
    RESUMED             = 9
    CLIENT_DISCONNECT   = 13

    VERSION: t.ClassVar[int] = 4

    __slots__ = (
        "socket",
        "keep_alive",
        "ssrc",
    )

    def __init__(self, socket: WebSocketConnection) -> None:
        self.socket = socket
        self.keep_alive: t.Optional[VoiceKeepAlive] = None
        self.ssrc: t.Optional[int] = None

    @classmethod
    async def connect(
        cls,
        session: aiohttp.ClientSession,
        endpoint: str,
        *,
        timeout: float = 30.0,
    ) -> "DiscordVoiceWebSocket":
        socket = await WebSocketConnection.connect(session, voice_url(endpoint, cls.VERSION), timeout=timeout)
        return cls(socket)

    @property
    def latency(self) -> t.Optional[float]:
        if self.keep_alive:
            return self.keep_alive.latency

        return None

    def is_closed(self) -> bool:
        return self.socket.is_closed()

    async def close(self, code: int = 1000) -> None:
        if self.keep_alive:
            self.keep_alive.stop()
            self.keep_alive = None

        await self.socket.close(code)

    async def close_zombie(self) -> None:
        await self.close(CLOSE_ZOMBIE)

    async def send(self, data: Packet) -> None:
        await self.socket.send(data)

    async def send_heartbeat(self, packet: Packet) -> None:
        await self.send(packet)

    async def handle_payload(self, payload: Payload) -> bool:
        """Handles Hello and heartbeat acks, returns whether it did."""
        if payload.op == self.HELLO:
            try:
                interval = float(payload.data["heartbeat_interval"]) / 1000
            except (KeyError, TypeError, ValueError):
                _log.warning("Voice Hello without a heartbeat interval, closing.")
                await self.close_zombie()
                raise errors.WebSocketClosed(CLOSE_ZOMBIE, "malformed Hello") from None

            if self.keep_alive:
                self.keep_alive.stop()

            self.keep_alive = VoiceKeepAlive(self, interval)
            self.keep_alive.start()
            return True

        if payload.op == self.HEARTBEAT_ACK:
            if self.keep_alive:
                self.keep_alive.ack_nonce(payload.data)
            return True

        return False

    async def receive(self, timeout: t.Optional[float] = None) -> Payload:
        """The next payload that is not Hello or a heartbeat ack."""
        while True:
            payload = await self.socket.receive(timeout=timeout)

            if self.keep_alive:
                self.keep_alive.recv()

            if not await self.handle_payload(payload):
                return payload

    async def wait_for_op(self, op: int, *, timeout: float) -> Payload:
        async def wait() -> Payload:
            while True:
                payload = await self.receive()
                if payload.op == op:
                    return payload

                _log.debug("Ignoring voice op %s while waiting for %s.", payload.op, op)

        try:
            return await asyncio.wait_for(wait(), timeout)
        except asyncio.TimeoutError:
            raise errors.VoiceTimeout(f"timed out waiting for voice op {op}") from None

    async def wait_for_hello(self, *, timeout: float) -> None:
        async def wait() -> None:
            while self.keep_alive is None:
                payload = await self.socket.receive()

                if not await self.handle_payload(payload):
                    _log.debug("Ignoring voice op %s before Hello.", payload.op)

        try:
            await asyncio.wait_for(wait(), timeout)
        except asyncio.TimeoutError:
            raise errors.VoiceTimeout("no voice Hello") from None

    async def identify(
        self,
        *,
        server_id: str,
        user_id: str,
        session_id: str,
        token: str,
        timeout: float = 10.0,
    ) -> VoiceReady:
        """Waits for Hello, sends Identify and returns the Ready payload."""
        if self.keep_alive is None:
            await self.wait_for_hello(timeout=timeout)

        await self.send({
            "op": self.IDENTIFY,
            'd': {
                "server_id": server_id,
                "user_id": user_id,
                "session_id": session_id,
                "token": token,
            },
        })

        ready: VoiceReady = (await self.wait_for_op(self.READY, timeout=timeout)).data
        self.ssrc = ready["ssrc"]

        return ready

    async def select_protocol(self, address: str, port: int, mode: str) -> None:
        await self.send({
            "op": self.SELECT_PROTOCOL,
            'd': {
                "protocol": "udp",
                "data": {
                    "address": address,
                    "port": port,
                    "mode": mode,
                },
            },
        })

    async def session_description(self, *, timeout: float = 10.0) -> SessionDescription:
        return (await self.wait_for_op(self.SESSION_DESCRIPTION, timeout=timeout)).data

    async def speaking(self, flags: int = 1) -> None:
        await self.send({
            "op": self.SPEAKING,
            'd': {
                "speaking": flags,
                "delay": 0,
                "ssrc": self.ssrc,
            },
        })

    def heartbeat(self) -> Packet:
        return {"op": self.HEARTBEAT, 'd': None}

    async def poll_event(self) -> Payload:
        return await self.receive()
