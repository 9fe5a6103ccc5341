import time
import random
import asyncio
import logging
import typing as t

from .. import errors

_log = logging.getLogger(__name__)

CLOSE_ZOMBIE = 4000


class _Socket(t.Protocol):
    def heartbeat(self) -> t.Dict[str, t.Any]:
        ...

    async def send_heartbeat(self, packet: t.Dict[str, t.Any]) -> None:
        ...

    async def close_zombie(self) -> None:
        ...


class KeepAlive:
    """The heartbeat task of one connection.

    The first beat goes out after ``interval * jitter`` and then every
    `interval` seconds. A beat still unacknowledged when the next one is
    due means the connection is a zombie: it is closed with 4000 so the
    owner resumes on a fresh one.
    """

    __slots__ = (
        "ws",
        "interval",

        "latency",
        "_task",
        "_rng",
        "_acked",
        "_last_ack",
        "_last_send",
        "_last_recv",
    )

    def __init__(self, ws: _Socket, interval: float, *, rng: t.Optional[random.Random] = None) -> None:
        self.ws = ws
        self.interval = interval

        self.latency: t.Optional[float] = None
        self._task: t.Optional[asyncio.Task] = None
        self._rng = rng or random.Random()
        self._acked = True
        self._last_ack = time.perf_counter()
        self._last_send = time.perf_counter()
        self._last_recv = time.perf_counter()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} interval={self.interval} latency={self.latency}>"

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.ensure_future(self.run())

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self) -> None:
        await asyncio.sleep(self.interval * self._rng.random())

        while True:
            if not self._acked:
                _log.warning(
                    "No heartbeat ack for %.1fs, closing the zombie connection.",
                    time.perf_counter() - self._last_send,
                )
                await self.ws.close_zombie()
                return

            try:
                await self.beat()
            except errors.WebSocketClosed:
                _log.debug("Connection closed while sending a heartbeat.")
                return

            await asyncio.sleep(self.interval)

    async def beat(self) -> None:
        packet = self.ws.heartbeat()
        self._acked = False

        await self.ws.send_heartbeat(packet)
        self.send()

    def stop(self) -> None:
        if self._task is None:
            return

        # the task may be stopping itself from close_zombie
        if self._task is not asyncio.current_task():
            self._task.cancel()

        self._task = None

    def ack(self) -> None:
        now = time.perf_counter()
        self.latency = now - self._last_send
        self._last_ack = now
        self._acked = True

    def recv(self) -> None:
        self._last_recv = time.perf_counter()

    def send(self) -> None:
        self._last_send = time.perf_counter()


class VoiceKeepAlive(KeepAlive):
    """Voice heartbeats carry a nonce the server echoes in its ack."""

    __slots__ = ("_nonce",)

    def __init__(self, ws: _Socket, interval: float, **kwargs: t.Any) -> None:
        super().__init__(ws, interval, **kwargs)
        self._nonce: t.Optional[int] = None

    @staticmethod
    def make_nonce() -> int:
        return int(time.time() * 1000)

    async def beat(self) -> None:
        self._nonce = self.make_nonce()
        packet = self.ws.heartbeat()
        packet['d'] = self._nonce
        self._acked = False

        await self.ws.send_heartbeat(packet)
        self.send()

    def ack_nonce(self, nonce: t.Any) -> None:
        if self._nonce is not None and nonce != self._nonce:
            _log.debug("Voice heartbeat ack for unknown nonce %r.", nonce)
            return

        self.ack()
