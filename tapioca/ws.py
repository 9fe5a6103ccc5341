import zlib
import asyncio
import logging
import typing as t

import aiohttp
from aiohttp import WSMsgType as MType

from . import errors, utils

_log = logging.getLogger(__name__)

ZLIB_SUFFIX = b'\x00\x00\xff\xff'


class Payload:
    """One Gateway or voice Gateway message: ``{op, d, s, t}``."""

    __slots__ = ("op", "data", "sequence", "type")

    def __init__(self, op: int, data: t.Any = None, sequence: t.Optional[int] = None, type: t.Optional[str] = None) -> None:
        self.op = op
        self.data = data
        self.sequence = sequence
        self.type = type

    def __repr__(self) -> str:
        return "<Payload op={0.op} type={0.type!r} sequence={0.sequence}>".format(self)

    @classmethod
    def from_dict(cls, raw: t.Mapping[str, t.Any]) -> "Payload":
        return cls(int(raw["op"]), raw.get('d'), raw.get('s'), raw.get('t'))

    def to_dict(self) -> t.Dict[str, t.Any]:
        return {"op": self.op, 'd': self.data}


class WebSocketConnection:
    """An aiohttp WebSocket speaking JSON, with optional zlib-stream.

    Each connection owns its inflater: a compressed stream starts over
    with every new connection, resumes included. Writes go through a
    single writer task so frames never interleave.
    """

    __slots__ = (
        "socket",
        "compress",

        "_buffer",
        "_inflator",
        "_queue",
        "_writer",
        "_closed",
        "_close_code",
    )

    def __init__(self, socket: aiohttp.ClientWebSocketResponse, *, compress: bool = False) -> None:
        self.socket = socket
        self.compress = compress

        self._buffer = bytearray()
        self._inflator = zlib.decompressobj()
        self._queue: "asyncio.Queue[t.Tuple[str, asyncio.Future]]" = asyncio.Queue()
        self._writer = asyncio.ensure_future(self._write_loop())
        self._closed = False
        self._close_code: t.Optional[int] = None

    @classmethod
    async def connect(
        cls,
        session: aiohttp.ClientSession,
        url: str,
        *,
        compress: bool = False,
        timeout: float = 30.0,
    ) -> "WebSocketConnection":
        _log.debug("Connecting to %s.", url)

        try:
            socket = await asyncio.wait_for(
                session.ws_connect(url, max_msg_size=0, autoclose=True, autoping=True),
                timeout,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise errors.WebSocketClosed(None, f"failed to connect: {exc}") from exc

        return cls(socket, compress=compress)

    @property
    def close_code(self) -> t.Optional[int]:
        if self._close_code is not None:
            return self._close_code

        return self.socket.close_code

    def is_closed(self) -> bool:
        return self._closed or self.socket.closed

    def _inflate(self, data: bytes) -> t.Optional[bytes]:
        self._buffer.extend(data)

        if len(data) < 4 or data[-4:] != ZLIB_SUFFIX:
            return None

        try:
            return self._inflator.decompress(self._buffer)
        finally:
            self._buffer.clear()

    async def receive(self, timeout: t.Optional[float] = None) -> Payload:
        """The next decodable payload.

        Raises `errors.WebSocketClosed` once the connection is gone and
        `asyncio.TimeoutError` when nothing arrives within `timeout`.
        """
        while True:
            if self._closed:
                raise errors.WebSocketClosed(self.close_code)

            message = await self.socket.receive(timeout=timeout)
            type_ = message.type

            if type_ is MType.TEXT:
                data: t.Union[str, bytes, None] = message.data
            elif type_ is MType.BINARY:
                if not self.compress:
                    data = message.data
                else:
                    try:
                        data = self._inflate(message.data)
                    except zlib.error as exc:
                        await self.close(4000)
                        raise errors.WebSocketClosed(4000, f"corrupt zlib stream: {exc}") from exc

                    if data is None:
                        continue
            elif type_ is MType.CLOSE:
                await self._shutdown()
                raise errors.WebSocketClosed(message.data, message.extra or "")
            elif type_ in (MType.CLOSING, MType.CLOSED):
                await self._shutdown()
                raise errors.WebSocketClosed(self.close_code)
            elif type_ is MType.ERROR:
                await self.close(4000)
                raise errors.WebSocketClosed(None, str(message.data))
            else:
                continue

            try:
                raw = utils.from_json(data)
                return Payload.from_dict(raw)
            except (ValueError, KeyError, TypeError) as exc:
                _log.warning("Skipping undecodable frame: %s.", exc)

    async def send(self, data: t.Mapping[str, t.Any]) -> None:
        """Queues a frame and waits until it is written."""
        if self._closed:
            raise errors.WebSocketClosed(self.close_code)

        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((utils.to_json(data), future))
        await future

    async def _write_loop(self) -> None:
        while True:
            text, future = await self._queue.get()

            # the sender gave up before the frame started
            if future.done():
                continue

            try:
                await self.socket.send_str(text)
            except asyncio.CancelledError:
                if not future.done():
                    future.set_exception(errors.WebSocketClosed(self.close_code))
                raise
            except (ConnectionError, RuntimeError, aiohttp.ClientError) as exc:
                if not future.done():
                    future.set_exception(errors.WebSocketClosed(self.close_code, str(exc)))
                continue

            if not future.done():
                future.set_result(None)

    async def _shutdown(self) -> None:
        if self._closed:
            return

        self._closed = True
        self._writer.cancel()
        await asyncio.gather(self._writer, return_exceptions=True)

        while not self._queue.empty():
            _, future = self._queue.get_nowait()
            if not future.done():
                future.set_exception(errors.WebSocketClosed(self.close_code))

    async def close(self, code: int = 1000) -> None:
        if self._closed:
            return

        self._close_code = code
        await self._shutdown()

        with utils.suppress_all():
            await self.socket.close(code=code)
