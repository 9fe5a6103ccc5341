import time
import asyncio
import logging
import typing as t

from .udp import FRAME_DURATION, SILENCE_FRAME

_log = logging.getLogger(__name__)

SILENCE_TICKS = 5
"""Empty ticks before the player goes quiet, and silence frames sent then."""


class AudioPlayer:
    """Sends one Opus frame per 20ms tick.

    Frames come from a bounded queue. Late ticks are not caught up: the
    next tick is scheduled from the current time instead. After
    `SILENCE_TICKS` ticks with nothing to play, five silence frames are
    sent, speaking is turned off and the player sleeps until a frame is
    queued again.
    """

    __slots__ = (
        "send_frame",
        "set_speaking",

        "_queue",
        "_task",
        "_speaking",
        "_next_tick",
    )

    def __init__(
        self,
        send_frame: t.Callable[[bytes], t.Any],
        set_speaking: t.Callable[[bool], t.Awaitable[None]],
        *,
        maxsize: int = 50,
    ) -> None:
        self.send_frame = send_frame
        self.set_speaking = set_speaking

        self._queue: "asyncio.Queue[bytes]" = asyncio.Queue(maxsize)
        self._task: t.Optional[asyncio.Task] = None
        self._speaking = False
        self._next_tick = 0.0

    @property
    def speaking(self) -> bool:
        return self._speaking

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.ensure_future(self.run())

    async def stop(self) -> None:
        if self._task is None:
            return

        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    async def put(self, frame: bytes) -> None:
        """Queues a frame, waiting while the queue is full."""
        await self._queue.put(frame)

    def clear(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()

    async def _tick(self) -> None:
        self._next_tick += FRAME_DURATION
        delay = self._next_tick - time.monotonic()

        if delay > 0:
            await asyncio.sleep(delay)
        else:
            self._next_tick = time.monotonic()

    async def run(self) -> None:
        silent = 0

        while True:
            if not self._speaking:
                frame = await self._queue.get()

                await self.set_speaking(True)
                self._speaking = True
                self._next_tick = time.monotonic()
                silent = 0
            else:
                await self._tick()

                try:
                    frame = self._queue.get_nowait()
                except asyncio.QueueEmpty:
                    silent += 1

                    if silent >= SILENCE_TICKS:
                        await self._go_quiet()

                    continue

            silent = 0
            self.send_frame(frame)

    async def _go_quiet(self) -> None:
        for i in range(SILENCE_TICKS):
            if i:
                await self._tick()
            self.send_frame(SILENCE_FRAME)

        self._speaking = False
        await self.set_speaking(False)
