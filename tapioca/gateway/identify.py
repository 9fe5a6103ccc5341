import time
import asyncio
import logging
import typing as t

from ..types import SessionStartLimit

_log = logging.getLogger(__name__)

IDENTIFY_WINDOW = 5.0
DAILY_WINDOW = 24 * 60 * 60.0


class Identifier:
    """Paces Identify across every shard of one bot.

    ``max_concurrency`` shards may identify per 5 seconds, shard `n` in
    bucket ``n % max_concurrency``, and the whole bot has a daily budget
    of session starts.
    """

    __slots__ = (
        "max_concurrency",

        "_buckets",
        "_daily_total",
        "_daily_remaining",
        "_daily_reset",
        "_daily_lock",
    )

    def __init__(
        self,
        max_concurrency: int = 1,
        *,
        total: int = 1000,
        remaining: t.Optional[int] = None,
        reset_after: float = DAILY_WINDOW,
    ) -> None:
        self.max_concurrency = max(max_concurrency, 1)

        self._buckets: t.Dict[int, t.Tuple[asyncio.Lock, t.List[float]]] = {}
        self._daily_total = total
        self._daily_remaining = total if remaining is None else remaining
        self._daily_reset = time.monotonic() + reset_after
        self._daily_lock = asyncio.Lock()

    @classmethod
    def from_limit(cls, limit: SessionStartLimit) -> "Identifier":
        return cls(
            limit.get("max_concurrency", 1),
            total=limit.get("total", 1000),
            remaining=limit.get("remaining"),
            reset_after=limit.get("reset_after", DAILY_WINDOW * 1000) / 1000,
        )

    @property
    def daily_remaining(self) -> int:
        return self._daily_remaining

    def _bucket(self, shard_id: int) -> t.Tuple[asyncio.Lock, t.List[float]]:
        key = shard_id % self.max_concurrency

        try:
            return self._buckets[key]
        except KeyError:
            bucket = self._buckets[key] = (asyncio.Lock(), [float("-inf")])
            return bucket

    async def wait(self, shard_id: int = 0) -> None:
        async with self._daily_lock:
            now = time.monotonic()

            if now >= self._daily_reset:
                self._daily_remaining = self._daily_total
                self._daily_reset = now + DAILY_WINDOW

            if self._daily_remaining <= 0:
                delay = self._daily_reset - now
                _log.warning("Out of session starts, waiting %.0fs for the daily reset.", delay)
                await asyncio.sleep(delay)
                self._daily_reset = time.monotonic() + DAILY_WINDOW
                self._daily_remaining = self._daily_total

            self._daily_remaining -= 1

        lock, last = self._bucket(shard_id)

        async with lock:
            delay = last[0] + IDENTIFY_WINDOW - time.monotonic()
            if delay > 0:
                _log.debug("Shard %d waits %.2fs to identify.", shard_id, delay)
                await asyncio.sleep(delay)

            last[0] = time.monotonic()
