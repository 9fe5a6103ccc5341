import time
import asyncio
import logging
import typing as t

_log = logging.getLogger(__name__)


class GatewayRatelimiter:
    """Limits outgoing Gateway commands to `count` per `per` seconds.

    Discord allows 120 commands a minute, heartbeats included. Heartbeats
    never wait here, instead the slots they will use during a window are
    reserved so commands cannot starve them.
    """

    __slots__ = (
        "count",
        "per",
        "reserved",

        "_window",
        "_remaining",
        "_lock",
    )

    def __init__(self, count: int = 120, per: float = 60.0) -> None:
        self.count = count
        self.per = per
        self.reserved = 0

        self._window = 0.0
        self._remaining = count
        self._lock = asyncio.Lock()

    def reserve_heartbeats(self, interval: float) -> None:
        """Reserves a slot for every heartbeat sent at `interval` seconds."""
        # one extra in case a beat lands on the window edge
        self.reserved = min(int(self.per // interval) + 1, self.count - 1) if interval > 0 else 0

    @property
    def capacity(self) -> int:
        return max(self.count - self.reserved, 1)

    def get_delay(self) -> float:
        now = time.monotonic()

        if now > self._window + self.per:
            self._window = now
            self._remaining = self.capacity

        if self._remaining <= 0:
            return self._window + self.per - now

        self._remaining -= 1
        return 0.0

    async def block(self) -> None:
        async with self._lock:
            while True:
                delay = self.get_delay()
                if not delay:
                    return

                _log.warning("Gateway command rate limit hit, waiting %.2fs.", delay)
                await asyncio.sleep(delay)
