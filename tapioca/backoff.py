import random
import typing as t


class ExponentialBackoff:
    """Reconnect delays that double on every failure.

    Each delay is drawn uniformly between the floor and the current step
    and is clamped to ``[minimum, maximum]``. Every instance owns its own
    random generator, so two connections never share jitter.
    """

    __slots__ = (
        "minimum",
        "maximum",
        "factor",

        "_attempt",
        "_rng",
    )

    def __init__(
        self,
        minimum: float = 1.0,
        maximum: float = 120.0,
        *,
        factor: float = 2.0,
        seed: t.Optional[int] = None,
    ) -> None:
        if minimum <= 0 or maximum < minimum:
            raise ValueError("backoff needs 0 < minimum <= maximum")

        self.minimum = minimum
        self.maximum = maximum
        self.factor = factor

        self._attempt = 0
        self._rng = random.Random(seed)

    @property
    def attempts(self) -> int:
        return self._attempt

    def delay(self) -> float:
        step = self.minimum * (self.factor ** self._attempt)
        self._attempt += 1

        if step >= self.maximum:
            # stop growing once the cap is hit
            self._attempt -= 1
            step = self.maximum

        jittered = self._rng.random() * (step - self.minimum) + self.minimum
        return min(max(jittered, self.minimum), self.maximum)

    def reset(self) -> None:
        self._attempt = 0
