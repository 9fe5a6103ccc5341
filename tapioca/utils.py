import sys
import json
import logging
import typing as t

T = t.TypeVar('T')


class _MissingSentinel:
    __slots__ = ()

    def __bool__(self) -> bool:
        return False

    def __eq__(self, other: object) -> bool:
        return other is self

    def __hash__(self) -> int:
        return 0

    def __repr__(self) -> str:
        return "MISSING"


MISSING: t.Any = _MissingSentinel()
"""Marks a field that was not given at all, as opposed to `None` (JSON null)."""


class suppress_all:
    __slots__ = "exc"

    def __init__(self, exc: t.Type[BaseException] = Exception) -> None:
        self.exc = exc

    def __enter__(self) -> None:
        return

    def __exit__(self, t: t.Type[BaseException], *_: t.Any) -> bool:
        if not t:
            return False

        return issubclass(t, self.exc)


def to_json(obj: t.Any) -> str:
    return json.dumps(obj, separators=(',', ':'), ensure_ascii=True)


def from_json(data: t.Union[str, bytes]) -> t.Any:
    return json.loads(data)


def strip_missing(data: t.Mapping[str, t.Any]) -> t.Dict[str, t.Any]:
    """Drops every `MISSING` value, keeping `None` so it is sent as null."""
    return {k: v for k, v in data.items() if v is not MISSING}


def chunks(items: t.Sequence[T], size: int) -> t.Iterator[t.Sequence[T]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def setup_logging(level: int = logging.INFO, *, handler: t.Optional[logging.Handler] = None) -> None:
    """Attaches a stream handler to the library logger.

    The library itself never configures logging, this is only a helper
    for scripts that want output without setting up `logging` themselves.
    """
    if handler is None:
        handler = logging.StreamHandler(sys.stderr)

    fmt = logging.Formatter("[{asctime}] [{levelname:<8}] {name}: {message}", "%Y-%m-%d %H:%M:%S", style='{')
    handler.setFormatter(fmt)

    logger = logging.getLogger("tapioca")
    logger.setLevel(level)
    logger.addHandler(handler)
