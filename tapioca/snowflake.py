import datetime
import typing as t

DISCORD_EPOCH = 1420070400000
"""First millisecond of 2015, in unix milliseconds."""

_MAX = (1 << 64) - 1


class Snowflake(int):
    """A Discord id.

    Discord sends ids as decimal strings, this accepts both strings and
    ints and keeps the integer semantics (ordering, hashing). Use `str()`
    to serialize it back.
    """

    __slots__ = ()

    def __new__(cls, value: t.Union[int, str, "Snowflake"]) -> "Snowflake":
        if isinstance(value, str):
            value = value.strip().strip('"')

        self = super().__new__(cls, value)

        if not 0 <= self <= _MAX:
            raise ValueError(f"{value!r} is not a valid snowflake")

        return self

    def __repr__(self) -> str:
        return f"{type(self).__name__}({int(self)})"

    def __str__(self) -> str:
        return int.__repr__(self)

    @classmethod
    def from_datetime(cls, when: datetime.datetime) -> "Snowflake":
        """A snowflake usable as a pagination bound for `when`."""
        ms = int(when.timestamp() * 1000)
        return cls(max(ms - DISCORD_EPOCH, 0) << 22)

    @property
    def timestamp(self) -> int:
        """Unix milliseconds this id was generated at."""
        return (self >> 22) + DISCORD_EPOCH

    @property
    def created_at(self) -> datetime.datetime:
        return datetime.datetime.fromtimestamp(self.timestamp / 1000, tz=datetime.timezone.utc)

    @property
    def worker_id(self) -> int:
        return (self & 0x3E0000) >> 17

    @property
    def process_id(self) -> int:
        return (self & 0x1F000) >> 12

    @property
    def increment(self) -> int:
        return self & 0xFFF


class GuildID(Snowflake):
    __slots__ = ()


class ChannelID(Snowflake):
    __slots__ = ()


class UserID(Snowflake):
    __slots__ = ()


class MessageID(Snowflake):
    __slots__ = ()


class WebhookID(Snowflake):
    __slots__ = ()


class ApplicationID(Snowflake):
    __slots__ = ()


class InteractionID(Snowflake):
    __slots__ = ()


class RoleID(Snowflake):
    __slots__ = ()


class EmojiID(Snowflake):
    __slots__ = ()


class EventID(Snowflake):
    __slots__ = ()


class CommandID(Snowflake):
    __slots__ = ()


SnowflakeLike = t.Union[Snowflake, int, str]
