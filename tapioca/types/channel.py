import typing as t
from .snowflake import Snowflake

ChannelType = t.Literal[0, 1, 2, 3, 4, 5, 10, 11, 12, 13, 14, 15, 16]


class PartialChannel(t.TypedDict):
    id: Snowflake
    name: t.Optional[str]
    type: ChannelType


class Channel(PartialChannel, total=False):
    guild_id: Snowflake
    position: int
    topic: t.Optional[str]
    nsfw: bool
    last_message_id: t.Optional[Snowflake]
    bitrate: int
    user_limit: int
    rate_limit_per_user: int
    parent_id: t.Optional[Snowflake]
