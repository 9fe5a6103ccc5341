import typing as t
from .user import User
from .emoji import Emoji
from .snowflake import Snowflake


class UnavailableGuild(t.TypedDict):
    id: Snowflake
    unavailable: bool


class PartialGuild(t.TypedDict):
    id: Snowflake
    name: str
    icon: t.Optional[str]


class Guild(PartialGuild, total=False):
    owner_id: Snowflake
    splash: t.Optional[str]
    afk_channel_id: t.Optional[Snowflake]
    verification_level: int
    roles: t.List[t.Dict[str, t.Any]]
    emojis: t.List[Emoji]
    features: t.List[str]
    member_count: int


class Member(t.TypedDict, total=False):
    user: User
    nick: t.Optional[str]
    roles: t.List[Snowflake]
    joined_at: str
    deaf: bool
    mute: bool
