import typing as t

from .user import User
from .guild import UnavailableGuild
from .snowflake import Snowflake


class GatewayPayload(t.TypedDict):
    url: str


class SessionStartLimit(t.TypedDict):
    total: int
    remaining: int
    reset_after: int
    max_concurrency: int


class GatewayBotPayload(t.TypedDict):
    url: str
    shards: int
    session_start_limit: SessionStartLimit


class Packet(t.TypedDict):
    op: int
    d: t.Any


class Payload(Packet, total=False):
    s: t.Optional[int]
    t: t.Optional[str]


class Hello(t.TypedDict):
    heartbeat_interval: int


class Ready(t.TypedDict, total=False):
    v: int
    user: User
    guilds: t.List[UnavailableGuild]
    session_id: str
    resume_gateway_url: str
    shard: t.List[int]


class Activity(t.TypedDict, total=False):
    name: str
    type: int
    url: t.Optional[str]


class UpdateStatus(t.TypedDict, total=False):
    since: t.Optional[int]
    activities: t.List[Activity]
    status: str
    afk: bool


class VoiceStateUpdate(t.TypedDict, total=False):
    guild_id: t.Optional[Snowflake]
    channel_id: t.Optional[Snowflake]
    user_id: Snowflake
    session_id: str
    self_mute: bool
    self_deaf: bool


class VoiceServerUpdate(t.TypedDict):
    token: str
    guild_id: Snowflake
    endpoint: t.Optional[str]
