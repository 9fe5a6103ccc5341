import typing as t

from .user import User
from .snowflake import Snowflake


class Attachment(t.TypedDict, total=False):
    id: Snowflake
    filename: str
    size: int
    url: str
    content_type: str


class Message(t.TypedDict, total=False):
    id: Snowflake
    channel_id: Snowflake
    guild_id: Snowflake
    author: User
    content: str
    timestamp: str
    edited_timestamp: t.Optional[str]
    tts: bool
    mention_everyone: bool
    attachments: t.List[Attachment]
    embeds: t.List[t.Dict[str, t.Any]]
    pinned: bool
    type: int
