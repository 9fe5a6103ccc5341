import typing as t

from .user import User
from .snowflake import Snowflake


class PartialEmoji(t.TypedDict):
    # unicode emoji have no id, deleted custom ones have no name
    id: t.Optional[Snowflake]
    name: t.Optional[str]


class Emoji(PartialEmoji, total=False):
    roles: t.List[Snowflake]
    user: User
    require_colons: bool
    managed: bool
    animated: bool
    available: bool


class CreateEmoji(t.TypedDict):
    name: str
    image: str  # data URI
    roles: t.List[Snowflake]


class EditEmoji(t.TypedDict, total=False):
    name: str
    roles: t.Optional[t.List[Snowflake]]
