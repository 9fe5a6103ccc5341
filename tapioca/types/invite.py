import typing as t

from .user import User
from .guild import PartialGuild
from .channel import PartialChannel

TargetType = t.Literal[1, 2]


class Invite(t.TypedDict, total=False):
    code: str
    guild: PartialGuild
    channel: t.Optional[PartialChannel]
    inviter: User
    target_type: TargetType
    target_user: User
    approximate_presence_count: int
    approximate_member_count: int
    expires_at: t.Optional[str]
