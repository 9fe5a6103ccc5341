from .snowflake import Snowflake
from .user import User, PartialUser
from .channel import Channel, PartialChannel
from .emoji import Emoji, PartialEmoji, CreateEmoji, EditEmoji
from .guild import Guild, PartialGuild, UnavailableGuild, Member
from .invite import Invite
from .message import Message, Attachment
from .gateway import (
    GatewayPayload,
    GatewayBotPayload,
    SessionStartLimit,
    Packet,
    Payload,
    Hello,
    Ready,
    Activity,
    UpdateStatus,
    VoiceStateUpdate,
    VoiceServerUpdate,
)
from .voice import (
    EncryptionMode,
    VoiceHello,
    VoiceReady,
    SessionDescription,
    VoiceRegion,
)
