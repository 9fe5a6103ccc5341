from .core import (
    DiscordWebSocket,
    GatewaySession,
    GatewayState,
    DEFAULT_URL,
    FATAL_CLOSE_CODES,
    SESSION_CLOSE_CODES,
)
from .identify import Identifier
from .intents import Intents
from .keep_alive import KeepAlive, VoiceKeepAlive
from .ratelimit import GatewayRatelimiter

__all__ = (
    "DiscordWebSocket",
    "GatewaySession",
    "GatewayState",
    "DEFAULT_URL",
    "FATAL_CLOSE_CODES",
    "SESSION_CLOSE_CODES",
    "Identifier",
    "Intents",
    "KeepAlive",
    "VoiceKeepAlive",
    "GatewayRatelimiter",
)
