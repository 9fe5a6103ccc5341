__version__ = "0.1.0"

from . import types, errors
from .backoff import ExponentialBackoff
from .bot import Bot
from .dispatcher import Event, EventDispatcher, Subscription
from .gateway import DiscordWebSocket, Intents
from .http import DiscordHTTPClient, HTTPClient, RateLimiter, Route, File
from .image import Image
from .message import Embed, EmbedField, EmbedFooter, EmbedAuthor, AllowedMentions, MessageReference, SendMessageData
from .snowflake import Snowflake
from .utils import MISSING
from .voice import VoiceClient

__all__ = (
    "__version__",
    "types",
    "errors",
    "ExponentialBackoff",
    "Bot",
    "Event",
    "EventDispatcher",
    "Subscription",
    "DiscordWebSocket",
    "Intents",
    "DiscordHTTPClient",
    "HTTPClient",
    "RateLimiter",
    "Route",
    "File",
    "Image",
    "Embed",
    "EmbedField",
    "EmbedFooter",
    "EmbedAuthor",
    "AllowedMentions",
    "MessageReference",
    "SendMessageData",
    "Snowflake",
    "MISSING",
    "VoiceClient",
)
