from .client import VoiceClient, VoiceSession, VoiceState
from .gateway import DiscordVoiceWebSocket, FATAL_VOICE_CLOSE_CODES, voice_url
from .player import AudioPlayer
from .udp import (
    PacketDecoder,
    PacketEncoder,
    VoicePacket,
    VoiceUDP,
    SUPPORTED_MODES,
    SILENCE_FRAME,
    build_discovery,
    parse_discovery,
    pick_mode,
)

__all__ = (
    "VoiceClient",
    "VoiceSession",
    "VoiceState",
    "DiscordVoiceWebSocket",
    "FATAL_VOICE_CLOSE_CODES",
    "voice_url",
    "AudioPlayer",
    "PacketDecoder",
    "PacketEncoder",
    "VoicePacket",
    "VoiceUDP",
    "SUPPORTED_MODES",
    "SILENCE_FRAME",
    "build_discovery",
    "parse_discovery",
    "pick_mode",
)
