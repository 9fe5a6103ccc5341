import typing as t

EncryptionMode = t.Literal[
    "xsalsa20_poly1305_lite",
    "xsalsa20_poly1305_suffix",
    "xsalsa20_poly1305",
]


class VoiceHello(t.TypedDict):
    heartbeat_interval: float


class VoiceReady(t.TypedDict):
    ssrc: int
    ip: str
    port: int
    modes: t.List[str]


class SessionDescription(t.TypedDict):
    mode: EncryptionMode
    secret_key: t.List[int]


class VoiceRegion(t.TypedDict):
    id: str
    name: str
    optimal: bool
    deprecated: bool
    custom: bool
