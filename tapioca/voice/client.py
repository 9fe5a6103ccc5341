import enum
import asyncio
import logging
import typing as t

import aiohttp

from .. import errors, utils
from ..backoff import ExponentialBackoff
from ..dispatcher import Event, EventDispatcher
from ..snowflake import Snowflake, SnowflakeLike
from .gateway import DiscordVoiceWebSocket, FATAL_VOICE_CLOSE_CODES
from .player import AudioPlayer
from .udp import PacketDecoder, PacketEncoder, VoicePacket, VoiceUDP, pick_mode

_log = logging.getLogger(__name__)

SPEAKING_MICROPHONE = 1 << 0
SPEAKING_SOUNDSHARE = 1 << 1
SPEAKING_PRIORITY = 1 << 2


class _VoiceGateway(t.Protocol):
    dispatcher: EventDispatcher

    async def update_voice_state(
        self,
        guild_id: SnowflakeLike,
        channel_id: t.Optional[SnowflakeLike],
        *,
        self_mute: bool = False,
        self_deaf: bool = False,
    ) -> None:
        ...


class VoiceState(enum.Enum):
    DISCONNECTED = "disconnected"
    SIGNALLING = "signalling"
    CONNECTING = "connecting"
    RUNNING = "running"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class VoiceSession:
    """Everything learned while joining a voice channel."""

    __slots__ = (
        "guild_id",
        "channel_id",
        "user_id",
        "session_id",
        "token",
        "endpoint",
        "ssrc",
        "secret_key",
        "mode",
    )

    def __init__(self, guild_id: Snowflake, channel_id: t.Optional[Snowflake], user_id: Snowflake) -> None:
        self.guild_id = guild_id
        self.channel_id = channel_id
        self.user_id = user_id
        self.session_id: t.Optional[str] = None
        self.token: t.Optional[str] = None
        self.endpoint: t.Optional[str] = None
        self.ssrc: t.Optional[int] = None
        self.secret_key: t.Optional[bytes] = None
        self.mode: t.Optional[str] = None

    def __repr__(self) -> str:
        return "<VoiceSession guild_id={0.guild_id} channel_id={0.channel_id} endpoint={0.endpoint!r} ssrc={0.ssrc}>".format(self)


class VoiceClient:
    """One voice connection in one guild.

    `connect` asks the Gateway to join, waits for the voice state and voice
    server events, then runs the voice WebSocket handshake, IP discovery
    and protocol selection until a secret key arrives. A closed voice
    WebSocket repeats the handshake with the same session after a backoff,
    unless the close code says the session is over.
    """

    timeout: t.ClassVar[float] = 10.0

    __slots__ = (
        "gateway",
        "dispatcher",
        "session",
        "voice_session",
        "self_mute",
        "self_deaf",
        "backoff",
        "state",
        "ws",
        "udp",
        "encoder",
        "decoder",
        "player",

        "_timeout",
        "_http_session",
        "_owns_session",
        "_runner",
        "_handlers",
        "_closing",
        "_closed",
        "_running",
    )

    def __init__(
        self,
        gateway: _VoiceGateway,
        guild_id: SnowflakeLike,
        channel_id: SnowflakeLike,
        user_id: SnowflakeLike,
        *,
        dispatcher: t.Optional[EventDispatcher] = None,
        self_mute: bool = False,
        self_deaf: bool = False,
        timeout: t.Optional[float] = None,
        session: t.Optional[aiohttp.ClientSession] = None,
        backoff: t.Optional[ExponentialBackoff] = None,
    ) -> None:
        self.gateway = gateway
        self.dispatcher = dispatcher or gateway.dispatcher
        self.voice_session = VoiceSession(Snowflake(guild_id), Snowflake(channel_id), Snowflake(user_id))
        self.self_mute = self_mute
        self.self_deaf = self_deaf
        self.backoff = backoff or ExponentialBackoff(1.0, 60.0)
        self.state = VoiceState.DISCONNECTED
        self.ws: t.Optional[DiscordVoiceWebSocket] = None
        self.udp: t.Optional[VoiceUDP] = None
        self.encoder: t.Optional[PacketEncoder] = None
        self.decoder: t.Optional[PacketDecoder] = None
        self.player = AudioPlayer(self.send_audio_packet, self._set_speaking)

        self._timeout = self.timeout if timeout is None else timeout
        self._http_session = session
        self._owns_session = session is None
        self._runner: t.Optional[asyncio.Task] = None
        self._handlers: t.List[t.Callable[[], None]] = []
        self._closing = False
        self._closed = asyncio.Event()
        # set while RUNNING and once closed
        self._running = asyncio.Event()

    def __repr__(self) -> str:
        return f"<VoiceClient state={self.state.value} session={self.voice_session!r}>"

    @property
    def guild_id(self) -> Snowflake:
        return self.voice_session.guild_id

    @property
    def channel_id(self) -> t.Optional[Snowflake]:
        return self.voice_session.channel_id

    @property
    def latency(self) -> t.Optional[float]:
        return self.ws.latency if self.ws else None

    def is_connected(self) -> bool:
        return self.state is VoiceState.RUNNING

    def is_closed(self) -> bool:
        return self.state is VoiceState.CLOSED

    async def wait_closed(self) -> None:
        await self._closed.wait()

    # Events

    def _is_our_state(self, event: Event) -> bool:
        d = event.data or {}
        return (
            str(d.get("guild_id")) == str(self.guild_id)
            and str(d.get("user_id")) == str(self.voice_session.user_id)
        )

    def _is_our_server(self, event: Event) -> bool:
        d = event.data or {}
        return str(d.get("guild_id")) == str(self.guild_id) and bool(d.get("endpoint"))

    async def _on_voice_state_update(self, event: Event) -> None:
        d = event.data

        if d.get("channel_id") is None:
            _log.info("Removed from voice in guild %s.", self.guild_id)
            await self.disconnect(force=True)
            return

        self.voice_session.channel_id = Snowflake(d["channel_id"])
        self.voice_session.session_id = d["session_id"]

    async def _on_voice_server_update(self, event: Event) -> None:
        d = event.data
        vs = self.voice_session

        if d["endpoint"] == vs.endpoint and d["token"] == vs.token:
            return

        _log.info("Voice server of guild %s moved to %s.", self.guild_id, d["endpoint"])
        vs.endpoint = d["endpoint"]
        vs.token = d["token"]

        # the runner sees the close and shakes hands with the new server
        if self.ws is not None:
            await self.ws.close(4000)

    # Connection

    async def connect(self) -> None:
        if self.state is not VoiceState.DISCONNECTED:
            raise errors.AlreadyConnecting(f"voice client is {self.state.value}")

        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()

        try:
            await self._signal()
            await self._handshake()
        except BaseException:
            await self._teardown()
            raise

        self._handlers = [
            self.dispatcher.add_handler(self._on_voice_state_update, "VOICE_STATE_UPDATE", predicate=self._is_our_state),
            self.dispatcher.add_handler(self._on_voice_server_update, "VOICE_SERVER_UPDATE", predicate=self._is_our_server),
        ]

        self._runner = asyncio.ensure_future(self._run())

    async def _signal(self) -> None:
        self.state = VoiceState.SIGNALLING
        vs = self.voice_session

        state_sub = self.dispatcher.subscribe("VOICE_STATE_UPDATE", predicate=self._is_our_state)
        server_sub = self.dispatcher.subscribe("VOICE_SERVER_UPDATE", predicate=self._is_our_server)

        try:
            await self.gateway.update_voice_state(
                vs.guild_id,
                vs.channel_id,
                self_mute=self.self_mute,
                self_deaf=self.self_deaf,
            )

            state, server = await asyncio.wait_for(asyncio.gather(state_sub.get(), server_sub.get()), self._timeout)
        except asyncio.TimeoutError:
            with utils.suppress_all():
                await self.gateway.update_voice_state(vs.guild_id, None)

            raise errors.VoiceTimeout(f"no voice events from the Gateway within {self._timeout}s") from None
        finally:
            state_sub.unsubscribe()
            server_sub.unsubscribe()

        vs.session_id = state.data["session_id"]
        vs.token = server.data["token"]
        vs.endpoint = server.data["endpoint"]

    async def _handshake(self) -> None:
        self.state = VoiceState.CONNECTING
        vs = self.voice_session

        assert vs.endpoint and vs.token and vs.session_id
        assert self._http_session

        self.ws = ws = await DiscordVoiceWebSocket.connect(self._http_session, vs.endpoint)

        ready = await ws.identify(
            server_id=str(vs.guild_id),
            user_id=str(vs.user_id),
            session_id=vs.session_id,
            token=vs.token,
            timeout=self._timeout,
        )
        vs.ssrc = ready["ssrc"]

        if self.udp is not None:
            self.udp.close()

        self.udp = await VoiceUDP.connect(ready["ip"], ready["port"])
        ip, port = await self.udp.discover(vs.ssrc, timeout=self._timeout)

        await ws.select_protocol(ip, port, pick_mode(ready["modes"]))

        description = await ws.session_description(timeout=self._timeout)
        vs.mode = description["mode"]
        vs.secret_key = bytes(description["secret_key"])

        self.encoder = PacketEncoder(vs.ssrc, vs.secret_key, vs.mode)
        self.decoder = PacketDecoder(vs.secret_key, vs.mode)
        self.state = VoiceState.RUNNING
        self._running.set()
        self.player.start()

        _log.info("Voice connected in guild %s, ssrc %s, mode %s.", vs.guild_id, vs.ssrc, vs.mode)

    async def _run(self) -> None:
        while not self._closing:
            assert self.ws

            try:
                while True:
                    await self.ws.poll_event()
            except errors.WebSocketClosed as exc:
                code = exc.code

            # stops the heartbeat of the dead socket
            await self.ws.close()

            if self._closing:
                return

            if code in FATAL_VOICE_CLOSE_CODES:
                _log.warning("Voice WebSocket of guild %s closed with %s, disconnecting.", self.guild_id, code)
                await self.disconnect(force=True)
                return

            _log.info("Voice WebSocket of guild %s closed with %s, reconnecting.", self.guild_id, code)
            await self._reconnect()

    async def _reconnect(self) -> None:
        while not self._closing:
            self.state = VoiceState.RECONNECTING
            self._running.clear()
            await asyncio.sleep(self.backoff.delay())

            try:
                await self._handshake()
            except (errors.VoiceError, errors.WebSocketClosed, OSError, asyncio.TimeoutError) as exc:
                _log.warning("Voice reconnect in guild %s failed: %s", self.guild_id, exc)
                if self.ws is not None:
                    await self.ws.close(4000)
                continue

            self.backoff.reset()
            return

    async def move_to(self, channel_id: SnowflakeLike) -> None:
        await self.gateway.update_voice_state(
            self.guild_id,
            channel_id,
            self_mute=self.self_mute,
            self_deaf=self.self_deaf,
        )

    async def disconnect(self, *, force: bool = False) -> None:
        """Leaves the channel, `force` skips telling the Gateway."""
        if self._closing:
            return

        self._closing = True

        for remove in self._handlers:
            remove()
        self._handlers.clear()

        if not force:
            with utils.suppress_all(errors.TapiocaError):
                await self.gateway.update_voice_state(self.guild_id, None)

        await self._teardown()

    async def _teardown(self) -> None:
        self._closing = True

        await self.player.stop()

        if self.ws is not None:
            await self.ws.close(1000)

        if self.udp is not None:
            self.udp.close()

        if self._runner is not None and self._runner is not asyncio.current_task():
            self._runner.cancel()
            await asyncio.gather(self._runner, return_exceptions=True)

        if self._http_session is not None and self._owns_session:
            await self._http_session.close()
            self._http_session = None

        self.state = VoiceState.CLOSED
        self._closed.set()
        self._running.set()

    # Audio

    async def speaking(self, flags: int = SPEAKING_MICROPHONE) -> None:
        if self.ws is None:
            raise errors.VoiceError("not connected to voice")

        await self.ws.speaking(flags)

    async def _set_speaking(self, speaking: bool) -> None:
        try:
            await self.speaking(SPEAKING_MICROPHONE if speaking else 0)
        except errors.TapiocaError as exc:
            _log.debug("Could not update the speaking state: %s", exc)

    def send_audio_packet(self, frame: bytes) -> bool:
        """Encrypts and sends one Opus frame right now."""
        if self.encoder is None or self.udp is None:
            return False

        packet = self.encoder.encode(frame)
        return self.udp.send(packet)

    async def receive(self) -> VoicePacket:
        """The next audio packet sent in the channel.

        Packets that are not audio or that fail to decrypt are skipped, and
        a reconnect is waited out. Raises `VoiceError` once disconnected.
        """
        while True:
            if self._closing:
                raise errors.VoiceError("voice client is closed")

            udp, decoder = self.udp, self.decoder
            if self.state is not VoiceState.RUNNING or udp is None or decoder is None:
                await self._running.wait()
                continue

            try:
                data = await udp.receive()
            except errors.VoiceError:
                # a socket closed by a reconnect or by disconnect is expected
                if udp is self.udp and self.state is VoiceState.RUNNING:
                    raise
                continue

            try:
                packet = decoder.decode(data)
            except errors.DecryptionFailed as exc:
                _log.debug("Dropping a voice packet in guild %s: %s", self.guild_id, exc)
                continue

            if packet is not None:
                return packet

    async def send_audio(self, frame: bytes) -> None:
        """Queues one Opus frame on the 20ms player."""
        await self.player.put(frame)

    async def play(self, frames: t.Union[t.Iterable[bytes], t.AsyncIterable[bytes]]) -> None:
        if isinstance(frames, t.AsyncIterable):
            async for frame in frames:
                await self.send_audio(frame)
        else:
            for frame in frames:
                await self.send_audio(frame)
