import struct
import asyncio
import logging
import typing as t

import nacl.exceptions
import nacl.secret
import nacl.utils

from .. import errors

_log = logging.getLogger(__name__)

SUPPORTED_MODES = (
    "xsalsa20_poly1305_lite",
    "xsalsa20_poly1305_suffix",
    "xsalsa20_poly1305",
)
"""Encryption modes in order of preference."""

DISCOVERY_LENGTH = 74
DISCOVERY_REQUEST = 0x1
DISCOVERY_RESPONSE = 0x2

FRAME_DURATION = 0.02
SAMPLES_PER_FRAME = 960

SILENCE_FRAME = b'\xf8\xff\xfe'

RECEIVE_QUEUE_SIZE = 128
"""Inbound datagrams kept for `VoiceUDP.receive`, a bit over 2s of one speaker."""

RTP_HEADER_SIZE = 12
_RTP_HEADER = struct.Struct(">BBHII")


def build_discovery(ssrc: int) -> bytes:
    """type (2) + length (2) + ssrc (4) + address (64) + port (2)."""
    packet = bytearray(DISCOVERY_LENGTH)
    struct.pack_into(">HHI", packet, 0, DISCOVERY_REQUEST, DISCOVERY_LENGTH - 4, ssrc)
    return bytes(packet)


def parse_discovery(data: bytes) -> t.Tuple[str, int]:
    """Our external address and port, as seen by the voice server."""
    if len(data) < DISCOVERY_LENGTH:
        raise errors.IPDiscoveryFailed(f"discovery response is {len(data)} bytes, expected {DISCOVERY_LENGTH}")

    kind = struct.unpack_from(">H", data, 0)[0]
    if kind != DISCOVERY_RESPONSE:
        raise errors.IPDiscoveryFailed(f"unexpected discovery packet type {kind:#x}")

    end = data.find(0, 8)
    if end == -1:
        end = len(data) - 2

    ip = data[8:end].decode("ascii")
    port = struct.unpack_from(">H", data, len(data) - 2)[0]

    return ip, port


def pick_mode(modes: t.Iterable[str]) -> str:
    offered = set(modes)

    for mode in SUPPORTED_MODES:
        if mode in offered:
            return mode

    raise errors.VoiceError(f"no supported encryption mode in {sorted(offered)}")


class PacketEncoder:
    """Turns Opus frames into encrypted RTP packets for one ssrc and key."""

    __slots__ = (
        "ssrc",
        "mode",
        "sequence",
        "timestamp",

        "_box",
        "_lite_nonce",
        "_encrypt",
    )

    def __init__(self, ssrc: int, secret_key: bytes, mode: str, *, sequence: int = 0, timestamp: int = 0) -> None:
        if mode not in SUPPORTED_MODES:
            raise errors.VoiceError(f"unsupported encryption mode {mode!r}")

        self.ssrc = ssrc
        self.mode = mode
        self.sequence = sequence
        self.timestamp = timestamp

        self._box = nacl.secret.SecretBox(bytes(secret_key))
        self._lite_nonce = 0
        self._encrypt: t.Callable[[bytes, bytes], bytes] = getattr(self, "_encrypt_" + mode)

    def header(self) -> bytes:
        return _RTP_HEADER.pack(0x80, 0x78, self.sequence, self.timestamp, self.ssrc)

    def encode(self, frame: bytes) -> bytes:
        header = self.header()
        packet = self._encrypt(header, frame)
        self.advance()
        return packet

    def advance(self) -> None:
        self.sequence = (self.sequence + 1) & 0xFFFF
        self.timestamp = (self.timestamp + SAMPLES_PER_FRAME) & 0xFFFFFFFF

    def _encrypt_xsalsa20_poly1305(self, header: bytes, data: bytes) -> bytes:
        nonce = bytearray(24)
        nonce[:12] = header

        return header + self._box.encrypt(bytes(data), bytes(nonce)).ciphertext

    def _encrypt_xsalsa20_poly1305_suffix(self, header: bytes, data: bytes) -> bytes:
        nonce = nacl.utils.random(nacl.secret.SecretBox.NONCE_SIZE)

        return header + self._box.encrypt(bytes(data), nonce).ciphertext + nonce

    def _encrypt_xsalsa20_poly1305_lite(self, header: bytes, data: bytes) -> bytes:
        nonce = bytearray(24)
        nonce[:4] = struct.pack(">I", self._lite_nonce)
        self._lite_nonce = (self._lite_nonce + 1) & 0xFFFFFFFF

        return header + self._box.encrypt(bytes(data), bytes(nonce)).ciphertext + nonce[:4]


class VoicePacket:
    """One opened RTP packet."""

    __slots__ = (
        "flags",
        "type",
        "sequence",
        "timestamp",
        "ssrc",
        "opus",
    )

    def __init__(self, flags: int, type: int, sequence: int, timestamp: int, ssrc: int, opus: bytes) -> None:
        self.flags = flags
        self.type = type
        self.sequence = sequence
        self.timestamp = timestamp
        self.ssrc = ssrc
        self.opus = opus

    def __repr__(self) -> str:
        return "<VoicePacket ssrc={0.ssrc} sequence={0.sequence} timestamp={0.timestamp} size={1}>".format(self, len(self.opus))


class PacketDecoder:
    """Opens the RTP packets of a voice channel, the reverse of `PacketEncoder`."""

    __slots__ = (
        "mode",

        "_box",
        "_split",
    )

    def __init__(self, secret_key: bytes, mode: str) -> None:
        if mode not in SUPPORTED_MODES:
            raise errors.VoiceError(f"unsupported encryption mode {mode!r}")

        self.mode = mode

        self._box = nacl.secret.SecretBox(bytes(secret_key))
        self._split: t.Callable[[bytes, bytes], t.Tuple[bytes, bytes]] = getattr(self, "_split_" + mode)

    def decode(self, data: bytes) -> t.Optional[VoicePacket]:
        """The packet in `data`, or None when it is not RTP audio (RTCP, keep alives)."""
        if len(data) < RTP_HEADER_SIZE or data[0] not in (0x80, 0x90):
            return None

        # RTCP sender and receiver reports
        if 200 <= data[1] <= 204:
            return None

        header = bytes(data[:RTP_HEADER_SIZE])
        nonce, ciphertext = self._split(header, bytes(data))

        if len(ciphertext) < nacl.secret.SecretBox.MACBYTES:
            raise errors.DecryptionFailed(f"packet of {len(data)} bytes is too short")

        try:
            opus = self._box.decrypt(ciphertext, nonce)
        except nacl.exceptions.CryptoError as exc:
            raise errors.DecryptionFailed(str(exc)) from None

        flags, kind, sequence, timestamp, ssrc = _RTP_HEADER.unpack(header)

        # a header extension sits at the start of the payload, except with the marker bit
        if flags & 0x10 and not kind & 0x80 and len(opus) >= 4:
            length = struct.unpack_from(">H", opus, 2)[0]
            shift = 4 + 4 * length

            if len(opus) > shift:
                opus = opus[shift:]

        return VoicePacket(flags, kind, sequence, timestamp, ssrc, opus)

    def _split_xsalsa20_poly1305(self, header: bytes, data: bytes) -> t.Tuple[bytes, bytes]:
        return header + bytes(12), data[RTP_HEADER_SIZE:]

    def _split_xsalsa20_poly1305_suffix(self, header: bytes, data: bytes) -> t.Tuple[bytes, bytes]:
        size = nacl.secret.SecretBox.NONCE_SIZE
        if len(data) < RTP_HEADER_SIZE + size:
            return bytes(size), b''

        return data[-size:], data[RTP_HEADER_SIZE:-size]

    def _split_xsalsa20_poly1305_lite(self, header: bytes, data: bytes) -> t.Tuple[bytes, bytes]:
        if len(data) < RTP_HEADER_SIZE + 4:
            return bytes(24), b''

        return data[-4:] + bytes(20), data[RTP_HEADER_SIZE:-4]


class _DatagramProtocol(asyncio.DatagramProtocol):
    def __init__(self, maxsize: int = RECEIVE_QUEUE_SIZE) -> None:
        self.queue: "asyncio.Queue[t.Optional[bytes]]" = asyncio.Queue(maxsize)
        self.discovery: t.Optional[asyncio.Future] = None
        self.dropped = 0

    def datagram_received(self, data: bytes, addr: t.Tuple[str, int]) -> None:
        waiter = self.discovery
        if waiter is not None and not waiter.done() and data[:2] == b'\x00\x02':
            waiter.set_result(data)
            return

        self._put(data)

    def _put(self, data: t.Optional[bytes]) -> None:
        # late audio is worth less than new audio
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1

        self.queue.put_nowait(data)

    def error_received(self, exc: Exception) -> None:
        _log.debug("Voice UDP error: %s", exc)

    def connection_lost(self, exc: t.Optional[Exception]) -> None:
        waiter = self.discovery
        if waiter is not None and not waiter.done():
            waiter.set_exception(errors.IPDiscoveryFailed("voice UDP socket closed"))

        # wakes readers
        self._put(None)


class VoiceUDP:
    """The UDP socket audio is sent and received over.

    Inbound datagrams wait in a bounded queue until `receive` reads them,
    the oldest one is dropped when it is full.
    """

    __slots__ = (
        "host",
        "port",
        "transport",
        "protocol",
        "dropped",
    )

    def __init__(self, host: str, port: int, transport: asyncio.DatagramTransport, protocol: _DatagramProtocol) -> None:
        self.host = host
        self.port = port
        self.transport = transport
        self.protocol = protocol
        self.dropped = 0

    @classmethod
    async def connect(cls, host: str, port: int, *, queue_size: int = RECEIVE_QUEUE_SIZE) -> "VoiceUDP":
        loop = asyncio.get_running_loop()
        transport, protocol = await loop.create_datagram_endpoint(
            lambda: _DatagramProtocol(queue_size),
            remote_addr=(host, port),
        )

        return cls(host, port, transport, protocol)  # type: ignore

    @property
    def received_dropped(self) -> int:
        """Inbound datagrams dropped because nobody read them in time."""
        return self.protocol.dropped

    async def discover(self, ssrc: int, *, timeout: float = 10.0) -> t.Tuple[str, int]:
        waiter = self.protocol.discovery = asyncio.get_running_loop().create_future()
        self.transport.sendto(build_discovery(ssrc))

        try:
            data = await asyncio.wait_for(waiter, timeout)
        except asyncio.TimeoutError:
            raise errors.IPDiscoveryFailed("no IP discovery response") from None
        finally:
            self.protocol.discovery = None

        ip, port = parse_discovery(data)
        _log.debug("Discovered external address %s:%s.", ip, port)

        return ip, port

    async def receive(self) -> bytes:
        """The next inbound datagram, raises `VoiceError` once the socket is closed."""
        data = await self.protocol.queue.get()

        if data is None:
            self.protocol.queue.put_nowait(None)
            raise errors.VoiceError("voice UDP socket is closed")

        return data

    def send(self, packet: bytes) -> bool:
        """Sends without ever waiting, a packet is dropped if the socket is backed up."""
        if self.transport.is_closing():
            return False

        if self.transport.get_write_buffer_size() > 0:
            self.dropped += 1
            _log.warning("A packet has been dropped (%d so far).", self.dropped)
            return False

        self.transport.sendto(packet)
        return True

    def close(self) -> None:
        self.transport.close()
