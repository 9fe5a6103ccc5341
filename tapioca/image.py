import base64
import binascii
import typing as t

from . import errors

_PREFIX = "data:"
_BASE64 = ";base64,"

ALLOWED_TYPES = ("image/png", "image/jpeg", "image/gif")


def sniff_content_type(data: bytes) -> t.Optional[str]:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"

    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"

    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"

    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"

    return None


class Image:
    """An image sent inline as a ``data:`` URI (avatars, icons, emoji)."""

    __slots__ = ("content_type", "content")

    def __init__(self, content: bytes, content_type: t.Optional[str] = None) -> None:
        self.content = content
        self.content_type = content_type or sniff_content_type(content)

    def __repr__(self) -> str:
        return f"<Image content_type={self.content_type!r} size={len(self.content)}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Image):
            return NotImplemented

        return (self.content_type, self.content) == (other.content_type, other.content)

    @classmethod
    def decode(cls, uri: str) -> "Image":
        if not uri.startswith(_PREFIX):
            raise errors.InvalidImage("image data URI must start with 'data:'")

        header, sep, payload = uri[len(_PREFIX):].partition(",")
        if not sep or not header.endswith(";base64"):
            raise errors.InvalidImage("image data URI is not base64 encoded")

        try:
            content = base64.b64decode(payload, validate=True)
        except binascii.Error as exc:
            raise errors.InvalidImage(f"invalid base64 payload: {exc}") from exc

        return cls(content, header[:-len(";base64")] or None)

    def encode(self) -> str:
        if not self.content_type:
            raise errors.InvalidImage("unknown image content type")

        return _PREFIX + self.content_type + _BASE64 + base64.b64encode(self.content).decode("ascii")

    def validate(self, max_size: int = 0) -> None:
        if self.content_type not in ALLOWED_TYPES:
            raise errors.InvalidImage(f"unsupported image type {self.content_type!r}")

        if max_size > 0 and len(self.content) > max_size:
            raise errors.ImageTooLarge(len(self.content), max_size)


def to_data_uri(image: t.Union[Image, bytes, None]) -> t.Optional[str]:
    if image is None:
        return None

    if isinstance(image, bytes):
        image = Image(image)

    image.validate()
    return image.encode()
