import io
import os
import mimetypes
import typing as t

from aiohttp import FormData

from ..utils import to_json

SPOILER_PREFIX = "SPOILER_"


class File:
    """An attachment uploaded next to a JSON payload.

    `fp` is either a path or a binary file object, the object is rewound
    before every attempt so a retried request sends it whole again.
    """

    __slots__ = (
        "fp",
        "filename",
        "spoiler",
        "content_type",

        "_offset",
        "_owner",
    )

    def __init__(
        self,
        fp: t.Union[str, bytes, os.PathLike, t.BinaryIO],
        filename: t.Optional[str] = None,
        *,
        spoiler: bool = False,
        content_type: t.Optional[str] = None,
    ) -> None:
        if isinstance(fp, bytes):
            self.fp: t.BinaryIO = io.BytesIO(fp)
            self._owner = True
        elif isinstance(fp, (str, os.PathLike)):
            self.fp = open(fp, "rb")
            self._owner = True
            filename = filename or os.path.basename(fp)
        else:
            self.fp = fp
            self._owner = False

        self._offset = self.fp.tell()

        if filename is None:
            filename = getattr(fp, "name", None) or "untitled"
            filename = os.path.basename(filename)

        self.filename = filename
        self.spoiler = spoiler or filename.startswith(SPOILER_PREFIX)
        self.content_type = content_type

    @property
    def upload_name(self) -> str:
        if self.spoiler and not self.filename.startswith(SPOILER_PREFIX):
            return SPOILER_PREFIX + self.filename

        return self.filename

    def guess_type(self) -> str:
        if self.content_type:
            return self.content_type

        guessed, _ = mimetypes.guess_type(self.filename)
        return guessed or "application/octet-stream"

    def reset(self) -> None:
        self.fp.seek(self._offset)

    def read(self) -> bytes:
        self.reset()
        return self.fp.read()

    def close(self) -> None:
        if self._owner:
            self.fp.close()

    def __enter__(self) -> "File":
        return self

    def __exit__(self, *_: t.Any) -> None:
        self.close()


def build_form(payload: t.Any, files: t.Sequence[File]) -> FormData:
    """``payload_json`` first, then every file as ``file{i}``."""
    form = FormData()

    if payload is not None:
        form.add_field("payload_json", to_json(payload), content_type="application/json")

    # aiohttp closes file objects it sent, so each attempt gets the bytes
    for i, f in enumerate(files):
        form.add_field(f"file{i}", f.read(), filename=f.upload_name, content_type=f.guess_type())

    return form
