import typing as t
from urllib.parse import quote

from .ratelimit import bucket_key


class Route:
    __slots__ = ("_method", "_path", "auth")

    BASE: t.ClassVar[str] = "https://discord.com/api/v10"

    def __init__(self, method: str, path: str, *, auth: bool = True, **params: t.Any) -> None:
        # emoji and invite codes may carry reserved characters
        params = {k: quote(str(v), safe='@:') for k, v in params.items()}
        path = path.format_map(params)

        self._method = method
        self._path = path
        self.auth = auth

    def __repr__(self) -> str:
        return "Route({0.method!r}, {0.path!r}, auth={0.auth})".format(self)

    @property
    def method(self) -> str:
        return self._method.upper()

    @property
    def path(self) -> str:
        return '/' + self._path.lstrip('/')

    @property
    def bucket(self) -> str:
        """The path key this route is rate limited under."""
        return bucket_key(self.path)

    def url(self, base: t.Optional[str] = None) -> str:
        return (base or self.BASE).rstrip('/') + self.path
