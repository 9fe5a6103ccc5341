import time
import asyncio
import logging
import typing as t
from urllib.parse import quote

import aiohttp
from aiohttp import ClientSession

from .. import errors, utils, __version__
from ..utils import MISSING
from .route import Route
from .query import encode_query
from .multipart import File, build_form
from .ratelimit import RateLimiter

_log = logging.getLogger(__name__)

USER_AGENT = f"DiscordBot (https://github.com/tapioca-py/tapioca, {__version__})"

Interceptor = t.Callable[[Route, t.Dict[str, str]], None]


class Response:
    __slots__ = ("status", "headers", "body")

    def __init__(self, status: int, headers: t.Mapping[str, str], body: bytes) -> None:
        self.status = status
        self.headers = headers
        self.body = body

    def __repr__(self) -> str:
        return f"<Response status={self.status} size={len(self.body)}>"

    def json(self) -> t.Any:
        if self.status == 204 or not self.body:
            return None

        try:
            return utils.from_json(self.body)
        except ValueError as exc:
            raise errors.JSONError(self.body, exc) from exc


class Transport(t.Protocol):
    async def request(self, route: Route, **kwargs: t.Any) -> Response:
        ...

    async def request_json(self, route: Route, **kwargs: t.Any) -> t.Any:
        ...

    async def fast_request(self, route: Route, **kwargs: t.Any) -> None:
        ...


class HTTPClient:
    """Sends requests through the rate limiter, retrying what is retryable.

    A request is retried on transport errors, 429 and 5xx responses, each
    attempt re-acquiring its bucket. Everything else that is not 2xx is
    raised as an `errors.HTTPError` subclass.
    """

    __slots__ = (
        "token",
        "bot",
        "limiter",
        "session",
        "retries",
        "retry_delay",
        "timeout",
        "base",
        "user_agent",
        "interceptors",

        "_owns_session",
        "_closed",
        "_inflight",
    )

    def __init__(
        self,
        token: t.Optional[str] = None,
        *,
        bot: bool = True,
        limiter: t.Optional[RateLimiter] = None,
        session: t.Optional[ClientSession] = None,
        retries: int = 5,
        retry_delay: float = 0.5,
        timeout: t.Optional[float] = None,
        base: str = Route.BASE,
        user_agent: str = USER_AGENT,
    ) -> None:
        self.token = token
        self.bot = bot
        self.limiter = limiter or RateLimiter()
        self.session = session
        self.retries = retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.base = base
        self.user_agent = user_agent
        self.interceptors: t.List[Interceptor] = []

        self._owns_session = session is None
        self._closed = False
        self._inflight: t.Set[asyncio.Task] = set()

    def is_closed(self) -> bool:
        return self._closed

    def on_request(self, interceptor: Interceptor) -> Interceptor:
        """Registers a callable that may edit the headers of every request."""
        self.interceptors.append(interceptor)
        return interceptor

    async def close(self) -> None:
        if self._closed:
            return

        self._closed = True

        for task in list(self._inflight):
            task.cancel()

        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

        if self.session and self._owns_session:
            with utils.suppress_all():
                await self.session.close()

        self.session = None

    def _headers(self, route: Route, reason: t.Optional[str], extra: t.Optional[t.Mapping[str, str]]) -> t.Dict[str, str]:
        headers: t.Dict[str, str] = {
            "User-Agent": self.user_agent,
        }

        if reason:
            headers["X-Audit-Log-Reason"] = quote(reason, safe="/ ")

        if route.auth and self.token:
            headers["Authorization"] = ("Bot " + self.token) if self.bot else self.token

        if extra:
            headers.update(extra)

        for interceptor in self.interceptors:
            interceptor(route, headers)

        return headers

    async def request(
        self,
        route: Route,
        *,
        json: t.Any = MISSING,
        params: t.Any = None,
        files: t.Optional[t.Sequence[File]] = None,
        headers: t.Optional[t.Mapping[str, str]] = None,
        reason: t.Optional[str] = None,
        timeout: t.Optional[float] = MISSING,
    ) -> Response:
        if self._closed:
            raise errors.RequestError(RuntimeError("HTTP client is closed"))

        if timeout is MISSING:
            timeout = self.timeout

        deadline = None if timeout is None else time.monotonic() + timeout

        coro = self._request(route, json=json, params=params, files=files, headers=headers, reason=reason, deadline=deadline)
        task = asyncio.ensure_future(coro)
        self._inflight.add(task)

        try:
            if timeout is None:
                return await task

            return await asyncio.wait_for(task, timeout)
        except asyncio.TimeoutError:
            raise errors.RequestTimeout(route.method, route.path, timeout) from None
        finally:
            self._inflight.discard(task)

    async def request_json(self, route: Route, **kwargs: t.Any) -> t.Any:
        response = await self.request(route, **kwargs)
        return response.json()

    async def fast_request(self, route: Route, **kwargs: t.Any) -> None:
        await self.request(route, **kwargs)

    async def _request(
        self,
        route: Route,
        *,
        json: t.Any,
        params: t.Any,
        files: t.Optional[t.Sequence[File]],
        headers: t.Optional[t.Mapping[str, str]],
        reason: t.Optional[str],
        deadline: t.Optional[float],
    ) -> Response:
        if self.session is None:
            self.session = ClientSession()

        url = route.url(self.base)
        query = encode_query(params) if params is not None else None
        headers = self._headers(route, reason, headers)

        attempt = 0
        while True:
            attempt += 1
            last = self.retries >= 1 and attempt >= self.retries

            kwargs: t.Dict[str, t.Any] = {"headers": headers}
            if query:
                kwargs["params"] = query

            if files:
                kwargs["data"] = build_form(None if json is MISSING else json, files)
            elif json is not MISSING:
                kwargs["data"] = utils.to_json(json)
                kwargs["headers"] = dict(headers, **{"Content-Type": "application/json"})

            bucket = await self.limiter.acquire(route.path, deadline=deadline)

            try:
                async with self.session.request(route.method, url, **kwargs) as resp:
                    body = await resp.read()
                    status = resp.status
                    resp_headers = resp.headers
            except aiohttp.ClientError as exc:
                self.limiter.release(route.path, bucket=bucket)

                if last:
                    raise errors.RequestError(exc) from exc

                _log.warning("%s %s failed (%s), retrying (attempt %d).", route.method, route.path, exc, attempt)
                await asyncio.sleep(self.retry_delay * attempt)
                continue
            except BaseException:
                self.limiter.release(route.path, bucket=bucket)
                raise

            self.limiter.release(route.path, resp_headers, status=status, bucket=bucket)
            _log.debug("%s %s has returned %s.", route.method, route.path, status)

            if 200 <= status < 300:
                return Response(status, resp_headers, body)

            if status == 429 and not last:
                continue

            if status >= 500 and not last:
                _log.warning("%s %s returned %s, retrying (attempt %d).", route.method, route.path, status, attempt)
                await asyncio.sleep(self.retry_delay * attempt)
                continue

            raise self._error(status, body, resp_headers)

    @staticmethod
    def _error(status: int, body: bytes, headers: t.Mapping[str, str]) -> errors.HTTPError:
        data = None
        if body and "json" in headers.get("Content-Type", ""):
            with utils.suppress_all(ValueError):
                data = utils.from_json(body)

        cls: t.Type[errors.HTTPError] = errors.HTTPError
        if status == 403:
            cls = errors.Forbidden
        elif status == 404:
            cls = errors.NotFound
        elif status >= 500:
            cls = errors.DiscordServerError

        return cls.from_response(status, body, data)
