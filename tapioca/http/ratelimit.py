import re
import time
import asyncio
import logging
import typing as t
from email.utils import parsedate_to_datetime
from urllib.parse import unquote

from .. import errors

_log = logging.getLogger(__name__)

MAJOR_ROOTS = ("channels", "guilds", "webhooks")

SKEW = 0.25
"""Seconds two reset instants may differ by and still be the same window."""

_CUSTOM_EMOJI = re.compile(r"^(?:a:)?[^\s:]+:\d+$")


def _is_emoji_rune(c: str) -> bool:
    o = ord(c)
    return (
        c in "©®"
        or 0x2000 <= o <= 0x3300
        or 0x1F000 <= o <= 0x1FFFF
        or 0xFE00 <= o <= 0xFE0F
    )


def _is_emoji(part: str) -> bool:
    # some emoji are a base rune plus a selector/modifier
    return 0 < len(part) <= 2 and _is_emoji_rune(part[0])


def _is_id(part: str) -> bool:
    return part.isdigit() or _is_emoji(part) or bool(_CUSTOM_EMOJI.match(part))


def bucket_key(path: str) -> str:
    """Canonicalizes a route path into the key its rate limit is tracked by.

    The id following a major root (``channels``, ``guilds``, ``webhooks``)
    is part of the key, every other id-like segment in an id position is
    blanked out:

        >>> bucket_key("/channels/1/messages/2/reactions/thonk:123/@me")
        '/channels/1/messages//reactions//@me'
        >>> bucket_key("/users/123")
        '/users/'
    """
    path = unquote(path.split('?', 1)[0])
    parts = path.split('/')[1:]

    if not parts:
        return path

    skip = 2 if parts[0] in MAJOR_ROOTS else 0

    # odd positions hold values, even positions hold resource names
    for i in range(skip + 1, len(parts), 2):
        if _is_id(parts[i]):
            parts[i] = ""

    return '/' + '/'.join(parts)


class Bucket:
    __slots__ = (
        "hash",
        "limit",
        "remaining",
        "reset_at",
        "lock",
    )

    def __init__(self, hash: str) -> None:
        self.hash = hash
        self.limit = 1
        self.remaining = 1
        self.reset_at = 0.0
        self.lock = asyncio.Lock()

    def __repr__(self) -> str:
        return "<Bucket hash={0.hash!r} remaining={0.remaining}/{0.limit} reset_at={0.reset_at:.3f}>".format(self)


def _header_int(headers: t.Mapping[str, str], name: str) -> t.Optional[int]:
    value = headers.get(name)
    if value is None:
        return None

    try:
        return int(value)
    except ValueError:
        _log.debug("Ignoring malformed %s header %r.", name, value)
        return None


def _header_float(headers: t.Mapping[str, str], name: str) -> t.Optional[float]:
    value = headers.get(name)
    if value is None:
        return None

    try:
        return float(value)
    except ValueError:
        _log.debug("Ignoring malformed %s header %r.", name, value)
        return None


def _server_now(headers: t.Mapping[str, str]) -> float:
    date = headers.get("Date")
    if date:
        try:
            return parsedate_to_datetime(date).timestamp()
        except (TypeError, ValueError):
            _log.debug("Ignoring malformed Date header %r.", date)

    return time.time()


class RateLimiter:
    """Per route token buckets plus the client wide global pause.

    `acquire` takes the bucket lock and keeps it until the matching
    `release`, so requests sharing a bucket leave in FIFO order and a
    bucket's ``remaining`` can never go below zero.
    """

    __slots__ = (
        "_keys",
        "_buckets",
        "_global_until",
    )

    def __init__(self) -> None:
        self._keys: t.Dict[str, str] = {}
        self._buckets: t.Dict[str, Bucket] = {}
        self._global_until = 0.0

    @property
    def global_until(self) -> float:
        return self._global_until

    def is_global_paused(self) -> bool:
        return self._global_until > time.monotonic()

    def get_bucket(self, path: str) -> Bucket:
        key = bucket_key(path)
        return self._get(key)

    def _get(self, key: str) -> Bucket:
        hash = self._keys.get(key, key)

        try:
            return self._buckets[hash]
        except KeyError:
            bucket = self._buckets[hash] = Bucket(hash)
            return bucket

    async def acquire(self, path: str, *, deadline: t.Optional[float] = None) -> Bucket:
        """Waits for a token on the bucket of `path`.

        `deadline` is a `time.monotonic` instant, when the wait would end
        after it `errors.RateLimitCancelled` is raised instead of sleeping.
        """
        key = bucket_key(path)

        while True:
            bucket = self._get(key)
            await bucket.lock.acquire()

            # the server may have moved this key to another bucket
            if self._get(key) is bucket:
                break

            bucket.lock.release()

        try:
            while True:
                now = time.monotonic()

                if bucket.remaining <= 0 and bucket.reset_at <= now:
                    bucket.remaining = max(bucket.limit, 1)

                if self._global_until > now:
                    wait = self._global_until - now
                elif bucket.remaining <= 0:
                    wait = bucket.reset_at - now
                else:
                    break

                if deadline is not None and now + wait > deadline:
                    raise errors.RateLimitCancelled(path, wait)

                _log.debug("Bucket %s exhausted, waiting %.3fs.", bucket.hash, wait)
                await asyncio.sleep(wait)

            bucket.remaining -= 1
        except BaseException:
            bucket.lock.release()
            raise

        return bucket

    def release(
        self,
        path: str,
        headers: t.Optional[t.Mapping[str, str]] = None,
        *,
        status: t.Optional[int] = None,
        bucket: t.Optional[Bucket] = None,
    ) -> None:
        """Reconciles the bucket with the response headers and unlocks it.

        `bucket` is the one `acquire` returned, it defaults to the bucket
        `path` currently maps to.
        """
        key = bucket_key(path)
        if bucket is None:
            bucket = self._get(key)

        try:
            if headers is not None:
                self._update(key, bucket, headers, status)
        finally:
            if bucket.lock.locked():
                bucket.lock.release()

    def _update(self, key: str, bucket: Bucket, headers: t.Mapping[str, str], status: t.Optional[int]) -> None:
        now = time.monotonic()

        hash = headers.get("X-RateLimit-Bucket")
        if hash and self._keys.get(key) != hash:
            target = self._buckets.get(hash)

            if target is None:
                target = self._buckets[hash] = bucket
                bucket.hash = hash
                _log.debug("Path %s uses bucket %s.", key, hash)

            self._keys[key] = hash
            bucket = target

        limit = _header_int(headers, "X-RateLimit-Limit")
        remaining = _header_int(headers, "X-RateLimit-Remaining")
        reset_after = _header_float(headers, "X-RateLimit-Reset-After")

        reset_at: t.Optional[float] = None
        if reset_after is not None:
            reset_at = now + reset_after
        else:
            reset = _header_float(headers, "X-RateLimit-Reset")
            if reset is not None:
                reset_at = now + max(reset - _server_now(headers), 0.0)

        if limit is not None and limit > 0:
            bucket.limit = limit

        if remaining is not None:
            remaining = max(remaining, 0)
            if reset_at is not None and (bucket.reset_at <= now or abs(reset_at - bucket.reset_at) > SKEW):
                bucket.reset_at = reset_at
                bucket.remaining = remaining
            else:
                bucket.remaining = min(bucket.remaining, remaining)
        elif reset_at is not None and abs(reset_at - bucket.reset_at) > SKEW:
            bucket.reset_at = reset_at

        if status != 429:
            return

        retry_after = _header_float(headers, "Retry-After")
        if retry_after is None:
            retry_after = reset_after if reset_after is not None else 1.0

        scope = headers.get("X-RateLimit-Scope")
        is_global = headers.get("X-RateLimit-Global", "").lower() == "true"

        if is_global or scope in (None, "global", "user"):
            # the rejected request never used its token
            bucket.remaining = min(bucket.remaining + 1, max(bucket.limit, 1))
            self._global_until = max(self._global_until, now + retry_after)
            _log.warning("Rate limited (scope %s), pausing every request for %.3fs.", scope or "unknown", retry_after)
        else:
            bucket.remaining = 0
            bucket.reset_at = max(bucket.reset_at, now + retry_after)
            _log.warning("Rate limited on shared bucket %s for %.3fs.", bucket.hash, retry_after)
