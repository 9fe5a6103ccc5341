import io
import time
import asyncio

import pytest
from aiohttp import web

import tapioca
from tapioca.http import Route, File, RateLimiter

DEFAULT_USER_ID = 256444020413300736
DEFAULT_USER_NAME = "Nium"


pytestmark = pytest.mark.asyncio


async def test_get_user(http: tapioca.DiscordHTTPClient):
    user = await http.get_user(DEFAULT_USER_ID)

    assert user["id"] == str(DEFAULT_USER_ID)
    assert user["username"] == DEFAULT_USER_NAME


async def test_user_not_found(http: tapioca.DiscordHTTPClient):
    with pytest.raises(tapioca.errors.NotFound):
        await http.get_user(0)


async def test_retries_after_rate_limit(rest, rest_server):
    rest_server.reply(429, {"message": "You are being rate limited.", "retry_after": 0.05}, {"Retry-After": "0.05"})
    rest_server.reply(429, {"message": "You are being rate limited.", "retry_after": 0.05}, {"Retry-After": "0.05"})
    rest_server.reply(200, {"id": "1"})

    start = time.monotonic()
    data = await rest.request_json(Route("GET", "/users/{id}", id=1))
    elapsed = time.monotonic() - start

    assert data == {"id": "1"}
    assert len(rest_server.requests) == 3
    assert elapsed >= 0.1


async def test_global_rate_limit_pauses_other_routes(rest, rest_server):
    rest_server.reply(429, {"global": True}, {"Retry-After": "0.2", "X-RateLimit-Global": "true", "X-RateLimit-Scope": "global"})
    rest_server.reply(200, {"ok": 1})
    rest_server.reply(200, {"ok": 2})

    await rest.request_json(Route("GET", "/users/1"))
    start = time.monotonic()
    await rest.request_json(Route("GET", "/guilds/2"))

    # the retried request already waited, the next route is not paused again
    assert time.monotonic() - start < 0.2
    first, retried = rest_server.requests[0]["loop_time"], rest_server.requests[1]["loop_time"]
    assert retried - first >= 0.19


async def test_server_errors_are_retried(rest, rest_server):
    rest_server.reply(502)
    rest_server.reply(500, {"message": "oops"})
    rest_server.reply(200, {"id": "2"})

    assert await rest.request_json(Route("GET", "/channels/2")) == {"id": "2"}
    assert len(rest_server.requests) == 3


async def test_retry_budget_runs_out(rest_server):
    client = tapioca.HTTPClient("secret", base=rest_server.base, retries=2, retry_delay=0)
    rest_server.default = lambda: web.json_response({"message": "down"}, status=503)

    try:
        with pytest.raises(tapioca.errors.DiscordServerError) as info:
            await client.request(Route("GET", "/gateway"))
    finally:
        await client.close()

    assert info.value.status == 503
    assert len(rest_server.requests) == 2


async def test_client_error_is_structured(rest, rest_server):
    rest_server.reply(404, {"code": 10003, "message": "Unknown Channel"})

    with pytest.raises(tapioca.errors.NotFound) as info:
        await rest.request(Route("GET", "/channels/3"))

    assert info.value.status == 404
    assert info.value.code == 10003
    assert info.value.message == "Unknown Channel"
    assert len(rest_server.requests) == 1


async def test_forbidden_with_field_errors(rest, rest_server):
    errors = {"content": {"_errors": [{"code": "BASE_TYPE_MAX_LENGTH"}]}}
    rest_server.reply(403, {"code": 50013, "message": "Missing Permissions", "errors": errors})

    with pytest.raises(tapioca.errors.Forbidden) as info:
        await rest.request(Route("POST", "/channels/3/messages"), json={"content": "hi"})

    assert info.value.errors == errors
    assert "50013" in str(info.value)


async def test_no_content_is_not_an_error(rest, rest_server):
    rest_server.reply(204)

    assert await rest.request_json(Route("DELETE", "/channels/4")) is None


async def test_invalid_json_raises(rest, rest_server):
    rest_server.default = lambda: web.Response(text="<html>", content_type="application/json")

    with pytest.raises(tapioca.errors.JSONError):
        await rest.request_json(Route("GET", "/channels/5"))


async def test_headers(rest, rest_server):
    await rest.request(Route("DELETE", "/channels/6"), reason="spring cleaning: déjà vu")

    headers = rest_server.requests[0]["headers"]
    assert headers["Authorization"] == "Bot secret"
    assert headers["User-Agent"].startswith("DiscordBot (")
    assert headers["X-Audit-Log-Reason"] == "spring cleaning%3A d%C3%A9j%C3%A0 vu"


async def test_unauthenticated_route(rest, rest_server):
    await rest.request(Route("GET", "/gateway", auth=False))

    assert "Authorization" not in rest_server.requests[0]["headers"]


async def test_interceptor_edits_headers(rest, rest_server):
    @rest.on_request
    def add_locale(route, headers):
        headers["X-Discord-Locale"] = "pt-BR"

    await rest.request(Route("GET", "/users/@me"))

    assert rest_server.requests[0]["headers"]["X-Discord-Locale"] == "pt-BR"


async def test_multipart_body(rest, rest_server):
    files = [
        File(io.BytesIO(b"\x89PNG\r\n\x1a\nxxxx"), "cat.png"),
        File(b"secret", "notes.txt", spoiler=True),
    ]

    await rest.request(Route("POST", "/channels/7/messages"), json={"content": "look"}, files=files)

    parts = rest_server.requests[0]["parts"]
    assert [p[0] for p in parts] == ["payload_json", "file0", "file1"]
    assert parts[0][3] == b'{"content":"look"}'
    assert parts[1][1:] == ("cat.png", "image/png", b"\x89PNG\r\n\x1a\nxxxx")
    assert parts[2][1] == "SPOILER_notes.txt"


async def test_multipart_is_resent_whole_on_retry(rest, rest_server):
    rest_server.reply(500)
    rest_server.reply(200, {"id": "8"})

    await rest.request(Route("POST", "/channels/8/messages"), json={}, files=[File(b"abc", "a.bin")])

    assert rest_server.requests[0]["parts"][1][3] == b"abc"
    assert rest_server.requests[1]["parts"][1][3] == b"abc"


async def test_query_params(rest, rest_server):
    await rest.request(Route("GET", "/invites/{code}", code="abc"), params={"with_counts": True, "skip": None})

    assert rest_server.requests[0]["query"] == [("with_counts", "true")]


async def test_deadline_cancels_rate_limit_wait(rest_server):
    limiter = RateLimiter()
    client = tapioca.HTTPClient("secret", base=rest_server.base, limiter=limiter, retry_delay=0)
    rest_server.reply(200, {}, {"X-RateLimit-Limit": "1", "X-RateLimit-Remaining": "0", "X-RateLimit-Reset-After": "5"})

    try:
        await client.request(Route("GET", "/channels/9"))

        with pytest.raises(tapioca.errors.RateLimitCancelled):
            await client.request(Route("GET", "/channels/9"), timeout=0.5)
    finally:
        await client.close()

    assert len(rest_server.requests) == 1


async def test_close_cancels_inflight_requests(rest_server):
    client = tapioca.HTTPClient("secret", base=rest_server.base)
    rest_server.reply(200, {}, {"X-RateLimit-Limit": "1", "X-RateLimit-Remaining": "0", "X-RateLimit-Reset-After": "30"})
    await client.request(Route("GET", "/channels/10"))

    pending = asyncio.ensure_future(client.request(Route("GET", "/channels/10")))
    await asyncio.sleep(0.05)
    await client.close()

    with pytest.raises(asyncio.CancelledError):
        await pending

    assert client.is_closed()


async def test_timeout_is_a_request_error(rest_server, rest):
    rest_server.delay = 0.5

    with pytest.raises(tapioca.errors.RequestError) as info:
        await rest.request(Route("GET", "/users/@me"), timeout=0.1)

    assert isinstance(info.value, tapioca.errors.RequestTimeout)
    assert info.value.timeout == 0.1
    assert info.value.path == "/users/@me"
