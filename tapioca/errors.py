import typing as t


class TapiocaError(Exception):
    pass


# HTTP

class HTTPException(TapiocaError):
    pass


class RequestError(HTTPException):
    """The request never produced a response (DNS, connection reset, ...)."""

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause

        super().__init__(f"error sending request: {cause}")


class RequestTimeout(RequestError):
    """No response arrived before the request timeout."""

    def __init__(self, method: str, path: str, timeout: t.Optional[float]) -> None:
        self.method = method
        self.path = path
        self.timeout = timeout

        if timeout is None:
            cause = TimeoutError(f"{method} {path} timed out")
        else:
            cause = TimeoutError(f"{method} {path} got no response within {timeout}s")

        super().__init__(cause)


class HTTPError(HTTPException):
    """The server answered with a non 2xx status."""

    def __init__(
        self,
        status: int,
        body: t.Union[bytes, str, None] = None,
        *,
        code: int = 0,
        message: t.Optional[str] = None,
        errors: t.Optional[t.Dict[str, t.Any]] = None,
    ) -> None:
        self.status = status
        self.body = body
        self.code = code
        self.message = message
        self.errors = errors

        super().__init__(self._format())

    @classmethod
    def from_response(cls, status: int, body: bytes, data: t.Any = None) -> "HTTPError":
        kwargs: t.Dict[str, t.Any] = {}

        if isinstance(data, dict):
            kwargs["code"] = data.get("code") or 0
            kwargs["message"] = data.get("message")
            kwargs["errors"] = data.get("errors")

        return cls(status, body, **kwargs)

    def _format(self) -> str:
        if self.code and self.message:
            text = f"Discord {self.status} error ({self.code}): {self.message}"
        elif self.message:
            text = f"Discord {self.status} error: {self.message}"
        elif self.body:
            body = self.body.decode("utf-8", "replace") if isinstance(self.body, bytes) else self.body
            text = f"Discord {self.status} error: {body}"
        else:
            text = f"Discord returned status {self.status}"

        if self.errors:
            text += f" {self.errors}"

        return text


class Forbidden(HTTPError):
    pass


class NotFound(HTTPError):
    pass


class DiscordServerError(HTTPError):
    pass


class JSONError(HTTPException):
    """The response body was not the JSON the caller asked for."""

    def __init__(self, body: bytes, cause: Exception) -> None:
        self.body = body
        self.cause = cause

        super().__init__(f"failed to decode JSON response: {cause}")


class RateLimitCancelled(HTTPException):
    """Waiting for a rate limit bucket would run past the request deadline."""

    def __init__(self, path: str, retry_after: float) -> None:
        self.path = path
        self.retry_after = retry_after

        super().__init__(f"rate limited on {path} for {retry_after:.2f}s past the deadline")


# Validation

class ValidationError(TapiocaError, ValueError):
    pass


class EmptyMessage(ValidationError):
    def __init__(self) -> None:
        super().__init__("message is empty")


class EmbedOverbound(ValidationError):
    def __init__(self, field: str, size: int, limit: int) -> None:
        self.field = field
        self.size = size
        self.limit = limit

        super().__init__(f"embed {field} has {size} characters, limit is {limit}")


class InvalidImage(ValidationError):
    pass


class ImageTooLarge(InvalidImage):
    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit

        super().__init__(f"image is {size} bytes, limit is {limit}")


# Gateway

class GatewayError(TapiocaError):
    pass


class WebSocketClosed(GatewayError):
    """The underlying WebSocket connection is gone."""

    def __init__(self, code: t.Optional[int] = None, message: str = "") -> None:
        self.code = code
        self.message = message

        super().__init__(f"websocket closed with {code}: {message}" if message else f"websocket closed with {code}")


class ReconnectWebSocket(GatewayError):
    """Signals the connection loop to dial again."""

    def __init__(self, *, resume: bool = True, delay: t.Optional[float] = None) -> None:
        self.resume = resume
        self.delay = delay

        super().__init__(f"reconnect requested (resume={resume})")


class ConnectionClosed(GatewayError):
    def __init__(self, code: int, message: str = "") -> None:
        self.code = code
        self.message = message

        super().__init__(f"Gateway closed {code}: {message}")


# Voice

class VoiceError(TapiocaError):
    pass


class VoiceTimeout(VoiceError):
    pass


class IPDiscoveryFailed(VoiceError):
    pass


class AlreadyConnecting(VoiceError):
    pass


class DecryptionFailed(VoiceError):
    """An inbound voice packet did not open with the session's secret key."""
