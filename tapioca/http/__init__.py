from .route import Route
from .ratelimit import RateLimiter, Bucket, bucket_key
from .core import HTTPClient, Response, Transport, USER_AGENT
from .multipart import File
from .query import query_field, encode_query
from .client import DiscordHTTPClient

__all__ = (
    "Route",
    "RateLimiter",
    "Bucket",
    "bucket_key",
    "HTTPClient",
    "Response",
    "Transport",
    "USER_AGENT",
    "File",
    "query_field",
    "encode_query",
    "DiscordHTTPClient",
)
