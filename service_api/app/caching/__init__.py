"""
Response caching package.

Caches successful GET responses in Redis keyed by the exact URL and flushes
the whole store database on any mutating request.
"""

from .middleware import ResponseCacheMiddleware
from .response_cache import CACHE_HEADER, CachedResponse, ResponseCache
from .store import ConnectionState, RedisStore, StartupPolicy

__all__ = [
    "CACHE_HEADER",
    "CachedResponse",
    "ConnectionState",
    "RedisStore",
    "ResponseCache",
    "ResponseCacheMiddleware",
    "StartupPolicy",
]
