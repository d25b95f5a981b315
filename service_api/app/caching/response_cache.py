"""
Read-through response cache with flush-on-mutation invalidation.

Cached entries are keyed by the exact request path plus query string. The
only invalidation is a full flush of the store database on any mutating
request; entries also expire through the store TTL.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Set

from shared.errors import CacheSerializationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .store import RedisStore

READ_METHOD = "GET"
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
CACHE_HEADER = "X-Cache"
DEFAULT_BYPASS_PREFIXES = ("/api/auth",)


@dataclass
class CachedResponse:
    """Status code and JSON body of a successful GET response."""

    status: int
    body: Any

    def to_json(self) -> str:
        try:
            return json.dumps({"status": self.status, "body": self.body})
        except (TypeError, ValueError) as e:
            raise CacheSerializationError(f"Response body is not JSON serializable: {e}") from e

    @classmethod
    def from_json(cls, raw: str) -> "CachedResponse":
        try:
            data = json.loads(raw)
            return cls(status=int(data.get("status") or 200), body=data["body"])
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            raise CacheSerializationError(f"Invalid cached response: {e}") from e


class ResponseCache:
    """Cache policy and store operations used by ResponseCacheMiddleware."""

    def __init__(
        self,
        store: RedisStore,
        *,
        bypass_prefixes: Iterable[str] = DEFAULT_BYPASS_PREFIXES,
        ttl: Optional[int] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.bypass_prefixes = tuple(bypass_prefixes)
        self.ttl = ttl
        self.metrics = metrics
        self.logger = get_logger("api.response_cache")
        self._pending: Set[asyncio.Task] = set()

    def is_bypassed(self, path: str) -> bool:
        """True when ``path`` starts with one of the excluded prefixes."""
        return any(path.startswith(prefix) for prefix in self.bypass_prefixes)

    @staticmethod
    def cache_key(path: str, query: str = "") -> str:
        """Exact path plus query string, case-sensitive and unnormalized."""
        return f"{path}?{query}" if query else path

    @classmethod
    def request_key(cls, scope: Dict[str, Any]) -> str:
        """
        Cache key for an ASGI request, built from the URL as sent.

        Uses the still-encoded ``raw_path`` so ``/a%3Fb=1`` and ``/a?b=1``
        stay distinct; falls back to the decoded path when the server does
        not provide it.
        """
        raw_path = scope.get("raw_path")
        path = raw_path.decode("latin-1") if raw_path else scope["path"]
        query = scope.get("query_string", b"").decode("latin-1")
        return cls.cache_key(path, query)

    def note_bypass(self, method: str, path: str) -> None:
        self.logger.debug("Cache BYPASS", method=method, path=path)
        self._record("bypass")

    async def lookup(self, key: str) -> Optional[CachedResponse]:
        """Return the cached response for ``key``; None on miss or any error."""
        raw = await self.store.get(key)
        if raw is None:
            self.logger.info("Cache MISS", key=key)
            self._record("miss")
            return None

        try:
            cached = CachedResponse.from_json(raw)
        except CacheSerializationError as e:
            self.logger.warning("Discarding unreadable cache entry", key=key, error=str(e))
            self._record("miss")
            return None

        self.logger.info("Cache HIT", key=key, status=cached.status)
        self._record("hit")
        return cached

    def schedule_write(self, key: str, status: int, body: bytes) -> Optional[asyncio.Task]:
        """
        Store a fresh response in the background.

        Only 2xx responses are written. The returned task never raises; failures
        are logged. Returns None when the response is not cacheable.
        """
        if not 200 <= status < 300:
            self.logger.debug("Response not cached", key=key, status=status)
            return None

        task = asyncio.create_task(self._write(key, status, body))
        self._pending.add(task)
        task.add_done_callback(self._on_write_done)
        return task

    async def _write(self, key: str, status: int, body: bytes) -> bool:
        try:
            payload = CachedResponse(status, json.loads(body)).to_json()
        except (ValueError, CacheSerializationError) as e:
            self.logger.warning("Cache write skipped, body is not JSON", key=key, error=str(e))
            return False

        stored = await self.store.set(key, payload, ttl=self.ttl)
        if stored:
            self.logger.info("Cache SET", key=key, status=status)
        return stored

    def _on_write_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error("Cache write failed", error=str(error), error_type=type(error).__name__)

    async def invalidate(self, method: str, path: str) -> bool:
        """Flush the whole cache because of a mutating request."""
        flushed = await self.store.flush_all()
        if flushed:
            self.logger.info("Cache FLUSHED", method=method, path=path)
            if self.metrics:
                self.metrics.record_cache_flush(method)
        else:
            self.logger.warning("Cache flush failed, continuing", method=method, path=path)
        return flushed

    async def drain(self) -> None:
        """Wait for background writes still in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _record(self, result: str) -> None:
        if self.metrics:
            self.metrics.record_cache_lookup(result)
