"""
Key-value store connection manager for the response cache.

Owns the single Redis connection shared by every request. All data
operations fail open: a store error is logged and reported as a miss or a
skipped write, never raised to the caller.
"""

import asyncio
from enum import Enum
from typing import Any, Callable, List, Optional
from urllib.parse import urlsplit

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from shared.config import BaseConfig
from shared.errors import CacheUnavailableError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, calculate_delay

# Errors raised by the client for any failed command
STORE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)
# Subset that means the connection itself is gone
CONNECTION_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError, asyncio.TimeoutError)

DEFAULT_TTL = 300


class ConnectionState(str, Enum):
    """Lifecycle of the store connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    ERROR = "error"


class StartupPolicy(str, Enum):
    """What the process does when the store is unreachable at startup."""

    FATAL = "fatal"
    DEGRADE = "degrade"


StateListener = Callable[[ConnectionState, ConnectionState], Any]


class RedisStore:
    """Single long-lived connection to the cache store."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        *,
        host: str = "localhost",
        port: int = 6379,
        username: Optional[str] = None,
        password: Optional[str] = None,
        db: int = 0,
        tls: bool = False,
        default_ttl: int = DEFAULT_TTL,
        socket_timeout: float = 5.0,
        connect_timeout: float = 5.0,
        reconnect_step: float = 0.05,
        reconnect_cap: float = 2.0,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.redis_url = redis_url
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.db = db
        self.tls = tls
        self.default_ttl = default_ttl
        self.socket_timeout = socket_timeout
        self.connect_timeout = connect_timeout
        self.metrics = metrics
        self.logger = get_logger("api.cache_store")

        # delay = min(attempt * step, cap)
        self.backoff = RetryConfig(
            base_delay=reconnect_step,
            max_delay=reconnect_cap,
            jitter=False,
            backoff_strategy="linear",
        )

        self._client: Optional[redis.Redis] = None
        self._state = ConnectionState.DISCONNECTED
        self._listeners: List[StateListener] = []
        self._reconnect_task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config: BaseConfig, metrics: Optional[MetricsCollector] = None) -> "RedisStore":
        """Build a store from service configuration."""
        return cls(
            config.redis_url,
            host=config.redis_host,
            port=config.redis_port,
            username=config.redis_username,
            password=config.redis_password,
            db=config.redis_db,
            tls=config.redis_tls,
            default_ttl=config.cache_ttl_seconds,
            socket_timeout=config.redis_socket_timeout,
            connect_timeout=config.redis_connect_timeout,
            reconnect_step=config.redis_reconnect_step,
            reconnect_cap=config.redis_reconnect_cap,
            metrics=metrics,
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def target(self) -> str:
        """Connection target as ``host:port/db``, without scheme or credentials, for logs."""
        if self.redis_url:
            parts = urlsplit(self.redis_url)
            if parts.hostname is None:
                # unix:// sockets have no host
                return parts.path
            db = parts.path.lstrip("/") or "0"
            return f"{parts.hostname}:{parts.port or 6379}/{db}"
        return f"{self.host}:{self.port}/{self.db}"

    def is_available(self) -> bool:
        """True when commands may be sent to the store."""
        return self._client is not None and self._state is ConnectionState.READY

    def add_listener(self, listener: StateListener) -> None:
        """Register a callback fired with (old_state, new_state) on every transition."""
        self._listeners.append(listener)

    def _create_client(self) -> redis.Redis:
        """Create the Redis client. Retries are handled by the reconnect loop."""
        options = dict(
            decode_responses=True,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.connect_timeout,
            retry=Retry(NoBackoff(), 0),
            health_check_interval=30,
        )
        if self.redis_url:
            return redis.from_url(self.redis_url, **options)

        return redis.Redis(
            host=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            db=self.db,
            ssl=self.tls,
            **options,
        )

    def _set_state(self, new_state: ConnectionState, **context) -> None:
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state

        log = self.logger.error if new_state is ConnectionState.ERROR else self.logger.info
        log(
            "Cache store state changed",
            previous=old_state.value,
            state=new_state.value,
            target=self.target,
            **context
        )

        if self.metrics:
            self.metrics.set_store_ready(new_state is ConnectionState.READY)

        for listener in list(self._listeners):
            try:
                listener(old_state, new_state)
            except Exception as e:
                self.logger.error("Cache store state listener failed", error=str(e))

    async def connect(self) -> None:
        """
        Open the connection and verify it with PING.

        A no-op when already ready. Raises CacheUnavailableError when the store
        cannot be reached; the caller decides whether that is fatal.
        """
        if self._state is ConnectionState.READY:
            return

        self._set_state(ConnectionState.CONNECTING)
        if self._client is None:
            self._client = self._create_client()

        try:
            await self._client.ping()
        except STORE_ERRORS as e:
            self.logger.error(
                "Failed to connect to cache store",
                target=self.target,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._set_state(ConnectionState.ERROR, error=str(e))
            raise CacheUnavailableError(
                f"Cache store unreachable: {e}",
                details={"target": self.target},
            ) from e

        self._set_state(ConnectionState.READY)

    def start_reconnecting(self) -> None:
        """Start the background reconnect loop unless one is already running."""
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        if self._client is None:
            self._client = self._create_client()
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        attempt = 0
        while True:
            attempt += 1
            delay = calculate_delay(attempt, self.backoff)
            self.logger.info(
                "Cache store reconnecting",
                attempt=attempt,
                delay_ms=round(delay * 1000),
                target=self.target,
            )
            await asyncio.sleep(delay)

            self._set_state(ConnectionState.CONNECTING, attempt=attempt)
            try:
                await self._client.ping()
            except STORE_ERRORS as e:
                self.logger.warning(
                    "Cache store reconnect attempt failed",
                    attempt=attempt,
                    target=self.target,
                    error=str(e),
                )
                self._set_state(ConnectionState.ERROR, error=str(e))
                continue

            self._set_state(ConnectionState.READY, attempt=attempt)
            return

    def _handle_error(self, operation: str, error: Exception, **context) -> None:
        """Log a failed command and start reconnecting if the connection dropped."""
        self.logger.error(
            "Cache store operation failed",
            operation=operation,
            target=self.target,
            error=str(error),
            error_type=type(error).__name__,
            **context
        )
        if self.metrics:
            self.metrics.record_store_error(operation)

        if isinstance(error, CONNECTION_ERRORS):
            self._set_state(ConnectionState.ERROR, error=str(error))
            self.start_reconnecting()

    async def get(self, key: str) -> Optional[str]:
        """Return the stored value for ``key``, or None when absent or unavailable."""
        if not self.is_available():
            self.logger.debug("Cache get skipped", reason="store_not_ready", key=key)
            return None

        try:
            return await self._client.get(key)
        except STORE_ERRORS as e:
            self._handle_error("get", e, key=key)
            return None

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        """Store ``value`` under ``key``, overwriting, with a TTL in seconds."""
        if not self.is_available():
            self.logger.debug("Cache set skipped", reason="store_not_ready", key=key)
            return False

        expiry = ttl if ttl is not None else self.default_ttl
        try:
            await self._client.set(key, value, ex=expiry)
            return True
        except STORE_ERRORS as e:
            self._handle_error("set", e, key=key)
            return False

    async def flush_all(self) -> bool:
        """
        Remove every key in the active database.

        Non-selective: unrelated keys in the same database are dropped too.
        """
        if not self.is_available():
            self.logger.debug("Cache flush skipped", reason="store_not_ready")
            return False

        try:
            await self._client.flushdb()
            return True
        except STORE_ERRORS as e:
            self._handle_error("flush_all", e)
            return False

    async def disconnect(self) -> None:
        """Close the connection. Safe to call when never connected."""
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
            self._reconnect_task = None

        if self._client is not None:
            try:
                await self._client.aclose()
            except STORE_ERRORS as e:
                self.logger.error("Error disconnecting cache store", target=self.target, error=str(e))
            self._client = None

        self._set_state(ConnectionState.DISCONNECTED)
