"""
Project-management API service.

Wires the response cache in front of the business routers and owns the
cache store lifecycle: connect once at startup, drain and disconnect at
shutdown.
"""

from typing import Dict, Iterable, Optional

from fastapi import APIRouter, FastAPI
from fastapi.responses import PlainTextResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import CacheUnavailableError, NotFoundError

from .caching.middleware import ResponseCacheMiddleware
from .caching.response_cache import ResponseCache
from .caching.store import ConnectionState, RedisStore, StartupPolicy

SERVICE_NAME = "api"
SERVICE_PORT = 8000
BASE_PATH = "/api"
# Probes must always see live state
OPERATIONAL_PATHS = ("/health", "/metrics")


class ApiService(BaseService):
    """API service with the global response cache."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        routers: Iterable[APIRouter] = (),
        store: Optional[RedisStore] = None,
    ):
        config = config or get_config(SERVICE_NAME, SERVICE_PORT)
        # Applied once for the whole process lifetime
        self.startup_policy = StartupPolicy(config.cache_startup_policy.lower())
        self._store_override = store
        super().__init__(SERVICE_NAME, SERVICE_PORT, config=config)

        for router in routers:
            self.app.include_router(router, prefix=BASE_PATH)
        self._setup_api_routes()

        self.app.state.api_service = self

    def _setup_dependencies(self):
        self.store = self._store_override or RedisStore.from_config(self.config, metrics=self.metrics)
        self.response_cache = ResponseCache(
            self.store,
            bypass_prefixes=[*self.config.cache_bypass_prefixes, *OPERATIONAL_PATHS],
            ttl=self.config.cache_ttl_seconds,
            metrics=self.metrics,
        )

    def _setup_middleware(self):
        # Added first so it sits innermost, below request logging and CORS
        self.app.add_middleware(ResponseCacheMiddleware, cache=self.response_cache)
        super()._setup_middleware()

    def _setup_api_routes(self):
        @self.app.get("/healthz", response_class=PlainTextResponse)
        async def healthz():
            """Liveness probe."""
            return "OK"

        @self.app.api_route(
            BASE_PATH + "/{path:path}",
            methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
            include_in_schema=False,
        )
        async def not_found(path: str):
            raise NotFoundError("404 : API not found", details={"path": f"{BASE_PATH}/{path}"})

    async def on_startup(self):
        """Connect the cache store according to the configured startup policy."""
        try:
            await self.store.connect()
        except CacheUnavailableError as e:
            if self.startup_policy is StartupPolicy.FATAL:
                self.logger.critical(
                    "Cache store unreachable at startup, aborting",
                    target=self.store.target,
                    error=e.message,
                )
                raise
            self.logger.warning(
                "Cache store unreachable at startup, serving without cache",
                target=self.store.target,
                error=e.message,
            )
            self.store.start_reconnecting()
            return

        self.logger.info("Cache store connected", target=self.store.target)

    async def on_shutdown(self):
        """Let background cache writes finish, then close the store."""
        await self.response_cache.drain()
        await self.store.disconnect()
        self.logger.info("Cache store disconnected")

    async def _check_dependencies(self) -> Dict[str, str]:
        state = self.store.state
        return {"cache": "ok" if state is ConnectionState.READY else state.value}


def create_app(
    config: Optional[ServiceConfig] = None,
    routers: Iterable[APIRouter] = (),
    store: Optional[RedisStore] = None,
) -> FastAPI:
    """Create the FastAPI application."""
    return ApiService(config=config, routers=routers, store=store).app


if __name__ == "__main__":
    ApiService().run()
