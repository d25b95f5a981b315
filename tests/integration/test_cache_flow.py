"""
Integration tests for the response cache flow.

Runs the full application over ASGI with a real RedisStore whose client is a
dict-backed stand-in for the Redis server.
"""

import json
from unittest.mock import MagicMock

import httpx
import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError

from service_api.app.caching.store import ConnectionState, RedisStore
from service_api.app.main import ApiService


class FakeRedisServer:
    """Dict-backed subset of the redis.asyncio client API."""

    def __init__(self):
        self.data = {}
        self.expiry = {}
        self.commands = []
        self.down = False

    def _command(self, name):
        self.commands.append(name)
        if self.down:
            raise RedisConnectionError("Error 111 connecting to cache.internal:6379. Connection refused.")

    async def ping(self):
        self._command("PING")
        return True

    async def get(self, key):
        self._command("GET")
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self._command("SET")
        self.data[key] = value
        self.expiry[key] = ex
        return True

    async def flushdb(self):
        self._command("FLUSHDB")
        self.data.clear()
        self.expiry.clear()
        return True

    async def aclose(self):
        self.commands.append("CLOSE")


class TestCacheFlow:
    """End-to-end cache behaviour."""

    @pytest.fixture
    def redis_server(self):
        return FakeRedisServer()

    @pytest.fixture
    def service(self, api_config, redis_server, project_router):
        store = RedisStore.from_config(api_config)
        store._create_client = MagicMock(return_value=redis_server)
        return ApiService(config=api_config, routers=[project_router], store=store)

    @pytest_asyncio.fixture
    async def client(self, service):
        """ASGI client with the service started."""
        await service.on_startup()
        transport = httpx.ASGITransport(app=service.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client
        await service.on_shutdown()

    @pytest.mark.asyncio
    async def test_project_read_write_cycle(self, client, service, redis_server, handler_counter):
        """GET miss, GET hit, POST flush, GET miss again."""
        first = await client.get("/api/project/123")
        await service.response_cache.drain()

        assert first.status_code == 200
        assert first.json() == {"id": "123"}
        assert first.headers["X-Cache"] == "MISS"
        assert json.loads(redis_server.data["/api/project/123"]) == {"status": 200, "body": {"id": "123"}}
        assert redis_server.expiry["/api/project/123"] == 300

        second = await client.get("/api/project/123")
        assert second.status_code == 200
        assert second.json() == {"id": "123"}
        assert second.headers["X-Cache"] == "HIT"
        assert handler_counter["get_project"] == 1

        created = await client.post("/api/project", json={"id": "456"})
        assert created.status_code == 201
        assert redis_server.data == {}

        third = await client.get("/api/project/123")
        assert third.headers["X-Cache"] == "MISS"
        assert handler_counter["get_project"] == 2

    @pytest.mark.asyncio
    async def test_auth_routes_bypass_cache(self, client, service, redis_server):
        """Bypass-listed paths issue no store commands."""
        redis_server.commands.clear()

        response = await client.get("/api/auth/login")
        await service.response_cache.drain()

        assert response.status_code == 200
        assert "X-Cache" not in response.headers
        assert redis_server.commands == []

    @pytest.mark.asyncio
    async def test_not_found_never_stored(self, client, service, redis_server):
        """A 404 from the handler is forwarded and not written."""
        response = await client.get("/api/project/999")
        await service.response_cache.drain()

        assert response.status_code == 404
        assert "SET" not in redis_server.commands
        assert redis_server.data == {}

    @pytest.mark.asyncio
    async def test_store_outage_mid_flight(self, client, service, redis_server):
        """Losing the store degrades to uncached responses without errors."""
        redis_server.down = True

        response = await client.get("/api/project/123")
        await service.response_cache.drain()

        assert response.status_code == 200
        assert response.json() == {"id": "123"}
        assert response.headers["X-Cache"] == "MISS"
        assert service.store.state in (ConnectionState.ERROR, ConnectionState.CONNECTING)

        mutation = await client.post("/api/project", json={"id": "5"})
        assert mutation.status_code == 201

    @pytest.mark.asyncio
    async def test_store_recovers(self, client, service, redis_server):
        """The reconnect loop restores caching once the store answers again."""
        redis_server.down = True
        await client.get("/api/project/123")

        redis_server.down = False
        await service.store._reconnect_task

        assert service.store.state is ConnectionState.READY

        await client.get("/api/project/123")
        await service.response_cache.drain()
        hit = await client.get("/api/project/123")
        assert hit.headers["X-Cache"] == "HIT"
