"""
Shared pytest fixtures.
"""

import pytest

from shared.config import get_config
from service_api.testing import HandlerCounter, InMemoryStore, create_project_router


@pytest.fixture
def api_config():
    """Service configuration isolated from the local environment."""
    return get_config(
        "api",
        8000,
        env="test",
        log_level="warning",
        cache_startup_policy="degrade",
        cache_bypass_prefixes=["/api/auth"],
        cache_ttl_seconds=300,
    )


@pytest.fixture
def memory_store():
    """In-memory cache store."""
    return InMemoryStore()


@pytest.fixture
def handler_counter():
    return HandlerCounter()


@pytest.fixture
def project_router(handler_counter):
    """Project routes counting downstream invocations."""
    return create_project_router(handler_counter)
