"""
Shared configuration management for the project-management API.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="API_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    frontend_origin: Optional[str] = Field(default=None)

    # Key-value store. redis_url wins over the discrete host/port settings.
    redis_url: Optional[str] = Field(default=None)
    redis_host: str = Field(default="localhost")
    redis_port: int = Field(default=6379)
    redis_username: Optional[str] = Field(default=None)
    redis_password: Optional[str] = Field(default=None)
    redis_db: int = Field(default=0)
    redis_tls: bool = Field(default=False)
    redis_socket_timeout: float = Field(default=5.0)
    redis_connect_timeout: float = Field(default=5.0)
    redis_reconnect_step: float = Field(default=0.05)
    redis_reconnect_cap: float = Field(default=2.0)

    # Response cache
    cache_ttl_seconds: int = Field(default=300)
    cache_bypass_prefixes: List[str] = Field(default_factory=lambda: ["/api/auth"])
    cache_startup_policy: str = Field(default="fatal")


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
