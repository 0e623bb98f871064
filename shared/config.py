"""
Shared configuration management for the Optics Orders service.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="OPTICS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8020)

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgresql://localhost:5432/optics")


class OrdersConfig(BaseConfig):
    """Configuration for the orders service."""

    service_name: str = Field(default="orders")

    # Cache
    cache_backend: str = Field(default="memory", pattern="^(memory|redis)$")
    cache_namespace: str = Field(default="optics")
    cache_ttl_seconds: int = Field(default=3600, gt=0)
    cache_timeout_seconds: float = Field(default=0.5, gt=0)
    cache_max_entries: int = Field(default=10000, gt=0)
    cache_breaker_failure_threshold: int = Field(default=5, gt=0)
    cache_breaker_recovery_seconds: float = Field(default=30.0, ge=0)

    # Store
    store_backend: str = Field(default="memory", pattern="^(memory|postgres)$")
    postgres_pool_min: int = Field(default=2, ge=1)
    postgres_pool_max: int = Field(default=10, ge=1)
    postgres_command_timeout: float = Field(default=30.0, gt=0)

    # Orders
    bill_no_conflict_retries: int = Field(default=1, ge=0)
    owner_scope_policy: str = Field(default="own_branches", pattern="^(own_branches|all_branches)$")


def get_config(**overrides) -> OrdersConfig:
    """Build the orders service configuration from the environment."""
    return OrdersConfig(**overrides)
