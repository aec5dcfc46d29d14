"""
Shared configuration management for the Orderly platform.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ORDERLY_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Backend services
    users_service_url: str = Field(default="http://service_users:8001")
    orders_service_url: str = Field(default="http://service_orders:8002")

    # Security
    jwt_secret: str = Field(default="your-secret-key-change-in-production")
    jwt_algorithm: str = Field(default="HS256")
    token_ttl_seconds: int = Field(default=24 * 60 * 60)

    # Circuit breakers
    breaker_timeout_seconds: float = Field(default=5.0)
    breaker_error_threshold_percentage: float = Field(default=50.0)
    breaker_reset_timeout_seconds: float = Field(default=30.0)
    breaker_rolling_window_seconds: float = Field(default=10.0)
    breaker_rolling_buckets: int = Field(default=10)
    breaker_volume_threshold: int = Field(default=5)

    # Rate limiting
    rate_limit_window_seconds: int = Field(default=15 * 60)
    rate_limit_max_requests: int = Field(default=100)
    auth_rate_limit_max_requests: int = Field(default=5)
    rate_limit_redis_url: Optional[str] = Field(default=None)
    trust_forwarded_for: bool = Field(default=False)


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
