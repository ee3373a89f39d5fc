"""
Shared configuration management for the Specialist Access Layer.
"""

from typing import Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ACCESS_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Storage
    storage_backend: str = Field(default="redis", description="redis or memory")
    redis_url: str = Field(default="redis://localhost:6379/0")
    storage_key_prefix: str = Field(default="")

    # Metering
    default_free_messages: int = Field(default=5, ge=0)
    max_free_messages: int = Field(default=100, ge=0)
    trial_days: int = Field(default=7, ge=1)
    weekly_subscription_days: int = Field(default=7, ge=1)
    yearly_subscription_days: int = Field(default=365, ge=1)
    premium_item_ids: List[str] = Field(default_factory=lambda: ["premium-plan"])
    subscription_item_plans: Dict[str, str] = Field(
        default_factory=lambda: {"weekly-pro": "weekly", "yearly-pro": "yearly"}
    )
    reconcile_interval_seconds: float = Field(default=2.0, gt=0)
    default_username: str = Field(default="User")

    # Observability
    enable_metrics: bool = Field(default=True)


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
