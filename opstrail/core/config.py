from __future__ import annotations

import random
from collections.abc import Callable, Mapping
from datetime import timedelta
from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict

Redactor = Callable[[dict[str, Any]], Mapping[str, Any]]
Resolver = Callable[[Any], Any]
AuthCheck = Callable[[Any], bool]


class Settings(BaseSettings):
    app_name: str = "opstrail"
    env: str = "dev"
    api_prefix: str = "/ops"
    log_level: str = "INFO"
    database_url: str = "sqlite:///opstrail.db"

    enabled: bool = True
    # 1.0 captures everything, 0.0 captures nothing; anything between is a per-call draw.
    sample_rate: float = 1.0
    max_payload_bytes: int = 10_000
    retention_period: timedelta | None = timedelta(days=7)

    query_limit_default: int = 200
    query_limit_max: int = 1000
    related_limit: int = 200

    # Host-supplied hooks. Never read from the environment.
    redactor: Redactor | None = None
    tenant_resolver: Resolver | None = None
    actor_resolver: Resolver | None = None
    auth_check: AuthCheck | None = None

    model_config = SettingsConfigDict(
        env_prefix="OPSTRAIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
    )

    def should_sample(self) -> bool:
        rate = self.sample_rate
        if rate >= 1.0:
            return True
        if rate <= 0.0:
            return False
        return random.random() < rate


settings = Settings()


def configure(**changes: Any) -> Settings:
    """Update the process-wide settings in place. Call before serving traffic."""
    for key, value in changes.items():
        if key not in Settings.model_fields:
            raise AttributeError(f"unknown setting: {key}")
        setattr(settings, key, value)
    return settings
