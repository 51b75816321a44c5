"""
Configuration
=============

Process settings loaded from the environment, plus the overlay function
used to merge per-node plugin configuration.
"""

from collections.abc import Mapping
from functools import lru_cache
from typing import Any, Dict, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


def overlay(*sources: Optional[Mapping]) -> Dict[str, Any]:
    """
    Merge configuration mappings into a new dict.

    Later sources win per key. When both the current and the incoming value
    are mappings the merge recurses into them; any other value, lists and
    tuples included, replaces the previous one wholesale. None sources are
    skipped. Inputs are never mutated.
    """
    result: Dict[str, Any] = {}
    for source in sources:
        if not source:
            continue
        for key, value in source.items():
            current = result.get(key)
            if isinstance(current, Mapping) and isinstance(value, Mapping):
                result[key] = overlay(current, value)
            elif isinstance(value, Mapping):
                result[key] = overlay(value)
            else:
                result[key] = value
    return result


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="TURNFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service settings
    service_name: str = "turnflow"
    environment: str = "development"
    host: str = "0.0.0.0"
    port: int = 3000
    debug: bool = False

    # Logging
    log_level: str = "INFO"
    log_format: str = "pretty"  # "json" or "pretty"

    # Webhook
    webhook_path: str = "/webhook"

    # Request logging plugin defaults
    request_logging: bool = False
    response_logging: bool = False

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings."""
    return Settings()


__all__ = ["overlay", "Settings", "get_settings"]
