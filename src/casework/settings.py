"""
casework.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for all layers.
- Hide secrets from repr/logging (e.g., JWT secret).
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Strict env-driven configuration with defaults that are safe for local dev.
    A single settings object is injected across layers.
    """

    model_config = SettingsConfigDict(env_prefix="CASEWORK_", case_sensitive=False)

    # Environment controls toggle behavior like auto-init DB tables.
    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "casework"
    log_level: str = "INFO"

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Auth (bearer validation + service tokens for the orchestrator gateway)
    jwt_alg: str = "HS256"
    jwt_issuer: str = "casework"
    jwt_audience: str = "casework-api"
    jwt_secret: str = Field(default="dev-secret-change-me", repr=False)

    # Persistence
    database_url: str = "sqlite+aiosqlite:///./casework.db"
    storage_retry_attempts: int = Field(default=3, ge=1)
    storage_retry_backoff_seconds: float = Field(default=0.05, ge=0)

    # Orchestrator gateway (BPMN engine front)
    orchestrator_base_url: str = "http://orchestrator:3002"
    orchestrator_process_key: str = "procesoTramiteGrupos"
    orchestrator_timeout_seconds: float = Field(default=10.0, gt=0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Every other module depends on this one; rename fields only together with the
# deployment environment that sets them.
