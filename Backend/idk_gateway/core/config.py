"""
Gateway settings.

Values come from the environment, then from `Backend/.env`. Each section
reads its own prefix: none for the app, `IDK_` for the gateway and `LOG_`
for logging. Import `settings` rather than building sections yourself.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BACKEND_DIR = Path(__file__).resolve().parents[2]
ENV_FILE = BACKEND_DIR / ".env"

# Nested sections are built by default_factory, so export .env up front
load_dotenv(ENV_FILE)


def _section(prefix: str = "") -> SettingsConfigDict:
    return SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        env_prefix=prefix,
        case_sensitive=False,
        extra="ignore",
    )


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class AppSettings(BaseSettings):
    """Process and HTTP server settings."""

    model_config = _section()

    app_env: Literal["development", "staging", "production"] = "development"
    app_name: str = "idk-gateway"
    app_version: str = "0.1.0"
    app_debug: bool = False

    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_workers: int = 4

    cors_origins: str = "http://localhost:3000"
    cors_credentials: bool = True

    @property
    def cors_origins_list(self) -> List[str]:
        return _split_csv(self.cors_origins)


class GatewaySettings(BaseSettings):
    """Routing, upstream call and retry defaults (`IDK_*`)."""

    model_config = _section("IDK_")

    # JSON routing config header
    config_header: str = "x-idk-config"
    # Used when a request has neither a config header nor x-idk-provider
    default_provider: Optional[str] = None

    default_timeout_ms: int = Field(default=120000, gt=0)
    connect_timeout_ms: int = Field(default=10000, gt=0)
    max_connections: int = Field(default=200, gt=0)

    # Per-target retry attempts are capped at this value
    max_retry_attempts: int = Field(default=5, ge=0)
    retry_backoff_base_ms: int = Field(default=500, ge=0)
    max_retry_limit_ms: int = Field(default=60000, ge=0)
    retry_status_codes: str = "429,500,502,503,504"

    # Only return fields that exist in the OpenAI schema
    strict_open_ai_compliance: bool = True

    @field_validator("default_provider")
    @classmethod
    def blank_provider_is_none(cls, v: Optional[str]) -> Optional[str]:
        return (v or "").strip() or None

    @property
    def retry_status_codes_list(self) -> List[int]:
        return [int(code) for code in _split_csv(self.retry_status_codes)]


class LogSettings(BaseSettings):
    """Log output (`LOG_*`)."""

    model_config = _section("LOG_")

    level: str = "INFO"
    format: Literal["json", "text"] = "json"
    # Include request/response bodies in provider request logs
    requests: bool = True
    # Mask secrets in logged routing configs
    sanitize: bool = True


class Settings(BaseSettings):
    """All settings sections."""

    model_config = _section()

    app: AppSettings = Field(default_factory=AppSettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    log: LogSettings = Field(default_factory=LogSettings)

    docs_enabled: bool = True
    dev_auto_reload: bool = True


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
