"""Configuration for authprobe.

Settings come from ``AUTHPROBE_*`` environment variables or a ``.env`` file in
the working directory. OAuth client credentials are not part of the process
settings: each browser session submits its own through ``POST /config``.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_config_dir() -> Path:
    """Get/create the config directory (``~/.authprobe``)."""
    d = Path.home() / ".authprobe"
    d.mkdir(parents=True, exist_ok=True)
    return d


class Settings(BaseSettings):
    """Process-wide settings."""

    model_config = SettingsConfigDict(
        env_prefix="AUTHPROBE_",
        env_file=".env",
        extra="ignore",
    )

    # Identity provider
    base_url: str = Field(
        default="https://api.sindireceita.org.br",
        description="Provider base URL; /oauth2/* endpoints are resolved against it",
    )

    # Web server
    host: str = "127.0.0.1"
    port: int = 8080
    session_secret: str = Field(
        default="change-this-secret-in-production-32bytes!!",
        description="HMAC key for the session cookie",
    )
    cookie_secure: bool = False

    # Storage
    database_path: Path | None = Field(
        default=None, description="SQLite file for the HTTP history (default ~/.authprobe/history.db)"
    )

    # Outbound calls and sessions
    http_timeout: float = 30.0
    session_ttl_hours: int = 24
    sweep_interval_seconds: float = 3600.0

    log_level: str = "INFO"

    @classmethod
    def load(cls) -> Settings:
        return cls()

    def resolved_database_path(self) -> Path:
        if self.database_path is not None:
            return self.database_path
        return get_config_dir() / "history.db"


@lru_cache
def get_settings() -> Settings:
    return Settings.load()
