"""Application configuration with environment-specific profiles.

APP_ENV picks a profile (dev, test, staging, production); each setting is
resolved from its environment variable first, then the profile, then the
dataclass default.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from functools import lru_cache
from typing import Any, Callable


@dataclass(frozen=True)
class Settings:
    """Immutable application settings resolved from environment."""

    database_url: str
    app_env: str = "dev"
    jwt_secret_key: str = "jwt-change-me"
    jwt_expire_minutes: int = 480
    log_level: str = "INFO"
    request_id_header_name: str = "X-Request-ID"
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000"])

    # Deadline checks arrive from every open coach screen
    rate_limit_enabled: bool = True
    rate_limit_storage_uri: str = "memory://"
    tick_rate_limit: str = "240/minute"

    # Coach-side poller
    auto_advance_poll_ms: int = 1000
    api_base_url: str = "http://127.0.0.1:8000"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"


_ENV_PROFILES: dict[str, dict[str, Any]] = {
    "dev": {"log_level": "DEBUG", "jwt_expire_minutes": 1440},
    "test": {"log_level": "WARNING", "jwt_expire_minutes": 60, "rate_limit_enabled": False},
    "staging": {"log_level": "INFO"},
    "production": {"log_level": "WARNING", "jwt_expire_minutes": 240, "tick_rate_limit": "120/minute"},
}

# field name -> environment variable
_ENV_NAMES = {
    "jwt_secret_key": "JWT_SECRET",
    "jwt_expire_minutes": "JWT_EXPIRE_MINUTES",
    "log_level": "LOG_LEVEL",
    "request_id_header_name": "REQUEST_ID_HEADER",
    "cors_origins": "CORS_ORIGINS",
    "rate_limit_enabled": "RATE_LIMIT_ENABLED",
    "rate_limit_storage_uri": "RATE_LIMIT_STORAGE_URI",
    "tick_rate_limit": "TICK_RATE_LIMIT",
    "auto_advance_poll_ms": "AUTO_ADVANCE_POLL_MS",
    "api_base_url": "API_BASE_URL",
}


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _parse_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


_PARSERS: dict[str, Callable[[str], Any]] = {
    "jwt_expire_minutes": int,
    "auto_advance_poll_ms": int,
    "rate_limit_enabled": _parse_bool,
    "cors_origins": _parse_list,
}


def get_database_url() -> str:
    """DATABASE_URL when set, otherwise a local SQLite file."""
    return os.getenv("DATABASE_URL") or "sqlite+pysqlite:///./gymflow.db"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    app_env = os.getenv("APP_ENV", "dev")
    profile = _ENV_PROFILES.get(app_env, _ENV_PROFILES["dev"])

    values: dict[str, Any] = {}
    for f in fields(Settings):
        env_name = _ENV_NAMES.get(f.name)
        raw = os.getenv(env_name) if env_name else None
        if raw is not None:
            values[f.name] = _PARSERS.get(f.name, str)(raw)
        elif f.name in profile:
            values[f.name] = profile[f.name]
    return Settings(database_url=get_database_url(), app_env=app_env, **values)
