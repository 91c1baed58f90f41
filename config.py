# config.py

"""Settings loaded once from environment variables (+ optional .env).

Variables use the TASKIFY_ prefix. DATABASE_URL / DATABASE_NAME are accepted
without the prefix as well, so existing deployments keep working.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

ENV_PREFIX = "TASKIFY"

logger = logging.getLogger(__name__)

load_dotenv(override=False)


def _k(suffix: str) -> str:
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str) -> str:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v.strip()
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


DEFAULT_JWT_SECRET = "defaultsecret"


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown time zone %r; falling back to UTC", name)
        return ZoneInfo("UTC")


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    log_dir: str

    # ---- Database ----
    database_url: str
    database_name: str

    # ---- Auth ----
    jwt_secret: str
    token_ttl_days: int

    # ---- Behaviour ----
    timezone: str
    cors_origins: List[str]
    max_attachment_bytes: int

    # ---- Server ----
    host: str
    port: int

    # Resolved from `timezone`; UTC when the name is unknown.
    zone: ZoneInfo = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "zone", _zone(self.timezone))

    @property
    def uses_default_secret(self) -> bool:
        return self.jwt_secret == DEFAULT_JWT_SECRET

    @staticmethod
    def from_env() -> "Settings":
        return Settings(
            app_name=_env(_k("APP_NAME"), "taskify"),
            log_level=_env(_k("LOG_LEVEL"), "INFO").upper(),
            log_dir=_env(_k("LOG_DIR"), ""),
            database_url=_first_env(_k("DATABASE_URL"), "DATABASE_URL", default="mongodb://localhost:27017"),
            database_name=_first_env(_k("DATABASE_NAME"), "DATABASE_NAME", default="taskify"),
            jwt_secret=_first_env(_k("JWT_SECRET"), "JWT_SECRET", default=DEFAULT_JWT_SECRET),
            token_ttl_days=_env_int(_k("TOKEN_TTL_DAYS"), 30),
            timezone=_env(_k("TIMEZONE"), "UTC"),
            cors_origins=_env_list(_k("CORS_ORIGINS"), ["*"]),
            max_attachment_bytes=_env_int(_k("MAX_ATTACHMENT_BYTES"), 5 * 1024 * 1024),
            host=_env(_k("HOST"), "0.0.0.0"),
            port=_env_int("PORT", _env_int(_k("PORT"), 8000)),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
