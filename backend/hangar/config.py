"""Runtime settings for the gateway, read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parents[1]
load_dotenv(Path(__file__).resolve().parent / ".env")

STATUS_RETENTION_SECONDS = 86400 * 7


@dataclass(frozen=True)
class Settings:
    redis_url: str
    redis_max_connections: int
    redis_pool_timeout: float | None
    redis_health_check_interval: int
    status_ttl_seconds: int
    downlink_timeout: float | None
    views_dir: Path
    static_dir: Path
    log_level: str
    host: str
    port: int


def _env_float(name: str) -> float | None:
    value = (os.getenv(name) or "").strip()
    if not value:
        return None
    return float(value)


def load_settings() -> Settings:
    """Load settings from the environment with sensible defaults."""

    return Settings(
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        redis_max_connections=int(os.getenv("REDIS_MAX_CONNECTIONS", "25")),
        redis_pool_timeout=_env_float("REDIS_POOL_TIMEOUT"),
        redis_health_check_interval=int(os.getenv("REDIS_HEALTH_CHECK_INTERVAL", "60")),
        status_ttl_seconds=int(os.getenv("STATUS_TTL_SECONDS", str(STATUS_RETENTION_SECONDS))),
        downlink_timeout=_env_float("DOWNLINK_TIMEOUT"),
        views_dir=Path(os.getenv("VIEWS_DIR") or BASE_DIR / "views"),
        static_dir=Path(os.getenv("STATIC_DIR") or BASE_DIR / "static"),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "9000")),
    )
