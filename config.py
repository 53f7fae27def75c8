"""Runtime configuration for the queue service.

Every value comes from an environment variable with a sensible local
default, so the app runs against a local SQLite file and a local Redis
without any setup.  ``Settings.from_env()`` is called once by the startup
context; nothing else reads the environment.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from typing import Optional


PROJECT_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_DB_URL = "sqlite:///" + os.path.join(PROJECT_DIR, "queue.db")
DEFAULT_REDIS_URL = "redis://localhost:6379/0"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


def normalize_database_url(url: str) -> str:
    # Hosted Postgres providers still hand out the legacy scheme.
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://"):]
    return url


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DB_URL
    redis_url: str = DEFAULT_REDIS_URL
    redis_socket_timeout: Optional[float] = None
    entry_cache_ttl_seconds: int = 86400
    default_list_limit: int = 50
    write_behind_enabled: bool = False
    write_worker_embedded: bool = True
    write_worker_interval: float = 2.0
    write_worker_batch_size: int = 10
    autopilot_interval: float = 3.0
    log_level: str = "INFO"
    cors_origins: tuple = ("*",)

    @classmethod
    def from_env(cls) -> "Settings":
        timeout = os.getenv("REDIS_SOCKET_TIMEOUT")
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            database_url=normalize_database_url(os.getenv("DATABASE_URL", DEFAULT_DB_URL)),
            redis_url=os.getenv("REDIS_URL", DEFAULT_REDIS_URL),
            redis_socket_timeout=float(timeout) if timeout else None,
            entry_cache_ttl_seconds=_env_int("ENTRY_CACHE_TTL_SECONDS", 86400),
            default_list_limit=_env_int("DEFAULT_LIST_LIMIT", 50),
            write_behind_enabled=_env_bool("WRITE_BEHIND_ENABLED", False),
            write_worker_embedded=_env_bool("WRITE_WORKER_EMBEDDED", True),
            write_worker_interval=_env_float("WRITE_WORKER_INTERVAL", 2.0),
            write_worker_batch_size=_env_int("WRITE_WORKER_BATCH_SIZE", 10),
            autopilot_interval=_env_float("AUTOPILOT_INTERVAL", 3.0),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
