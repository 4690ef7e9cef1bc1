"""Process configuration from environment (.env supported) and logging setup."""
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_project_root = Path(__file__).resolve().parent.parent


def load_env() -> None:
    """Load .env from the project root, then the working directory (overrides for deploy)."""
    load_dotenv(_project_root / ".env")
    load_dotenv(override=True)


@dataclass(frozen=True)
class Settings:
    database_url: str
    pool_min_size: int = 1
    pool_max_size: int = 10
    poll_interval: float = 1.0
    backoff_base: float = 2.0
    max_backoff: float = 60.0
    run_embedded_worker: bool = False
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000


def get_database_url() -> str:
    """Get database URL from environment variable."""
    url = os.getenv("DATABASE_URL", "").strip()
    if not url:
        raise ValueError("DATABASE_URL environment variable not set")
    return url


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def get_settings() -> Settings:
    """Build settings from the current environment. DATABASE_URL is required."""
    return Settings(
        database_url=get_database_url(),
        pool_min_size=_env_int("DB_POOL_MIN_SIZE", 1),
        pool_max_size=_env_int("DB_POOL_MAX_SIZE", 10),
        poll_interval=_env_float("WORKER_POLL_INTERVAL", 1.0),
        backoff_base=_env_float("WORKER_BACKOFF_BASE", 2.0),
        max_backoff=_env_float("WORKER_MAX_BACKOFF", 60.0),
        run_embedded_worker=_env_bool("RUN_EMBEDDED_WORKER", False),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        host=os.getenv("HOST", "0.0.0.0"),
        port=_env_int("PORT", 8000),
    )


def configure_logging(level: Optional[str] = None) -> None:
    """Log to stderr so container platforms capture it (use PYTHONUNBUFFERED=1)."""
    logging.basicConfig(
        level=(level or os.getenv("LOG_LEVEL", "INFO")).upper(),
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )
