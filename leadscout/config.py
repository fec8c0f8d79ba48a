"""Runtime configuration read from environment variables."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DATA_DIR = Path(__file__).parent / "data"


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


@dataclass(frozen=True)
class Settings:
    db_path: Path = DATA_DIR / "leadscout.db"
    github_token: str = ""
    http_timeout: float = 10.0
    cache_ttl: float = 3600.0
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    job_attempts: int = 3
    job_backoff: float = 2.0
    workers: int = 1
    poll_interval: float = 1.0
    stall_timeout: float = 300.0
    user_agent: str = "Mozilla/5.0 (compatible; LeadScout/1.0; +https://leadscout.local)"


def load_settings() -> Settings:
    """Build :class:`Settings` from ``LEADSCOUT_*`` environment variables."""
    db_path = os.environ.get("LEADSCOUT_DB_PATH")
    return Settings(
        db_path=Path(db_path) if db_path else DATA_DIR / "leadscout.db",
        github_token=os.environ.get("GITHUB_TOKEN", "").strip(),
        http_timeout=_env_float("LEADSCOUT_HTTP_TIMEOUT", 10.0),
        cache_ttl=_env_float("LEADSCOUT_CACHE_TTL", 3600.0),
        retry_attempts=_env_int("LEADSCOUT_RETRY_ATTEMPTS", 3),
        retry_base_delay=_env_float("LEADSCOUT_RETRY_BASE_DELAY", 1.0),
        retry_max_delay=_env_float("LEADSCOUT_RETRY_MAX_DELAY", 10.0),
        job_attempts=_env_int("LEADSCOUT_JOB_ATTEMPTS", 3),
        job_backoff=_env_float("LEADSCOUT_JOB_BACKOFF", 2.0),
        workers=_env_int("LEADSCOUT_WORKERS", 1),
        poll_interval=_env_float("LEADSCOUT_POLL_INTERVAL", 1.0),
        stall_timeout=_env_float("LEADSCOUT_STALL_TIMEOUT", 300.0),
    )
