"""
Runtime configuration for queues, workers and health checks.

Values come from environment variables (loaded from .env by env.load_env)
with defaults suitable for local development.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Dict, Optional


QUEUE_SYNC = "sync"
QUEUE_CREDIBILITY = "credibility"
QUEUE_NOTIFICATIONS = "notifications"

QUEUE_NAMES = (QUEUE_SYNC, QUEUE_CREDIBILITY, QUEUE_NOTIFICATIONS)

# Lower number = higher priority
JOB_PRIORITIES = {
    "critical": 1,  # User-initiated actions
    "high": 3,
    "normal": 5,  # Scheduled syncs
    "low": 10,
}

# How long a fresh profile stays current before the next scheduled sync
SYNC_INTERVALS = {
    "github": timedelta(days=1),
    "instagram": timedelta(days=1),
    "twitter": timedelta(days=1),
    "youtube": timedelta(days=1),
    "education": timedelta(days=30),
    "certification": timedelta(days=7),
}

HEALTH_THRESHOLDS = {
    "max_failed_jobs": 50,
    "max_waiting_jobs": 1000,
}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class QueuePolicy:
    """Default job policy applied to every job of a queue."""

    attempts: int = 3
    backoff_delay: float = 2.0  # seconds, doubles each retry
    backoff_max_delay: float = 600.0
    concurrency: int = 5
    remove_on_complete_age: timedelta = timedelta(hours=24)
    remove_on_complete_count: int = 1000
    remove_on_fail_age: timedelta = timedelta(days=7)


@dataclass(frozen=True)
class Settings:
    db_path: Path = Path("data/credscore.db")
    log_level: str = "INFO"
    lock_duration: float = 30.0  # seconds a claimed job stays locked without heartbeat
    max_stalled_count: int = 2
    stalled_interval: float = 10.0
    poll_interval: float = 0.5
    queues: Dict[str, QueuePolicy] = field(default_factory=dict)
    max_failed_jobs: int = HEALTH_THRESHOLDS["max_failed_jobs"]
    max_waiting_jobs: int = HEALTH_THRESHOLDS["max_waiting_jobs"]

    def policy(self, queue_name: str) -> QueuePolicy:
        """Return the policy of a queue.

        Raises:
            KeyError: If the queue is not configured
        """
        if queue_name not in self.queues:
            raise KeyError(f'Queue "{queue_name}" not found')
        return self.queues[queue_name]


def default_queue_policies(worker_concurrency: Optional[int] = None) -> Dict[str, QueuePolicy]:
    """Per-queue policies. The sync queue runs at lower concurrency to respect provider rate limits."""
    attempts = _env_int("JOB_ATTEMPTS", 3)
    delay = _env_float("JOB_BACKOFF_DELAY", 2.0)
    base = worker_concurrency or _env_int("WORKER_CONCURRENCY", 5)
    return {
        QUEUE_SYNC: QueuePolicy(
            attempts=attempts,
            backoff_delay=delay,
            concurrency=_env_int("SYNC_CONCURRENCY", min(base, 3)),
        ),
        QUEUE_CREDIBILITY: QueuePolicy(
            attempts=attempts,
            backoff_delay=delay,
            concurrency=base,
        ),
        QUEUE_NOTIFICATIONS: QueuePolicy(
            attempts=5,
            backoff_delay=1.0,
            concurrency=_env_int("NOTIFICATION_CONCURRENCY", base * 2),
        ),
    }


def load_settings(db_path: Optional[Path] = None) -> Settings:
    """Build Settings from environment variables."""
    return Settings(
        db_path=db_path or Path(os.getenv("CREDSCORE_DB_PATH", "data/credscore.db")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        lock_duration=_env_float("JOB_LOCK_DURATION", 30.0),
        max_stalled_count=_env_int("JOB_MAX_STALLED_COUNT", 2),
        stalled_interval=_env_float("JOB_STALLED_INTERVAL", 10.0),
        poll_interval=_env_float("WORKER_POLL_INTERVAL", 0.5),
        queues=default_queue_policies(),
    )
