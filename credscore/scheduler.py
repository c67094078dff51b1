"""
Scheduled and bulk sync triggers.

Instead of one repeatable job per user, a periodic call to
enqueue_due_syncs() enqueues every source whose next_sync_at has passed
(or that was never synced). Enqueues coalesce, so overlapping schedules
never create a second job for the same (user, source).
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from .config import JOB_PRIORITIES
from .database import (
    CertificationRecord,
    ConnectedAccount,
    EducationRecord,
    SyncJobRecord,
    SyncStatus,
    session_scope,
    utcnow,
)
from .jobs import PLATFORM_SOURCES
from .logger import get_logger
from .queue import JobQueue, enqueue_sync

logger = get_logger()


def due_sources(session_factory: sessionmaker, now: Optional[datetime] = None) -> List[Tuple[str, str]]:
    """(user_id, source) pairs whose profile is due for a refresh, sorted."""
    now = now or utcnow()
    with session_scope(session_factory) as session:
        candidates: Set[Tuple[str, str]] = set(
            (user_id, source)
            for user_id, source in session.execute(select(ConnectedAccount.user_id, ConnectedAccount.source))
            if source in PLATFORM_SOURCES
        )
        candidates.update(
            (user_id, "education") for user_id in session.execute(select(EducationRecord.user_id).distinct()).scalars()
        )
        candidates.update(
            (user_id, "certification")
            for user_id in session.execute(select(CertificationRecord.user_id).distinct()).scalars()
        )
        statuses = {
            (row.user_id, row.source): row
            for row in session.execute(select(SyncStatus)).scalars()
        }
        # A "processing" status row can outlive its worker; the job table decides what is in flight
        in_flight = set(session.execute(
            select(SyncJobRecord.active_key).where(SyncJobRecord.active_key.is_not(None))
        ).scalars())

    due = []
    for key in sorted(candidates):
        if f"{key[0]}:{key[1]}" in in_flight:
            continue
        status = statuses.get(key)
        if status is None or status.next_sync_at is None or status.next_sync_at <= now:
            due.append(key)
    return due


def enqueue_due_syncs(
    job_queue: JobQueue,
    session_factory: sessionmaker,
    now: Optional[datetime] = None,
    priority: str = "normal",
) -> List[str]:
    """Enqueue a background sync for every due (user, source). Returns the job ids."""
    job_ids = []
    for user_id, source in due_sources(session_factory, now):
        job_ids.append(enqueue_sync(job_queue, user_id, source, priority=JOB_PRIORITIES[priority]))
    if job_ids:
        logger.info("Scheduled due syncs", count=len(job_ids))
    return job_ids


def schedule_bulk_sync(
    job_queue: JobQueue,
    user_ids: Iterable[str],
    source: str,
    priority: str = "low",
    force_refresh: bool = False,
) -> Dict[str, str]:
    """Admin-initiated sync of one source for many users. Returns job id per user."""
    jobs = {}
    for user_id in dict.fromkeys(user_ids):
        jobs[user_id] = enqueue_sync(job_queue, user_id, source, force_refresh=force_refresh, priority=priority)
    logger.info("Scheduled bulk sync", source=source, users=len(jobs))
    return jobs
