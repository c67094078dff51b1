"""
Cleanup module for removing finished queue jobs.

Completed jobs are kept for 24 hours (at most 1000 per queue) and failed
jobs for 7 days, as configured by each queue's policy. Waiting, delayed and
active jobs are never touched.
"""

from pathlib import Path
from typing import Optional, Tuple

from sqlalchemy import func, select

from .config import Settings, load_settings
from .database import SyncJobRecord, create_db_engine, make_session_factory, session_scope
from .logger import get_logger
from .queue import JobQueue

logger = get_logger()


def _count_jobs(session_factory) -> int:
    with session_scope(session_factory) as session:
        return session.execute(select(func.count()).select_from(SyncJobRecord)).scalar_one()


def purge_finished_jobs(db_path: Path, settings: Optional[Settings] = None) -> Tuple[int, int]:
    """
    Apply every queue's retention policy.

    Args:
        db_path: Path to SQLite database file
        settings: Queue policies (default: load_settings())

    Returns:
        Tuple of (total_jobs_before, total_jobs_after)
        Difference = jobs_removed
    """
    if not db_path.exists():
        logger.warning("Cleanup skipped: database not found", db_path=str(db_path))
        return (0, 0)

    settings = settings or load_settings(db_path)
    engine = create_db_engine(db_path)
    try:
        sessions = make_session_factory(engine)
        job_queue = JobQueue(sessions, settings)
        jobs_before = _count_jobs(sessions)
        removed = {name: job_queue.clean(name) for name in settings.queues}
        jobs_after = _count_jobs(sessions)

        logger.info(
            f"Cleanup complete: {jobs_before - jobs_after} removed, {jobs_after} remaining",
            jobs_before=jobs_before,
            jobs_after=jobs_after,
            removed=removed,
        )
        return (jobs_before, jobs_after)

    except Exception as e:
        logger.error(f"Cleanup failed: {e}", error=str(e), db_path=str(db_path))
        return (0, 0)
    finally:
        engine.dispose()
