"""Tests for job retention."""

from datetime import timedelta

from sqlalchemy import select

from credscore.cleanup import purge_finished_jobs
from credscore.database import SyncJobRecord, init_database, session_scope, utcnow


def _add_job(session, job_id, state, finished_ago=None, queue_name="sync"):
    now = utcnow()
    session.add(SyncJobRecord(
        id=job_id,
        queue_name=queue_name,
        job_type="github:sync",
        payload={"type": "github:sync", "user_id": job_id},
        state=state,
        dedup_key=f"{job_id}:github",
        active_key=None if state in ("completed", "failed") else f"{job_id}:github",
        enqueued_at=now - timedelta(days=30),
        run_at=now - timedelta(days=30),
        finished_at=now - finished_ago if finished_ago is not None else None,
    ))


def _remaining(session_factory):
    with session_scope(session_factory) as session:
        return sorted(session.execute(select(SyncJobRecord.id)).scalars())


class TestCleanup:
    """Test finished-job retention."""

    def test_cleanup_removes_expired_jobs(self, settings, session_factory):
        """Completed jobs older than 24h and failed jobs older than 7 days go."""
        with session_scope(session_factory) as session:
            _add_job(session, "old-done", "completed", timedelta(days=2))
            _add_job(session, "new-done", "completed", timedelta(hours=1))
            _add_job(session, "old-fail", "failed", timedelta(days=10))
            _add_job(session, "new-fail", "failed", timedelta(days=3))

        before, after = purge_finished_jobs(settings.db_path, settings)

        assert before == 4
        assert after == 2
        assert _remaining(session_factory) == ["new-done", "new-fail"]

    def test_cleanup_never_touches_pending_or_active(self, settings, session_factory):
        with session_scope(session_factory) as session:
            _add_job(session, "waiting", "waiting")
            _add_job(session, "delayed", "delayed")
            _add_job(session, "active", "active")

        before, after = purge_finished_jobs(settings.db_path, settings)

        assert before == after == 3

    def test_cleanup_handles_missing_database(self, tmp_path, settings):
        """Verify cleanup handles missing database gracefully."""
        before, after = purge_finished_jobs(tmp_path / "nonexistent.db", settings)

        assert before == 0
        assert after == 0

    def test_cleanup_handles_empty_database(self, tmp_path, settings):
        """Verify cleanup handles empty database gracefully."""
        db_path = tmp_path / "empty.db"
        init_database(db_path).dispose()

        before, after = purge_finished_jobs(db_path, settings)

        assert before == 0
        assert after == 0
