"""
Tests for database.py - schema and session handling.
"""

from datetime import datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from credscore.database import (
    ConnectedAccount,
    SourceProfile,
    SyncJobRecord,
    get_session,
    init_database,
    make_session_factory,
    session_scope,
    utcnow,
)


class TestDatabaseInit:
    """Test database initialization."""

    def test_init_creates_database_file(self, tmp_path):
        """Test that init_database creates the database file."""
        db_path = tmp_path / "test.db"
        assert not db_path.exists()

        init_database(db_path)

        assert db_path.exists()

    def test_init_creates_tables(self, tmp_path):
        """Every table is queryable right after init."""
        db_path = tmp_path / "test.db"
        init_database(db_path)

        session = get_session(db_path)
        assert session.execute(select(func.count()).select_from(SyncJobRecord)).scalar_one() == 0
        assert session.execute(select(func.count()).select_from(SourceProfile)).scalar_one() == 0
        session.close()

    def test_init_creates_parent_directories(self, tmp_path):
        """Test that init_database creates parent directories if missing."""
        db_path = tmp_path / "nested" / "dir" / "test.db"
        assert not db_path.parent.exists()

        init_database(db_path)

        assert db_path.exists()

    def test_init_is_repeatable(self, tmp_path):
        db_path = tmp_path / "test.db"
        init_database(db_path)
        init_database(db_path)
        assert db_path.exists()


class TestUtcnow:
    def test_naive(self):
        now = utcnow()
        assert isinstance(now, datetime)
        assert now.tzinfo is None


class TestSessionScope:
    """Test the transactional session helper."""

    def test_commits_on_success(self, session_factory):
        with session_scope(session_factory) as session:
            session.add(ConnectedAccount(user_id="u1", source="github", identifier="octo"))

        with session_scope(session_factory) as session:
            row = session.execute(select(ConnectedAccount)).scalar_one()
            assert row.identifier == "octo"

    def test_rolls_back_on_error(self, session_factory):
        with pytest.raises(RuntimeError):
            with session_scope(session_factory) as session:
                session.add(ConnectedAccount(user_id="u1", source="github", identifier="octo"))
                session.flush()
                raise RuntimeError("boom")

        with session_scope(session_factory) as session:
            assert session.execute(select(func.count()).select_from(ConnectedAccount)).scalar_one() == 0


class TestConstraints:
    """Uniqueness the sync pipeline relies on."""

    @pytest.fixture
    def db_session(self, tmp_path):
        engine = init_database(tmp_path / "test.db")
        session = make_session_factory(engine)()
        yield session
        session.close()
        engine.dispose()

    def _profile(self, user_id="u1", source="github"):
        return SourceProfile(user_id=user_id, source=source, metrics="{}", content_hash="x" * 64)

    def test_one_profile_per_user_and_source(self, db_session):
        db_session.add(self._profile())
        db_session.commit()

        db_session.add(self._profile())
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_same_source_for_different_users(self, db_session):
        db_session.add(self._profile("u1"))
        db_session.add(self._profile("u2"))
        db_session.commit()
        assert db_session.query(SourceProfile).count() == 2

    def _job(self, job_id, active_key):
        return SyncJobRecord(
            id=job_id,
            queue_name="sync",
            job_type="github:sync",
            payload={"type": "github:sync", "user_id": "u1"},
            dedup_key="u1:github",
            active_key=active_key,
        )

    def test_one_active_job_per_key(self, db_session):
        """The active_key column rejects a second in-flight job."""
        db_session.add(self._job("a" * 32, "u1:github"))
        db_session.commit()

        db_session.add(self._job("b" * 32, "u1:github"))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_finished_jobs_do_not_block(self, db_session):
        """Terminal jobs release the key (NULL is never a duplicate)."""
        db_session.add(self._job("a" * 32, None))
        db_session.add(self._job("b" * 32, None))
        db_session.add(self._job("c" * 32, "u1:github"))
        db_session.commit()
        assert db_session.query(SyncJobRecord).count() == 3

    def test_job_defaults(self, db_session):
        db_session.add(self._job("a" * 32, "u1:github"))
        db_session.commit()

        job = db_session.get(SyncJobRecord, "a" * 32)
        assert job.state == "waiting"
        assert job.attempts == 0
        assert job.max_attempts == 3
        assert job.priority == 5
        assert job.progress == 0
