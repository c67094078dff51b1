"""
Database schema and connection management.

Uses SQLAlchemy; SQLite by default. The sync_jobs table is the durable
backing store of the job queue, the remaining tables hold per-source
profiles, their inputs, and computed credibility scores.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp; all stored datetimes use this convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SyncJobRecord(Base):
    """Queue job. State moves waiting -> active -> completed | failed | delayed."""

    __tablename__ = "sync_jobs"

    id = Column(String(32), primary_key=True)
    queue_name = Column(String(50), nullable=False, index=True)
    job_type = Column(String(50), nullable=False)
    payload = Column(JSON, nullable=False)
    state = Column(String(20), nullable=False, default="waiting", index=True)
    priority = Column(Integer, nullable=False, default=5)

    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    backoff_delay = Column(Float, nullable=False, default=2.0)
    backoff_max_delay = Column(Float, nullable=False, default=600.0)
    stalled_count = Column(Integer, nullable=False, default=0)

    progress = Column(Integer, nullable=False, default=0)  # 0-100
    last_error = Column(Text, nullable=True)
    result = Column(JSON, nullable=True)

    # user:source; active_key mirrors it while the job is non-terminal
    dedup_key = Column(String(255), nullable=True, index=True)
    active_key = Column(String(255), nullable=True, unique=True)
    # Set when a request arrives while the job runs; a fresh job follows it
    rerun_payload = Column(JSON, nullable=True)
    rerun_priority = Column(Integer, nullable=True)

    lock_owner = Column(String(100), nullable=True)
    lock_expires_at = Column(DateTime, nullable=True)

    enqueued_at = Column(DateTime, nullable=False, default=utcnow)
    run_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_sync_jobs_claim", "queue_name", "state", "priority", "enqueued_at"),
    )


class QueueState(Base):
    __tablename__ = "queue_states"

    name = Column(String(50), primary_key=True)
    paused = Column(Boolean, nullable=False, default=False)


class ConnectedAccount(Base):
    """Credential and identifier a user connected for one source."""

    __tablename__ = "connected_accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(100), nullable=False, index=True)
    source = Column(String(50), nullable=False)
    identifier = Column(String(255), nullable=False)  # username, channel id
    access_token = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (UniqueConstraint("user_id", "source", name="uq_connected_account"),)


class SourceProfile(Base):
    """Normalized result of the latest successful sync of one source."""

    __tablename__ = "source_profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(100), nullable=False, index=True)
    source = Column(String(50), nullable=False)
    metrics = Column(Text, nullable=False)  # canonical JSON
    content_hash = Column(String(64), nullable=False)
    subscore = Column(Integer, nullable=False, default=0)
    verified = Column(Boolean, nullable=False, default=False)
    last_fetched_at = Column(DateTime, nullable=True)
    next_sync_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (UniqueConstraint("user_id", "source", name="uq_source_profile"),)


class SyncStatus(Base):
    """Per-source sync state exposed to users."""

    __tablename__ = "sync_statuses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(100), nullable=False, index=True)
    source = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    last_error = Column(Text, nullable=True)
    last_job_id = Column(String(32), nullable=True)
    last_sync_at = Column(DateTime, nullable=True)
    next_sync_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (UniqueConstraint("user_id", "source", name="uq_sync_status"),)


class EducationRecord(Base):
    __tablename__ = "education_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(100), nullable=False, index=True)
    institution_name = Column(String(255), nullable=False)
    degree = Column(String(255), nullable=False)
    field = Column(String(255), nullable=True)
    gpa = Column(Float, nullable=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=True)
    credential_id = Column(String(255), nullable=True)
    verified = Column(Boolean, nullable=False, default=False)
    verification_source = Column(String(100), nullable=True)
    trust_score = Column(Integer, nullable=False, default=50)
    degree_level = Column(String(50), nullable=True)
    warnings = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class CertificationRecord(Base):
    __tablename__ = "certification_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(100), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    issuer = Column(String(255), nullable=False)
    issue_date = Column(DateTime, nullable=False)
    expiry_date = Column(DateTime, nullable=True)
    credential_id = Column(String(255), nullable=True)
    credential_url = Column(String(1000), nullable=True)
    verified = Column(Boolean, nullable=False, default=False)
    verification_method = Column(String(50), nullable=True)
    trust_score = Column(Integer, nullable=False, default=0)
    skills = Column(JSON, nullable=True)
    warnings = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class ProfessionalProfile(Base):
    """Work history summary feeding the experience category."""

    __tablename__ = "professional_profiles"

    user_id = Column(String(100), primary_key=True)
    years_experience = Column(Float, nullable=False, default=0)
    career_stage = Column(String(20), nullable=True)  # student, entry, mid, senior, lead, executive
    title = Column(String(255), nullable=True)
    company = Column(String(255), nullable=True)
    location = Column(String(255), nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class CredibilityScoreRecord(Base):
    __tablename__ = "credibility_scores"

    user_id = Column(String(100), primary_key=True)
    overall_score = Column(Integer, nullable=False)
    education_score = Column(Integer, nullable=False)
    experience_score = Column(Integer, nullable=False)
    technical_score = Column(Integer, nullable=False)
    social_score = Column(Integer, nullable=False)
    certification_score = Column(Integer, nullable=False)
    verification_level = Column(String(20), nullable=False)
    badges = Column(JSON, nullable=False, default=list)
    breakdown = Column(JSON, nullable=False, default=dict)
    calculated_at = Column(DateTime, nullable=False, default=utcnow)


def create_db_engine(db_path: Path) -> Engine:
    """
    Create an engine for a SQLite database file shared by worker threads.

    Args:
        db_path: Path to SQLite database file
    """
    return create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )


def init_database(db_path: Path) -> Engine:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Engine bound to the database
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_db_engine(db_path)
    Base.metadata.create_all(engine)
    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


def get_session(db_path: Path) -> Session:
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    return make_session_factory(create_db_engine(db_path))()


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """Transactional scope: commit on success, roll back on error."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
