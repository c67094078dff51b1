"""
Job model: job types, typed payloads and results.

Each job type has exactly one payload dataclass. Payloads are stored as JSON
with a "type" tag and parsed back into their dataclass, so handlers receive
typed objects and dispatch is a dict lookup on JobType.
"""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, Union

from .errors import UnknownJobTypeError


class JobType(str, Enum):
    GITHUB_SYNC = "github:sync"
    INSTAGRAM_SYNC = "instagram:sync"
    TWITTER_SYNC = "twitter:sync"
    YOUTUBE_SYNC = "youtube:sync"
    EDUCATION_SYNC = "education:sync"
    CERTIFICATION_SYNC = "certification:sync"
    FULL_SYNC = "full:sync"
    CREDIBILITY_CALCULATE = "credibility:calculate"

    @property
    def source(self) -> str:
        """Source name the job serializes on ("github", "full", ...)."""
        return self.value.split(":", 1)[0]


class JobState:
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"

    ALL = (WAITING, ACTIVE, COMPLETED, FAILED, DELAYED)
    PENDING = (WAITING, DELAYED)
    TERMINAL = (COMPLETED, FAILED)


PLATFORM_SOURCES = ("github", "instagram", "twitter", "youtube")
RECORD_SOURCES = ("education", "certification")
SYNC_SOURCES = PLATFORM_SOURCES + RECORD_SOURCES


@dataclass(frozen=True)
class PlatformSyncPayload:
    """Sync one connected platform account."""

    TYPE: ClassVar[JobType]

    user_id: str
    source_identifier: Optional[str] = None
    force_refresh: bool = False


@dataclass(frozen=True)
class GitHubSyncPayload(PlatformSyncPayload):
    TYPE: ClassVar[JobType] = JobType.GITHUB_SYNC


@dataclass(frozen=True)
class InstagramSyncPayload(PlatformSyncPayload):
    TYPE: ClassVar[JobType] = JobType.INSTAGRAM_SYNC


@dataclass(frozen=True)
class TwitterSyncPayload(PlatformSyncPayload):
    TYPE: ClassVar[JobType] = JobType.TWITTER_SYNC


@dataclass(frozen=True)
class YouTubeSyncPayload(PlatformSyncPayload):
    TYPE: ClassVar[JobType] = JobType.YOUTUBE_SYNC


@dataclass(frozen=True)
class EducationSyncPayload:
    """Re-score a user's education records (record_id: the one that changed)."""

    TYPE: ClassVar[JobType] = JobType.EDUCATION_SYNC

    user_id: str
    record_id: Optional[int] = None
    force_refresh: bool = False


@dataclass(frozen=True)
class CertificationSyncPayload:
    TYPE: ClassVar[JobType] = JobType.CERTIFICATION_SYNC

    user_id: str
    record_id: Optional[int] = None
    force_refresh: bool = False


@dataclass(frozen=True)
class FullSyncPayload:
    """Sync every source of a user; `sources` narrows the set."""

    TYPE: ClassVar[JobType] = JobType.FULL_SYNC

    user_id: str
    sources: Optional[Tuple[str, ...]] = None
    force_refresh: bool = False


@dataclass(frozen=True)
class CredibilityPayload:
    TYPE: ClassVar[JobType] = JobType.CREDIBILITY_CALCULATE

    user_id: str


JobPayload = Union[
    GitHubSyncPayload,
    InstagramSyncPayload,
    TwitterSyncPayload,
    YouTubeSyncPayload,
    EducationSyncPayload,
    CertificationSyncPayload,
    FullSyncPayload,
    CredibilityPayload,
]

PAYLOAD_TYPES: Dict[JobType, Type] = {
    cls.TYPE: cls
    for cls in (
        GitHubSyncPayload,
        InstagramSyncPayload,
        TwitterSyncPayload,
        YouTubeSyncPayload,
        EducationSyncPayload,
        CertificationSyncPayload,
        FullSyncPayload,
        CredibilityPayload,
    )
}

SOURCE_JOB_TYPES: Dict[str, JobType] = {
    "github": JobType.GITHUB_SYNC,
    "instagram": JobType.INSTAGRAM_SYNC,
    "twitter": JobType.TWITTER_SYNC,
    "youtube": JobType.YOUTUBE_SYNC,
    "education": JobType.EDUCATION_SYNC,
    "certification": JobType.CERTIFICATION_SYNC,
}


def sync_payload_for(source: str, user_id: str, identifier: Optional[str] = None,
                     force_refresh: bool = False) -> JobPayload:
    """Payload of a single-source sync.

    Raises:
        ValueError: If source is not a syncable source
    """
    if source not in SOURCE_JOB_TYPES:
        raise ValueError(f"Unknown source: {source}. Expected one of {', '.join(SYNC_SOURCES)}")
    cls = PAYLOAD_TYPES[SOURCE_JOB_TYPES[source]]
    if issubclass(cls, PlatformSyncPayload):
        return cls(user_id=user_id, source_identifier=identifier, force_refresh=force_refresh)
    return cls(user_id=user_id, force_refresh=force_refresh)


def dedup_key(payload: JobPayload) -> str:
    """user:source key serializing jobs on the same profile row."""
    return f"{payload.user_id}:{payload.TYPE.source}"


def payload_to_dict(payload: JobPayload) -> Dict[str, Any]:
    data = asdict(payload)
    if isinstance(data.get("sources"), tuple):
        data["sources"] = list(data["sources"])
    return {"type": payload.TYPE.value, **data}


def parse_job_type(tag: str) -> JobType:
    try:
        return JobType(tag)
    except ValueError:
        raise UnknownJobTypeError(f"Unknown job type: {tag}") from None


def payload_from_dict(data: Dict[str, Any]) -> JobPayload:
    """Rebuild a typed payload from its tagged dict.

    Raises:
        UnknownJobTypeError: If the tag names no known job type
        ValueError: If required fields are missing
    """
    job_type = parse_job_type(str(data.get("type")))
    cls = PAYLOAD_TYPES[job_type]
    names = {f.name for f in fields(cls)}
    kwargs = {k: v for k, v in data.items() if k in names}
    if "user_id" not in kwargs or not kwargs["user_id"]:
        raise ValueError(f"Payload of {job_type.value} requires user_id")
    if kwargs.get("sources") is not None:
        kwargs["sources"] = tuple(kwargs["sources"])
    return cls(**kwargs)


@dataclass(frozen=True)
class SyncJob:
    """Read-only snapshot of a queue job."""

    id: str
    queue_name: str
    job_type: str
    payload_data: Dict[str, Any]
    state: str
    priority: int
    attempts: int
    max_attempts: int
    progress: int
    last_error: Optional[str]
    result: Optional[Dict[str, Any]]
    stalled_count: int
    dedup_key: Optional[str]
    lock_owner: Optional[str]
    enqueued_at: datetime
    run_at: datetime
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    rerun_requested: bool = False

    @property
    def payload(self) -> JobPayload:
        return payload_from_dict(self.payload_data)

    @property
    def attempts_left(self) -> int:
        return max(0, self.max_attempts - self.attempts)

    @classmethod
    def from_record(cls, record) -> "SyncJob":
        return cls(
            id=record.id,
            queue_name=record.queue_name,
            job_type=record.job_type,
            payload_data=dict(record.payload or {}),
            state=record.state,
            priority=record.priority,
            attempts=record.attempts,
            max_attempts=record.max_attempts,
            progress=record.progress,
            last_error=record.last_error,
            result=record.result,
            stalled_count=record.stalled_count,
            dedup_key=record.dedup_key,
            lock_owner=record.lock_owner,
            enqueued_at=record.enqueued_at,
            run_at=record.run_at,
            started_at=record.started_at,
            finished_at=record.finished_at,
            rerun_requested=record.rerun_payload is not None,
        )


@dataclass
class SyncJobResult:
    success: bool
    items_synced: int
    updated_at: datetime
    errors: List[str] = field(default_factory=list)
    next_sync_at: Optional[datetime] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "items_synced": self.items_synced,
            "updated_at": self.updated_at.isoformat(),
        }
        if self.errors:
            data["errors"] = list(self.errors)
        if self.next_sync_at is not None:
            data["next_sync_at"] = self.next_sync_at.isoformat()
        if self.details:
            data["details"] = self.details
        return data
