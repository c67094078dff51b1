"""
Job handlers: one per JobType.

A handler receives a JobContext and its typed payload, returns a
SyncJobResult on success and raises on failure. The profile upsert is the
last write of a successful sync; a failed sync leaves the stored profile
as it was.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from sqlalchemy.orm import Session, sessionmaker

from .analyzers import PLATFORM_ANALYZERS, AnalysisResult, analyze_certifications, analyze_education
from .config import QUEUE_SYNC, SYNC_INTERVALS
from .credibility import compute_overall_score
from .database import session_scope, utcnow
from .errors import ValidationFailed
from .jobs import (
    CredibilityPayload,
    FullSyncPayload,
    JobState,
    JobType,
    PLATFORM_SOURCES,
    SYNC_SOURCES,
    SyncJob,
    SyncJobResult,
    sync_payload_for,
)
from .logger import get_logger
from .providers import fetch_snapshot
from .queue import JobQueue
from .reference import ReferenceData
from .retry import CircuitBreaker
from .storage import (
    certification_records,
    education_records,
    get_connected_account,
    get_sync_status,
    list_connected_sources,
    set_sync_status,
    upsert_source_profile,
)

logger = get_logger()

# Items counted in SyncJobResult.items_synced per platform snapshot
SNAPSHOT_ITEMS = {
    "github": "repositories",
    "instagram": "media",
    "twitter": "tweets",
    "youtube": "videos",
}

RECORD_LOADERS = {
    "education": (education_records, analyze_education),
    "certification": (certification_records, analyze_certifications),
}


@dataclass
class JobContext:
    """Everything a handler may touch besides its payload."""

    job: SyncJob
    worker_id: str
    queue: JobQueue
    session_factory: sessionmaker
    reference: ReferenceData
    http: Optional[requests.Session] = None
    breakers: Dict[str, CircuitBreaker] = field(default_factory=dict)
    clock: Callable[[], datetime] = utcnow
    run_child: Optional[Callable[[SyncJob], Tuple[str, Optional[Dict[str, Any]], Optional[str]]]] = None
    child_timeout: float = 300.0
    poll_interval: float = 0.5
    progress: List[int] = field(default_factory=list)

    def now(self) -> datetime:
        return self.clock()

    def report_progress(self, pct: int) -> None:
        self.progress.append(pct)
        self.queue.update_progress(self.job.id, self.worker_id, pct)


def _skip_if_fresh(session: Session, user_id: str, source: str, now: datetime, job_id: str) -> Optional[SyncJobResult]:
    status = get_sync_status(session, user_id, source)
    if status is not None and status.next_sync_at is not None and status.next_sync_at > now:
        # The stored profile stays current; undo the "pending" set at enqueue
        set_sync_status(session, user_id, source, "completed", job_id=job_id)
        return SyncJobResult(
            success=True,
            items_synced=0,
            updated_at=now,
            next_sync_at=status.next_sync_at,
            details={"skipped": "profile is fresh"},
        )
    return None


def _store_result(
    ctx: JobContext,
    user_id: str,
    source: str,
    result: AnalysisResult,
    now: datetime,
    items: int,
) -> SyncJobResult:
    """Upsert the profile and the sync status, then rescore if the profile changed."""
    next_sync = now + SYNC_INTERVALS[source]
    with session_scope(ctx.session_factory) as session:
        outcome = upsert_source_profile(session, user_id, source, result, fetched_at=now, next_sync_at=next_sync)
        set_sync_status(
            session, user_id, source, "completed",
            job_id=ctx.job.id, last_sync_at=now, next_sync_at=next_sync,
        )
        if outcome["status"] != "no-change":
            compute_overall_score(session, user_id, now=now)
    ctx.report_progress(100)
    return SyncJobResult(
        success=True,
        items_synced=items,
        updated_at=now,
        next_sync_at=next_sync,
        details={
            "profile": outcome["status"],
            "subscore": result.subscore,
            "verified": result.verified,
            "limitations": list(result.limitations),
        },
    )


def handle_platform_sync(ctx: JobContext, payload) -> SyncJobResult:
    """Fetch, analyze and store one connected platform account."""
    source = payload.TYPE.source
    user_id = payload.user_id
    now = ctx.now()
    ctx.report_progress(10)

    with session_scope(ctx.session_factory) as session:
        account = get_connected_account(session, user_id, source)
        if account is None:
            raise ValidationFailed([f"No connected {source} account for user {user_id}"])
        if not payload.force_refresh:
            skipped = _skip_if_fresh(session, user_id, source, now, ctx.job.id)
            if skipped is not None:
                ctx.report_progress(100)
                return skipped
        set_sync_status(session, user_id, source, "processing", job_id=ctx.job.id)
        identifier = payload.source_identifier or account.identifier
        token = account.access_token

    ctx.report_progress(20)
    breaker = ctx.breakers.get(source)
    if breaker is not None:
        snapshot = breaker.call(fetch_snapshot, source, token, identifier, session=ctx.http)
    else:
        snapshot = fetch_snapshot(source, token, identifier, session=ctx.http)
    ctx.report_progress(60)

    result = PLATFORM_ANALYZERS[source](snapshot, now)
    ctx.report_progress(80)
    items = len(snapshot.get(SNAPSHOT_ITEMS[source]) or [])
    return _store_result(ctx, user_id, source, result, now, items)


def handle_record_sync(ctx: JobContext, payload) -> SyncJobResult:
    """Re-score the education or certification records a user submitted."""
    source = payload.TYPE.source
    user_id = payload.user_id
    now = ctx.now()
    load, analyze = RECORD_LOADERS[source]
    ctx.report_progress(10)

    with session_scope(ctx.session_factory) as session:
        # A new record_id always rescores
        if not payload.force_refresh and payload.record_id is None:
            skipped = _skip_if_fresh(session, user_id, source, now, ctx.job.id)
            if skipped is not None:
                ctx.report_progress(100)
                return skipped
        set_sync_status(session, user_id, source, "processing", job_id=ctx.job.id)
        records = load(session, user_id)

    ctx.report_progress(40)
    result = analyze(records, ctx.reference, now)
    ctx.report_progress(80)
    return _store_result(ctx, user_id, source, result, now, len(records))


def full_sync_sources(session: Session, payload: FullSyncPayload) -> Tuple[List[str], List[str]]:
    """Sources a full sync covers, and errors for requested sources that are unknown."""
    if payload.sources:
        wanted = list(dict.fromkeys(payload.sources))
        unknown = [s for s in wanted if s not in SYNC_SOURCES]
        return [s for s in wanted if s in SYNC_SOURCES], [f"{s}: unknown source" for s in unknown]

    connected = [s for s in list_connected_sources(session, payload.user_id) if s in PLATFORM_SOURCES]
    sources = [s for s in PLATFORM_SOURCES if s in connected]
    if education_records(session, payload.user_id):
        sources.append("education")
    if certification_records(session, payload.user_id):
        sources.append("certification")
    return sources, []


def _wait_for_child(ctx: JobContext, job_id: str) -> Tuple[str, Optional[Dict[str, Any]], Optional[str]]:
    """Run a child inline when it can be claimed, else wait for the worker holding it."""
    deadline = time.monotonic() + ctx.child_timeout
    while True:
        if ctx.run_child is not None:
            job = ctx.queue.claim_job(job_id, ctx.worker_id)
            if job is not None:
                return ctx.run_child(job)

        current = ctx.queue.get_job(job_id)
        if current is None:
            return JobState.FAILED, None, "job was removed"
        if current.state in JobState.TERMINAL:
            return current.state, current.result, current.last_error
        if time.monotonic() >= deadline:
            return current.state, None, f"timed out waiting for job {job_id} ({current.state})"
        # Keep our own lock alive while another worker runs the child
        ctx.queue.heartbeat(ctx.job.id, ctx.worker_id)
        time.sleep(ctx.poll_interval)


def handle_full_sync(ctx: JobContext, payload: FullSyncPayload) -> SyncJobResult:
    """
    Sync every source of a user.

    Each source runs as its own child job, so a source already in flight is
    coalesced instead of duplicated. Failures are collected, never fatal:
    the result is unsuccessful when any child failed, while the children
    that succeeded keep their stored profiles.
    """
    now = ctx.now()
    with session_scope(ctx.session_factory) as session:
        sources, errors = full_sync_sources(session, payload)

    items = 0
    children: Dict[str, Dict[str, Any]] = {}
    for i, source in enumerate(sources, start=1):
        child = sync_payload_for(source, payload.user_id, force_refresh=payload.force_refresh)
        job_id = ctx.queue.enqueue(QUEUE_SYNC, child, priority=ctx.job.priority)
        state, result, error = _wait_for_child(ctx, job_id)
        children[source] = {"job_id": job_id, "state": state}
        if state == JobState.COMPLETED and result and result.get("success", False):
            items += int(result.get("items_synced", 0))
        else:
            errors.append(f"{source}: {error or state}")
        ctx.report_progress(int(i / len(sources) * 90))

    ctx.report_progress(100)
    if errors:
        logger.warning("Full sync finished with errors", user_id=payload.user_id, errors=errors)
    return SyncJobResult(
        success=not errors,
        items_synced=items,
        updated_at=now,
        errors=errors,
        details={"sources": children},
    )


def handle_credibility(ctx: JobContext, payload: CredibilityPayload) -> SyncJobResult:
    now = ctx.now()
    with session_scope(ctx.session_factory) as session:
        score = compute_overall_score(session, payload.user_id, now=now)
    ctx.report_progress(100)
    return SyncJobResult(
        success=True,
        items_synced=1,
        updated_at=now,
        details={"overall_score": score.overall_score, "verification_level": score.verification_level},
    )


def default_handlers() -> Dict[JobType, Callable[[JobContext, Any], SyncJobResult]]:
    return {
        JobType.GITHUB_SYNC: handle_platform_sync,
        JobType.INSTAGRAM_SYNC: handle_platform_sync,
        JobType.TWITTER_SYNC: handle_platform_sync,
        JobType.YOUTUBE_SYNC: handle_platform_sync,
        JobType.EDUCATION_SYNC: handle_record_sync,
        JobType.CERTIFICATION_SYNC: handle_record_sync,
        JobType.FULL_SYNC: handle_full_sync,
        JobType.CREDIBILITY_CALCULATE: handle_credibility,
    }
