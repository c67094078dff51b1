"""
Durable job queue backed by the sync_jobs table.

JobQueue is an explicitly constructed service: it owns no global state and
every worker, CLI command and test builds or receives its own instance.

Guarantees:
- Claims are a conditional UPDATE (state must still be waiting/delayed);
  the row count decides which worker won, so two workers never hold the
  same job.
- At most one non-terminal job per (user, source): the unique active_key
  column holds "user:source" until the job is completed or failed. A second
  enqueue is coalesced onto the in-flight job or rejected.
- attempts never exceeds max_attempts; the last failure is terminal.
"""

import uuid
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from . import events
from .config import JOB_PRIORITIES, QUEUE_SYNC, Settings
from .database import QueueState, SyncJobRecord, session_scope, utcnow
from .errors import DuplicateJobError, InvalidJobStateError, JobNotFoundError
from .events import EventChannel, JobEvent
from .jobs import SYNC_SOURCES, JobPayload, JobState, SyncJob, dedup_key, payload_to_dict, sync_payload_for
from .logger import get_logger
from .retry import backoff_delay
from .storage import set_sync_status

logger = get_logger()

ON_DUPLICATE = ("coalesce", "reject")
ENQUEUE_RACE_RETRIES = 3
STALLED_ERROR = "job stalled more than allowable limit"


def resolve_priority(priority: Union[int, str, None], default: int = JOB_PRIORITIES["normal"]) -> int:
    """Priority number from a name ("critical", "high", ...) or an int."""
    if priority is None:
        return default
    if isinstance(priority, str):
        if priority not in JOB_PRIORITIES:
            raise ValueError(f"Unknown priority: {priority}. Expected one of {', '.join(JOB_PRIORITIES)}")
        return JOB_PRIORITIES[priority]
    return int(priority)


class JobQueue:
    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Settings,
        clock: Callable = utcnow,
        channel: Optional[EventChannel] = None,
    ):
        self.sessions = session_factory
        self.settings = settings
        self.clock = clock
        self.channel = channel or EventChannel()

    # Producer side

    def _publish(self, kind: str, queue_name: str, job_id: Optional[str] = None,
                 job_type: Optional[str] = None, **data) -> None:
        self.channel.publish(JobEvent(
            kind=kind, queue_name=queue_name, job_id=job_id, job_type=job_type, data=data, at=self.clock()
        ))

    def enqueue(
        self,
        queue_name: str,
        payload: JobPayload,
        priority: Union[int, str, None] = None,
        attempts: Optional[int] = None,
        backoff_delay: Optional[float] = None,
        on_duplicate: str = "coalesce",
        delay: float = 0.0,
    ) -> str:
        """
        Record a waiting job and return its id.

        If a job for the same (user, source) is still in flight, its id is
        returned instead (on_duplicate="coalesce"), bumping its priority when
        the new request is more urgent, or DuplicateJobError is raised
        (on_duplicate="reject").

        Raises:
            KeyError: If the queue is not configured
            DuplicateJobError: On a rejected duplicate
        """
        if on_duplicate not in ON_DUPLICATE:
            raise ValueError(f"on_duplicate must be one of {', '.join(ON_DUPLICATE)}")
        policy = self.settings.policy(queue_name)
        prio = resolve_priority(priority)
        max_attempts = attempts if attempts is not None else policy.attempts
        if max_attempts < 1:
            raise ValueError("attempts must be at least 1")
        key = dedup_key(payload)
        data = payload_to_dict(payload)

        for _ in range(ENQUEUE_RACE_RETRIES):
            now = self.clock()
            job_id = uuid.uuid4().hex
            try:
                with session_scope(self.sessions) as session:
                    session.add(SyncJobRecord(
                        id=job_id,
                        queue_name=queue_name,
                        job_type=payload.TYPE.value,
                        payload=data,
                        state=JobState.DELAYED if delay > 0 else JobState.WAITING,
                        priority=prio,
                        attempts=0,
                        max_attempts=max_attempts,
                        backoff_delay=backoff_delay if backoff_delay is not None else policy.backoff_delay,
                        backoff_max_delay=policy.backoff_max_delay,
                        dedup_key=key,
                        active_key=key,
                        enqueued_at=now,
                        run_at=now + timedelta(seconds=delay),
                    ))
            except IntegrityError:
                existing = self._find_active(key)
                if existing is None:
                    continue  # finished between insert and lookup
                if on_duplicate == "reject":
                    raise DuplicateJobError(
                        f"A {existing.job_type} job for {key} is already {existing.state}",
                        existing_job_id=existing.id,
                    )
                if existing.state == JobState.ACTIVE:
                    # The running handler may have read its inputs already
                    if not self._request_rerun(existing.id, data, prio):
                        continue
                    self._publish(events.COALESCED, existing.queue_name, existing.id, existing.job_type,
                                  key=key, rerun=True)
                    return existing.id
                self._merge_pending(existing, data, prio)
                self._publish(events.COALESCED, existing.queue_name, existing.id, existing.job_type, key=key)
                return existing.id

            self._mark_source(payload.TYPE.value, data, "pending", job_id)
            self._publish(events.ENQUEUED, queue_name, job_id, payload.TYPE.value, key=key, priority=prio)
            return job_id

        raise DuplicateJobError(f"Could not enqueue {key}: job state kept changing")

    def _mark_source(self, job_type: str, payload: Dict[str, Any], status: str, job_id: str,
                     error: Optional[str] = None) -> None:
        """Mirror a sync job's state onto the SyncStatus row of its (user, source)."""
        source = job_type.split(":", 1)[0]
        user_id = payload.get("user_id")
        if source not in SYNC_SOURCES or not user_id:
            return
        with session_scope(self.sessions) as session:
            set_sync_status(session, user_id, source, status, job_id=job_id, error=error)

    def _request_rerun(self, job_id: str, data: Dict[str, Any], priority: int) -> bool:
        """Ask for one more run once the active job finishes. False if it is no longer active."""
        with session_scope(self.sessions) as session:
            record = session.get(SyncJobRecord, job_id)
            if record is None or record.state != JobState.ACTIVE:
                return False
            rerun = dict(data)
            previous = record.rerun_payload or {}
            if previous.get("force_refresh"):
                rerun["force_refresh"] = True
            if rerun.get("record_id") is None and previous.get("record_id") is not None:
                rerun["record_id"] = previous["record_id"]
            if record.rerun_priority is not None:
                priority = min(priority, record.rerun_priority)
            result = session.execute(
                update(SyncJobRecord)
                .where(SyncJobRecord.id == job_id, SyncJobRecord.state == JobState.ACTIVE)
                .values(rerun_payload=rerun, rerun_priority=priority)
            )
            return result.rowcount == 1

    def _queue_rerun(self, session, job_id: str, now) -> Optional[SyncJob]:
        """Insert the follow-up job requested while `job_id` ran.

        Must run in the transaction that released the job's active_key.
        """
        record = session.get(SyncJobRecord, job_id)
        if record is None or record.rerun_payload is None:
            return None
        follow_up = SyncJobRecord(
            id=uuid.uuid4().hex,
            queue_name=record.queue_name,
            job_type=record.job_type,
            payload=record.rerun_payload,
            state=JobState.WAITING,
            priority=record.rerun_priority if record.rerun_priority is not None else record.priority,
            attempts=0,
            max_attempts=record.max_attempts,
            stalled_count=0,
            progress=0,
            backoff_delay=record.backoff_delay,
            backoff_max_delay=record.backoff_max_delay,
            dedup_key=record.dedup_key,
            active_key=record.dedup_key,
            enqueued_at=now,
            run_at=now,
        )
        record.rerun_payload = None
        record.rerun_priority = None
        session.add(follow_up)
        session.flush()
        return SyncJob.from_record(follow_up)

    def _announce_rerun(self, follow_up: Optional[SyncJob], error: Optional[str] = None) -> None:
        if follow_up is None:
            return
        self._mark_source(follow_up.job_type, follow_up.payload_data, "pending", follow_up.id, error=error)
        self._publish(events.ENQUEUED, follow_up.queue_name, follow_up.id, follow_up.job_type,
                      key=follow_up.dedup_key, priority=follow_up.priority, rerun=True)

    def _find_active(self, key: str) -> Optional[SyncJob]:
        with session_scope(self.sessions) as session:
            record = session.execute(
                select(SyncJobRecord).where(SyncJobRecord.active_key == key)
            ).scalar_one_or_none()
            return SyncJob.from_record(record) if record is not None else None

    def _merge_pending(self, existing: SyncJob, data: Dict[str, Any], priority: int) -> None:
        """Fold a coalesced request into a job that has not started: more urgent
        priority, force_refresh and a newly submitted record_id carry over."""
        values: Dict[str, Any] = {}
        if priority < existing.priority:
            values["priority"] = priority
        merged = dict(existing.payload_data)
        if data.get("force_refresh") and not merged.get("force_refresh"):
            merged["force_refresh"] = True
        if data.get("record_id") is not None:
            merged["record_id"] = data["record_id"]
        if merged != existing.payload_data:
            values["payload"] = merged
        if not values:
            return
        with session_scope(self.sessions) as session:
            session.execute(
                update(SyncJobRecord)
                .where(SyncJobRecord.id == existing.id, SyncJobRecord.state.in_(JobState.PENDING))
                .values(**values)
            )

    # Inspection

    def get_job(self, job_id: str) -> Optional[SyncJob]:
        with session_scope(self.sessions) as session:
            record = session.get(SyncJobRecord, job_id)
            return SyncJob.from_record(record) if record is not None else None

    def list_jobs(
        self,
        queue_name: Optional[str] = None,
        state: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[SyncJob]:
        """Most recently enqueued jobs first."""
        stmt = select(SyncJobRecord)
        if queue_name:
            stmt = stmt.where(SyncJobRecord.queue_name == queue_name)
        if state:
            stmt = stmt.where(SyncJobRecord.state == state)
        if user_id:
            stmt = stmt.where(SyncJobRecord.dedup_key.like(f"{user_id}:%"))
        stmt = stmt.order_by(SyncJobRecord.enqueued_at.desc(), SyncJobRecord.id).limit(limit)
        with session_scope(self.sessions) as session:
            return [SyncJob.from_record(r) for r in session.execute(stmt).scalars()]

    def is_paused(self, queue_name: str) -> bool:
        with session_scope(self.sessions) as session:
            row = session.get(QueueState, queue_name)
            return bool(row and row.paused)

    def get_metrics(self, queue_name: str) -> Dict[str, Any]:
        """Job counts by state plus the paused flag."""
        self.settings.policy(queue_name)
        counts = {state: 0 for state in JobState.ALL}
        with session_scope(self.sessions) as session:
            rows = session.execute(
                select(SyncJobRecord.state, func.count())
                .where(SyncJobRecord.queue_name == queue_name)
                .group_by(SyncJobRecord.state)
            ).all()
        for state, count in rows:
            counts[state] = count
        counts["paused"] = self.is_paused(queue_name)
        return counts

    def check_health(self) -> Dict[str, Any]:
        """Advisory health report over all configured queues."""
        issues: List[str] = []
        metrics = []
        for name in self.settings.queues:
            m = self.get_metrics(name)
            metrics.append({"queue": name, **m})
            if m[JobState.FAILED] > self.settings.max_failed_jobs:
                issues.append(f"{name}: High failure count ({m[JobState.FAILED]})")
            if m[JobState.WAITING] > self.settings.max_waiting_jobs:
                issues.append(f"{name}: Queue backlog ({m[JobState.WAITING]} waiting)")
            if m["paused"]:
                issues.append(f"{name}: Queue is paused")
        return {"healthy": not issues, "issues": issues, "metrics": metrics}

    # Administration

    def retry(self, job_id: str) -> SyncJob:
        """
        Move a failed job back to waiting with a fresh attempt budget.

        Raises:
            JobNotFoundError: Unknown job id
            InvalidJobStateError: The job is not failed
            DuplicateJobError: Another job for the same (user, source) is in flight
        """
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        if job.state != JobState.FAILED:
            raise InvalidJobStateError(f"Only failed jobs can be retried (job {job_id} is {job.state})")
        now = self.clock()
        try:
            with session_scope(self.sessions) as session:
                result = session.execute(
                    update(SyncJobRecord)
                    .where(SyncJobRecord.id == job_id, SyncJobRecord.state == JobState.FAILED)
                    .values(
                        state=JobState.WAITING,
                        attempts=0,
                        stalled_count=0,
                        progress=0,
                        active_key=SyncJobRecord.dedup_key,
                        run_at=now,
                        started_at=None,
                        finished_at=None,
                        result=None,
                    )
                )
                if result.rowcount != 1:
                    raise InvalidJobStateError(f"Job {job_id} changed state during retry")
        except IntegrityError:
            existing = self._find_active(job.dedup_key) if job.dedup_key else None
            raise DuplicateJobError(
                f"Another job for {job.dedup_key} is already in flight",
                existing_job_id=existing.id if existing else None,
            ) from None
        self._mark_source(job.job_type, job.payload_data, "pending", job_id)
        self._publish(events.ENQUEUED, job.queue_name, job_id, job.job_type, retried=True)
        return self.get_job(job_id)

    def remove(self, job_id: str) -> None:
        """Delete a job that has not started. Active and finished jobs cannot be removed.

        Raises:
            JobNotFoundError: Unknown job id
            InvalidJobStateError: The job is active or finished
        """
        with session_scope(self.sessions) as session:
            result = session.execute(
                delete(SyncJobRecord).where(
                    SyncJobRecord.id == job_id, SyncJobRecord.state.in_(JobState.PENDING)
                )
            )
            removed = result.rowcount == 1
        if removed:
            self._publish(events.REMOVED, "", job_id)
            return
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        raise InvalidJobStateError(f"Only waiting or delayed jobs can be removed (job {job_id} is {job.state})")

    def _set_paused(self, queue_name: str, paused: bool) -> None:
        self.settings.policy(queue_name)
        with session_scope(self.sessions) as session:
            row = session.get(QueueState, queue_name)
            if row is None:
                session.add(QueueState(name=queue_name, paused=paused))
            else:
                row.paused = paused
        self._publish(events.PAUSED if paused else events.RESUMED, queue_name)

    def pause(self, queue_name: str) -> None:
        self._set_paused(queue_name, True)

    def resume(self, queue_name: str) -> None:
        self._set_paused(queue_name, False)

    # Worker side

    def _lock_until(self):
        return self.clock() + timedelta(seconds=self.settings.lock_duration)

    def _take(self, session, job_id: str, worker_id: str, now, respect_schedule: bool) -> bool:
        conditions = [
            SyncJobRecord.id == job_id,
            SyncJobRecord.state.in_(JobState.PENDING),
            SyncJobRecord.attempts < SyncJobRecord.max_attempts,
        ]
        if respect_schedule:
            conditions.append(SyncJobRecord.run_at <= now)
        result = session.execute(
            update(SyncJobRecord)
            .where(*conditions)
            .values(
                state=JobState.ACTIVE,
                attempts=SyncJobRecord.attempts + 1,
                lock_owner=worker_id,
                lock_expires_at=now + timedelta(seconds=self.settings.lock_duration),
                started_at=now,
                progress=0,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def claim(self, queue_name: str, worker_id: str) -> Optional[SyncJob]:
        """Atomically claim and lock the next due job of a queue, or None."""
        if self.is_paused(queue_name):
            return None
        now = self.clock()
        with session_scope(self.sessions) as session:
            candidates = session.execute(
                select(SyncJobRecord.id)
                .where(
                    SyncJobRecord.queue_name == queue_name,
                    SyncJobRecord.state.in_(JobState.PENDING),
                    SyncJobRecord.run_at <= now,
                )
                .order_by(SyncJobRecord.priority, SyncJobRecord.enqueued_at, SyncJobRecord.id)
                .limit(10)
            ).scalars().all()
        for job_id in candidates:
            with session_scope(self.sessions) as session:
                won = self._take(session, job_id, worker_id, now, respect_schedule=True)
            if won:
                job = self.get_job(job_id)
                self._publish(events.ACTIVE, queue_name, job_id, job.job_type,
                              worker=worker_id, attempt=job.attempts)
                return job
        return None

    def claim_job(self, job_id: str, worker_id: str) -> Optional[SyncJob]:
        """Claim a specific pending job now, ignoring its scheduled run time.

        Returns None if the job is already active, finished or out of attempts.
        """
        now = self.clock()
        with session_scope(self.sessions) as session:
            won = self._take(session, job_id, worker_id, now, respect_schedule=False)
        if not won:
            return None
        job = self.get_job(job_id)
        self._publish(events.ACTIVE, job.queue_name, job_id, job.job_type, worker=worker_id, attempt=job.attempts)
        return job

    def _owned(self, job_id: str, worker_id: str):
        return (
            SyncJobRecord.id == job_id,
            SyncJobRecord.state == JobState.ACTIVE,
            SyncJobRecord.lock_owner == worker_id,
        )

    def heartbeat(self, job_id: str, worker_id: str) -> bool:
        """Extend the lock of an active job; False if the worker lost it."""
        with session_scope(self.sessions) as session:
            result = session.execute(
                update(SyncJobRecord)
                .where(*self._owned(job_id, worker_id))
                .values(lock_expires_at=self._lock_until())
            )
            return result.rowcount == 1

    def update_progress(self, job_id: str, worker_id: str, progress: int) -> bool:
        pct = max(0, min(100, int(progress)))
        with session_scope(self.sessions) as session:
            result = session.execute(
                update(SyncJobRecord)
                .where(*self._owned(job_id, worker_id))
                .values(progress=pct, lock_expires_at=self._lock_until())
            )
            ok = result.rowcount == 1
        if ok:
            self._publish(events.PROGRESS, "", job_id, progress=pct)
        return ok

    def complete(self, job_id: str, worker_id: str, result: Optional[Dict[str, Any]] = None) -> None:
        """
        Mark an active job completed, then queue the follow-up run if one
        was requested while it ran.

        Raises:
            InvalidJobStateError: The worker no longer holds the job
        """
        now = self.clock()
        with session_scope(self.sessions) as session:
            outcome = session.execute(
                update(SyncJobRecord)
                .where(*self._owned(job_id, worker_id))
                .values(
                    state=JobState.COMPLETED,
                    progress=100,
                    result=result,
                    last_error=None,
                    finished_at=now,
                    active_key=None,
                    lock_owner=None,
                    lock_expires_at=None,
                )
            )
            if outcome.rowcount != 1:
                raise InvalidJobStateError(f"Worker {worker_id} does not hold job {job_id}")
            follow_up = self._queue_rerun(session, job_id, now)
        job = self.get_job(job_id)
        self._publish(events.COMPLETED, job.queue_name, job_id, job.job_type, attempt=job.attempts)
        self._announce_rerun(follow_up)

    def fail(
        self,
        job_id: str,
        worker_id: str,
        error: str,
        retryable: bool = True,
        result: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Record a failed attempt. Returns the job's new state.

        Retryable failures with attempts left become delayed until
        now + backoff(attempts) and the source's sync status goes back to
        "pending" with the error attached; everything else is terminal and
        the status becomes "failed".

        Raises:
            InvalidJobStateError: The worker no longer holds the job
        """
        job = self.get_job(job_id)
        if job is None or job.state != JobState.ACTIVE or job.lock_owner != worker_id:
            raise InvalidJobStateError(f"Worker {worker_id} does not hold job {job_id}")

        now = self.clock()
        will_retry = retryable and job.attempts < job.max_attempts
        follow_up = None
        with session_scope(self.sessions) as session:
            record = session.get(SyncJobRecord, job_id)
            if will_retry:
                wait = backoff_delay(job.attempts, record.backoff_delay, record.backoff_max_delay)
                values = dict(
                    state=JobState.DELAYED,
                    run_at=now + timedelta(seconds=wait),
                    last_error=error,
                    lock_owner=None,
                    lock_expires_at=None,
                )
            else:
                wait = None
                values = dict(
                    state=JobState.FAILED,
                    last_error=error,
                    result=result,
                    finished_at=now,
                    active_key=None,
                    lock_owner=None,
                    lock_expires_at=None,
                )
            outcome = session.execute(
                update(SyncJobRecord).where(*self._owned(job_id, worker_id)).values(**values)
            )
            if outcome.rowcount != 1:
                raise InvalidJobStateError(f"Worker {worker_id} does not hold job {job_id}")
            if not will_retry:
                follow_up = self._queue_rerun(session, job_id, now)

        if will_retry:
            self._mark_source(job.job_type, job.payload_data, "pending", job_id, error=error)
            self._publish(events.RETRYING, job.queue_name, job_id, job.job_type,
                          attempt=job.attempts, delay=wait, error=error)
            return JobState.DELAYED
        self._mark_source(job.job_type, job.payload_data, "failed", job_id, error=error)
        self._publish(events.FAILED, job.queue_name, job_id, job.job_type, attempt=job.attempts, error=error)
        self._announce_rerun(follow_up, error=error)
        return JobState.FAILED

    # Maintenance

    def check_stalled(self) -> Dict[str, List[str]]:
        """
        Recover active jobs whose lock expired without a heartbeat.

        A stalled job goes back to waiting until it has stalled more than
        max_stalled_count times or has no attempts left; then it fails.
        The sync status follows: "pending" when requeued, "failed" with the
        stall error otherwise.
        """
        now = self.clock()
        requeued: List[str] = []
        failed: List[str] = []
        with session_scope(self.sessions) as session:
            stalled = session.execute(
                select(SyncJobRecord).where(
                    SyncJobRecord.state == JobState.ACTIVE,
                    SyncJobRecord.lock_expires_at < now,
                )
            ).scalars().all()
            snapshots = [SyncJob.from_record(r) for r in stalled]

        for job in snapshots:
            exhausted = (
                job.stalled_count + 1 > self.settings.max_stalled_count
                or job.attempts >= job.max_attempts
            )
            if exhausted:
                values = dict(
                    state=JobState.FAILED,
                    last_error=STALLED_ERROR,
                    finished_at=now,
                    active_key=None,
                    lock_owner=None,
                    lock_expires_at=None,
                    stalled_count=job.stalled_count + 1,
                )
            else:
                values = dict(
                    state=JobState.WAITING,
                    run_at=now,
                    lock_owner=None,
                    lock_expires_at=None,
                    stalled_count=job.stalled_count + 1,
                )
            follow_up = None
            with session_scope(self.sessions) as session:
                outcome = session.execute(
                    update(SyncJobRecord)
                    .where(
                        SyncJobRecord.id == job.id,
                        SyncJobRecord.state == JobState.ACTIVE,
                        SyncJobRecord.lock_expires_at < now,
                    )
                    .values(**values)
                )
                changed = outcome.rowcount == 1
                if changed and exhausted:
                    follow_up = self._queue_rerun(session, job.id, now)
            if not changed:
                continue  # heartbeat or completion won the race
            if exhausted:
                failed.append(job.id)
                self._mark_source(job.job_type, job.payload_data, "failed", job.id, error=STALLED_ERROR)
            else:
                requeued.append(job.id)
                self._mark_source(job.job_type, job.payload_data, "pending", job.id)
            self._publish(events.STALLED, job.queue_name, job.id, job.job_type,
                          stalled_count=job.stalled_count + 1, failed=exhausted)
            self._announce_rerun(follow_up, error=STALLED_ERROR)

        if requeued or failed:
            logger.warning("Stalled jobs recovered", requeued=len(requeued), failed=len(failed))
        return {"requeued": requeued, "failed": failed}

    def clean(self, queue_name: str) -> Dict[str, int]:
        """Apply the queue's retention policy. Returns how many jobs were deleted per state."""
        policy = self.settings.policy(queue_name)
        now = self.clock()
        with session_scope(self.sessions) as session:
            old_completed = session.execute(
                delete(SyncJobRecord).where(
                    SyncJobRecord.queue_name == queue_name,
                    SyncJobRecord.state == JobState.COMPLETED,
                    SyncJobRecord.finished_at < now - policy.remove_on_complete_age,
                )
            ).rowcount

            overflow = session.execute(
                select(SyncJobRecord.id)
                .where(SyncJobRecord.queue_name == queue_name, SyncJobRecord.state == JobState.COMPLETED)
                .order_by(SyncJobRecord.finished_at.desc(), SyncJobRecord.id.desc())
                .offset(policy.remove_on_complete_count)
            ).scalars().all()
            if overflow:
                session.execute(delete(SyncJobRecord).where(SyncJobRecord.id.in_(overflow)))

            old_failed = session.execute(
                delete(SyncJobRecord).where(
                    SyncJobRecord.queue_name == queue_name,
                    SyncJobRecord.state == JobState.FAILED,
                    SyncJobRecord.finished_at < now - policy.remove_on_fail_age,
                )
            ).rowcount
        return {"completed": old_completed + len(overflow), "failed": old_failed}


def enqueue_sync(
    job_queue: JobQueue,
    user_id: str,
    source: str,
    identifier: Optional[str] = None,
    force_refresh: bool = False,
    priority: Union[int, str, None] = None,
    on_duplicate: str = "coalesce",
) -> str:
    """Inbound trigger: enqueue a single-source sync on the sync queue."""
    payload = sync_payload_for(source, user_id, identifier=identifier, force_refresh=force_refresh)
    return job_queue.enqueue(QUEUE_SYNC, payload, priority=priority, on_duplicate=on_duplicate)
