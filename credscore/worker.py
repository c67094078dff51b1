"""
Sync worker pool.

A fixed number of threads per queue loop claim -> process -> complete/fail.
A heartbeat thread renews the lock of every job in progress and a
supervisor thread recovers stalled jobs and applies retention. The pool
can also drain queues synchronously (run_until_idle) for the CLI and tests.
"""

import os
import socket
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import requests
from sqlalchemy.orm import sessionmaker

from .config import Settings
from .errors import InvalidJobStateError, ProviderError, UnknownJobTypeError, ValidationFailed
from .handlers import JobContext, default_handlers
from .jobs import JobState, JobType, SYNC_SOURCES, SyncJob, SyncJobResult, parse_job_type
from .logger import StructuredLogger, get_logger
from .queue import JobQueue
from .reference import ReferenceData, get_reference_data
from .retry import CircuitBreaker

# Retrying cannot fix these
NON_RETRYABLE = (UnknownJobTypeError, ValidationFailed)

Handler = Callable[[JobContext, Any], SyncJobResult]
Outcome = Tuple[str, Optional[Dict[str, Any]], Optional[str]]


def is_retryable(exc: Exception) -> bool:
    if isinstance(exc, NON_RETRYABLE):
        return False
    if isinstance(exc, ProviderError):
        return exc.transient
    return True


def describe_error(exc: Exception) -> str:
    if isinstance(exc, ValidationFailed):
        return "Validation failed: " + "; ".join(exc.errors)
    return f"{type(exc).__name__}: {exc}"


class SyncWorkerPool:
    def __init__(
        self,
        queue: JobQueue,
        session_factory: sessionmaker,
        settings: Settings,
        reference: Optional[ReferenceData] = None,
        handlers: Optional[Dict[JobType, Handler]] = None,
        http: Optional[requests.Session] = None,
        logger: Optional[StructuredLogger] = None,
        name: Optional[str] = None,
        queues: Optional[Iterable[str]] = None,
        cleanup_interval: float = 300.0,
    ):
        """
        Args:
            queue: Queue the pool claims from
            session_factory: Factory for handler database sessions
            settings: Concurrency, lock and polling settings
            reference: Trust reference data (default: bundled data)
            handlers: Handler per job type (default: default_handlers())
            http: requests session shared by provider clients
            logger: Logger receiving sync metrics
            name: Prefix of worker ids (default: host-pid)
            queues: Queues to serve (default: every configured queue)
            cleanup_interval: Seconds between retention passes
        """
        self.queue = queue
        self.sessions = session_factory
        self.settings = settings
        self.reference = reference or get_reference_data()
        self.handlers: Dict[JobType, Handler] = dict(default_handlers() if handlers is None else handlers)
        self.http = http
        self.logger = logger or get_logger()
        self.name = name or f"{socket.gethostname()}-{os.getpid()}"
        self.queue_names = list(queues or settings.queues)
        self.cleanup_interval = cleanup_interval
        self.breakers: Dict[str, CircuitBreaker] = {
            source: CircuitBreaker(source, threshold=5, cooldown=60)
            for source in SYNC_SOURCES
        }

        self._active: Dict[str, str] = {}  # job id -> worker id
        self._active_lock = threading.Lock()
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    def register(self, job_type: JobType, handler: Handler) -> None:
        self.handlers[job_type] = handler

    # Processing

    def process_job(self, job: SyncJob, worker_id: str) -> SyncJobResult:
        """
        Run the handler of a claimed job and return its result.

        Raises:
            UnknownJobTypeError: No handler for the job type
            ValidationFailed: The payload cannot be parsed
            Exception: Whatever the handler raises
        """
        job_type = parse_job_type(job.job_type)
        handler = self.handlers.get(job_type)
        if handler is None:
            raise UnknownJobTypeError(f"No handler registered for {job_type.value}")
        try:
            payload = job.payload
        except ValueError as e:
            raise ValidationFailed([str(e)]) from e

        ctx = JobContext(
            job=job,
            worker_id=worker_id,
            queue=self.queue,
            session_factory=self.sessions,
            reference=self.reference,
            http=self.http,
            breakers=self.breakers,
            clock=self.queue.clock,
            run_child=lambda child: self.execute(child, worker_id),
            child_timeout=self.settings.lock_duration * 10,
            poll_interval=self.settings.poll_interval,
        )
        return handler(ctx, payload)

    def execute(self, job: SyncJob, worker_id: str) -> Outcome:
        """
        Process a claimed job and record the outcome in the queue.

        Returns:
            (state, result, error) where state is the job's new state
        """
        source = job.job_type.split(":", 1)[0]
        self._track(job.id, worker_id)
        self.logger.record_sync_attempt(source)
        try:
            try:
                result = self.process_job(job, worker_id)
            except Exception as exc:  # recorded on the job; the loop keeps running
                return self._record_failure(job, worker_id, source, exc)

            data = result.to_dict()
            try:
                self.queue.complete(job.id, worker_id, data)
            except InvalidJobStateError:
                self.logger.warning("Lost job lock before completion", job_id=job.id, worker=worker_id)
                return JobState.ACTIVE, data, "lock lost"

            if result.success:
                self.logger.record_sync_success(source)
            else:
                self.logger.record_sync_failure(source, "PartialFailure")
            return JobState.COMPLETED, data, None
        finally:
            self._untrack(job.id)

    def _record_failure(self, job: SyncJob, worker_id: str, source: str, exc: Exception) -> Outcome:
        error = describe_error(exc)
        retryable = is_retryable(exc)
        self.logger.record_sync_failure(source, type(exc).__name__)
        try:
            state = self.queue.fail(job.id, worker_id, error, retryable=retryable)
        except InvalidJobStateError:
            self.logger.warning("Lost job lock before failure was recorded", job_id=job.id, worker=worker_id)
            return JobState.ACTIVE, None, error

        if state == JobState.FAILED:
            self.logger.error("Job failed", job_id=job.id, job_type=job.job_type, error=error,
                              attempts=job.attempts)
        else:
            self.logger.warning("Job will be retried", job_id=job.id, job_type=job.job_type, error=error,
                                attempt=job.attempts, max_attempts=job.max_attempts)
        return state, None, error

    def run_once(self, queue_name: str, worker_id: Optional[str] = None) -> bool:
        """Claim and execute one job of a queue; False if none was due."""
        worker_id = worker_id or f"{self.name}:{queue_name}:0"
        job = self.queue.claim(queue_name, worker_id)
        if job is None:
            return False
        self.execute(job, worker_id)
        return True

    def run_until_idle(self, max_jobs: Optional[int] = None) -> int:
        """
        Process due jobs on the calling thread until no queue has any left.

        Jobs delayed into the future are left for a later call.

        Returns:
            Number of jobs processed
        """
        self.queue.check_stalled()
        processed = 0
        while max_jobs is None or processed < max_jobs:
            progressed = False
            for name in self.queue_names:
                if max_jobs is not None and processed >= max_jobs:
                    break
                if self.run_once(name):
                    processed += 1
                    progressed = True
            if not progressed:
                break
        return processed

    # Lock tracking

    def _track(self, job_id: str, worker_id: str) -> None:
        with self._active_lock:
            self._active[job_id] = worker_id

    def _untrack(self, job_id: str) -> None:
        with self._active_lock:
            self._active.pop(job_id, None)

    def active_jobs(self) -> Dict[str, str]:
        with self._active_lock:
            return dict(self._active)

    def renew_locks(self) -> int:
        """Heartbeat every job in progress; returns how many locks were renewed."""
        renewed = 0
        for job_id, worker_id in self.active_jobs().items():
            if self.queue.heartbeat(job_id, worker_id):
                renewed += 1
            else:
                self.logger.warning("Heartbeat rejected", job_id=job_id, worker=worker_id)
        return renewed

    def supervise(self, clean: bool = True) -> Dict[str, Any]:
        """One supervisor pass: stalled-job recovery, then retention."""
        report: Dict[str, Any] = {"stalled": self.queue.check_stalled()}
        if clean:
            report["cleaned"] = {name: self.queue.clean(name) for name in self.settings.queues}
        return report

    # Threads

    def _worker_loop(self, queue_name: str, worker_id: str) -> None:
        while not self._stop.is_set():
            try:
                busy = self.run_once(queue_name, worker_id)
            except Exception as exc:  # database hiccup; keep the thread alive
                self.logger.error("Worker loop error", worker=worker_id, error=describe_error(exc))
                busy = False
            if not busy:
                self._stop.wait(self.settings.poll_interval)

    def _heartbeat_loop(self) -> None:
        interval = max(0.1, self.settings.lock_duration / 3)
        while not self._stop.wait(interval):
            try:
                self.renew_locks()
            except Exception as exc:
                self.logger.error("Heartbeat error", error=describe_error(exc))

    def _supervisor_loop(self) -> None:
        elapsed = 0.0
        interval = self.settings.stalled_interval
        while not self._stop.wait(interval):
            elapsed += interval
            clean = elapsed >= self.cleanup_interval
            if clean:
                elapsed = 0.0
            try:
                self.supervise(clean=clean)
            except Exception as exc:
                self.logger.error("Supervisor error", error=describe_error(exc))

    def start(self) -> None:
        """Start worker, heartbeat and supervisor threads."""
        if self._threads:
            return
        self._stop.clear()
        for name in self.queue_names:
            for i in range(self.settings.policy(name).concurrency):
                worker_id = f"{self.name}:{name}:{i}"
                self._threads.append(threading.Thread(
                    target=self._worker_loop, args=(name, worker_id), name=f"worker-{name}-{i}", daemon=True
                ))
        self._threads.append(threading.Thread(target=self._heartbeat_loop, name="heartbeat", daemon=True))
        self._threads.append(threading.Thread(target=self._supervisor_loop, name="supervisor", daemon=True))
        for t in self._threads:
            t.start()
        self.logger.info("Worker pool started", name=self.name, threads=len(self._threads),
                         queues=self.queue_names)

    def stop(self, timeout: float = 30.0) -> None:
        """Signal every thread and wait for in-flight jobs to finish."""
        self._stop.set()
        for t in self._threads:
            t.join(timeout=timeout)
        self._threads = []
        self.logger.info("Worker pool stopped", name=self.name)
        self.logger.log_metrics_summary()
