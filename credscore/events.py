"""
Job lifecycle events.

The queue and the workers publish JobEvents onto an EventChannel; each
subscriber owns a queue.Queue and consumes at its own pace. EventLogger is
the default subscriber and writes events to the structured log.
"""

import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .database import utcnow
from .logger import StructuredLogger, get_logger

ENQUEUED = "enqueued"
COALESCED = "coalesced"
ACTIVE = "active"
PROGRESS = "progress"
COMPLETED = "completed"
RETRYING = "retrying"
FAILED = "failed"
STALLED = "stalled"
REMOVED = "removed"
PAUSED = "paused"
RESUMED = "resumed"


@dataclass(frozen=True)
class JobEvent:
    kind: str
    queue_name: str
    job_id: Optional[str] = None
    job_type: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    at: datetime = field(default_factory=utcnow)


class EventChannel:
    """Fan-out channel: every subscriber receives every event published after it subscribed."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[queue.Queue] = []

    def subscribe(self, maxsize: int = 0) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=maxsize)
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    def publish(self, event: JobEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for q in subscribers:
            try:
                q.put_nowait(event)
            except queue.Full:
                # Slow subscriber; the event is dropped for it only
                pass


class EventLogger:
    """Subscriber that logs job events, in a background thread or on demand via drain()."""

    def __init__(self, channel: EventChannel, logger: Optional[StructuredLogger] = None):
        self.channel = channel
        self.logger = logger or get_logger()
        self.inbox = channel.subscribe()
        self.handled = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def handle(self, event: JobEvent) -> None:
        context = {"queue": event.queue_name, "job_id": event.job_id, "job_type": event.job_type}
        context.update(event.data)
        if event.kind in (FAILED, STALLED):
            self.logger.warning(f"Job {event.kind}", **context)
        elif event.kind == PROGRESS:
            self.logger.debug("Job progress", **context)
        else:
            self.logger.info(f"Job {event.kind}", **context)
        self.handled += 1

    def drain(self) -> int:
        """Handle every event already queued; returns how many were handled."""
        count = 0
        while True:
            try:
                event = self.inbox.get_nowait()
            except queue.Empty:
                return count
            self.handle(event)
            count += 1

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                event = self.inbox.get(timeout=0.2)
            except queue.Empty:
                continue
            self.handle(event)
        self.drain()

    def start(self) -> None:
        if self._thread is None:
            self._thread = threading.Thread(target=self._run, name="event-logger", daemon=True)
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        self.channel.unsubscribe(self.inbox)
