"""
Failure handling for upstream provider calls.

Two layers share one delay schedule:

- `retry_transient` retries a single HTTP call a couple of times when the
  network drops, before the error surfaces to the job.
- `CircuitBreaker` sits in front of each source. Once a provider keeps
  failing, syncs for every user of that source are short-circuited until
  the cooldown passes, so one outage does not burn every job's attempts.

Job-level retries in the queue use `backoff_delay` with the queue's own
base and cap.
"""

import functools
import threading
import time
from typing import Callable, Optional, Tuple, Type

from .errors import ProviderError
from .logger import get_logger

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"

# Statuses a provider may answer differently on the next attempt
TRANSIENT_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})


class RetryError(Exception):
    """A call kept failing after every allowed attempt."""

    def __init__(self, message: str, attempts: int, last_error: Exception):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class CircuitOpenError(Exception):
    """A provider call was refused because its source's breaker is open."""

    def __init__(self, name: str, retry_in: float):
        super().__init__(f"{name} circuit is open, retry in {retry_in:.0f}s")
        self.name = name
        self.retry_in = retry_in


def backoff_delay(attempt: int, base_delay: float, max_delay: float, factor: float = 2.0) -> float:
    """Seconds to wait before retry `attempt` (1-based): base, base*2, base*4 ... up to max_delay."""
    if attempt <= 0:
        return 0.0
    return min(max_delay, base_delay * factor ** (attempt - 1))


def is_transient_status(status: int) -> bool:
    return status in TRANSIENT_STATUSES


def is_upstream_failure(exc: Exception) -> bool:
    """Whether `exc` says something about the provider's health.

    A 404 for one user's handle is that user's problem; timeouts and
    5xx answers are the provider's.
    """
    return isinstance(exc, ProviderError) and exc.transient


def retry_transient(
    retries: int = 2,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retry_on: Tuple[Type[Exception], ...] = (Exception,),
):
    """
    Retry the wrapped call on `retry_on` exceptions, sleeping
    `backoff_delay(n, base_delay, max_delay)` before retry n.

    Raises RetryError (chained to the last failure) once `retries` extra
    attempts are used up. Other exceptions propagate immediately.
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    attempt += 1
                    if attempt > retries:
                        raise RetryError(
                            f"{func.__name__} failed after {attempt} attempts: {e}",
                            attempts=attempt,
                            last_error=e,
                        ) from e
                    delay = backoff_delay(attempt, base_delay, max_delay)
                    get_logger().debug(
                        "Retrying call", call=func.__name__, attempt=attempt, delay=delay, error=str(e)
                    )
                    time.sleep(delay)
        return wrapper
    return decorator


class CircuitBreaker:
    """
    Per-source breaker shared by all worker threads.

    closed: calls pass; `threshold` consecutive counted failures open it.
    open: calls raise CircuitOpenError until `cooldown` seconds have passed.
    half_open: one probe call is let through; success closes the breaker,
        failure opens it for another cooldown.

    Only exceptions for which `counts(exc)` is true move the breaker;
    everything else propagates without touching its state.
    """

    def __init__(
        self,
        name: str,
        threshold: int = 5,
        cooldown: float = 60.0,
        counts: Callable[[Exception], bool] = is_upstream_failure,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.threshold = threshold
        self.cooldown = cooldown
        self.counts = counts
        self.clock = clock

        self.failures = 0
        self.opened_at: Optional[float] = None
        self._probing = False
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        with self._lock:
            return self._state()

    def _state(self) -> str:
        if self.opened_at is None:
            return CLOSED
        if self.clock() - self.opened_at >= self.cooldown:
            return HALF_OPEN
        return OPEN

    def retry_in(self) -> float:
        with self._lock:
            if self.opened_at is None:
                return 0.0
            return max(0.0, self.cooldown - (self.clock() - self.opened_at))

    def call(self, func: Callable, *args, **kwargs):
        """Run `func` through the breaker."""
        self._before_call()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self._after_failure(e)
            raise
        self._after_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self.failures = 0
            self.opened_at = None
            self._probing = False

    def _before_call(self) -> None:
        with self._lock:
            state = self._state()
            if state == CLOSED:
                return
            if state == HALF_OPEN and not self._probing:
                self._probing = True
                return
            remaining = max(0.0, self.cooldown - (self.clock() - self.opened_at))
        raise CircuitOpenError(self.name, remaining)

    def _after_success(self) -> None:
        with self._lock:
            if self.opened_at is not None:
                get_logger().info("Circuit closed", source=self.name)
            self.failures = 0
            self.opened_at = None
            self._probing = False

    def _after_failure(self, exc: Exception) -> None:
        with self._lock:
            probe = self._probing
            self._probing = False
            if not self.counts(exc):
                return
            self.failures += 1
            if probe or self.failures >= self.threshold:
                self.opened_at = self.clock()
                get_logger().warning(
                    "Circuit opened", source=self.name, failures=self.failures, cooldown=self.cooldown
                )
