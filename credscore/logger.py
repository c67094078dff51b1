"""
Logging for credscore workers and commands.

Messages carry keyword context (job id, source, user) rendered as sorted
`key=value` pairs after the message. The logger also owns the process's
sync counters, which the worker pool updates from all of its threads and
logs as a summary on shutdown.
"""

import json
import logging
import sys
import threading
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(threadName)s | %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(threadName)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_context(context: Dict[str, Any]) -> str:
    """Render context as `key=value` pairs; strings with spaces and containers are JSON-quoted."""
    parts = []
    for key in sorted(context):
        value = context[key]
        if isinstance(value, str) and " " not in value and value:
            rendered = value
        elif isinstance(value, (int, float, bool)) or value is None:
            rendered = json.dumps(value)
        else:
            rendered = json.dumps(value, default=str, sort_keys=True)
        parts.append(f"{key}={rendered}")
    return " ".join(parts)


class SyncMetrics:
    """Per-source sync counters, safe to update from worker threads."""

    def __init__(self):
        self._lock = threading.Lock()
        self.api_calls = 0
        self.errors: Dict[str, int] = {}
        self.sources: Dict[str, Dict[str, int]] = {}

    def _source(self, source: str) -> Dict[str, int]:
        return self.sources.setdefault(source, {"attempts": 0, "successes": 0, "failures": 0})

    def api_call(self) -> None:
        with self._lock:
            self.api_calls += 1

    def attempt(self, source: str) -> None:
        with self._lock:
            self._source(source)["attempts"] += 1

    def success(self, source: str) -> None:
        with self._lock:
            self._source(source)["successes"] += 1

    def failure(self, source: str, error_type: str) -> None:
        with self._lock:
            self._source(source)["failures"] += 1
            self.errors[error_type] = self.errors.get(error_type, 0) + 1

    def snapshot(self) -> dict:
        with self._lock:
            sources = {name: dict(stats) for name, stats in self.sources.items()}
            errors = dict(self.errors)
            api_calls = self.api_calls

        for stats in sources.values():
            if stats["attempts"]:
                stats["success_rate"] = round(stats["successes"] / stats["attempts"], 3)
        return {
            "api_calls": api_calls,
            "syncs_attempted": sum(s["attempts"] for s in sources.values()),
            "syncs_successful": sum(s["successes"] for s in sources.values()),
            "syncs_failed": sum(s["failures"] for s in sources.values()),
            "errors_by_type": errors,
            "source_success_rate": sources,
        }


class StructuredLogger:
    """
    Wraps a stdlib logger with keyword context and sync metrics.

    Console output goes to stdout at the configured level; the daily file in
    `log_dir` always receives DEBUG and above.
    """

    def __init__(
        self,
        name: str = "credscore",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        self.logger = logging.getLogger(name)
        self.logger.handlers.clear()
        self.logger.propagate = False
        self.metrics = SyncMetrics()
        self._console: Optional[logging.Handler] = None

        if enable_console:
            self._console = logging.StreamHandler(sys.stdout)
            self._console.setFormatter(logging.Formatter(CONSOLE_FORMAT, DATE_FORMAT))
            self.logger.addHandler(self._console)

        if enable_file:
            log_dir = Path(log_dir or "logs")
            log_dir.mkdir(parents=True, exist_ok=True)
            self.log_file = log_dir / f"credscore-{date.today().isoformat()}.log"
            handler = logging.FileHandler(self.log_file, encoding="utf-8")
            handler.setLevel(logging.DEBUG)
            handler.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
            self.logger.addHandler(handler)
        else:
            self.log_file = None

        self.set_level(level)

    def set_level(self, level: str) -> None:
        """Change the console level. Raises ValueError for unknown names."""
        numeric = logging.getLevelName(level.upper())
        if not isinstance(numeric, int):
            raise ValueError(f"Unknown log level: {level}")
        # File handler keeps DEBUG, so the logger itself must pass everything through
        self.logger.setLevel(logging.DEBUG if self.log_file else numeric)
        if self._console is not None:
            self._console.setLevel(numeric)
        self.level = level.upper()

    def debug(self, message: str, **context):
        self._log(logging.DEBUG, message, context)

    def info(self, message: str, **context):
        self._log(logging.INFO, message, context)

    def warning(self, message: str, **context):
        self._log(logging.WARNING, message, context)

    def error(self, message: str, **context):
        self._log(logging.ERROR, message, context)

    def critical(self, message: str, **context):
        self._log(logging.CRITICAL, message, context)

    def _log(self, level: int, message: str, context: dict):
        if context:
            message = f"{message} | {format_context(context)}"
        self.logger.log(level, message)

    # Sync metrics

    def record_api_call(self):
        self.metrics.api_call()

    def record_sync_attempt(self, source: str):
        self.metrics.attempt(source)

    def record_sync_success(self, source: str):
        self.metrics.success(source)

    def record_sync_failure(self, source: str, error_type: str):
        self.metrics.failure(source, error_type)

    def get_metrics(self) -> dict:
        return self.metrics.snapshot()

    def log_metrics_summary(self):
        """Log totals, one line per source and one per error type."""
        metrics = self.get_metrics()
        attempted = metrics["syncs_attempted"]
        rate = round(metrics["syncs_successful"] / attempted * 100, 1) if attempted else 0.0

        self.info(
            "Sync summary",
            api_calls=metrics["api_calls"],
            syncs=f"{metrics['syncs_successful']}/{attempted}",
            success_pct=rate,
        )
        for source, stats in sorted(metrics["source_success_rate"].items()):
            self.info(
                "Source summary",
                source=source,
                syncs=f"{stats['successes']}/{stats['attempts']}",
                failures=stats["failures"],
            )
        for error_type, count in sorted(metrics["errors_by_type"].items()):
            self.info("Error summary", error=error_type, count=count)


_global_logger: Optional[StructuredLogger] = None
_global_lock = threading.Lock()


def get_logger(name: str = "credscore", level: Optional[str] = None, **kwargs) -> StructuredLogger:
    """
    Return the process-wide logger, creating it on first use.

    Modules grab the logger at import time, so a later call with `level`
    adjusts the existing instance instead of being ignored.
    """
    global _global_logger

    with _global_lock:
        if _global_logger is None:
            _global_logger = StructuredLogger(name=name, level=level or "INFO", **kwargs)
        elif level:
            _global_logger.set_level(level)
        return _global_logger


def reset_logger():
    """Drop the process-wide logger; the next get_logger() builds a new one."""
    global _global_logger
    with _global_lock:
        _global_logger = None
