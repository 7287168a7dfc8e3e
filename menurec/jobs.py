"""
Single-flight background jobs.

A job owns a small status record.  ``trigger()`` flips the status to the
running state with a compare-and-set and hands the work to a daemon thread;
a second trigger while the first is in flight is rejected, never queued.
Callers only ever observe the job through ``status()``.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any

from .errors import ConflictError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SingleFlightJob:
    """Base class for training and trend-analysis jobs.

    Subclasses implement ``run()`` and set the class attributes naming their
    states.  ``run()`` may raise; the failure is recorded, logged and never
    propagated to whoever triggered the job.
    """

    job_name = "job"
    idle_state = "idle"
    running_state = "running"
    success_state = "completed"
    failed_state = "failed"
    conflict_error: type[ConflictError] = ConflictError

    def __init__(self, interval_seconds: float | None = None) -> None:
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._timer: threading.Timer | None = None
        self._next_run_at: datetime | None = None
        self.interval_seconds = interval_seconds
        self.state = self.idle_state
        self.started_at: datetime | None = None
        self.finished_at: datetime | None = None
        self.last_error: str | None = None

    # -- to implement ------------------------------------------------------

    def run(self) -> None:
        raise NotImplementedError

    # -- lifecycle ---------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self.state == self.running_state

    def trigger(self) -> dict[str, Any]:
        with self._lock:
            if self.state == self.running_state:
                raise self.conflict_error()
            self.state = self.running_state
            self.started_at = utcnow()
            self._thread = threading.Thread(
                target=self._execute, name=f"menurec-{self.job_name}", daemon=True,
            )
        logger.info("Starting %s", self.job_name)
        self._thread.start()
        return {"status": self.running_state, "startedAt": self.started_at.isoformat()}

    def _execute(self) -> None:
        try:
            self.run()
        except Exception as exc:
            logger.exception("%s failed", self.job_name)
            with self._lock:
                self.state = self.failed_state
                self.last_error = str(exc) or exc.__class__.__name__
                self.finished_at = utcnow()
            return
        with self._lock:
            self.state = self.success_state
            self.last_error = None
            self.finished_at = utcnow()
        logger.info("%s finished", self.job_name)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the in-flight run ends. Returns False on timeout."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    # -- scheduling --------------------------------------------------------

    def next_run_at(self) -> datetime | None:
        return self._next_run_at if self._timer is not None else None

    def start_schedule(self) -> None:
        if not self.interval_seconds:
            return
        self._next_run_at = utcnow() + timedelta(seconds=self.interval_seconds)
        self._timer = threading.Timer(self.interval_seconds, self._scheduled_tick)
        self._timer.daemon = True
        self._timer.start()

    def stop_schedule(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _scheduled_tick(self) -> None:
        try:
            self.trigger()
        except ConflictError:
            logger.info("Skipping scheduled %s, previous run still active", self.job_name)
        if self._timer is not None:
            self.start_schedule()
