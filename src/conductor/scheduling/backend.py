"""In-process ticker that drives ``Scheduler.run_due``.

Deployments fronted by an external cron provider don't need this: the
provider calls the HTTP trigger instead. For everything else a daemon thread
wakes up every ``interval_seconds`` and dispatches whatever is due.

::

    start()
      └─► daemon thread
            while not stop_event.wait(interval):
                tick_count += 1
                scheduler.run_due()
    stop()
      └─► stop_event.set(); join(timeout)
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any

from conductor.core.logging import get_logger
from conductor.orchestration.models import utcnow
from conductor.scheduling.scheduler import Scheduler

logger = get_logger(__name__)


class ThreadTickBackend:
    """Daemon-thread ticker for single-instance deployments.

    Example:
        >>> backend = ThreadTickBackend(scheduler, interval_seconds=30)
        >>> backend.start()
        >>> # ... later ...
        >>> backend.stop()
    """

    name = "thread"

    def __init__(self, scheduler: Scheduler, interval_seconds: float = 30.0):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self.scheduler = scheduler
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._last_error: str | None = None

    def start(self) -> None:
        if self.is_running:
            logger.warning("tick_backend.already_started")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="conductor-ticker")
        self._thread.start()
        logger.info("tick_backend.started", interval=self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the loop, waiting up to ``timeout`` for the current tick."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning("tick_backend.stop_timeout")
        self._thread = None
        logger.info("tick_backend.stopped", ticks=self._tick_count)

    def tick(self) -> None:
        """Run one scheduling pass (also called directly in tests)."""
        with self._lock:
            self._tick_count += 1
            self._last_tick = utcnow()
        try:
            results = self.scheduler.run_due()
        except Exception as e:
            # Keep the loop alive; the next tick retries
            self._last_error = f"{e.__class__.__name__}: {e}"
            logger.exception("tick_backend.tick_failed")
            return
        self._last_error = None
        for result in results:
            if not result.success:
                logger.warning("tick_backend.job_failed", job_id=result.job_id, message=result.message)

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            self.tick()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def health(self) -> dict[str, Any]:
        return {
            "healthy": self.is_running,
            "backend": self.name,
            "tick_count": self._tick_count,
            "last_tick": self._last_tick.isoformat() if self._last_tick else None,
            "last_error": self._last_error,
            "interval_seconds": self.interval_seconds,
        }
