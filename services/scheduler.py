"""Background loop running sync cycles on a fixed interval."""
from __future__ import annotations

import threading
from enum import Enum
from typing import Any, Callable, Optional

from core.logs import get_logger


logger = get_logger("scheduler")


class SchedulerState(str, Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"


class SyncScheduler:
    """Runs ``cycle`` every ``interval`` seconds on a daemon thread.

    Cycles never overlap: a manual :meth:`trigger_now` while a cycle is in
    flight is coalesced into it and returns ``None``.
    """

    def __init__(
        self,
        cycle: Callable[[], Any],
        interval: float,
        *,
        name: str = "edgesync-scheduler",
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.cycle = cycle
        self.interval = float(interval)
        self.name = name
        self.state = SchedulerState.STOPPED
        self.cycles_run = 0
        self.last_result: Any = None
        self._cycle_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self.state is SchedulerState.RUNNING

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self.state = SchedulerState.RUNNING
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        logger.info("Scheduler started, interval %ss", self.interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the loop and wait for the in-flight cycle to finish.

        A cycle started through :meth:`trigger_now` on another thread counts
        as in flight too.
        """

        thread = self._thread
        self.state = SchedulerState.STOPPING
        self._stop.set()
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Scheduler thread did not stop within %ss", timeout)
                return
            self._thread = None
        if not self._cycle_lock.acquire(timeout=-1 if timeout is None else timeout):
            logger.warning("Sync cycle still running after %ss", timeout)
            return
        self._cycle_lock.release()
        self.state = SchedulerState.STOPPED
        if thread is not None:
            logger.info("Scheduler stopped after %s cycle(s)", self.cycles_run)

    def trigger_now(self) -> Any:
        """Run one cycle on the calling thread unless one is already running."""

        if not self._cycle_lock.acquire(blocking=False):
            logger.debug("Cycle already running, manual trigger coalesced")
            return None
        try:
            return self._run_cycle()
        finally:
            self._cycle_lock.release()

    def _loop(self) -> None:
        while not self._stop.is_set():
            with self._cycle_lock:
                if self._stop.is_set():
                    break
                self._run_cycle()
            self._stop.wait(self.interval)

    def _run_cycle(self) -> Any:
        try:
            result = self.cycle()
        except Exception:
            logger.exception("Sync cycle failed")
            result = None
        self.cycles_run += 1
        self.last_result = result
        return result


__all__ = ["SchedulerState", "SyncScheduler"]
