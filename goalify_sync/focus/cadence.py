"""Periodic tick sources for the focus timer."""

import logging
from typing import Callable, Optional, Protocol, runtime_checkable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

__all__ = ["Cadence", "SchedulerCadence", "ManualCadence"]

logger = logging.getLogger(__name__)

TICK_JOB_ID = "focus_tick"


@runtime_checkable
class Cadence(Protocol):
    """Something that calls back at a fixed interval until stopped."""

    @property
    def is_running(self) -> bool: ...

    def start(self, callback: Callable[[], None], interval_seconds: float) -> None: ...

    def stop(self) -> None: ...


class SchedulerCadence:
    """Cadence backed by an APScheduler background job.

    The tick only triggers a recomputation; a missed or late tick costs
    nothing because the timer derives its state from the wall clock.
    """

    def __init__(self, scheduler: Optional[BackgroundScheduler] = None, job_id: str = TICK_JOB_ID):
        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler or BackgroundScheduler()
        self.job_id = job_id
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, callback: Callable[[], None], interval_seconds: float) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
        self.scheduler.add_job(
            callback,
            trigger=IntervalTrigger(seconds=interval_seconds),
            id=self.job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._running = True
        logger.debug(f"Focus tick started (every {interval_seconds}s)")

    def stop(self) -> None:
        if not self._running:
            return
        if self.scheduler.get_job(self.job_id) is not None:
            self.scheduler.remove_job(self.job_id)
        self._running = False
        logger.debug("Focus tick stopped")

    def shutdown(self) -> None:
        """Stop ticking and shut the scheduler down if we created it."""
        self.stop()
        if self._owns_scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)


class ManualCadence:
    """Cadence driven by the caller, for tests and hosts with their own loop."""

    def __init__(self) -> None:
        self.callback: Optional[Callable[[], None]] = None
        self.interval: Optional[float] = None
        self.start_count = 0
        self.stop_count = 0

    @property
    def is_running(self) -> bool:
        return self.callback is not None

    def start(self, callback: Callable[[], None], interval_seconds: float) -> None:
        self.callback = callback
        self.interval = interval_seconds
        self.start_count += 1

    def stop(self) -> None:
        if self.callback is not None:
            self.stop_count += 1
        self.callback = None

    def fire(self) -> None:
        """Deliver one tick, if running."""
        if self.callback is not None:
            self.callback()
