"""Adaptive status refresh job on APScheduler."""

from __future__ import annotations

from typing import Callable

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = structlog.get_logger(__name__)


class RefreshScheduler:
    """Runs ``tick`` periodically; ``tick`` returns the next interval in seconds."""

    JOB_ID = "status_refresh"

    def __init__(self, tick: Callable[[], int], initial_interval: int = 10):
        self._tick = tick
        self.interval = initial_interval
        self.scheduler = BackgroundScheduler()
        self.running = False

    def start(self) -> None:
        if self.running:
            logger.warning("Scheduler already running")
            return
        self.scheduler.add_job(
            func=self.run_once,
            trigger=IntervalTrigger(seconds=self.interval),
            id=self.JOB_ID,
            name="Refresh backend status",
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        self.running = True
        logger.info("Refresh scheduler started", interval=self.interval)

    def stop(self) -> None:
        if not self.running:
            return
        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("Refresh scheduler stopped")

    def run_once(self) -> None:
        try:
            interval = self._tick()
        except Exception:
            logger.exception("Status refresh failed")
            return
        if interval != self.interval:
            self.interval = interval
            if self.running:
                self.scheduler.reschedule_job(self.JOB_ID, trigger=IntervalTrigger(seconds=interval))
            logger.debug("Refresh interval changed", seconds=interval)
