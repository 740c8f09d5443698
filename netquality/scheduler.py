"""Background scheduler orchestration for the periodic monitor."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .measurements.manager import MeasurementManager
from .measurements.models import Measurement

LOGGER = logging.getLogger(__name__)


class MonitorState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class MonitorScheduler:
    JOB_PREFIX = "monitor-tick"

    def __init__(
        self,
        measurement_manager: MeasurementManager,
        scheduler: Optional[BackgroundScheduler] = None,
    ) -> None:
        self.measurements = measurement_manager
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self._lock = threading.Lock()
        self._state = MonitorState.IDLE
        self.interface: Optional[str] = None
        self.interval_seconds: Optional[int] = None
        self.ticks = 0
        self.failed_ticks = 0
        self.job_id: Optional[str] = None
        self._generation = 0

    @property
    def state(self) -> MonitorState:
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state is MonitorState.RUNNING

    def start(self, interface: str, interval_seconds: int) -> bool:
        """Schedule ticks every ``interval_seconds`` with the first one immediately.

        Returns False when the monitor is already running.
        """
        with self._lock:
            if self._state is MonitorState.RUNNING:
                LOGGER.warning("Monitor already running on %s, ignoring start request", self.interface)
                return False

            interval = max(1, int(interval_seconds))
            # A tick of the previous run may still be executing under its own id.
            self._generation += 1
            job_id = f"{self.JOB_PREFIX}-{self._generation}"
            if not self.scheduler.running:
                self.scheduler.start()
            self.scheduler.add_job(
                self._run_cycle,
                trigger=IntervalTrigger(seconds=interval),
                args=[interface],
                id=job_id,
                next_run_time=datetime.now(timezone.utc),
                max_instances=1,
                coalesce=True,
                misfire_grace_time=None,
                replace_existing=True,
            )
            self._state = MonitorState.RUNNING
            self.job_id = job_id
            self.interface = interface
            self.interval_seconds = interval
            LOGGER.info("Monitor started on %s every %d s", interface, interval)
            return True

    def stop(self) -> bool:
        """Stop scheduling ticks; a tick already in progress runs to completion."""
        with self._lock:
            if self._state is not MonitorState.RUNNING:
                return False
            try:
                self.scheduler.remove_job(self.job_id)
            except JobLookupError:
                LOGGER.debug("Monitor job %s already gone", self.job_id)
            self._state = MonitorState.IDLE
            self.job_id = None
            LOGGER.info("Monitor stopped on %s", self.interface)
            return True

    def shutdown(self) -> None:
        self.stop()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def run_once(self, interface: str) -> Optional[Measurement]:
        return self._run_cycle(interface)

    def status(self) -> dict:
        with self._lock:
            return {
                "state": self._state.value,
                "interface": self.interface,
                "interval_seconds": self.interval_seconds,
                "ticks": self.ticks,
                "failed_ticks": self.failed_ticks,
            }

    def _run_cycle(self, interface: str) -> Optional[Measurement]:
        LOGGER.debug("Monitor tick at %s", datetime.now().isoformat())
        try:
            measurement = self.measurements.run_measurement(interface)
        except Exception as exc:  # pylint: disable=broad-except
            with self._lock:
                self.failed_ticks += 1
            LOGGER.exception("Measurement tick failed: %s", exc)
            self.measurements.events.log_line(f"Measurement error: {exc!r}", LOGGER)
            return None
        with self._lock:
            self.ticks += 1
        return measurement
