"""Measurement orchestration: one monitor tick end to end."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional

from ..config import MonitorSettings, SettingsStore
from ..events import EventBus
from ..series import MeasurementHistory
from .http_timer import HttpTimer
from .models import Measurement, SpeedResult
from .stats import StatsAggregator
from .throughput import ThroughputProbe

LOGGER = logging.getLogger(__name__)

MeasurementSink = Callable[[Measurement], None]


class MeasurementManager:
    """Runs the probe pipeline and owns the write path of the history.

    Sinks (CSV log, database, ...) receive every finished measurement; a
    failing sink is logged and does not affect the others.
    """

    def __init__(
        self,
        settings: SettingsStore,
        throughput: ThroughputProbe,
        stats: StatsAggregator,
        http_timer: HttpTimer,
        events: EventBus,
        history: Optional[MeasurementHistory] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings
        self.throughput = throughput
        self.stats = stats
        self.http_timer = http_timer
        self.events = events
        self.history = history if history is not None else MeasurementHistory()
        self._clock = clock
        self._sinks: List[MeasurementSink] = []

    def add_sink(self, sink: MeasurementSink) -> None:
        self._sinks.append(sink)

    def run_measurement(self, interface: str) -> Measurement:
        settings = self.settings.snapshot()
        self.events.log_line(f"Measurement starting on {interface}", LOGGER)

        speed = self._measure_speed(settings)
        ping = self.stats.collect(settings.ping_target, settings.ping_count)
        http_ms = self.http_timer.time(settings.http_test_url)

        measurement = Measurement(
            timestamp=self._clock().replace(microsecond=0),
            interface=interface,
            download_mbps=speed.download_mbps,
            upload_mbps=speed.upload_mbps,
            ping_avg_ms=ping.avg_ms,
            jitter_ms=ping.jitter_ms,
            packet_loss_percent=ping.loss_percent,
            http_response_ms=http_ms,
        )
        self.history.append(measurement)
        self.events.log_line("Result: " + ";".join(measurement.csv_row()), LOGGER)

        for sink in self._sinks:
            try:
                sink(measurement)
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.exception("Measurement sink %r failed: %s", sink, exc)

        self.events.measurement(measurement)
        return measurement

    def _measure_speed(self, settings: MonitorSettings) -> SpeedResult:
        download = self.throughput.download(settings.speed_test_url, settings.download_bytes)
        upload = self.throughput.upload(settings.upload_url, settings.upload_bytes)
        return SpeedResult(download_mbps=download, upload_mbps=upload)
