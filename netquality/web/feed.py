"""In-memory view of the live results served to the dashboard API."""

from __future__ import annotations

import threading
from typing import Dict, List, Optional

from ..events import MonitorListener
from ..measurements.models import Measurement
from ..series import CHART_POINTS, RollingSeries

TRANSCRIPT_LINES = 2000


class LiveFeed(MonitorListener):
    def __init__(self, log_lines: int = 500):
        self.download = RollingSeries[float](CHART_POINTS)
        self.upload = RollingSeries[float](CHART_POINTS)
        self.ping = RollingSeries[float](CHART_POINTS)
        self.log = RollingSeries[str](log_lines)
        self._latest: Optional[Measurement] = None
        self._lock = threading.Lock()
        self._transcripts: Dict[str, RollingSeries[str]] = {}

    @property
    def latest(self) -> Optional[Measurement]:
        with self._lock:
            return self._latest

    def on_measurement(self, measurement: Measurement) -> None:
        self.download.append(measurement.download_mbps)
        self.upload.append(measurement.upload_mbps)
        self.ping.append(measurement.ping_avg_ms)
        with self._lock:
            self._latest = measurement

    def on_log_line(self, text: str) -> None:
        self.log.append(text)

    def chart(self) -> Dict[str, List[float]]:
        return {
            "download_mbps": self.download.snapshot(),
            "upload_mbps": self.upload.snapshot(),
            "ping_avg_ms": self.ping.snapshot(),
        }

    def transcript(self, name: str) -> RollingSeries[str]:
        with self._lock:
            if name not in self._transcripts:
                self._transcripts[name] = RollingSeries[str](TRANSCRIPT_LINES)
            return self._transcripts[name]
