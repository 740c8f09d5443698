"""CSV log and JSON export of measurements."""

from __future__ import annotations

import csv
import io
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Iterable, List

from .measurements.models import Measurement

CSV_HEADER = [
    "timestamp",
    "interface",
    "download_mbps",
    "upload_mbps",
    "ping_avg_ms",
    "jitter_ms",
    "packet_loss_percent",
    "http_resp_ms",
]


class CSVLogWriter:
    """Semicolon separated log; the header is written once, rows are appended."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()
        self._ensure_header()

    def _ensure_header(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.exists() and self.path.stat().st_size > 0:
            return
        with self.path.open("a", encoding="utf-8", newline="") as handle:
            csv.writer(handle, delimiter=";").writerow(CSV_HEADER)

    def append(self, measurement: Measurement) -> None:
        with self._lock, self.path.open("a", encoding="utf-8", newline="") as handle:
            csv.writer(handle, delimiter=";").writerow(measurement.csv_row())

    def read_text(self) -> str:
        with self._lock:
            return self.path.read_text(encoding="utf-8")

    @staticmethod
    def build_csv(measurements: Iterable[Measurement]) -> io.StringIO:
        buffer = io.StringIO()
        writer = csv.writer(buffer, delimiter=";")
        writer.writerow(CSV_HEADER)
        for measurement in measurements:
            writer.writerow(measurement.csv_row())
        buffer.seek(0)
        return buffer


class JSONExporter:
    def __init__(self, path: Path):
        self.path = path

    @staticmethod
    def build_payload(measurements: Iterable[Measurement]) -> List[dict]:
        return [measurement.to_dict() for measurement in measurements]

    def export(self, measurements: Iterable[Measurement]) -> Path:
        """Write the export to a temp file and rename it over the target."""
        payload = self.build_payload(measurements)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(prefix=".export-", suffix=".json", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, ensure_ascii=False)
                handle.write("\n")
            os.replace(temp_name, self.path)
        except BaseException:
            if os.path.exists(temp_name):
                os.unlink(temp_name)
            raise
        return self.path
