"""Shared dataclasses for measurements."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

CSV_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
JSON_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"

# None means the probe got no response; 0.0 is a valid RTT.
LatencySample = Optional[float]


@dataclass(frozen=True)
class PingStats:
    avg_ms: float
    jitter_ms: float
    loss_percent: float


@dataclass(frozen=True)
class SpeedResult:
    download_mbps: float
    upload_mbps: float


@dataclass(frozen=True)
class Measurement:
    timestamp: datetime
    interface: str
    download_mbps: float
    upload_mbps: float
    ping_avg_ms: float
    jitter_ms: float
    packet_loss_percent: float
    http_response_ms: float

    def csv_row(self) -> List[str]:
        return [
            self.timestamp.strftime(CSV_TIMESTAMP_FORMAT),
            self.interface,
            f"{self.download_mbps:.2f}",
            f"{self.upload_mbps:.2f}",
            f"{self.ping_avg_ms:.2f}",
            f"{self.jitter_ms:.2f}",
            f"{self.packet_loss_percent:.2f}",
            f"{self.http_response_ms:.2f}",
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.strftime(JSON_TIMESTAMP_FORMAT),
            "interface": self.interface,
            "download_mbps": round(self.download_mbps, 4),
            "upload_mbps": round(self.upload_mbps, 4),
            "ping_avg_ms": round(self.ping_avg_ms, 4),
            "jitter_ms": round(self.jitter_ms, 4),
            "packet_loss_percent": round(self.packet_loss_percent, 4),
            "http_response_ms": round(self.http_response_ms, 4),
        }
