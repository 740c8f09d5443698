"""HTTP download/upload bitrate probes."""

from __future__ import annotations

import logging
import time
from typing import Tuple

import requests

LOGGER = logging.getLogger(__name__)

CHUNK_SIZE = 8192
DEFAULT_TIMEOUT: Tuple[float, float] = (8.0, 8.0)


def bitrate_mbps(byte_count: int, elapsed_seconds: float) -> float:
    if byte_count <= 0 or elapsed_seconds <= 0:
        return 0.0
    return (byte_count * 8 / 1_000_000) / elapsed_seconds


class ThroughputProbe:
    """Timed bulk transfers over HTTP.

    Failures never raise: a probe that cannot complete reports ``0.0`` so the
    periodic monitor keeps going.
    """

    def __init__(self, timeout: Tuple[float, float] = DEFAULT_TIMEOUT):
        self.timeout = timeout

    def download(self, url: str, byte_budget: int) -> float:
        LOGGER.info("Download test: %s (%d bytes)", url, byte_budget)
        total = 0
        start = end = 0.0
        try:
            with requests.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                start = time.perf_counter()
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    total += len(chunk)
                    if total >= byte_budget:
                        break
                end = time.perf_counter()
        except requests.RequestException as exc:
            LOGGER.warning("Download test failed: %s", exc)
            return 0.0

        total = min(total, byte_budget)
        if total == 0 or end <= start:
            LOGGER.warning("Download test: not enough data (total=%d)", total)
            return 0.0

        mbps = bitrate_mbps(total, end - start)
        LOGGER.info("Download: %.2f Mbps (%d bytes in %.2f s)", mbps, total, end - start)
        return mbps

    def upload(self, url: str, byte_budget: int) -> float:
        LOGGER.info("Upload test: %s (%d bytes)", url, byte_budget)
        if byte_budget <= 0:
            return 0.0
        payload = b"A" * byte_budget
        try:
            start = time.perf_counter()
            with requests.post(
                url,
                data=payload,
                headers={"Content-Type": "application/octet-stream"},
                stream=True,
                timeout=self.timeout,
            ) as response:
                response.raise_for_status()
                end = time.perf_counter()
        except requests.RequestException as exc:
            LOGGER.warning("Upload test failed: %s", exc)
            return 0.0

        mbps = bitrate_mbps(byte_budget, end - start)
        LOGGER.info("Upload: %.2f Mbps (%d bytes in %.2f s)", mbps, byte_budget, end - start)
        return mbps
