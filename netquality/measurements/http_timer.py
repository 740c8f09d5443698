"""Time-to-status-line HTTP probe."""

from __future__ import annotations

import logging
import time
from typing import Tuple

import requests

LOGGER = logging.getLogger(__name__)


class HttpTimer:
    def __init__(self, timeout: Tuple[float, float] = (8.0, 8.0)):
        self.timeout = timeout

    def time(self, url: str) -> float:
        """Milliseconds until the response status is available, 0.0 on failure.

        Any status code counts as a response; redirects are not followed and
        the body is never read.
        """
        start = time.perf_counter()
        try:
            with requests.get(url, stream=True, allow_redirects=False, timeout=self.timeout) as response:
                elapsed_ms = (time.perf_counter() - start) * 1000.0
                status = response.status_code
        except requests.RequestException as exc:
            LOGGER.warning("HTTP response time to %s failed: %s", url, exc)
            return 0.0

        LOGGER.debug("HTTP %s from %s in %.2f ms", status, url, elapsed_ms)
        return elapsed_ms
