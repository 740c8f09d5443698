"""Single round-trip latency probes.

Two providers implement the same ``probe(host)`` contract:

* :class:`PingLatencyProvider` shells out to the OS ``ping`` for one echo and
  scrapes the RTT from its output. The output is localized, so only the tokens
  in ``RTT_PATTERN`` are recognized (``time``, ``zeit``, ``tiempo``, ``temps``,
  ``tempo``, ``idő``, ``czas``, ``tid``); any other locale yields ``None``.
* :class:`TcpConnectLatencyProvider` times a TCP handshake instead and does not
  depend on any text output.
"""

from __future__ import annotations

import logging
import platform
import re
import socket
import subprocess
import time
from typing import Callable, Optional

from ..config import LatencyConfig
from .models import LatencySample

LOGGER = logging.getLogger(__name__)

RTT_PATTERN = re.compile(
    r"(?:time|zeit|tiempo|temps|tempo|idő|czas|tid)\s*[=<]\s*(\d+(?:[.,]\d+)?)\s*ms",
    re.IGNORECASE,
)

LineSink = Callable[[str], None]


def ping_command(host: str, timeout_seconds: float) -> list:
    if platform.system().lower().startswith("win"):
        return ["ping", "-n", "1", "-w", str(int(timeout_seconds * 1000)), host]
    return ["ping", "-c", "1", "-W", str(max(1, int(round(timeout_seconds)))), host]


def parse_rtt(line: str) -> Optional[float]:
    """Return the RTT in milliseconds found in one line of ping output."""
    match = RTT_PATTERN.search(line)
    if not match:
        return None
    return float(match.group(1).replace(",", "."))


def stream_process_lines(command: list, on_line: LineSink, timeout: Optional[float] = None) -> int:
    """Run ``command`` and feed its merged stdout/stderr to ``on_line``.

    Returns the exit code. The child is killed if it is still alive after
    ``timeout`` seconds once its output has been drained.
    """
    with subprocess.Popen(
        command,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        stdin=subprocess.DEVNULL,
        text=True,
        errors="replace",
    ) as process:
        assert process.stdout is not None
        for line in process.stdout:
            on_line(line.rstrip("\r\n"))
        try:
            return process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            return process.wait()


class LatencyProvider:
    """Capability interface: one RTT measurement against ``host``."""

    def probe(self, host: str) -> LatencySample:
        raise NotImplementedError


class PingLatencyProvider(LatencyProvider):
    def __init__(self, timeout_seconds: float = 2.0):
        self.timeout_seconds = timeout_seconds

    def probe(self, host: str) -> LatencySample:
        found: list = []

        def collect(line: str) -> None:
            if not found:
                rtt = parse_rtt(line)
                if rtt is not None:
                    found.append(rtt)

        try:
            stream_process_lines(
                ping_command(host, self.timeout_seconds),
                collect,
                timeout=self.timeout_seconds + 3,
            )
        except OSError as exc:
            LOGGER.warning("Could not launch ping for %s: %s", host, exc)
            return None

        if not found:
            LOGGER.debug("No RTT token in ping output for %s", host)
            return None
        return found[0]


class TcpConnectLatencyProvider(LatencyProvider):
    def __init__(self, port: int = 443, timeout_seconds: float = 2.0):
        self.port = port
        self.timeout_seconds = timeout_seconds

    def probe(self, host: str) -> LatencySample:
        start = time.perf_counter()
        try:
            with socket.create_connection((host, self.port), timeout=self.timeout_seconds):
                elapsed = time.perf_counter() - start
        except OSError as exc:
            LOGGER.debug("TCP connect to %s:%s failed: %s", host, self.port, exc)
            return None
        return elapsed * 1000.0


def build_latency_provider(config: LatencyConfig) -> LatencyProvider:
    if config.provider == "tcp":
        return TcpConnectLatencyProvider(port=config.tcp_port, timeout_seconds=config.timeout_seconds)
    return PingLatencyProvider(timeout_seconds=config.timeout_seconds)
