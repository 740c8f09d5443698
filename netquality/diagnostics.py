"""One-shot diagnostics: traceroute, netstat and a /24 reachability sweep."""

from __future__ import annotations

import logging
import platform
import socket
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, Tuple

from .measurements.latency import LatencyProvider, PingLatencyProvider, stream_process_lines

LOGGER = logging.getLogger(__name__)

LineSink = Callable[[str], None]


def _is_windows() -> bool:
    return platform.system().lower().startswith("win")


def traceroute_command(host: str) -> List[str]:
    return ["tracert", host] if _is_windows() else ["traceroute", host]


def netstat_command() -> List[str]:
    return ["netstat", "-ano"] if _is_windows() else ["netstat", "-an"]


def run_streamed(command: List[str], on_line: LineSink, title: str, timeout: float = 120.0) -> Optional[int]:
    """Stream a line oriented command to ``on_line`` bracketed by start/end lines."""
    on_line(f"{title} starting: {' '.join(command)}")
    exit_code: Optional[int] = None
    try:
        exit_code = stream_process_lines(command, on_line, timeout=timeout)
    except OSError as exc:
        LOGGER.warning("%s could not be launched: %s", title, exc)
        on_line(f"{title} error: {exc}")
    on_line(f"{title} finished.")
    return exit_code


def traceroute(host: str, on_line: LineSink) -> Optional[int]:
    if not host:
        raise ValueError("traceroute needs a host")
    return run_streamed(traceroute_command(host), on_line, f"Traceroute {host}")


def netstat(on_line: LineSink) -> Optional[int]:
    return run_streamed(netstat_command(), on_line, "Netstat")


def lan_prefix(ipv4: str) -> str:
    return ipv4.rsplit(".", 1)[0]


class LanScanner:
    """Ping sweep of ``<prefix>.1`` - ``<prefix>.254``."""

    def __init__(self, provider: Optional[LatencyProvider] = None, max_workers: int = 30):
        self.provider = provider or PingLatencyProvider(timeout_seconds=0.3)
        self.max_workers = max_workers

    def _resolve_hostname(self, ip: str) -> str:
        try:
            return socket.gethostbyaddr(ip)[0]
        except (socket.herror, socket.gaierror, OSError):
            return ip

    def scan(self, prefix: str, on_line: LineSink, first: int = 1, last: int = 254) -> List[Tuple[str, str]]:
        on_line(f"LAN scan starting: {prefix}.{first}-{last}")
        reachable: List[Tuple[str, str]] = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self.provider.probe, f"{prefix}.{i}"): f"{prefix}.{i}"
                for i in range(first, last + 1)
            }
            for future in as_completed(futures):
                ip = futures[future]
                try:
                    rtt = future.result()
                except Exception as exc:  # pylint: disable=broad-except
                    LOGGER.debug("Probe of %s failed: %s", ip, exc)
                    continue
                if rtt is None:
                    continue
                hostname = self._resolve_hostname(ip)
                reachable.append((ip, hostname))
                on_line(f"Reachable: {ip} ({hostname})")
        on_line("LAN scan finished.")
        return sorted(reachable, key=lambda item: tuple(int(part) for part in item[0].split(".")))
