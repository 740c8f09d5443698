"""Socket-level probes for the unicast, broadcast, multicast and anycast tests.

Every probe owns its socket through a ``with`` block, so the socket is closed
on return, on timeout and on error alike.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
import struct
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

LOGGER = logging.getLogger(__name__)

UNICAST_PAYLOAD = b"UN1C4ST_TEST"
BROADCAST_PAYLOAD = b"BR0ADCAST_TEST"
MULTICAST_PAYLOAD = b"MULTICAST_TEST"
RECV_BUFFER = 1024

Clock = Callable[[], float]


@dataclass(frozen=True)
class Reply:
    address: Tuple[str, int]
    payload: bytes
    rtt_ms: float

    def describe(self) -> str:
        text = self.payload.decode("utf-8", errors="replace")
        return f"{self.address[0]}:{self.address[1]} ({text}), +{self.rtt_ms:.2f} ms"


ReplySink = Optional[Callable[[Reply], None]]


def drain_replies(
    sock: socket.socket,
    started: float,
    clock: Clock = time.perf_counter,
    on_reply: ReplySink = None,
) -> List[Reply]:
    """Collect replies until the socket timeout elapses with nothing received.

    The socket timeout acts as the silence window: it restarts after every
    datagram, so the drain ends only after a full quiet period.
    """
    replies: List[Reply] = []
    while True:
        try:
            data, address = sock.recvfrom(RECV_BUFFER)
        except socket.timeout:
            break
        reply = Reply(address=address[:2], payload=data, rtt_ms=(clock() - started) * 1000.0)
        replies.append(reply)
        if on_reply is not None:
            on_reply(reply)
    return replies


def min_rtt(replies: List[Reply]) -> float:
    """Fastest reply of a fan-in, or 0.0 when nobody answered."""
    return min((reply.rtt_ms for reply in replies), default=0.0)


def udp_echo(host: str, port: int, timeout: float = 1.0, payload: bytes = UNICAST_PAYLOAD) -> Optional[Reply]:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.settimeout(timeout)
        started = time.perf_counter()
        sock.sendto(payload, (host, port))
        try:
            data, address = sock.recvfrom(RECV_BUFFER)
        except socket.timeout:
            return None
        return Reply(address=address[:2], payload=data, rtt_ms=(time.perf_counter() - started) * 1000.0)


def broadcast_probe(
    broadcast_ip: str,
    port: int = 55555,
    silence: float = 1.0,
    on_reply: ReplySink = None,
    payload: bytes = BROADCAST_PAYLOAD,
) -> List[Reply]:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.settimeout(silence)
        started = time.perf_counter()
        sock.sendto(payload, (broadcast_ip, port))
        return drain_replies(sock, started, on_reply=on_reply)


def multicast_probe(
    group: str,
    port: int,
    silence: float = 1.5,
    on_reply: ReplySink = None,
    payload: bytes = MULTICAST_PAYLOAD,
) -> List[Reply]:
    group_ip = socket.gethostbyname(group)
    membership = struct.pack("4s4s", socket.inet_aton(group_ip), socket.inet_aton("0.0.0.0"))
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(("", port))
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
        try:
            sock.settimeout(silence)
            started = time.perf_counter()
            sock.sendto(payload, (group_ip, port))
            return drain_replies(sock, started, on_reply=on_reply)
        finally:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_DROP_MEMBERSHIP, membership)


def combine_anycast(ping_ms: Optional[float], http_ms: Optional[float]) -> float:
    """Merge one ping and one HTTP timing into a single anycast sample.

    ``None`` marks a failed probe. A ping of 0 ms is a success; an HTTP time
    of 0 ms is how the HTTP timer reports failure.
    """
    ping_ok = ping_ms is not None
    http_ok = http_ms is not None and http_ms > 0
    if ping_ok and http_ok:
        return (ping_ms + http_ms) / 2.0
    if http_ok:
        return float(http_ms)
    if ping_ok:
        return float(ping_ms)
    return 0.0


def local_ipv4() -> str:
    """IPv4 of the interface holding the default route."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
            probe.connect(("8.8.8.8", 80))
            return probe.getsockname()[0]
    except OSError as exc:
        LOGGER.warning("Could not determine local IPv4: %s", exc)
        return "127.0.0.1"


def broadcast_address(ipv4: str) -> str:
    """Directed broadcast address of the /24 that ``ipv4`` belongs to."""
    network = ipaddress.ip_network(f"{ipv4}/24", strict=False)
    return str(network.broadcast_address)
