"""Independently toggleable continuous packet tests.

Each mode owns one slot holding its state and the cancel token of its loop.
All transitions happen under a single lock, and every loop checks only its
own token, so replacing a loop can never leave two loops running for a mode.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from ..config import AnycastTarget, PacketTestConfig
from ..events import EventBus
from ..measurements.http_timer import HttpTimer
from ..measurements.latency import LatencyProvider
from ..series import PACKET_POINTS, RollingSeries
from . import probes

LOGGER = logging.getLogger(__name__)

Iteration = Callable[[], float]


class PacketTestMode(str, Enum):
    UNICAST = "unicast"
    BROADCAST = "broadcast"
    MULTICAST = "multicast"
    ANYCAST = "anycast"


class SlotState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


LOOP_INTERVALS: Dict[PacketTestMode, float] = {
    PacketTestMode.UNICAST: 0.25,
    PacketTestMode.BROADCAST: 0.5,
    PacketTestMode.MULTICAST: 0.5,
    PacketTestMode.ANYCAST: 1.0,
}

RECEIVE_TIMEOUTS: Dict[PacketTestMode, float] = {
    PacketTestMode.UNICAST: 1.0,
    PacketTestMode.BROADCAST: 1.0,
    PacketTestMode.MULTICAST: 1.5,
}

LABELS = {
    PacketTestMode.UNICAST: "Unicast UDP",
    PacketTestMode.BROADCAST: "Broadcast UDP",
    PacketTestMode.MULTICAST: "Multicast",
    PacketTestMode.ANYCAST: "Anycast",
}


@dataclass
class ModeSlot:
    state: SlotState = SlotState.STOPPED
    cancel: threading.Event = field(default_factory=threading.Event)
    target: Optional[str] = None
    future: Optional[Future] = None


class PacketTestEngine:
    def __init__(
        self,
        config: PacketTestConfig,
        latency: LatencyProvider,
        http_timer: HttpTimer,
        events: EventBus,
        executor: Executor,
        capacity: int = PACKET_POINTS,
    ):
        self.config = config
        self.latency = latency
        self.http_timer = http_timer
        self.events = events
        self.executor = executor
        self.intervals = dict(LOOP_INTERVALS)
        self.timeouts = dict(RECEIVE_TIMEOUTS)
        self.series: Dict[PacketTestMode, RollingSeries[float]] = {
            mode: RollingSeries(capacity) for mode in PacketTestMode
        }
        self._lock = threading.Lock()
        self._slots: Dict[PacketTestMode, ModeSlot] = {mode: ModeSlot() for mode in PacketTestMode}

    # ------------------------------------------------------------------
    # Generic slot API
    # ------------------------------------------------------------------

    def is_running(self, mode: PacketTestMode) -> bool:
        with self._lock:
            return self._slots[mode].state is SlotState.RUNNING

    def active_target(self, mode: PacketTestMode) -> Optional[str]:
        with self._lock:
            slot = self._slots[mode]
            return slot.target if slot.state is SlotState.RUNNING else None

    def start(self, mode: PacketTestMode, target: str, iteration: Iteration) -> Future:
        """Start a loop for ``mode``, cancelling any loop already running for it."""
        with self._lock:
            return self._start_locked(mode, target, iteration)

    def stop(self, mode: PacketTestMode) -> bool:
        with self._lock:
            return self._stop_locked(mode)

    def stop_all(self) -> None:
        with self._lock:
            for mode in PacketTestMode:
                self._stop_locked(mode)

    def toggle(self, mode: PacketTestMode, target: str, iteration: Iteration) -> bool:
        """Stop ``mode`` if it runs ``target``, otherwise (re)start it on ``target``.

        Returns True when a loop is running afterwards. Only anycast
        distinguishes targets: toggling any other running mode stops it.
        """
        with self._lock:
            slot = self._slots[mode]
            if slot.state is SlotState.RUNNING and (mode is not PacketTestMode.ANYCAST or slot.target == target):
                self._stop_locked(mode)
                return False
            self._start_locked(mode, target, iteration)
            return True

    def status(self) -> Dict[str, dict]:
        with self._lock:
            return {
                mode.value: {"state": slot.state.value, "target": slot.target}
                for mode, slot in self._slots.items()
            }

    def series_snapshot(self) -> Dict[str, List[float]]:
        return {mode.value: series.snapshot() for mode, series in self.series.items()}

    def _start_locked(self, mode: PacketTestMode, target: str, iteration: Iteration) -> Future:
        self._stop_locked(mode)
        slot = ModeSlot(state=SlotState.RUNNING, target=target)
        self._slots[mode] = slot
        slot.future = self.executor.submit(self._run_loop, mode, slot, iteration)
        return slot.future

    def _stop_locked(self, mode: PacketTestMode) -> bool:
        slot = self._slots[mode]
        if slot.state is not SlotState.RUNNING:
            return False
        slot.cancel.set()
        self._slots[mode] = ModeSlot()
        self.events.log_line(f"[{LABELS[mode]}] stop requested: {slot.target}", LOGGER)
        return True

    def _run_loop(self, mode: PacketTestMode, slot: ModeSlot, iteration: Iteration) -> None:
        label = LABELS[mode]
        self.events.log_line(f"[{label}] continuous test started: {slot.target}", LOGGER)
        try:
            while not slot.cancel.is_set():
                try:
                    sample = iteration()
                except Exception as exc:  # pylint: disable=broad-except
                    LOGGER.exception("%s iteration failed", label)
                    self.events.log_line(f"  {label} error: {exc!r}", LOGGER)
                    sample = 0.0
                if slot.cancel.is_set():
                    break
                self._record(mode, sample)
                if slot.cancel.wait(self.intervals[mode]):
                    break
        finally:
            with self._lock:
                if self._slots[mode] is slot:
                    self._slots[mode] = ModeSlot()
            self.events.log_line(f"[{label}] continuous test stopped: {slot.target}", LOGGER)

    def _record(self, mode: PacketTestMode, ms: float) -> None:
        self.series[mode].append(ms)
        self.events.packet_sample(mode.value, ms)

    # ------------------------------------------------------------------
    # Mode specific triggers
    # ------------------------------------------------------------------

    def ping_once(self, host: Optional[str] = None) -> Future:
        """One-shot ICMP ping recorded into the unicast series."""
        host = host or self.config.unicast_host
        return self.executor.submit(self._ping_once, host)

    def toggle_unicast_udp(self, host: Optional[str] = None, port: Optional[int] = None) -> bool:
        return self.toggle(PacketTestMode.UNICAST, *self._unicast_loop(host, port))

    def start_unicast_udp(self, host: Optional[str] = None, port: Optional[int] = None) -> Future:
        """(Re)start the UDP echo loop, replacing one that is already running."""
        return self.start(PacketTestMode.UNICAST, *self._unicast_loop(host, port))

    def _unicast_loop(self, host: Optional[str], port: Optional[int]) -> Tuple[str, Iteration]:
        host = host or self.config.unicast_host
        port = port or self.config.unicast_port
        return f"{host}:{port}", lambda: self._unicast_iteration(host, port)

    def toggle_broadcast(self, ipv4: Optional[str] = None) -> bool:
        broadcast_ip = probes.broadcast_address(ipv4 or probes.local_ipv4())
        port = self.config.broadcast_port
        return self.toggle(
            PacketTestMode.BROADCAST,
            f"{broadcast_ip}:{port}",
            lambda: self._broadcast_iteration(broadcast_ip, port),
        )

    def toggle_multicast(self, group: Optional[str] = None, port: Optional[int] = None) -> bool:
        group = group or self.config.multicast_group
        port = port or self.config.multicast_port
        return self.toggle(
            PacketTestMode.MULTICAST,
            f"{group}:{port}",
            lambda: self._multicast_iteration(group, port),
        )

    def toggle_anycast(self, name: str) -> bool:
        target = self.config.anycast_target(name)
        return self.toggle(PacketTestMode.ANYCAST, target.name, lambda: self._anycast_iteration(target))

    def _ping_once(self, host: str) -> float:
        self.events.log_line(f"[Unicast ICMP] Ping {host}", LOGGER)
        try:
            rtt = self.latency.probe(host)
        except Exception:  # pylint: disable=broad-except
            LOGGER.exception("Unicast ping to %s failed", host)
            rtt = None
        if rtt is None:
            self.events.log_line("  No reply", LOGGER)
            sample = 0.0
        else:
            self.events.log_line(f"  Reply in {rtt:.2f} ms", LOGGER)
            sample = rtt
        self._record(PacketTestMode.UNICAST, sample)
        return sample

    def _unicast_iteration(self, host: str, port: int) -> float:
        reply = probes.udp_echo(host, port, timeout=self.timeouts[PacketTestMode.UNICAST])
        if reply is None:
            self.events.log_line("  No UDP echo reply (timeout)", LOGGER)
            return 0.0
        self.events.log_line(f"  Reply {reply.describe()}", LOGGER)
        return reply.rtt_ms

    def _log_reply(self, reply: probes.Reply) -> None:
        self.events.log_line(f"  Reply {reply.describe()}", LOGGER)

    def _summarize(self, kind: str, replies: List[probes.Reply]) -> float:
        if not replies:
            self.events.log_line(f"  No {kind} reply", LOGGER)
            return 0.0
        best = probes.min_rtt(replies)
        self.events.log_line(f"  {len(replies)} replies, fastest {best:.2f} ms", LOGGER)
        return best

    def _broadcast_iteration(self, broadcast_ip: str, port: int) -> float:
        replies = probes.broadcast_probe(
            broadcast_ip,
            port,
            silence=self.timeouts[PacketTestMode.BROADCAST],
            on_reply=self._log_reply,
        )
        return self._summarize("broadcast", replies)

    def _multicast_iteration(self, group: str, port: int) -> float:
        replies = probes.multicast_probe(
            group,
            port,
            silence=self.timeouts[PacketTestMode.MULTICAST],
            on_reply=self._log_reply,
        )
        return self._summarize("multicast", replies)

    def _anycast_iteration(self, target: AnycastTarget) -> float:
        ping_ms = self.latency.probe(target.ip)
        http_ms = self.http_timer.time(target.url)
        ping_text = f"{ping_ms:.2f} ms" if ping_ms is not None else "no reply"
        self.events.log_line(f"  {target.ip} ping: {ping_text}, HTTP: {http_ms:.2f} ms", LOGGER)
        return probes.combine_anycast(ping_ms, http_ms)
