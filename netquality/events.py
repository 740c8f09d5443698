"""Fire-and-forget fan-out of results to presentation collaborators."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List

from .measurements.models import Measurement

LOGGER = logging.getLogger(__name__)


class MonitorListener:
    """Base class for collaborators; override the callbacks you need."""

    def on_measurement(self, measurement: Measurement) -> None:
        pass

    def on_packet_sample(self, mode: str, ms: float) -> None:
        pass

    def on_log_line(self, text: str) -> None:
        pass


class EventBus:
    """Delivers events to listeners on a private single worker thread.

    Producers only enqueue, so a slow or failing listener can never stall a
    measurement loop. One worker keeps delivery in submission order.
    """

    def __init__(self) -> None:
        self._listeners: List[MonitorListener] = []
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="events")
        self._closed = False

    def subscribe(self, listener: MonitorListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def measurement(self, measurement: Measurement) -> None:
        self._dispatch("on_measurement", measurement)

    def packet_sample(self, mode: str, ms: float) -> None:
        self._dispatch("on_packet_sample", mode, ms)

    def log_line(self, text: str, logger: logging.Logger = LOGGER) -> None:
        logger.info(text)
        self._dispatch("on_log_line", text)

    def flush(self, timeout: float = 5.0) -> None:
        """Block until everything submitted so far has been delivered."""
        done = threading.Event()
        try:
            self._executor.submit(done.set)
        except RuntimeError:
            return
        done.wait(timeout)

    def close(self) -> None:
        self._closed = True
        self._executor.shutdown(wait=False)

    def _dispatch(self, method: str, *args: Any) -> None:
        if self._closed:
            return
        with self._lock:
            callbacks: List[Callable[..., None]] = [getattr(l, method) for l in self._listeners]
        if not callbacks:
            return
        try:
            self._executor.submit(self._deliver, method, callbacks, args)
        except RuntimeError:
            LOGGER.debug("Event bus closed, dropping %s", method)

    @staticmethod
    def _deliver(method: str, callbacks: List[Callable[..., None]], args: tuple) -> None:
        for callback in callbacks:
            try:
                callback(*args)
            except Exception:  # pylint: disable=broad-except
                LOGGER.exception("Listener failed handling %s", method)
