"""Thread-safe sample containers shared between producers and readers."""

from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Generic, List, Tuple, TypeVar

from .measurements.models import Measurement

T = TypeVar("T")

CHART_POINTS = 240
PACKET_POINTS = 100


class MeasurementHistory:
    """Ordered, append-only record of every measurement of this process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: List[Measurement] = []

    def append(self, measurement: Measurement) -> None:
        with self._lock:
            self._items.append(measurement)

    def snapshot(self) -> Tuple[Measurement, ...]:
        with self._lock:
            return tuple(self._items)

    def latest(self, count: int = 1) -> Tuple[Measurement, ...]:
        with self._lock:
            return tuple(self._items[-count:]) if count > 0 else ()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class RollingSeries(Generic[T]):
    """Fixed-capacity FIFO; the oldest point is evicted once full."""

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._lock = threading.Lock()
        self._points: Deque[T] = deque(maxlen=capacity)

    def append(self, value: T) -> None:
        with self._lock:
            self._points.append(value)

    def snapshot(self) -> List[T]:
        with self._lock:
            return list(self._points)

    def clear(self) -> None:
        with self._lock:
            self._points.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._points)
