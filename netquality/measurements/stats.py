"""Ping statistics: average, jitter and loss over a batch of probes."""

from __future__ import annotations

import logging
import math
import time
from typing import Callable, List, Sequence

from .latency import LatencyProvider
from .models import LatencySample, PingStats

LOGGER = logging.getLogger(__name__)

INTER_PROBE_DELAY = 0.2


def aggregate(samples: Sequence[LatencySample]) -> PingStats:
    """Summarize probe attempts; ``None`` entries count as lost."""
    total = len(samples)
    successes = [float(s) for s in samples if s is not None]
    if not successes:
        return PingStats(avg_ms=0.0, jitter_ms=0.0, loss_percent=100.0)

    avg = sum(successes) / len(successes)
    variance = sum((value - avg) ** 2 for value in successes) / len(successes)
    loss = 100.0 * (total - len(successes)) / total
    return PingStats(avg_ms=avg, jitter_ms=math.sqrt(variance), loss_percent=loss)


class StatsAggregator:
    """Runs sequential probes against one host and aggregates them.

    Probes run one after another with a fixed delay between them.
    """

    def __init__(
        self,
        provider: LatencyProvider,
        delay: float = INTER_PROBE_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.provider = provider
        self.delay = delay
        self._sleep = sleep

    def collect(self, host: str, count: int) -> PingStats:
        samples: List[LatencySample] = []
        for attempt in range(count):
            if attempt:
                self._sleep(self.delay)
            samples.append(self.provider.probe(host))
        stats = aggregate(samples)
        LOGGER.info(
            "Ping %s x%d: avg=%.2f ms jitter=%.2f ms loss=%.2f %%",
            host,
            count,
            stats.avg_ms,
            stats.jitter_ms,
            stats.loss_percent,
        )
        return stats
