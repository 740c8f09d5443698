import threading
from datetime import datetime

import pytest

from netquality.measurements.models import Measurement
from netquality.series import MeasurementHistory, RollingSeries


def measurement(second):
    return Measurement(datetime(2024, 1, 1, 0, 0, second), "eth0", 1.0, 1.0, 1.0, 0.0, 0.0, 1.0)


def test_rolling_series_evicts_oldest():
    series = RollingSeries(3)
    for value in range(5):
        series.append(value)

    assert series.snapshot() == [2, 3, 4]
    assert len(series) == 3


def test_rolling_series_rejects_zero_capacity():
    with pytest.raises(ValueError):
        RollingSeries(0)


def test_rolling_series_concurrent_appends_stay_bounded():
    series = RollingSeries(100)

    def produce():
        for value in range(1000):
            series.append(value)

    threads = [threading.Thread(target=produce) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(series) == 100


def test_history_keeps_append_order():
    history = MeasurementHistory()
    for second in range(5):
        history.append(measurement(second))

    assert [m.timestamp.second for m in history.snapshot()] == [0, 1, 2, 3, 4]
    assert [m.timestamp.second for m in history.latest(2)] == [3, 4]
    assert history.latest(0) == ()
    assert len(history) == 5


def test_history_snapshot_is_a_copy():
    history = MeasurementHistory()
    history.append(measurement(0))
    snapshot = history.snapshot()

    history.append(measurement(1))

    assert len(snapshot) == 1
