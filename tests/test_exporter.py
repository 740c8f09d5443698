import json
from datetime import datetime, timedelta
from unittest import mock

import pytest

from netquality.db import MeasurementStore, init_db
from netquality.exporter import CSV_HEADER, CSVLogWriter, JSONExporter
from netquality.measurements.models import Measurement


def make_measurement(offset_seconds=0, **overrides):
    values = dict(
        timestamp=datetime(2024, 5, 1, 12, 0, 0) + timedelta(seconds=offset_seconds),
        interface="eth0",
        download_mbps=93.456789,
        upload_mbps=11.1,
        ping_avg_ms=12.34567,
        jitter_ms=1.005,
        packet_loss_percent=0.0,
        http_response_ms=87.654321,
    )
    values.update(overrides)
    return Measurement(**values)


def test_csv_row_format():
    assert make_measurement().csv_row() == [
        "2024-05-01 12:00:00",
        "eth0",
        "93.46",
        "11.10",
        "12.35",
        "1.00",
        "0.00",
        "87.65",
    ]


def test_csv_header_written_once(tmp_path):
    path = tmp_path / "log" / "network_log.csv"

    writer = CSVLogWriter(path)
    writer.append(make_measurement())
    CSVLogWriter(path).append(make_measurement(60))

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == ";".join(CSV_HEADER)
    assert lines[0] == (
        "timestamp;interface;download_mbps;upload_mbps;ping_avg_ms;jitter_ms;packet_loss_percent;http_resp_ms"
    )
    assert len(lines) == 3
    assert lines[2].startswith("2024-05-01 12:01:00;eth0;")
    assert writer.read_text().count("timestamp;") == 1


def test_build_csv_in_memory():
    buffer = CSVLogWriter.build_csv([make_measurement(), make_measurement(1)])

    assert buffer.getvalue().splitlines()[1].split(";")[0] == "2024-05-01 12:00:00"
    assert len(buffer.getvalue().splitlines()) == 3


def test_json_export_is_ordered_and_rounded(tmp_path):
    path = tmp_path / "network_log.json"
    history = [make_measurement(0), make_measurement(60, interface="wlan0")]

    JSONExporter(path).export(history)

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert [entry["timestamp"] for entry in payload] == ["2024-05-01T12:00:00", "2024-05-01T12:01:00"]
    assert payload[0] == {
        "timestamp": "2024-05-01T12:00:00",
        "interface": "eth0",
        "download_mbps": 93.4568,
        "upload_mbps": 11.1,
        "ping_avg_ms": 12.3457,
        "jitter_ms": 1.005,
        "packet_loss_percent": 0.0,
        "http_response_ms": 87.6543,
    }
    assert payload[1]["interface"] == "wlan0"


def test_json_export_of_empty_history(tmp_path):
    path = JSONExporter(tmp_path / "out.json").export([])

    assert json.loads(path.read_text(encoding="utf-8")) == []


def test_failed_json_export_keeps_previous_file(tmp_path):
    path = tmp_path / "network_log.json"
    exporter = JSONExporter(path)
    exporter.export([make_measurement()])
    before = path.read_text(encoding="utf-8")

    with mock.patch("netquality.exporter.json.dump", side_effect=OSError("disk full")):
        with pytest.raises(OSError):
            exporter.export([make_measurement(1)])

    assert path.read_text(encoding="utf-8") == before
    assert [p.name for p in tmp_path.iterdir()] == ["network_log.json"]


def test_store_round_trip_and_filters(tmp_path):
    store = MeasurementStore(init_db(tmp_path))
    for offset in (0, 60, 120):
        store.persist(make_measurement(offset))

    everything = store.get_measurements()
    assert [m.timestamp.minute for m in everything] == [0, 1, 2]
    assert everything[0] == make_measurement(0)

    assert [m.timestamp.minute for m in store.get_measurements(limit=2)] == [1, 2]
    start = datetime(2024, 5, 1, 12, 1, 0)
    assert [m.timestamp.minute for m in store.get_measurements(start=start)] == [1, 2]
    assert [m.timestamp.minute for m in store.get_measurements(end=start)] == [0, 1]
