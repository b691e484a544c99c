import json
from datetime import datetime, timezone

import pytest

from History import CSV_HEADERS, export_csv, export_filename, export_json, pivot_history, range_start

ROWS = [
    {"id": 1, "timestamp": "2026-10-17T09:41:03.000000+00:00", "sensor_type": "moisture", "sensor_id": "A",
     "value_1": 40.0, "value_2": None, "value_3": None},
    {"id": 2, "timestamp": "2026-10-17T09:41:04.000000+00:00", "sensor_type": "dht11", "sensor_id": None,
     "value_1": 21.04, "value_2": 55.0, "value_3": None},
    {"id": 3, "timestamp": "2026-10-17T09:41:50.000000+00:00", "sensor_type": "moisture", "sensor_id": "A",
     "value_1": 41.0, "value_2": None, "value_3": None},
    {"id": 4, "timestamp": "2026-10-17T09:42:01.000000+00:00", "sensor_type": "npk", "sensor_id": None,
     "value_1": 50.0, "value_2": 40.0, "value_3": 60.0},
]


def test_pivot_groups_by_minute_oldest_first():
    points = pivot_history(list(reversed(ROWS)))
    assert [p["timestamp"] for p in points] == ["2026-10-17T09:41", "2026-10-17T09:42"]

    first, second = points
    assert first["moistureA"] == 41.0
    assert first["moistureB"] is None
    assert (first["temperature"], first["humidity"]) == (21.04, 55.0)
    assert first["nitrogen"] is None
    assert (second["nitrogen"], second["phosphorus"], second["potassium"]) == (50.0, 40.0, 60.0)
    assert second["temperature"] is None


def test_csv_export():
    lines = export_csv(pivot_history(ROWS)).split("\n")
    assert lines[0] == ",".join(CSV_HEADERS)
    assert lines[1] == "2026-10-17T09:41,21.0,55.0,41.0,,,,"
    assert lines[2] == "2026-10-17T09:42,,,,,50.0,40.0,60.0"


def test_json_export_round_trips_points():
    points = pivot_history(ROWS)
    assert json.loads(export_json(points)) == points


def test_range_start():
    now = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)
    assert range_start(None, now) is None
    assert range_start("24h", now) == datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)
    assert range_start("7d", now) == datetime(2026, 10, 10, 12, 0, tzinfo=timezone.utc)
    with pytest.raises(ValueError):
        range_start("1y", now)


def test_export_filename():
    assert export_filename("csv", datetime(2026, 3, 9)) == "sensor-data-2026-03-09.csv"
