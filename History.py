"""Historical readings: time-range filter, chart pivot and file export.

Stored rows are flat (`sensor_type`, `sensor_id`, `value_1..3`). Charts and
exports want one point per minute with every sensor as a column, so rows are
folded into minute buckets, oldest first.
"""
import csv
import io
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

TIME_RANGES = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}

POINT_FIELDS = [
    "timestamp",
    "temperature",
    "humidity",
    "moistureA",
    "moistureB",
    "nitrogen",
    "phosphorus",
    "potassium",
]

CSV_HEADERS = [
    "Timestamp",
    "Temperature (°C)",
    "Humidity (%)",
    "Moisture A (%)",
    "Moisture B (%)",
    "Nitrogen (ppm)",
    "Phosphorus (ppm)",
    "Potassium (ppm)",
]


def range_start(range_key: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """Earliest timestamp for a range key, None for "everything".

    Raises ValueError for keys other than 24h/7d/30d.
    """
    if not range_key:
        return None
    if range_key not in TIME_RANGES:
        raise ValueError(f"Unknown range {range_key!r}; expected one of {', '.join(TIME_RANGES)}")
    now = now or datetime.now(timezone.utc)
    return now - TIME_RANGES[range_key]


def _bucket(ts: str) -> str:
    # "2026-10-17T09:41:07.123456+00:00" -> "2026-10-17T09:41"
    return datetime.fromisoformat(ts).strftime("%Y-%m-%dT%H:%M")


def pivot_history(rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    points: Dict[str, Dict[str, Any]] = {}

    for row in sorted(rows, key=lambda r: r["id"]):
        key = _bucket(row["timestamp"])
        point = points.get(key)
        if point is None:
            point = {f: None for f in POINT_FIELDS}
            point["timestamp"] = key
            points[key] = point

        kind = row["sensor_type"]
        v1, v2, v3 = row.get("value_1"), row.get("value_2"), row.get("value_3")
        if kind == "moisture":
            if row.get("sensor_id") in ("A", "B") and v1 is not None:
                point["moisture" + row["sensor_id"]] = v1
        elif kind == "dht11":
            if v1 is not None:
                point["temperature"] = v1
            if v2 is not None:
                point["humidity"] = v2
        elif kind == "npk":
            if v1 is not None:
                point["nitrogen"] = v1
            if v2 is not None:
                point["phosphorus"] = v2
            if v3 is not None:
                point["potassium"] = v3

    return [points[k] for k in sorted(points)]


def _fmt(value: Optional[float], precision: int = 1) -> str:
    return f"{value:.{precision}f}" if isinstance(value, (int, float)) else ""


def export_csv(points: List[Dict[str, Any]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for p in points:
        writer.writerow([p["timestamp"]] + [_fmt(p[f]) for f in POINT_FIELDS[1:]])
    return buf.getvalue()


def export_json(points: List[Dict[str, Any]]) -> str:
    return json.dumps(points, indent=2, ensure_ascii=False)


def export_filename(fmt: str, today: Optional[datetime] = None) -> str:
    today = today or datetime.now(timezone.utc)
    return f"sensor-data-{today.strftime('%Y-%m-%d')}.{fmt}"
