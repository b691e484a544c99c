import asyncio
import time
from datetime import datetime, timezone

import pytest

from Errors import InvalidPayloadForKind, PersistenceFailure
from Ingest import ReadingClock, SensorIngestor

FIXED = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


class FakeDB:
    def __init__(self, fail=False):
        self.fail = fail
        self.rows = []

    def insert_reading(self, reading):
        if self.fail:
            raise PersistenceFailure("disk full")
        self.rows.append(reading)
        return len(self.rows)


class FakeRelay:
    def __init__(self):
        self.events = []

    def broadcast(self, event):
        self.events.append(event)
        return 1


def _ingest(db, payload):
    relay = FakeRelay()
    ingestor = SensorIngestor(db, relay, clock=lambda: FIXED)
    result = asyncio.run(ingestor.ingest(payload))
    return result, relay


def test_stored_reading_is_broadcast_once_with_server_timestamp():
    db = FakeDB()
    result, relay = _ingest(db, {"type": "moisture", "id": "A", "value": 42, "timestamp": "2001-01-01T00:00:00Z"})

    assert len(db.rows) == 1
    assert len(relay.events) == 1
    event = relay.events[0]
    assert event["type"] == "sensor_update"
    assert event["payload"] == result
    assert event["payload"]["id"] == "A"
    assert event["payload"]["value"] == 42
    assert event["payload"]["timestamp"].startswith("2026-10-17T12:00:00")


def test_failed_write_is_not_broadcast():
    db = FakeDB(fail=True)
    relay = FakeRelay()
    ingestor = SensorIngestor(db, relay, clock=lambda: FIXED)
    with pytest.raises(PersistenceFailure):
        asyncio.run(ingestor.ingest({"type": "npk", "n": 1, "p": 2, "k": 3}))
    assert relay.events == []


def test_unknown_kind_is_dropped():
    db = FakeDB()
    result, relay = _ingest(db, {"type": "ph", "value": 7})
    assert result is None
    assert db.rows == []
    assert relay.events == []


def test_invalid_payload_propagates_without_side_effects():
    db = FakeDB()
    relay = FakeRelay()
    ingestor = SensorIngestor(db, relay, clock=lambda: FIXED)
    with pytest.raises(InvalidPayloadForKind):
        asyncio.run(ingestor.ingest({"type": "dht11", "temp": 20}))
    assert db.rows == []
    assert relay.events == []


def test_reading_clock_never_goes_backwards():
    ticks = iter([FIXED, FIXED, datetime(2026, 10, 17, 11, 0, tzinfo=timezone.utc)])
    clock = ReadingClock(now=lambda: next(ticks))
    a, b, c = clock(), clock(), clock()
    assert a < b < c
    assert (b - a).microseconds == 1


class SlowFirstWriteDB(FakeDB):
    def insert_reading(self, reading):
        if not self.rows:
            time.sleep(0.1)
        return super().insert_reading(reading)


def test_overlapping_ingests_keep_rows_stamps_and_broadcasts_in_order():
    db = SlowFirstWriteDB()
    relay = FakeRelay()
    ingestor = SensorIngestor(db, relay)

    async def scenario():
        return await asyncio.gather(
            ingestor.ingest({"type": "moisture", "id": "A", "value": 1}),
            ingestor.ingest({"type": "moisture", "id": "A", "value": 2}),
        )

    first, second = asyncio.run(scenario())

    assert [r.value for r in db.rows] == [1, 2]
    assert db.rows[0].timestamp < db.rows[1].timestamp
    assert [e["payload"] for e in relay.events] == [first, second]
    assert [e["payload"]["value"] for e in relay.events] == [1, 2]
