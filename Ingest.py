# Ingest.py
#
# Sensor ingestion: decode -> persist -> publish.
#
# The stages are separate so each can be exercised alone. `ingest` chains
# them and only publishes after the write has been acknowledged.
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from fastapi.concurrency import run_in_threadpool

from DB import SensorDatabase
from Errors import UnknownKind
from MSG import SensorReading, decode_reading, sensor_update_event
from Relay import BroadcastRelay

logger = logging.getLogger("garden.ingest")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ReadingClock:
    """Server-side timestamps that never go backwards.

    Wall clock adjustments could otherwise reorder readings; ties are broken
    by bumping one microsecond past the previous stamp.
    """

    def __init__(self, now: Callable[[], datetime] = utc_now) -> None:
        self._now = now
        self._last: Optional[datetime] = None

    def __call__(self) -> datetime:
        ts = self._now()
        if self._last is not None and ts <= self._last:
            ts = self._last + timedelta(microseconds=1)
        self._last = ts
        return ts


class SensorIngestor:
    def __init__(self, db: SensorDatabase, relay: BroadcastRelay, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.db = db
        self.relay = relay
        self.clock = clock or ReadingClock()
        # stamp, write and broadcast happen as one unit per reading
        self._lock = asyncio.Lock()

    def decode(self, payload: Any) -> SensorReading:
        return decode_reading(payload, self.clock())

    async def persist(self, reading: SensorReading) -> int:
        # sqlite is blocking; keep it off the event loop
        return await run_in_threadpool(self.db.insert_reading, reading)

    def publish(self, reading: SensorReading) -> int:
        return self.relay.broadcast(sensor_update_event(reading.to_payload()))

    async def ingest(self, payload: Any) -> Optional[Dict[str, Any]]:
        """Store and broadcast one reading.

        Returns the normalized payload, or None when the kind is unknown and
        the reading was dropped. Validation and storage errors propagate.
        Concurrent calls are serialized, so row ids, timestamps and broadcast
        order always agree.
        """
        async with self._lock:
            try:
                reading = self.decode(payload)
            except UnknownKind as e:
                logger.warning("Received unknown sensor type: %s", e.kind)
                return None

            row_id = await self.persist(reading)
            # no await between the write and the broadcast
            delivered = self.publish(reading)
        logger.info("Stored %s reading #%d, sent to %d client(s)", reading.type, row_id, delivered)
        return reading.to_payload()
