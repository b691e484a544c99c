# DB.py
#
# Persistence gateway for sensor readings. Owns a small pool of sqlite
# connections and every query the relay runs. Callers treat it as an
# append/query store.
import logging
import os
import queue
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

import Config
from Errors import PersistenceFailure
from MSG import SensorReading

logger = logging.getLogger("garden.db")


class SensorDatabase:
    def __init__(
        self,
        path: str = Config.DB_PATH,
        pool_size: int = Config.DB_POOL_SIZE,
        timeout_s: float = Config.DB_TIMEOUT_S,
    ) -> None:
        self.path = path
        self.pool_size = max(1, pool_size)
        self.timeout_s = timeout_s
        self._pool: Optional["queue.Queue[sqlite3.Connection]"] = None

    @property
    def started(self) -> bool:
        return self._pool is not None

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=self.timeout_s, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    def start(self) -> None:
        if self._pool is not None:
            return
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)

        pool: "queue.Queue[sqlite3.Connection]" = queue.Queue(maxsize=self.pool_size)
        for _ in range(self.pool_size):
            pool.put(self._connect())
        self._pool = pool
        self.init_db()
        logger.info("Database ready at %s (pool=%d)", self.path, self.pool_size)

    def stop(self) -> None:
        pool, self._pool = self._pool, None
        if pool is None:
            return
        while True:
            try:
                pool.get_nowait().close()
            except queue.Empty:
                break
        logger.info("Database closed")

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        pool = self._pool
        if pool is None:
            raise PersistenceFailure("Database is not started")
        conn = pool.get()
        try:
            yield conn
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            pool.put(conn)

    def init_db(self) -> None:
        with self.connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sensor_readings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    sensor_type TEXT NOT NULL,   -- moisture / dht11 / npk
                    sensor_id TEXT,              -- A / B for moisture

                    value_1 REAL,
                    value_2 REAL,
                    value_3 REAL
                );
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_sensor_readings_ts
                ON sensor_readings(timestamp);
                """
            )
            conn.commit()

    def insert_reading(self, reading: SensorReading) -> int:
        """Durably append one reading. Returns the new row id."""
        sensor_type, sensor_id, value_1, value_2, value_3 = reading.to_row()
        try:
            with self.connection() as conn:
                cur = conn.execute(
                    """
                    INSERT INTO sensor_readings (
                        timestamp, sensor_type, sensor_id,
                        value_1, value_2, value_3
                    ) VALUES (?, ?, ?, ?, ?, ?);
                    """,
                    (
                        reading.timestamp.isoformat(timespec="microseconds"), sensor_type, sensor_id,
                        value_1, value_2, value_3,
                    ),
                )
                conn.commit()
                return int(cur.lastrowid)
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Insert failed: {e}") from e

    def get_sensor_history(self, limit: int = Config.HISTORY_LIMIT, since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Most recent readings, newest first, as flat records."""
        sql = """
            SELECT id, timestamp, sensor_type, sensor_id, value_1, value_2, value_3
            FROM sensor_readings
        """
        params: List[Any] = []
        if since is not None:
            sql += " WHERE timestamp >= ?"
            params.append(since.isoformat(timespec="microseconds"))
        sql += " ORDER BY id DESC LIMIT ?;"
        params.append(limit)

        try:
            with self.connection() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceFailure(f"History query failed: {e}") from e
        return [dict(r) for r in rows]

    def count_readings(self) -> int:
        try:
            with self.connection() as conn:
                row = conn.execute("SELECT COUNT(*) AS n FROM sensor_readings;").fetchone()
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Count failed: {e}") from e
        return int(row["n"])
