"""
SQLite time-series store for the metric node.

Manages:
- samples: one row per (measurement, timestamp, value) reading

Exposes the four operations the rest of the node relies on:
ensure_database(), write(sample), query(range_filter), delete(measurement, cutoff).
Timestamps are stored as integer epoch milliseconds (UTC).
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, Optional

from loguru import logger

from .config import get_db_path
from .errors import StoreDeleteError, StoreQueryError, StoreWriteError


def to_epoch_ms(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds; naive values are UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(round(dt.timestamp() * 1000))


def from_epoch_ms(ms: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)


@dataclass(frozen=True)
class Sample:
    """A single reading for a measurement."""
    measurement: str
    value: float
    timestamp: datetime


@dataclass(frozen=True)
class RangeFilter:
    """Bounded select over one measurement, inclusive on both ends."""
    measurement: str
    start: datetime
    end: datetime
    limit: Optional[int] = None  # None = unbounded


@dataclass(frozen=True)
class SampleRow:
    """A stored reading as returned by range queries."""
    value: float
    time_ms: int


class TimeSeriesStore:
    """
    Thread-safe SQLite store for samples.

    Each thread gets its own connection; WAL mode and a busy timeout let
    concurrent fetch threads write without stepping on each other.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database. Defaults to get_db_path()
        """
        self.db_path = Path(db_path) if db_path is not None else get_db_path()
        self._local = threading.local()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local connection with proper settings."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=30.0,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=30000")
            self._local.conn = conn
        return conn

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for a transaction."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def ensure_database(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS samples (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    measurement TEXT NOT NULL,
                    ts_ms INTEGER NOT NULL,
                    value REAL NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_samples_measurement_ts
                ON samples (measurement, ts_ms)
            """)
        logger.debug(f"Time-series store ready at {self.db_path}")

    def write(self, sample: Sample) -> None:
        """
        Insert one sample.

        Raises:
            StoreWriteError: if the insert fails
        """
        try:
            with self.transaction() as conn:
                conn.execute(
                    "INSERT INTO samples (measurement, ts_ms, value) VALUES (?, ?, ?)",
                    (sample.measurement, to_epoch_ms(sample.timestamp), float(sample.value)),
                )
        except sqlite3.Error as e:
            raise StoreWriteError(f"Failed to write sample for '{sample.measurement}': {e}") from e

    def query(self, range_filter: RangeFilter) -> list[SampleRow]:
        """
        Select samples of one measurement within [start, end], oldest first.

        Raises:
            StoreQueryError: if the select fails
        """
        sql = """
            SELECT value, ts_ms FROM samples
            WHERE measurement = ? AND ts_ms >= ? AND ts_ms <= ?
            ORDER BY ts_ms ASC, id ASC
        """
        params: list = [
            range_filter.measurement,
            to_epoch_ms(range_filter.start),
            to_epoch_ms(range_filter.end),
        ]
        if range_filter.limit is not None:
            sql += " LIMIT ?"
            params.append(int(range_filter.limit))

        try:
            conn = self._get_connection()
            rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreQueryError(f"Failed to query '{range_filter.measurement}': {e}") from e

        return [SampleRow(value=row["value"], time_ms=row["ts_ms"]) for row in rows]

    def delete(self, measurement: str, cutoff: datetime) -> int:
        """
        Delete every sample of a measurement older than cutoff.

        Returns:
            Number of samples deleted

        Raises:
            StoreDeleteError: if the delete fails
        """
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    "DELETE FROM samples WHERE measurement = ? AND ts_ms < ?",
                    (measurement, to_epoch_ms(cutoff)),
                )
                return cursor.rowcount
        except sqlite3.Error as e:
            raise StoreDeleteError(f"Failed to prune '{measurement}': {e}") from e

    def count(self, measurement: Optional[str] = None) -> int:
        """Count stored samples, optionally for one measurement."""
        conn = self._get_connection()
        if measurement is None:
            row = conn.execute("SELECT COUNT(*) AS n FROM samples").fetchone()
        else:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM samples WHERE measurement = ?", (measurement,)
            ).fetchone()
        return row["n"]

    def close(self) -> None:
        """Close this thread's connection."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None


# Module-level singleton for convenience
_default_store: Optional[TimeSeriesStore] = None


def get_store(db_path: Optional[Path] = None) -> TimeSeriesStore:
    """
    Get the default TimeSeriesStore instance.

    Creates the database if needed.
    """
    global _default_store

    if _default_store is None:
        _default_store = TimeSeriesStore(db_path)
        _default_store.ensure_database()

    return _default_store


def reset_store() -> None:
    """Reset the default store instance (for testing)."""
    global _default_store
    if _default_store:
        _default_store.close()
        _default_store = None
