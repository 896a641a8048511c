"""Counter storage with atomic check-and-increment and link primitives."""

import sqlite3
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator, Optional, Tuple

from .day_key import utcnow

logger = logging.getLogger(__name__)


class CounterStore(ABC):
    """Abstract store of expiring integer counters."""

    @abstractmethod
    def check_and_increment(self, key: str, ceiling: int, ttl_seconds: int) -> Tuple[bool, int]:
        """
        Atomically increment `key` if it is below `ceiling`.

        The read, the increment and the expiry refresh happen as one unit,
        so concurrent callers can never push the counter past the ceiling.

        Args:
            key: Counter key
            ceiling: Maximum value the counter may reach
            ttl_seconds: Expiry to set when the counter is incremented

        Returns:
            (allowed, count) where count is the value after the call
        """
        pass

    @abstractmethod
    def get(self, key: str) -> int:
        """Current value, 0 when absent or expired. Never refreshes expiry."""
        pass

    @abstractmethod
    def ttl(self, key: str) -> Optional[int]:
        """Seconds until `key` expires, or None when absent."""
        pass

    @abstractmethod
    def link(self, anon_key: str, user_key: str, marker_key: str, ttl_seconds: int) -> Optional[int]:
        """
        Atomically fold the anonymous counter into the user counter once.

        Returns:
            None when the marker already exists, 0 when there is nothing to
            fold (no marker is written), otherwise the folded count
        """
        pass

    def purge_expired(self) -> int:
        """Drop expired counters. Backends that expire keys themselves have nothing to do."""
        return 0


class SQLiteCounterStore(CounterStore):
    """SQLite-backed counters; each primitive runs in a BEGIN IMMEDIATE transaction."""

    def __init__(
        self,
        db_path: str = "data/enhancer.db",
        clock: Callable[[], datetime] = utcnow,
        timeout: float = 30.0
    ):
        """
        Initialize SQLite counter store.

        Args:
            db_path: Path to SQLite database file
            clock: Returns the current UTC time
            timeout: Seconds to wait for the database write lock
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.clock = clock
        self.timeout = timeout
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get an autocommit connection; transactions are opened explicitly."""
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema."""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS counters (
                key TEXT PRIMARY KEY,
                value INTEGER NOT NULL DEFAULT 0,
                expires_at REAL NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_counters_expires ON counters(expires_at)"
        )
        conn.close()

    def _now(self) -> float:
        return self.clock().timestamp()

    @staticmethod
    def _read(conn: sqlite3.Connection, key: str, now: float) -> Optional[int]:
        row = conn.execute(
            "SELECT value FROM counters WHERE key = ? AND expires_at > ?",
            (key, now)
        ).fetchone()
        return row["value"] if row else None

    @staticmethod
    def _write(conn: sqlite3.Connection, key: str, value: int, expires_at: float):
        conn.execute(
            """
            INSERT INTO counters (key, value, expires_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, expires_at = excluded.expires_at
            """,
            (key, value, expires_at)
        )

    def check_and_increment(self, key: str, ceiling: int, ttl_seconds: int) -> Tuple[bool, int]:
        now = self._now()
        with self._transaction() as conn:
            current = self._read(conn, key, now) or 0
            if current >= ceiling:
                return False, current
            self._write(conn, key, current + 1, now + ttl_seconds)
            return True, current + 1

    def get(self, key: str) -> int:
        conn = self._get_connection()
        try:
            return self._read(conn, key, self._now()) or 0
        finally:
            conn.close()

    def ttl(self, key: str) -> Optional[int]:
        now = self._now()
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT expires_at FROM counters WHERE key = ? AND expires_at > ?",
                (key, now)
            ).fetchone()
        finally:
            conn.close()
        if not row:
            return None
        return int(row["expires_at"] - now)

    def link(self, anon_key: str, user_key: str, marker_key: str, ttl_seconds: int) -> Optional[int]:
        now = self._now()
        with self._transaction() as conn:
            if self._read(conn, marker_key, now) is not None:
                return None
            count = self._read(conn, anon_key, now) or 0
            if count <= 0:
                return 0
            user_count = self._read(conn, user_key, now) or 0
            self._write(conn, user_key, user_count + count, now + ttl_seconds)
            self._write(conn, marker_key, 1, now + ttl_seconds)
            return count

    def purge_expired(self) -> int:
        """Delete expired rows. Returns the number of rows removed."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM counters WHERE expires_at <= ?", (self._now(),))
            removed = cursor.rowcount
        if removed:
            logger.info(f"Purged {removed} expired counters")
        return removed
