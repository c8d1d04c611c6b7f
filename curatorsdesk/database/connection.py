"""
Curator's Desk Database Connection Management
=============================================

Pooled SQLite connections with a transaction helper. Sync cycles share one
pool; writes that must be atomic go through ``transaction()``.
"""

import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Dict, Generator, Optional

from .schema import EXPECTED_TABLES

logger = logging.getLogger(__name__)

# Applied to every new connection. WAL lets the CLI read while a sync writes.
CONNECTION_PRAGMAS = (
    "PRAGMA foreign_keys = ON",
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
)

POOL_WAIT_SECONDS = 10.0
SLOW_ACQUIRE_SECONDS = 1.0


class DatabaseConnection:
    """Fixed-size pool of SQLite connections shared across threads."""

    def __init__(self, db_path: str = "data/curatorsdesk.db", pool_size: int = 5):
        """Open ``pool_size`` connections to ``db_path``, creating its directory.

        Args:
            db_path: Path to SQLite database file
            pool_size: Number of pooled connections
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.pool_size = pool_size
        self.pool: Queue = Queue(maxsize=pool_size)
        self._opened = 0
        self._opened_lock = threading.Lock()

        for _ in range(pool_size):
            self.pool.put(self._open())

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        for pragma in CONNECTION_PRAGMAS:
            conn.execute(pragma)

        with self._opened_lock:
            self._opened += 1
        return conn

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Borrow a pooled connection; it goes back to the pool on exit.

        When the pool stays empty for ``POOL_WAIT_SECONDS`` an extra connection
        is opened and closed again on return. Uncommitted work is rolled back
        if a ``sqlite3.Error`` escapes the block.
        """
        started = time.monotonic()
        try:
            conn = self.pool.get(timeout=POOL_WAIT_SECONDS)
        except Empty:
            logger.warning(f"Connection pool for {self.db_path} exhausted; opening an extra connection")
            conn = self._open()

        waited = time.monotonic() - started
        if waited > SLOW_ACQUIRE_SECONDS:
            logger.warning(f"Waited {waited:.2f}s for a database connection")

        try:
            yield conn
        except sqlite3.Error as e:
            logger.error(f"SQLite error on {self.db_path.name}: {e}")
            conn.rollback()
            raise
        finally:
            self._give_back(conn)

    def _give_back(self, conn: sqlite3.Connection) -> None:
        try:
            self.pool.put_nowait(conn)
        except Full:
            conn.close()
            with self._opened_lock:
                self._opened -= 1

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Run statements inside ``BEGIN IMMEDIATE``; commit on success, roll back on error."""
        with self.get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            conn.commit()

    def get_database_info(self) -> Dict[str, Any]:
        """File size and row counts for the ``stats`` and ``init-db`` commands."""
        with self.get_connection() as conn:
            page_count = conn.execute("PRAGMA page_count").fetchone()[0]
            page_size = conn.execute("PRAGMA page_size").fetchone()[0]
            existing = {
                row[0]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            }
            table_counts = {
                table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                if table in existing
                else 0
                for table in sorted(EXPECTED_TABLES)
            }

        return {
            "database_size_mb": page_count * page_size / (1024 * 1024),
            "table_counts": table_counts,
            "idle_connections": self.pool.qsize(),
            "open_connections": self._opened,
        }

    def close_all_connections(self) -> None:
        """Close every idle pooled connection."""
        closed = 0
        while True:
            try:
                conn = self.pool.get_nowait()
            except Empty:
                break
            conn.close()
            closed += 1

        with self._opened_lock:
            self._opened -= closed
        logger.debug(f"Closed {closed} connections to {self.db_path}")


_db_manager: Optional[DatabaseConnection] = None


def get_db_manager(db_path: str = "data/curatorsdesk.db", pool_size: int = 5) -> DatabaseConnection:
    """Process-wide pool, created on first use."""
    global _db_manager

    if _db_manager is None:
        _db_manager = DatabaseConnection(db_path, pool_size=pool_size)

    return _db_manager
