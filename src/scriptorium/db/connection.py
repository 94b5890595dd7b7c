"""SQLite connection management.

One physical connection is held per process. It runs in autocommit mode
so transactions are always explicit (``Database.transaction()``), which
keeps DDL in migrations and bulk writes in imports inside the
transactions their callers open.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)


def get_connection(db_path: Path | str) -> sqlite3.Connection:
    """
    Get a SQLite connection with row factory and WAL mode.

    WAL (Write-Ahead Logging) mode keeps readers from blocking on the
    single writer's transaction.
    """
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        db_path,
        timeout=30.0,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA busy_timeout = 30000")
    return conn


class Database:
    """Owner of the process-wide store connection.

    Usage:
        db = Database(path)
        conn = db.connect()

        with db.transaction() as conn:
            conn.execute("INSERT ...")
    """

    def __init__(self, db_path: Path | str):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Get or create the connection."""
        if self._conn is None:
            self._conn = get_connection(self.db_path)
            logger.info(f"Database connected: {self.db_path}")
        return self._conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self.connect()

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    def close(self) -> None:
        """Close the connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Database disconnected")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block inside one write transaction.

        Commits on normal exit; rolls back and re-raises on any exception,
        leaving the store as it was before the block.
        """
        conn = self.connect()
        if conn.in_transaction:
            raise RuntimeError("A transaction is already open on this connection")
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")
