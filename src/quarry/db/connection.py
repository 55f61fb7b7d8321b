"""SQLite connection layer with sqlite-vec extension."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec


class Database:
    """Knowledge-base SQLite database with sqlite-vec vector search support.

    Ingestion, monitor sweeps and searches may run as separate processes
    against the same file, so connections use WAL and wait on locks for up
    to ``busy_timeout`` seconds instead of failing immediately.

    Args:
        db_path: Path to the SQLite database file (created if missing).
        busy_timeout: Seconds to wait for a competing writer.
    """

    def __init__(self, db_path: Path | str, busy_timeout: float = 5.0) -> None:
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open a connection, load sqlite-vec, and return the connection.

        The connection is shared with the hybrid search worker threads, so
        the same-thread check is disabled.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self.db_path, timeout=self.busy_timeout, check_same_thread=False
        )
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout * 1000)}")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None
