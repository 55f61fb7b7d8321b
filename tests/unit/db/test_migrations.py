"""Tests for the forward-only migration runner and schema initialization."""

from __future__ import annotations

import quarry.db.migrations as mod
from quarry.db.connection import Database
from quarry.db.migrations import MIGRATIONS, run_migrations
from quarry.db.schema import CURRENT_VERSION, initialize


def _fresh_conn(tmp_path):
    """Open a new connection without running migrations."""
    return Database(tmp_path / "test.db").connect()


def _table_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).fetchone() is not None


def _columns(conn, table: str) -> set[str]:
    return {row["name"] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


# --- Tables ---

def test_creates_all_tables(tmp_db):
    for table in ("schema_version", "sources", "chunks", "chunks_fts", "query_cache"):
        assert _table_exists(tmp_db, table), table


def test_sources_columns(tmp_db):
    cols = _columns(tmp_db, "sources")
    assert {"id", "tenant_id", "kind", "status", "content_hash", "last_check_status"} <= cols


def test_chunks_columns(tmp_db):
    assert _columns(tmp_db, "chunks") == {
        "id", "tenant_id", "source_id", "chunk_index", "content", "metadata", "created_at",
    }


def test_does_not_create_vec_tables(tmp_db):
    rows = tmp_db.execute(
        "SELECT name FROM sqlite_master WHERE name LIKE 'vec_chunks_%'"
    ).fetchall()
    assert rows == []


# --- Versioning ---

def test_records_current_version(tmp_db):
    version = tmp_db.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == CURRENT_VERSION == MIGRATIONS[-1][0]


def test_idempotent(tmp_path):
    conn = _fresh_conn(tmp_path)
    initialize(conn)
    initialize(conn)
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)
    conn.close()


def test_applies_only_pending(tmp_path, monkeypatch):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    monkeypatch.setattr(
        mod,
        "MIGRATIONS",
        [*MIGRATIONS, (CURRENT_VERSION + 1, "CREATE TABLE next_marker (x INTEGER);")],
    )
    run_migrations(conn)
    assert _table_exists(conn, "next_marker")
    versions = [r[0] for r in conn.execute("SELECT version FROM schema_version ORDER BY version")]
    assert versions == [*range(1, CURRENT_VERSION + 1), CURRENT_VERSION + 1]
    conn.close()
