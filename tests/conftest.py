"""Shared pytest fixtures."""

from __future__ import annotations

import os

# Use litellm's bundled model cost map; its network fetch thread deadlocks imports offline.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

import pytest

from quarry.db.connection import Database
from quarry.db.schema import initialize


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".quarry.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()
