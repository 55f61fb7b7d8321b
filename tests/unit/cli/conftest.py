"""Fixtures shared by the CLI tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from quarry.db.connection import Database
from quarry.db.models import KnowledgeSource, SourceKind
from quarry.db.repository import Repository
from quarry.db.schema import initialize


@pytest.fixture(autouse=True)
def cli_env(tmp_path: Path, monkeypatch) -> Path:
    """Run every command from an empty project directory with no QUARRY_* overrides.

    Hostnames resolve to a fixed public address so no test touches DNS.
    """
    for name in ("QUARRY_EMBEDDING_MODEL", "QUARRY_RERANKER_URL", "QUARRY_DB", "QUARRY_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("quarry.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    monkeypatch.setattr(
        "quarry.ingest.web.socket.getaddrinfo",
        lambda host, port: [(None, None, None, None, ("93.184.216.34", 0))],
    )
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Path to a not-yet-created .quarry.db in tmp_path."""
    return tmp_path / ".quarry.db"


@pytest.fixture
def seeded_db(db_path: Path):
    """Create the database and return a callable that adds sources to it."""
    conn = Database(db_path).connect()
    initialize(conn)
    repo = Repository(conn)

    def add(id: str, tenant: str = "acme", kind: SourceKind = SourceKind.ARTICLE, **kw) -> KnowledgeSource:
        kw.setdefault("name", f"Source {id}")
        if kind is SourceKind.ARTICLE:
            kw.setdefault("content", "Returns are accepted within thirty days of purchase.")
        source = KnowledgeSource(id=id, tenant_id=tenant, kind=kind, **kw)
        repo.add_source(source)
        return source

    add.repo = repo
    yield add
    conn.close()
