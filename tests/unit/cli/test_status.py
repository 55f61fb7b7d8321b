"""Tests for quarry status command."""

from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from quarry.cli.main import app
from quarry.db.models import Chunk, ChunkMetadata, SourceStatus

runner = CliRunner()


def _status(db_path: Path):
    return runner.invoke(app, ["status", "--db", str(db_path)])


def test_status_without_db(db_path: Path) -> None:
    result = _status(db_path)
    assert result.exit_code == 0
    assert "No database found" in result.output
    assert "openai/text-embedding-3-small" in result.output
    assert not db_path.exists()


def test_status_empty_db(seeded_db, db_path: Path) -> None:
    result = _status(db_path)
    assert result.exit_code == 0
    assert "No sources registered yet" in result.output


def test_status_shows_tenants_and_counts(seeded_db, db_path: Path) -> None:
    seeded_db("a1", status=SourceStatus.COMPLETED)
    seeded_db("a2")
    seeded_db("g1", tenant="globex", status=SourceStatus.FAILED_INGEST)
    seeded_db.repo.add_chunks(
        [
            Chunk(
                id=f"c{i}",
                tenant_id="acme",
                content=f"chunk {i}",
                metadata=ChunkMetadata(original_source_id="a1", chunk_index=i),
            )
            for i in range(4)
        ]
    )

    result = _status(db_path)

    assert result.exit_code == 0, result.output
    assert "Sources: 3" in result.output
    assert "Chunks: 4" in result.output
    assert "acme" in result.output
    assert "globex" in result.output
    assert "failed_ingest 1" in result.output


def test_status_reports_reranker_and_cache(seeded_db, db_path: Path, tmp_path: Path) -> None:
    (tmp_path / "quarry.yaml").write_text(
        "reranker:\n  enabled: true\n  url: http://rr:9000\ncache:\n  backend: sqlite\n",
        encoding="utf-8",
    )
    result = _status(db_path)
    assert result.exit_code == 0
    assert "http://rr:9000" in result.output
    assert "sqlite" in result.output


def test_status_invalid_config_exits(tmp_path: Path, db_path: Path) -> None:
    (tmp_path / "quarry.yaml").write_text("cache:\n  backend: redis\n", encoding="utf-8")
    result = _status(db_path)
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output
