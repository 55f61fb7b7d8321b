"""Tests for hybrid search: fusion arithmetic and degraded paths."""

from __future__ import annotations

import sqlite3
import time
import uuid
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from quarry.db.models import Chunk, ChunkMetadata, KnowledgeSource, SourceKind
from quarry.db.repository import Repository
from quarry.db.vectors import ensure_vec_table, model_to_slug
from quarry.errors import EmbeddingProviderError
from quarry.rag.hybrid import (
    HybridConfig,
    HybridSearchEngine,
    SearchCandidate,
    bm25_to_score,
    fuse,
)

MODEL = "test/model"
EMBED = "quarry.rag.llm_client.embed"


def _chunk(id: str, content: str = "text", embedding=None, tenant="acme", source="src-1") -> Chunk:
    return Chunk(
        id=id,
        tenant_id=tenant,
        content=content,
        metadata=ChunkMetadata(original_source_id=source),
        embedding=embedding,
    )


# ------------------------------------------------------------------
# Pure functions
# ------------------------------------------------------------------


def test_bm25_to_score():
    assert bm25_to_score(-3.0) == pytest.approx(0.75)
    assert bm25_to_score(-1.0) == pytest.approx(0.5)
    assert bm25_to_score(0.0) == 0.0
    assert bm25_to_score(2.0) == 0.0
    assert bm25_to_score(-10.0) > bm25_to_score(-2.0)


def test_fuse_exact_arithmetic_and_order():
    a, b, c = _chunk("a"), _chunk("b"), _chunk("c")
    results = fuse([(a, 0.9), (b, 0.7)], [(a, 0.5), (c, 0.8)], 0.5, 0.5, k=5)

    assert [r.id for r in results] == ["a", "c", "b"]
    by_id = {r.id: r for r in results}
    assert by_id["a"].hybrid_score == pytest.approx(0.7)
    assert by_id["b"].hybrid_score == pytest.approx(0.35)
    assert by_id["b"].lexical_score == 0.0
    assert by_id["c"].hybrid_score == pytest.approx(0.4)
    assert by_id["c"].vector_score == 0.0


def test_fuse_keeps_max_per_signal_and_weights():
    a = _chunk("a")
    results = fuse([(a, 0.6), (a, 0.9)], [(a, 0.2), (a, 0.5)], 0.7, 0.3, k=5)
    assert len(results) == 1
    assert results[0].vector_score == pytest.approx(0.9)
    assert results[0].lexical_score == pytest.approx(0.5)
    assert results[0].hybrid_score == pytest.approx(0.7 * 0.9 + 0.3 * 0.5)


def test_fuse_ties_keep_first_seen_order_and_truncate():
    hits = [(_chunk(f"c{i}"), 0.8) for i in range(4)]
    results = fuse(hits, [], 0.5, 0.5, k=3)
    assert [r.id for r in results] == ["c0", "c1", "c2"]


def test_fuse_drops_entries_without_content():
    results = fuse([(_chunk("a", content=""), 0.9), (_chunk("b"), 0.8)], [], 0.5, 0.5, k=5)
    assert [r.id for r in results] == ["b"]


def _dated(id: str, updated_at: str) -> Chunk:
    return Chunk(
        id=id,
        tenant_id="acme",
        content="text",
        metadata=ChunkMetadata(original_source_id="src-1", source_document_updated_at=updated_at),
    )


def test_fuse_recency_favours_fresh_sources():
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    old, fresh = _dated("old", "2025-01-01 00:00:00"), _dated("fresh", "2025-12-01 00:00:00")
    results = fuse([(old, 0.8), (fresh, 0.8)], [], 0.5, 0.5, k=5, recency_weight=0.1, now=now)

    assert [r.id for r in results] == ["fresh", "old"]
    by_id = {r.id: r for r in results}
    assert by_id["old"].recency_score == 0.0
    assert by_id["old"].hybrid_score == pytest.approx(0.4)
    assert by_id["fresh"].hybrid_score == pytest.approx(0.4 + 0.1 * (1 - 31 / 365))


def test_fuse_without_recency_weight_ignores_dates():
    (result,) = fuse([(_dated("a", "2025-01-01 00:00:00"), 0.8)], [], 0.5, 0.5, k=5)
    assert result.recency_score is None
    assert result.hybrid_score == pytest.approx(0.4)
    assert "recency" not in result.to_dict()["scores"]


def test_candidate_dict_round_trip_keeps_rerank_score():
    c = SearchCandidate(id="x", content="y", metadata={"k": 1}, vector_score=0.2, hybrid_score=0.1, rerank_score=3.5)
    d = c.to_dict()
    assert d["scores"] == {"vector": 0.2, "lexical": 0.0, "hybrid": 0.1, "rerank": 3.5}
    assert SearchCandidate.from_dict(d) == c
    assert "rerank" not in SearchCandidate(id="x", content="y").to_dict()["scores"]


# ------------------------------------------------------------------
# Engine over a real database
# ------------------------------------------------------------------


@pytest.fixture
def repo(tmp_db):
    r = Repository(tmp_db)
    for tenant in ("acme", "globex"):
        r.add_source(
            KnowledgeSource(id=f"src-{tenant}", tenant_id=tenant, kind=SourceKind.ARTICLE, name="n")
        )
    return r


@pytest.fixture
def populated(repo, tmp_db):
    table = ensure_vec_table(tmp_db, model_to_slug(MODEL), 2)
    repo.add_chunks(
        [
            _chunk("policy", "return policy lasts thirty days", [1.0, 0.0], source="src-acme"),
            _chunk("shipping", "shipping times for international orders", [0.0, 1.0], source="src-acme"),
            _chunk("gifts", "return window for gifts is longer", [0.0, 1.0], source="src-acme"),
            _chunk("hours", "store hours on weekends", [0.0, 1.0], source="src-acme"),
            _chunk("support", "contact our support team", [0.0, 1.0], source="src-acme"),
        ],
        table,
    )
    repo.add_chunks(
        [_chunk("other", "refund rules of another tenant", [1.0, 0.0], tenant="globex", source="src-globex")],
        table,
    )
    return repo


def _engine(repo, **kw):
    return HybridSearchEngine(repo, HybridConfig(embedding_model=MODEL, **kw))


def test_search_fuses_both_paths(populated):
    with _engine(populated) as engine, patch(EMBED, return_value=[1.0, 0.0]):
        results = engine.search("acme", "Return policy?")

    ids = [r.id for r in results]
    assert ids[0] == "policy"
    assert "gifts" in ids  # lexical-only hit
    assert "shipping" not in ids  # below threshold and no term match
    assert "other" not in ids
    top = results[0]
    assert top.vector_score == pytest.approx(1.0)
    assert 0 < top.lexical_score < 1
    assert top.hybrid_score == pytest.approx(0.5 * top.vector_score + 0.5 * top.lexical_score)
    gifts = next(r for r in results if r.id == "gifts")
    assert gifts.vector_score == 0.0


def test_adaptive_weights_favour_lexical_for_short_queries(populated):
    with _engine(populated, adaptive_weights=True) as engine, patch(EMBED, return_value=[1.0, 0.0]):
        results = engine.search("acme", "return")

    top = results[0]
    assert top.id == "policy"
    assert top.hybrid_score == pytest.approx(0.4 * top.vector_score + 0.6 * top.lexical_score)


def test_search_respects_k(populated):
    with _engine(populated) as engine, patch(EMBED, return_value=[1.0, 0.0]):
        assert len(engine.search("acme", "return", k=1)) == 1


def test_embedding_failure_degrades_to_lexical(populated):
    with _engine(populated) as engine, patch(EMBED, side_effect=EmbeddingProviderError("down")):
        results = engine.search("acme", "return policy")
    assert {r.id for r in results} == {"policy", "gifts"}
    assert all(r.vector_score == 0.0 for r in results)


def test_no_vec_table_skips_embedding(repo):
    repo.add_chunks([_chunk(str(uuid.uuid4()), "return policy text", source="src-acme")])
    with _engine(repo) as engine, patch(EMBED) as mock_embed:
        results = engine.search("acme", "return policy")
    mock_embed.assert_not_called()
    assert len(results) == 1


def test_lexical_failure_degrades_to_vector(populated):
    with _engine(populated) as engine, patch(EMBED, return_value=[1.0, 0.0]), \
            patch.object(populated, "search_fts", side_effect=sqlite3.OperationalError("fts broken")):
        results = engine.search("acme", "return policy")
    assert [r.id for r in results] == ["policy"]
    assert results[0].lexical_score == 0.0


def test_slow_vector_path_times_out(populated):
    def slow_embed(*args, **kwargs):
        time.sleep(1.0)
        return [1.0, 0.0]

    with _engine(populated, timeout=0.2) as engine, patch(EMBED, side_effect=slow_embed):
        started = time.monotonic()
        results = engine.search("acme", "return policy")
        elapsed = time.monotonic() - started
    assert elapsed < 0.9
    assert all(r.vector_score == 0.0 for r in results)
    assert {r.id for r in results} == {"policy", "gifts"}


@pytest.mark.parametrize("query", ["", "   "])
def test_empty_query_returns_nothing(populated, query):
    with _engine(populated) as engine, patch(EMBED) as mock_embed:
        assert engine.search("acme", query) == []
    mock_embed.assert_not_called()
