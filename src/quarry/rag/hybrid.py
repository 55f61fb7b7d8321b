"""Hybrid search: cosine similarity (sqlite-vec) + BM25 (FTS5), fused by weighted sum.

The vector path (query embedding + similarity search) and the lexical path
run concurrently. A path that fails or times out contributes an empty
signal; the other still produces results.

Fusion per chunk id:
  vector  = max cosine similarity seen for the id (0 if absent)
  lexical = max normalized BM25 score seen for the id (0 if absent)
  hybrid  = w_v * vector + w_f * lexical [+ w_r * recency]

The lexical query is widened with synonyms and acronym expansions
(``quarry.lexicon``). Adaptive weighting and the recency term are opt-in.

FTS5 ``bm25()`` is negative with lower meaning better. It is mapped into
[0, 1) by s / (1 + s) with s = -bm25, so both signals share a scale.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from quarry.db.models import Chunk
from quarry.db.repository import Repository
from quarry.db.vectors import vec_table_exists, vec_table_for_model
from quarry.errors import EmbeddingProviderError
from quarry.ingest.normalizer import normalize_text
from quarry.lexicon import adjust_weights, recency_score
from quarry.rag import llm_client

logger = logging.getLogger(__name__)


@dataclass
class SearchCandidate:
    """A retrieved chunk with its per-signal scores.

    Attributes:
        id: Chunk UUID.
        content: Chunk text.
        metadata: Chunk metadata as stored.
        vector_score: Cosine similarity (0 if the vector path missed it).
        lexical_score: Normalized BM25 score (0 if the lexical path missed it).
        hybrid_score: Weighted fusion of the two.
        recency_score: Source freshness in [0, 1], set only when recency is weighted.
        rerank_score: Cross-encoder score, set only after reranking.
    """

    id: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    vector_score: float = 0.0
    lexical_score: float = 0.0
    hybrid_score: float = 0.0
    recency_score: float | None = None
    rerank_score: float | None = None

    @classmethod
    def from_chunk(cls, chunk: Chunk) -> SearchCandidate:
        return cls(id=chunk.id, content=chunk.content, metadata=chunk.metadata.to_dict())

    def to_dict(self) -> dict[str, Any]:
        scores: dict[str, float] = {
            "vector": self.vector_score,
            "lexical": self.lexical_score,
            "hybrid": self.hybrid_score,
        }
        if self.recency_score is not None:
            scores["recency"] = self.recency_score
        if self.rerank_score is not None:
            scores["rerank"] = self.rerank_score
        return {"id": self.id, "content": self.content, "metadata": self.metadata, "scores": scores}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SearchCandidate:
        scores = data.get("scores") or {}
        return cls(
            id=data["id"],
            content=data["content"],
            metadata=data.get("metadata") or {},
            vector_score=float(scores.get("vector", 0.0)),
            lexical_score=float(scores.get("lexical", 0.0)),
            hybrid_score=float(scores.get("hybrid", 0.0)),
            recency_score=scores.get("recency"),
            rerank_score=scores.get("rerank"),
        )


@dataclass
class HybridConfig:
    """Hybrid search tuning.

    Attributes:
        embedding_model: Must match the model used at ingestion.
        top_k: Default number of results.
        vector_weight: Weight of cosine similarity in the fused score.
        lexical_weight: Weight of the normalized BM25 score.
        match_threshold: Minimum cosine similarity for a vector hit.
        candidate_multiplier: Each path fetches ``k * candidate_multiplier`` hits.
        timeout: Seconds to wait for both paths together.
        expand_query: Add synonyms and acronym expansions to the lexical query.
        adaptive_weights: Shift weight to the lexical signal for quoted,
            capitalised or very short queries.
        recency_weight: Weight of source freshness; 0 leaves it out.
    """

    embedding_model: str = "openai/text-embedding-3-small"
    top_k: int = 5
    vector_weight: float = 0.5
    lexical_weight: float = 0.5
    match_threshold: float = 0.65
    candidate_multiplier: int = 2
    timeout: float = 10.0
    expand_query: bool = True
    adaptive_weights: bool = False
    recency_weight: float = 0.0


def bm25_to_score(bm25: float) -> float:
    """Map an FTS5 bm25 value (negative, lower is better) into [0, 1)."""
    s = max(0.0, -bm25)
    return s / (1.0 + s)


def fuse(
    vector_hits: list[tuple[Chunk, float]],
    lexical_hits: list[tuple[Chunk, float]],
    vector_weight: float,
    lexical_weight: float,
    k: int,
    recency_weight: float = 0.0,
    now: datetime | None = None,
) -> list[SearchCandidate]:
    """Merge both hit lists by chunk id and rank by weighted score.

    ``lexical_hits`` carry normalized scores. Ties keep first-seen order
    (vector hits before lexical ones). Hits without id or content are dropped.
    A non-zero *recency_weight* adds that share of each chunk's
    ``source_document_updated_at`` freshness, measured at *now*.
    """
    merged: dict[str, SearchCandidate] = {}
    for chunk, score in vector_hits:
        c = merged.setdefault(chunk.id, SearchCandidate.from_chunk(chunk))
        c.vector_score = max(c.vector_score, score)
    for chunk, score in lexical_hits:
        c = merged.setdefault(chunk.id, SearchCandidate.from_chunk(chunk))
        c.lexical_score = max(c.lexical_score, score)

    ranked = [c for c in merged.values() if c.id and c.content]
    for c in ranked:
        c.hybrid_score = vector_weight * c.vector_score + lexical_weight * c.lexical_score
        if recency_weight:
            c.recency_score = recency_score(c.metadata.get("source_document_updated_at"), now)
            c.hybrid_score += recency_weight * c.recency_score
    ranked.sort(key=lambda c: c.hybrid_score, reverse=True)
    return ranked[:k]


class HybridSearchEngine:
    """Tenant-scoped hybrid search over the chunk store.

    Use as a context manager, or call ``close()``, to release the worker pool.
    """

    def __init__(self, repo: Repository, config: HybridConfig | None = None) -> None:
        self._repo = repo
        self._config = config or HybridConfig()
        self._vec_table = vec_table_for_model(self._config.embedding_model)
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="quarry-search")
        # Serializes use of the shared sqlite connection; never held across network calls.
        self._db_lock = threading.Lock()

    @property
    def config(self) -> HybridConfig:
        return self._config

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> HybridSearchEngine:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def search(self, tenant_id: str, query: str, k: int | None = None) -> list[SearchCandidate]:
        """Return up to *k* candidates for *query*, best first. Never raises for search failures."""
        cfg = self._config
        k = k or cfg.top_k
        text = normalize_text(query)
        if not text or k < 1:
            return []
        limit = k * max(1, cfg.candidate_multiplier)
        ctx = f"tenant={tenant_id} "

        vec_future = self._executor.submit(self._vector_search, tenant_id, text, limit)
        lex_future = self._executor.submit(self._lexical_search, tenant_id, text, limit)
        deadline = time.monotonic() + cfg.timeout
        vector_hits = self._collect(vec_future, "vector", deadline, ctx)
        lexical_hits = self._collect(lex_future, "lexical", deadline, ctx)

        vector_weight, lexical_weight, reason = cfg.vector_weight, cfg.lexical_weight, "default"
        if cfg.adaptive_weights:
            vector_weight, lexical_weight, reason = adjust_weights(query, vector_weight, lexical_weight)

        results = fuse(
            vector_hits,
            lexical_hits,
            vector_weight,
            lexical_weight,
            k,
            recency_weight=cfg.recency_weight,
        )
        logger.debug(
            "%squery=%r vector=%d lexical=%d fused=%d weights=%.2f/%.2f (%s)",
            ctx,
            text,
            len(vector_hits),
            len(lexical_hits),
            len(results),
            vector_weight,
            lexical_weight,
            reason,
        )
        return results

    # ------------------------------------------------------------------
    # Search paths
    # ------------------------------------------------------------------

    def _vector_search(self, tenant_id: str, text: str, limit: int) -> list[tuple[Chunk, float]]:
        with self._db_lock:
            has_vectors = vec_table_exists(self._repo.conn, self._vec_table)
        if not has_vectors:
            return []
        try:
            embedding = llm_client.embed(self._config.embedding_model, text, timeout=self._config.timeout)
        except EmbeddingProviderError as exc:
            logger.warning("tenant=%s query embedding failed, lexical only: %s", tenant_id, exc)
            return []
        with self._db_lock:
            return self._repo.search_vec(
                tenant_id,
                self._vec_table,
                embedding,
                limit=limit,
                min_similarity=self._config.match_threshold,
            )

    def _lexical_search(self, tenant_id: str, text: str, limit: int) -> list[tuple[Chunk, float]]:
        with self._db_lock:
            hits = self._repo.search_fts(tenant_id, text, limit=limit, expand=self._config.expand_query)
        return [(chunk, bm25_to_score(score)) for chunk, score in hits]

    @staticmethod
    def _collect(
        future: Future, name: str, deadline: float, ctx: str
    ) -> list[tuple[Chunk, float]]:
        try:
            return future.result(timeout=max(0.0, deadline - time.monotonic()))
        except FuturesTimeout:
            future.cancel()
            logger.warning("%s%s search timed out, continuing without it", ctx, name)
        except Exception as exc:
            logger.warning("%s%s search failed, continuing without it: %s", ctx, name, exc)
        return []
