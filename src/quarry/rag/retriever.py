"""Query flow: cache → hybrid search → optional rerank → truncate.

When the reranker is enabled the hybrid engine is asked for
``max(k, rerank_top_n)`` candidates so the cross-encoder sees a wider pool;
if reranking fails the hybrid order is used unchanged.
"""

from __future__ import annotations

import logging

from quarry.config import QuarryConfig
from quarry.db.repository import Repository
from quarry.rag.cache import MemoryCacheBackend, QueryCache, SqliteCacheBackend
from quarry.rag.hybrid import HybridConfig, HybridSearchEngine, SearchCandidate
from quarry.rag.reranker import KeepWarm, RerankerClient

logger = logging.getLogger(__name__)


class Retriever:
    """Tenant-scoped search entry point.

    Args:
        engine: Hybrid search engine.
        reranker: Optional reranker client; None disables reranking.
        cache: Optional query cache.
        top_k: Default number of results.
        rerank_top_n: Candidate pool size sent to the reranker.
        warmer: Optional keep-warm pinger, started now and stopped by ``close()``.
    """

    def __init__(
        self,
        engine: HybridSearchEngine,
        reranker: RerankerClient | None = None,
        cache: QueryCache | None = None,
        top_k: int = 5,
        rerank_top_n: int = 20,
        warmer: KeepWarm | None = None,
    ) -> None:
        self._engine = engine
        self._reranker = reranker
        self._cache = cache
        self._top_k = top_k
        self._rerank_top_n = rerank_top_n
        self._warmer = warmer
        if warmer is not None:
            warmer.start()

    @classmethod
    def from_config(
        cls, cfg: QuarryConfig, repo: Repository, keep_warm: bool = False
    ) -> Retriever:
        """Wire a retriever from config.

        *keep_warm* starts a background health pinger when the reranker is
        enabled; long-running processes want it, one-shot commands do not.
        """
        r = cfg.retrieval
        engine = HybridSearchEngine(
            repo,
            HybridConfig(
                embedding_model=cfg.embedding.model,
                top_k=r.top_k,
                vector_weight=r.vector_weight,
                lexical_weight=r.lexical_weight,
                match_threshold=r.match_threshold,
                candidate_multiplier=r.candidate_multiplier,
                timeout=r.timeout,
                expand_query=r.expand_query,
                adaptive_weights=r.adaptive_weights,
                recency_weight=r.recency_weight,
            ),
        )
        reranker = None
        warmer = None
        if cfg.reranker.enabled:
            reranker = RerankerClient(
                cfg.reranker.url, secret=cfg.reranker_secret, timeout=cfg.reranker.timeout
            )
            if keep_warm:
                warmer = KeepWarm(reranker, interval=cfg.reranker.warm_interval)
        cache = None
        if cfg.cache.backend == "memory":
            cache = QueryCache(MemoryCacheBackend(cfg.cache.max_entries), cfg.cache.ttl_seconds)
        elif cfg.cache.backend == "sqlite":
            cache = QueryCache(SqliteCacheBackend(repo), cfg.cache.ttl_seconds)
        return cls(
            engine,
            reranker,
            cache,
            top_k=r.top_k,
            rerank_top_n=cfg.reranker.top_n,
            warmer=warmer,
        )

    @property
    def engine(self) -> HybridSearchEngine:
        return self._engine

    @property
    def cache(self) -> QueryCache | None:
        return self._cache

    def close(self) -> None:
        if self._warmer is not None:
            self._warmer.stop(timeout=1.0)
        self._engine.close()

    def search(
        self,
        tenant_id: str,
        query: str,
        conversation_id: str | None = None,
        k: int | None = None,
    ) -> list[SearchCandidate]:
        """Return up to *k* ranked candidates for *query*.

        Empty or whitespace-only queries return [] without any I/O.
        """
        if not query or not query.strip():
            return []
        k = k or self._top_k

        if self._cache is not None:
            cached = self._cache.get(tenant_id, conversation_id, query, min_results=k)
            if cached is not None:
                logger.debug("tenant=%s cache hit for %r", tenant_id, query)
                return cached[:k]

        pool = max(k, self._rerank_top_n) if self._reranker is not None else k
        candidates = self._engine.search(tenant_id, query, k=pool)

        if self._reranker is not None and candidates:
            try:
                candidates = self._reranker.rerank(query, candidates)
            except Exception as exc:
                logger.warning("tenant=%s rerank failed, using hybrid order: %s", tenant_id, exc)

        if self._cache is not None:
            self._cache.put(tenant_id, conversation_id, query, candidates, pool=pool)
        return candidates[:k]
