"""Reranker service: FastAPI app scoring (query, document) pairs with a cross-encoder.

Endpoints:
  POST /api/rerank   requires X-Internal-Api-Secret; returns documents sorted by rerank_score
  GET  /api/health   loads the model if needed (warm-up target)

Run with:
  QUARRY_RERANKER_SECRET=... uvicorn quarry.service.reranker_app:app --port 8008
"""

from __future__ import annotations

import logging
import os
import secrets
import threading
from collections.abc import Callable, Sequence
from typing import Any

from fastapi import FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from quarry.config import RERANKER_SECRET_ENV

logger = logging.getLogger(__name__)

DEFAULT_MODEL = os.getenv("QUARRY_RERANKER_MODEL", "BAAI/bge-reranker-base")
MAX_LENGTH = int(os.getenv("QUARRY_RERANKER_MAX_LENGTH", "512"))

Scorer = Callable[[Sequence[tuple[str, str]]], Sequence[float]]


class RerankDocument(BaseModel):
    id: str
    content: str


class RerankRequest(BaseModel):
    query: str = Field(min_length=1)
    documents: list[RerankDocument]


class _LazyCrossEncoder:
    """Load the cross-encoder once per process, on first use."""

    def __init__(self, model_name: str) -> None:
        self.model_name = model_name
        self._model = None
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._model is not None

    def load(self) -> None:
        with self._lock:
            if self._model is None:
                from sentence_transformers import CrossEncoder

                logger.info("loading reranker model %s", self.model_name)
                self._model = CrossEncoder(self.model_name, max_length=MAX_LENGTH)

    def __call__(self, pairs: Sequence[tuple[str, str]]) -> Sequence[float]:
        self.load()
        return [float(s) for s in self._model.predict(list(pairs), batch_size=16)]


def create_app(
    secret: str | None = None,
    model_name: str = DEFAULT_MODEL,
    scorer: Scorer | None = None,
) -> FastAPI:
    """Build the reranker app.

    Args:
        secret: Shared secret; defaults to $QUARRY_RERANKER_SECRET. When unset,
            every rerank request is rejected.
        model_name: Cross-encoder model id (sentence-transformers).
        scorer: Pair scorer replacing the cross-encoder (tests, custom models).
    """
    expected = secret if secret is not None else os.getenv(RERANKER_SECRET_ENV)
    encoder = _LazyCrossEncoder(model_name) if scorer is None else None
    score: Scorer = scorer if scorer is not None else encoder

    app = FastAPI(title="quarry-reranker")

    def _authorize(provided: str | None) -> None:
        if not expected or not provided or not secrets.compare_digest(provided, expected):
            raise HTTPException(status_code=403, detail="Forbidden")

    @app.get("/api/health")
    def health() -> dict[str, Any]:
        if encoder is not None:
            encoder.load()
        return {"status": "ok", "model": model_name}

    @app.post("/api/rerank")
    def rerank(
        request: RerankRequest,
        x_internal_api_secret: str | None = Header(default=None),
    ) -> dict[str, Any]:
        _authorize(x_internal_api_secret)
        if not request.documents:
            return {"rerankedDocuments": []}
        pairs = [(request.query, d.content) for d in request.documents]
        scores = score(pairs)
        if len(scores) != len(pairs):
            raise HTTPException(status_code=500, detail="Scorer returned a wrong number of scores.")
        ranked = [
            {"id": d.id, "content": d.content, "rerank_score": float(s)}
            for d, s in zip(request.documents, scores)
        ]
        ranked.sort(key=lambda d: d["rerank_score"], reverse=True)
        return {"rerankedDocuments": ranked}

    return app


app = create_app()
