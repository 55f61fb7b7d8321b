"""Client for the external cross-encoder reranker service.

Wire format:
  POST {url}/api/rerank   header X-Internal-Api-Secret: <secret>
    {"query": str, "documents": [{"id": str, "content": str}, ...]}
  → {"rerankedDocuments": [{"id": str, "rerank_score": float, ...}, ...]}
  GET  {url}/api/health   (also loads the model on a cold instance)

Any transport or protocol failure raises RerankerError; callers fall back to
the pre-rerank order.
"""

from __future__ import annotations

import http.client
import json
import logging
import threading
import urllib.error
import urllib.request
from dataclasses import replace
from typing import Any

from quarry.errors import RerankerError
from quarry.rag.hybrid import SearchCandidate

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Internal-Api-Secret"


class RerankerClient:
    """Score (query, candidate) pairs with a remote cross-encoder.

    Args:
        url: Service base URL (no trailing path).
        secret: Shared secret sent in ``X-Internal-Api-Secret``.
        timeout: Request timeout in seconds.
    """

    def __init__(self, url: str, secret: str | None = None, timeout: float = 4.0) -> None:
        self.url = url.rstrip("/")
        self.secret = secret
        self.timeout = timeout

    def rerank(self, query: str, candidates: list[SearchCandidate]) -> list[SearchCandidate]:
        """Return *candidates* reordered by descending reranker score.

        Candidates the service did not score keep their relative order after
        the scored ones. The input list is not modified.

        Raises:
            RerankerError: On network errors, timeouts, non-2xx replies or a
                malformed response.
        """
        if not candidates:
            return []
        payload = {
            "query": query,
            "documents": [{"id": c.id, "content": c.content} for c in candidates],
        }
        reply = self._request("POST", "/api/rerank", payload)
        scores = _parse_scores(reply)

        scored = [replace(c, rerank_score=scores[c.id]) for c in candidates if c.id in scores]
        if not scored:
            raise RerankerError("Reranker returned no scores for the submitted candidates.")
        scored.sort(key=lambda c: c.rerank_score, reverse=True)
        unscored = [c for c in candidates if c.id not in scores]
        return scored + unscored

    def ping(self) -> bool:
        """Hit the health endpoint. Returns False instead of raising."""
        try:
            self._request("GET", "/api/health")
        except RerankerError as exc:
            logger.warning("reranker health check failed: %s", exc)
            return False
        return True

    def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        headers = {"Accept": "application/json"}
        if self.secret:
            headers[SECRET_HEADER] = self.secret
        data = None
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"
        try:
            request = urllib.request.Request(self.url + path, data=data, headers=headers, method=method)
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                body = response.read()
        except urllib.error.HTTPError as exc:
            raise RerankerError(f"Reranker returned HTTP {exc.code} for {path}") from exc
        except (urllib.error.URLError, OSError, http.client.HTTPException) as exc:
            raise RerankerError(f"Reranker unreachable at {self.url}: {exc}") from exc
        except ValueError as exc:
            raise RerankerError(f"Invalid reranker URL {self.url!r}: {exc}") from exc
        if not body:
            return None
        try:
            return json.loads(body)
        except ValueError as exc:
            raise RerankerError(f"Reranker returned invalid JSON for {path}") from exc


def _parse_scores(reply: Any) -> dict[str, float]:
    docs = reply.get("rerankedDocuments") if isinstance(reply, dict) else None
    if not isinstance(docs, list):
        raise RerankerError("Reranker response has no 'rerankedDocuments' list.")
    scores: dict[str, float] = {}
    for doc in docs:
        if not isinstance(doc, dict) or "id" not in doc:
            continue
        try:
            scores[str(doc["id"])] = float(doc["rerank_score"])
        except (KeyError, TypeError, ValueError):
            continue
    return scores


class KeepWarm:
    """Ping the reranker's health endpoint periodically on a daemon thread.

    Keeps a scale-to-zero deployment from unloading the model between queries.
    """

    def __init__(self, client: RerankerClient, interval: float = 600.0) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self._client = client
        self._interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="quarry-reranker-warm", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while True:
            ok = self._client.ping()
            logger.debug("reranker warm ping ok=%s", ok)
            if self._stop.wait(self._interval):
                return
