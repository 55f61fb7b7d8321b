"""Query result cache with pluggable backing store.

Keys are derived from the normalized ``(tenant, conversation, query)`` tuple,
so queries differing only in case, spacing or punctuation runs share an
entry. Values are the serialized candidate list plus the pool size it was
searched with.
"""

from __future__ import annotations

import hashlib
import json
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable

from quarry.db.repository import Repository
from quarry.ingest.normalizer import normalize_text
from quarry.rag.hybrid import SearchCandidate


class CacheBackend(ABC):
    """Key/value store with per-entry expiry."""

    @abstractmethod
    def get(self, key: str) -> str | None: ...

    @abstractmethod
    def set(self, key: str, value: str, ttl_seconds: float) -> None: ...

    @abstractmethod
    def clear(self) -> None: ...


class MemoryCacheBackend(CacheBackend):
    """In-process LRU map bounded by ``max_entries``."""

    def __init__(self, max_entries: int = 1_000, clock: Callable[[], float] = time.monotonic) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, str]] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return value

    def set(self, key: str, value: str, ttl_seconds: float) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class SqliteCacheBackend(CacheBackend):
    """Cache rows in the knowledge-base database (``query_cache`` table)."""

    def __init__(self, repo: Repository, clock: Callable[[], float] = time.time) -> None:
        self._repo = repo
        self._clock = clock

    def get(self, key: str) -> str | None:
        return self._repo.cache_get(key, self._clock())

    def set(self, key: str, value: str, ttl_seconds: float) -> None:
        now = self._clock()
        self._repo.cache_put(key, value, now + ttl_seconds)
        self._repo.cache_purge(now)

    def clear(self) -> None:
        self._repo.cache_purge()


class QueryCache:
    """Cache of ranked candidates per normalized query."""

    def __init__(self, backend: CacheBackend, ttl_seconds: float = 300.0) -> None:
        self._backend = backend
        self._ttl = ttl_seconds

    @staticmethod
    def key(tenant_id: str, conversation_id: str | None, query: str) -> str:
        raw = json.dumps([tenant_id, conversation_id or "", normalize_text(query)], ensure_ascii=False)
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def get(
        self,
        tenant_id: str,
        conversation_id: str | None,
        query: str,
        min_results: int | None = None,
    ) -> list[SearchCandidate] | None:
        """Return the cached candidates, or None on a miss.

        An entry that filled the pool it was searched with may be hiding
        further matches; it counts as a miss when it holds fewer than
        *min_results* candidates.
        """
        payload = self._backend.get(self.key(tenant_id, conversation_id, query))
        if payload is None:
            return None
        entry = json.loads(payload)
        results = [SearchCandidate.from_dict(d) for d in entry["results"]]
        pool = entry.get("pool")
        if min_results is not None and pool is not None and pool <= len(results) < min_results:
            return None
        return results

    def put(
        self,
        tenant_id: str,
        conversation_id: str | None,
        query: str,
        results: list[SearchCandidate],
        pool: int | None = None,
    ) -> None:
        """Store *results*; *pool* is the candidate count the search asked for."""
        entry = {"pool": pool, "results": [c.to_dict() for c in results]}
        payload = json.dumps(entry, ensure_ascii=False)
        self._backend.set(self.key(tenant_id, conversation_id, query), payload, self._ttl)

    def clear(self) -> None:
        self._backend.clear()
