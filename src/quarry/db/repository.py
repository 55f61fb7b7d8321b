"""Repository pattern for all Quarry database operations.

Single interface for: sources, chunks, FTS5 search, vec embeddings and the
query cache table. Every chunk and source statement is scoped by tenant.
Vec tables are model-managed (ensure_vec_table); the repository handles
read + write.
"""

from __future__ import annotations

import json
import re
import sqlite3
from typing import Any

from quarry.db.models import (
    Chunk,
    ChunkMetadata,
    KnowledgeSource,
    SourceKind,
    SourceStatus,
)
from quarry.db.vectors import list_vec_tables
from quarry.lexicon import expand_term

MAX_ERROR_CHARS = 1000

_SOURCE_COLUMNS = (
    "id, tenant_id, kind, name, location, content, status, content_hash, "
    "character_count, category_tags, custom_metadata, last_ingest_at, "
    "last_checked_at, last_check_status, last_error, created_at, updated_at"
)

_CHUNK_COLUMNS = (
    "c.rowid AS rowid, c.id, c.tenant_id, c.source_id, c.chunk_index, "
    "c.content, c.metadata, c.created_at"
)


class Repository:
    """Data access layer for all Quarry database entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see quarry.db.schema.initialize).
        """
        self._conn = conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def add_source(self, source: KnowledgeSource) -> None:
        """Insert a new source record."""
        self._conn.execute(
            """
            INSERT INTO sources (
                id, tenant_id, kind, name, location, content, status,
                content_hash, character_count, category_tags, custom_metadata
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source.id,
                source.tenant_id,
                SourceKind(source.kind).value,
                source.name,
                source.location,
                source.content,
                SourceStatus(source.status).value,
                source.content_hash,
                source.character_count,
                json.dumps(source.category_tags),
                json.dumps(source.custom_metadata, ensure_ascii=False),
            ),
        )
        self._conn.commit()

    def get_source(self, tenant_id: str, source_id: str) -> KnowledgeSource | None:
        """Return a source owned by *tenant_id*, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE tenant_id = ? AND id = ?",
            (tenant_id, source_id),
        ).fetchone()
        return _row_to_source(row) if row else None

    def get_source_by_location(
        self, tenant_id: str, location: str
    ) -> KnowledgeSource | None:
        """Return a tenant's source by URL or stored path, or None."""
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE tenant_id = ? AND location = ?",
            (tenant_id, location),
        ).fetchone()
        return _row_to_source(row) if row else None

    def list_sources(self, tenant_id: str | None = None) -> list[KnowledgeSource]:
        """Return sources ordered by creation time, optionally for one tenant."""
        if tenant_id is None:
            rows = self._conn.execute(
                f"SELECT {_SOURCE_COLUMNS} FROM sources ORDER BY created_at, rowid"
            ).fetchall()
        else:
            rows = self._conn.execute(
                f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE tenant_id = ? "
                "ORDER BY created_at, rowid",
                (tenant_id,),
            ).fetchall()
        return [_row_to_source(r) for r in rows]

    def list_sources_due_for_check(
        self,
        older_than_days: int,
        tenant_id: str | None = None,
        limit: int | None = None,
    ) -> list[KnowledgeSource]:
        """Return URL sources never checked or last checked before the cutoff.

        Never-checked sources come first, then the stalest ones.
        """
        sql = (
            f"SELECT {_SOURCE_COLUMNS} FROM sources "
            "WHERE kind = ? AND (last_checked_at IS NULL OR last_checked_at < datetime('now', ?))"
        )
        params: list[Any] = [SourceKind.URL.value, f"-{int(older_than_days)} days"]
        if tenant_id is not None:
            sql += " AND tenant_id = ?"
            params.append(tenant_id)
        sql += " ORDER BY last_checked_at IS NOT NULL, last_checked_at, rowid"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        return [_row_to_source(r) for r in self._conn.execute(sql, params).fetchall()]

    def delete_source(self, tenant_id: str, source_id: str) -> None:
        """Delete a source record. Chunks must be removed first (FTS/vec have no cascade)."""
        self._conn.execute(
            "DELETE FROM sources WHERE tenant_id = ? AND id = ?", (tenant_id, source_id)
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Source lifecycle
    # ------------------------------------------------------------------

    def mark_ingesting(self, tenant_id: str, source_id: str) -> None:
        self._update_source(
            tenant_id,
            source_id,
            {"status": SourceStatus.INGESTING.value, "last_error": None},
        )

    def mark_ingest_completed(
        self,
        tenant_id: str,
        source_id: str,
        character_count: int,
        content_hash: str | None = None,
        note: str | None = None,
    ) -> None:
        """Record a finished ingestion run.

        *note* is stored in ``last_error`` for runs that finished without
        storing anything (e.g. no chunk passed validation).
        """
        fields: dict[str, Any] = {
            "status": SourceStatus.COMPLETED.value,
            "character_count": character_count,
            "last_error": _truncate(note),
        }
        if content_hash is not None:
            fields["content_hash"] = content_hash
        self._update_source(tenant_id, source_id, fields, stamp="last_ingest_at")

    def mark_ingest_failed(self, tenant_id: str, source_id: str, error: str) -> None:
        self._update_source(
            tenant_id,
            source_id,
            {"status": SourceStatus.FAILED_INGEST.value, "last_error": _truncate(error)},
        )

    def record_check(
        self,
        tenant_id: str,
        source_id: str,
        check_status: str,
        content_hash: str | None = None,
        status: SourceStatus | None = None,
    ) -> None:
        """Persist the outcome of an accessibility/content check.

        ``last_checked_at`` and ``last_check_status`` are always written; the
        content hash and main status only when given.
        """
        fields: dict[str, Any] = {"last_check_status": check_status}
        if content_hash is not None:
            fields["content_hash"] = content_hash
        if status is not None:
            fields["status"] = SourceStatus(status).value
        self._update_source(tenant_id, source_id, fields, stamp="last_checked_at")

    def _update_source(
        self,
        tenant_id: str,
        source_id: str,
        fields: dict[str, Any],
        stamp: str | None = None,
    ) -> None:
        assignments = [f"{col} = ?" for col in fields]
        assignments.append("updated_at = datetime('now')")
        if stamp is not None:
            assignments.append(f"{stamp} = datetime('now')")
        self._conn.execute(
            f"UPDATE sources SET {', '.join(assignments)} WHERE tenant_id = ? AND id = ?",
            (*fields.values(), tenant_id, source_id),
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def add_chunks(self, chunks: list[Chunk], vec_table: str | None = None) -> list[int]:
        """Insert chunks + FTS5 entries (+ vectors) in one transaction.

        Chunks without an embedding are stored without a vector row.

        Returns:
            The new rowids, in input order.
        """
        rowids: list[int] = []
        try:
            for chunk in chunks:
                cur = self._conn.execute(
                    """
                    INSERT INTO chunks (id, tenant_id, source_id, chunk_index, content, metadata)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        chunk.id,
                        chunk.tenant_id,
                        chunk.source_id,
                        chunk.chunk_index,
                        chunk.content,
                        chunk.metadata.to_json(),
                    ),
                )
                rowid = cur.lastrowid
                # Keep FTS5 in sync with explicit rowid mapping
                self._conn.execute(
                    "INSERT INTO chunks_fts(rowid, content) VALUES (?, ?)",
                    (rowid, chunk.content),
                )
                if vec_table is not None and chunk.embedding is not None:
                    self._conn.execute(
                        f"INSERT INTO {vec_table}(rowid, embedding) VALUES (?, ?)",
                        (rowid, json.dumps(chunk.embedding)),
                    )
                chunk.rowid = rowid
                rowids.append(rowid)
            self._conn.commit()
        except sqlite3.Error:
            self._conn.rollback()
            raise
        return rowids

    def list_chunks_by_source(self, tenant_id: str, source_id: str) -> list[Chunk]:
        """Return a source's chunks ordered by chunk_index."""
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks c "
            "WHERE c.tenant_id = ? AND c.source_id = ? ORDER BY c.chunk_index",
            (tenant_id, source_id),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks_by_source(self, tenant_id: str, source_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE tenant_id = ? AND source_id = ?",
            (tenant_id, source_id),
        ).fetchone()[0]

    def count_chunks(self, tenant_id: str | None = None) -> int:
        if tenant_id is None:
            return self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE tenant_id = ?", (tenant_id,)
        ).fetchone()[0]

    def delete_chunks_by_source(self, tenant_id: str, source_id: str) -> int:
        """Delete a source's chunks with their FTS entries and vectors.

        FTS5 and vec0 tables have no cascade, so their rows are removed by
        rowid first.

        Returns:
            Number of chunk rows deleted.
        """
        rowids = [
            r[0]
            for r in self._conn.execute(
                "SELECT rowid FROM chunks WHERE tenant_id = ? AND source_id = ?",
                (tenant_id, source_id),
            ).fetchall()
        ]
        if not rowids:
            return 0

        placeholders = ",".join("?" * len(rowids))
        try:
            for table in list_vec_tables(self._conn):
                self._conn.execute(
                    f"DELETE FROM [{table}] WHERE rowid IN ({placeholders})",  # noqa: S608
                    rowids,
                )
            self._conn.execute(
                f"DELETE FROM chunks_fts WHERE rowid IN ({placeholders})", rowids
            )
            cur = self._conn.execute(
                "DELETE FROM chunks WHERE tenant_id = ? AND source_id = ?",
                (tenant_id, source_id),
            )
            self._conn.commit()
        except sqlite3.Error:
            self._conn.rollback()
            raise
        return cur.rowcount

    # ------------------------------------------------------------------
    # Vector search
    # ------------------------------------------------------------------

    def search_vec(
        self,
        tenant_id: str,
        table: str,
        embedding: list[float],
        limit: int = 10,
        min_similarity: float = 0.0,
    ) -> list[tuple[Chunk, float]]:
        """Cosine-similarity search within one tenant's chunks.

        Returns (chunk, similarity) pairs, best first, with
        similarity = 1 - cosine distance and below-threshold rows dropped.
        """
        rows = self._conn.execute(
            f"""
            SELECT * FROM (
                SELECT {_CHUNK_COLUMNS},
                       1.0 - vec_distance_cosine(v.embedding, ?) AS similarity
                FROM chunks c JOIN {table} v ON v.rowid = c.rowid
                WHERE c.tenant_id = ?
            )
            WHERE similarity >= ?
            ORDER BY similarity DESC
            LIMIT ?
            """,
            (json.dumps(embedding), tenant_id, min_similarity, limit),
        ).fetchall()
        return [(_row_to_chunk(r), float(r["similarity"])) for r in rows]

    # ------------------------------------------------------------------
    # FTS5 / BM25 search
    # ------------------------------------------------------------------

    def search_fts(
        self, tenant_id: str, query: str, limit: int = 10, expand: bool = True
    ) -> list[tuple[Chunk, float]]:
        """BM25 full-text search within one tenant's chunks.

        bm25() returns negative values; lower (more negative) = better match.
        The raw score is returned so callers can map it onto their own scale.
        """
        fts_query = build_fts_query(query, expand=expand)
        if not fts_query:
            return []
        rows = self._conn.execute(
            f"""
            SELECT {_CHUNK_COLUMNS}, bm25(chunks_fts) AS score
            FROM chunks_fts JOIN chunks c ON c.rowid = chunks_fts.rowid
            WHERE chunks_fts MATCH ? AND c.tenant_id = ?
            ORDER BY score
            LIMIT ?
            """,
            (fts_query, tenant_id, limit),
        ).fetchall()
        return [(_row_to_chunk(r), float(r["score"])) for r in rows]

    # ------------------------------------------------------------------
    # Query cache
    # ------------------------------------------------------------------

    def cache_get(self, cache_key: str, now: float) -> str | None:
        """Return the cached payload for *cache_key* unless it has expired."""
        row = self._conn.execute(
            "SELECT payload FROM query_cache WHERE cache_key = ? AND expires_at > ?",
            (cache_key, now),
        ).fetchone()
        return row["payload"] if row else None

    def cache_put(self, cache_key: str, payload: str, expires_at: float) -> None:
        self._conn.execute(
            """
            INSERT INTO query_cache (cache_key, payload, expires_at) VALUES (?, ?, ?)
            ON CONFLICT(cache_key) DO UPDATE SET
                payload = excluded.payload,
                expires_at = excluded.expires_at
            """,
            (cache_key, payload, expires_at),
        )
        self._conn.commit()

    def cache_purge(self, now: float | None = None) -> int:
        """Delete expired cache rows, or every row when *now* is None."""
        if now is None:
            cur = self._conn.execute("DELETE FROM query_cache")
        else:
            cur = self._conn.execute("DELETE FROM query_cache WHERE expires_at <= ?", (now,))
        self._conn.commit()
        return cur.rowcount


# ------------------------------------------------------------------
# FTS query building
# ------------------------------------------------------------------

_FTS_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def build_fts_query(query: str, expand: bool = True) -> str:
    """Turn free text into an FTS5 MATCH expression.

    FTS5 rejects bare punctuation and treats words like AND/NOT as operators,
    so every token is quoted and the tokens are OR-ed; bm25 then ranks
    documents matching more of them higher. With *expand*, each token's
    synonyms and acronym expansion join the OR list (multi-word entries as
    phrases).
    """
    terms: list[str] = []
    for token in _FTS_TOKEN_RE.findall(query):
        for term in expand_term(token) if expand else [token]:
            if term not in terms:
                terms.append(term)
    return " OR ".join(f'"{t}"' for t in terms)


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _truncate(text: str | None) -> str | None:
    if text is None:
        return None
    return text[:MAX_ERROR_CHARS]


def _row_to_source(row: sqlite3.Row) -> KnowledgeSource:
    return KnowledgeSource(
        id=row["id"],
        tenant_id=row["tenant_id"],
        kind=SourceKind(row["kind"]),
        name=row["name"],
        location=row["location"],
        content=row["content"],
        status=SourceStatus(row["status"]),
        content_hash=row["content_hash"],
        character_count=row["character_count"],
        category_tags=json.loads(row["category_tags"] or "[]"),
        custom_metadata=json.loads(row["custom_metadata"] or "{}"),
        last_ingest_at=row["last_ingest_at"],
        last_checked_at=row["last_checked_at"],
        last_check_status=row["last_check_status"],
        last_error=row["last_error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        rowid=row["rowid"],
        id=row["id"],
        tenant_id=row["tenant_id"],
        content=row["content"],
        metadata=ChunkMetadata.from_dict(json.loads(row["metadata"] or "{}")),
        created_at=row["created_at"],
    )
