"""Chunk store: replace-or-delete semantics over the repository.

Chunks are never updated in place. Re-ingesting a source deletes every
stored chunk for it and inserts the new set.
"""

from __future__ import annotations

import logging
import sqlite3

from quarry.db.models import Chunk
from quarry.db.repository import Repository
from quarry.db.vectors import ensure_vec_table, model_to_slug

logger = logging.getLogger(__name__)


class ChunkStore:
    """Persist and retract the chunks of a source.

    Args:
        repo: Open Repository instance.
        embedding_model: Model whose vec table receives the embeddings.
        dimensions: Embedding dimensions, used to create the vec table on first write.
    """

    def __init__(self, repo: Repository, embedding_model: str, dimensions: int) -> None:
        self._repo = repo
        self._embedding_model = embedding_model
        self._dimensions = dimensions

    @property
    def vec_table(self) -> str:
        return ensure_vec_table(
            self._repo.conn, model_to_slug(self._embedding_model), self._dimensions
        )

    def replace(self, tenant_id: str, source_id: str, chunks: list[Chunk]) -> int:
        """Delete the source's existing chunks, then insert *chunks*.

        A failed delete is logged and insertion still proceeds; the next
        successful re-ingestion removes any leftovers.

        Returns:
            Number of chunks inserted.
        """
        for chunk in chunks:
            if chunk.tenant_id != tenant_id or chunk.source_id != source_id:
                raise ValueError(
                    f"Chunk {chunk.id} belongs to tenant={chunk.tenant_id} "
                    f"source={chunk.source_id}, not tenant={tenant_id} source={source_id}"
                )

        try:
            removed = self._repo.delete_chunks_by_source(tenant_id, source_id)
            logger.debug(
                "tenant=%s source=%s removed %d previous chunks", tenant_id, source_id, removed
            )
        except sqlite3.Error as exc:
            logger.error(
                "tenant=%s source=%s failed to delete previous chunks: %s",
                tenant_id,
                source_id,
                exc,
            )

        if not chunks:
            return 0
        self._repo.add_chunks(chunks, self.vec_table)
        logger.info("tenant=%s source=%s stored %d chunks", tenant_id, source_id, len(chunks))
        return len(chunks)

    def delete_by_source(self, tenant_id: str, source_id: str) -> int:
        """Remove every chunk of a source with no replacement."""
        removed = self._repo.delete_chunks_by_source(tenant_id, source_id)
        logger.info("tenant=%s source=%s deleted %d chunks", tenant_id, source_id, removed)
        return removed

    def list_by_source(self, tenant_id: str, source_id: str) -> list[Chunk]:
        return self._repo.list_chunks_by_source(tenant_id, source_id)

    def count_by_source(self, tenant_id: str, source_id: str) -> int:
        return self._repo.count_chunks_by_source(tenant_id, source_id)
