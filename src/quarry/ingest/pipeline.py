"""Ingestion service: fetch → chunk → embed → store, with source status tracking.

Status lifecycle driven here:
  uploaded | completed | failed_ingest | pending_reingest
      → ingesting → completed | failed_ingest

``ingest()`` never raises. Every failure is recorded on the source
(``last_error``) and returned as ``IngestResult(success=False, error=...)``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from quarry.config import QuarryConfig
from quarry.db.models import ChunkMetadata, KnowledgeSource, SourceKind
from quarry.db.repository import Repository
from quarry.db.store import ChunkStore
from quarry.errors import SourceNotFoundError
from quarry.ingest.base import BaseChunker, ChunkingPolicy
from quarry.ingest.embedding_batcher import EmbeddingBatcher, EmbeddingConfig
from quarry.ingest.html import HtmlChunker
from quarry.ingest.pdf import extract_pdf_text
from quarry.ingest.plaintext import PlainTextChunker
from quarry.ingest.web import WebFetcher, extract_page_text, text_fingerprint

logger = logging.getLogger(__name__)

NO_CHUNKS_NOTE = "No valid chunks were produced from the source content."


@dataclass
class IngestResult:
    """Outcome of one ingestion run."""

    success: bool
    chunks_stored: int = 0
    tokens_used: int = 0
    character_count: int = 0
    errors: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "chunksStored": self.chunks_stored,
            "tokensUsed": self.tokens_used,
            "characterCount": self.character_count,
            "errors": list(self.errors),
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class LoadedContent:
    text: str
    is_html: bool
    character_count: int
    content_hash: str | None = None


class IngestionService:
    """Orchestrate ingestion of a single tenant source.

    Args:
        repo: Open Repository instance.
        store: Chunk store receiving the embedded chunks.
        batcher: Embedding batcher.
        text_chunker: Chunker for plain text, PDF text and articles.
        html_chunker: Chunker for HTML pages.
        fetcher: Web fetcher for URL sources.
        storage_root: Directory that ``pdf``/``txt`` source locations are relative to.
    """

    def __init__(
        self,
        repo: Repository,
        store: ChunkStore,
        batcher: EmbeddingBatcher,
        text_chunker: BaseChunker | None = None,
        html_chunker: BaseChunker | None = None,
        fetcher: WebFetcher | None = None,
        storage_root: Path | str = ".",
    ) -> None:
        self._repo = repo
        self._store = store
        self._batcher = batcher
        self._text_chunker = text_chunker or PlainTextChunker()
        self._html_chunker = html_chunker or HtmlChunker()
        self._fetcher = fetcher or WebFetcher()
        self._storage_root = Path(storage_root)

    @classmethod
    def from_config(cls, cfg: QuarryConfig, repo: Repository) -> IngestionService:
        """Wire a service from a loaded configuration."""
        ch = cfg.chunking
        emb = cfg.embedding

        def policy(overlap: int) -> ChunkingPolicy:
            return ChunkingPolicy(
                target_words=ch.target_words,
                max_words=ch.max_words,
                min_chars=ch.min_chars,
                min_significant_words=ch.min_significant_words,
                overlap_units=overlap,
            )

        return cls(
            repo=repo,
            store=ChunkStore(repo, emb.model, emb.dimensions),
            batcher=EmbeddingBatcher(
                EmbeddingConfig(
                    model=emb.model,
                    dimensions=emb.dimensions,
                    batch_size=emb.batch_size,
                    batch_delay=emb.batch_delay,
                    timeout=emb.timeout,
                )
            ),
            text_chunker=PlainTextChunker(policy(ch.sentence_overlap)),
            html_chunker=HtmlChunker(policy(ch.element_overlap), ch.min_element_chars),
            fetcher=WebFetcher(user_agent=cfg.monitor.user_agent, timeout=cfg.monitor.timeout),
            storage_root=cfg.storage.root,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def ingest(self, tenant_id: str, source_id: str) -> IngestResult:
        """Ingest one source and report what was stored."""
        ctx = f"tenant={tenant_id} source={source_id} "
        source = self._repo.get_source(tenant_id, source_id)
        if source is None:
            err = SourceNotFoundError(tenant_id, source_id)
            logger.warning("%s%s", ctx, err)
            return IngestResult(success=False, error=str(err))

        logger.info("%singest started (%s: %s)", ctx, source.kind.value, source.name)
        self._repo.mark_ingesting(tenant_id, source_id)
        character_count = 0
        try:
            loaded = self._load(source)
            character_count = loaded.character_count
            chunker = self._html_chunker if loaded.is_html else self._text_chunker
            chunks = chunker.chunk(tenant_id, loaded.text, self._base_metadata(source))

            if not chunks:
                logger.warning("%s%s", ctx, NO_CHUNKS_NOTE)
                self._repo.mark_ingest_completed(
                    tenant_id, source_id, character_count, loaded.content_hash, note=NO_CHUNKS_NOTE
                )
                return IngestResult(success=True, character_count=character_count)

            for chunk in chunks:
                chunk.metadata.total_document_chunks = len(chunks)

            embedded = self._batcher.embed(chunks, log_context=ctx)
            errors = [str(e) for e in embedded.errors]
            if not embedded.success:
                message = embedded.fatal or (
                    "Failed to generate any embeddings: " + "; ".join(errors)
                )
                self._repo.mark_ingest_failed(tenant_id, source_id, message)
                logger.error("%singest failed: %s", ctx, message)
                return IngestResult(
                    success=False,
                    tokens_used=embedded.tokens_used,
                    character_count=character_count,
                    errors=errors,
                    error=message,
                )

            stored = self._store.replace(tenant_id, source_id, embedded.embedded)
            self._repo.mark_ingest_completed(
                tenant_id, source_id, character_count, loaded.content_hash
            )
        except Exception as exc:
            # Pipeline boundary: any failure becomes a failed_ingest status.
            logger.exception("%singest failed", ctx)
            message = f"{type(exc).__name__}: {exc}"
            self._repo.mark_ingest_failed(tenant_id, source_id, message)
            return IngestResult(success=False, character_count=character_count, error=message)

        logger.info(
            "%singest completed: %d chunks, %d tokens, %d batch errors",
            ctx,
            stored,
            embedded.tokens_used,
            len(errors),
        )
        return IngestResult(
            success=True,
            chunks_stored=stored,
            tokens_used=embedded.tokens_used,
            character_count=character_count,
            errors=errors,
        )

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load(self, source: KnowledgeSource) -> LoadedContent:
        if source.kind is SourceKind.URL:
            page = self._fetcher.fetch(source.location or source.name)
            text = page.text
            if page.is_html:
                # Character count is the raw HTML length; the hash covers
                # the extracted text, matching the monitor's fingerprint.
                return LoadedContent(
                    text=text,
                    is_html=True,
                    character_count=len(text),
                    content_hash=text_fingerprint(extract_page_text(text)),
                )
            return LoadedContent(
                text=text,
                is_html=False,
                character_count=len(text),
                content_hash=text_fingerprint(text.strip()),
            )
        if source.kind is SourceKind.PDF:
            text = extract_pdf_text(self._resolve_stored_path(source.location))
            return LoadedContent(text=text, is_html=False, character_count=len(text))
        if source.kind is SourceKind.TXT:
            path = self._resolve_stored_path(source.location)
            text = path.read_text(encoding="utf-8", errors="replace")
            return LoadedContent(text=text, is_html=False, character_count=len(text))
        if source.kind is SourceKind.ARTICLE:
            text = source.content or ""
            return LoadedContent(text=text, is_html=False, character_count=len(text))
        raise ValueError(f"Unsupported source kind: {source.kind!r}")

    def _resolve_stored_path(self, location: str) -> Path:
        """Resolve *location* under the storage root, rejecting escapes."""
        if not location:
            raise ValueError("Source has no storage location.")
        root = self._storage_root.resolve()
        path = (root / location).resolve()
        if path != root and root not in path.parents:
            raise ValueError(f"Storage location escapes the storage root: '{location}'")
        if not path.is_file():
            raise FileNotFoundError(f"Stored file not found: '{location}'")
        return path

    @staticmethod
    def _base_metadata(source: KnowledgeSource) -> ChunkMetadata:
        extra = {
            k: v for k, v in source.custom_metadata.items() if k not in ChunkMetadata.KNOWN_KEYS
        }
        if source.category_tags:
            extra["category_tags"] = list(source.category_tags)
        return ChunkMetadata(
            original_source_id=source.id,
            source_name=source.name,
            url=source.location if source.kind is SourceKind.URL else None,
            source_document_updated_at=source.updated_at,
            extra=extra,
        )
