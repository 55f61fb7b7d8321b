"""Domain models for the Quarry database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SourceKind(str, Enum):
    URL = "url"
    PDF = "pdf"
    TXT = "txt"
    ARTICLE = "article"


class SourceStatus(str, Enum):
    UPLOADED = "uploaded"
    INGESTING = "ingesting"
    COMPLETED = "completed"
    FAILED_INGEST = "failed_ingest"
    PENDING_REINGEST = "pending_reingest"


@dataclass
class KnowledgeSource:
    """A tenant-owned document registered for ingestion.

    ``location`` is the URL for ``url`` sources, a path relative to the
    storage root for ``pdf``/``txt`` sources and unused for ``article``
    sources, whose text lives in ``content``.
    """

    id: str
    tenant_id: str
    kind: SourceKind
    name: str
    location: str = ""
    content: str | None = None
    status: SourceStatus = SourceStatus.UPLOADED
    content_hash: str | None = None
    character_count: int | None = None
    category_tags: list[str] = field(default_factory=list)
    custom_metadata: dict[str, Any] = field(default_factory=dict)
    last_ingest_at: str | None = None
    last_checked_at: str | None = None
    last_check_status: str | None = None
    last_error: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class HeadingRef:
    """One ancestor heading of a chunk (level 1-6 and its text)."""

    level: int
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"level": self.level, "text": self.text}


@dataclass
class ChunkMetadata:
    """Typed chunk metadata with a residual map for open-ended keys.

    Known keys are serialized at the top level of the stored JSON object;
    everything in ``extra`` is merged underneath them, so a known key always
    wins over an ``extra`` entry of the same name.
    """

    original_source_id: str
    source_name: str = ""
    url: str | None = None
    hierarchy: list[HeadingRef] = field(default_factory=list)
    chunk_index: int = 0
    chunk_char_length: int = 0
    content_type_hint: str = "text"
    source_document_updated_at: str | None = None
    contributing_tags: list[str] = field(default_factory=list)
    total_document_chunks: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    KNOWN_KEYS = (
        "original_source_id",
        "source_name",
        "url",
        "hierarchy",
        "chunk_index",
        "chunk_char_length",
        "content_type_hint",
        "source_document_updated_at",
        "contributing_tags",
        "total_document_chunks",
    )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.extra)
        data.update(
            {
                "original_source_id": self.original_source_id,
                "source_name": self.source_name,
                "chunk_index": self.chunk_index,
                "chunk_char_length": self.chunk_char_length,
                "content_type_hint": self.content_type_hint,
            }
        )
        if self.url is not None:
            data["url"] = self.url
        if self.hierarchy:
            data["hierarchy"] = [h.to_dict() for h in self.hierarchy]
        if self.source_document_updated_at is not None:
            data["source_document_updated_at"] = self.source_document_updated_at
        if self.contributing_tags:
            data["contributing_tags"] = list(self.contributing_tags)
        if self.total_document_chunks is not None:
            data["total_document_chunks"] = self.total_document_chunks
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChunkMetadata:
        return cls(
            original_source_id=str(data.get("original_source_id", "")),
            source_name=str(data.get("source_name", "")),
            url=data.get("url"),
            hierarchy=[
                HeadingRef(level=int(h["level"]), text=str(h["text"]))
                for h in data.get("hierarchy") or []
            ],
            chunk_index=int(data.get("chunk_index", 0)),
            chunk_char_length=int(data.get("chunk_char_length", 0)),
            content_type_hint=str(data.get("content_type_hint", "text")),
            source_document_updated_at=data.get("source_document_updated_at"),
            contributing_tags=list(data.get("contributing_tags") or []),
            total_document_chunks=data.get("total_document_chunks"),
            extra={k: v for k, v in data.items() if k not in cls.KNOWN_KEYS},
        )


@dataclass
class Chunk:
    id: str
    tenant_id: str
    content: str
    metadata: ChunkMetadata
    embedding: list[float] | None = None
    created_at: str | None = None
    rowid: int | None = None  # set after insert; None for unsaved chunks

    @property
    def source_id(self) -> str:
        return self.metadata.original_source_id

    @property
    def chunk_index(self) -> int:
        return self.metadata.chunk_index
