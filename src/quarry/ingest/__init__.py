"""Quarry ingest pipeline: normalizer, chunkers, embedding batcher, ingestion service."""

from quarry.ingest.base import BaseChunker, ChunkingPolicy
from quarry.ingest.embedding_batcher import EmbeddingBatcher, EmbeddingConfig
from quarry.ingest.html import HtmlChunker
from quarry.ingest.normalizer import normalize_text
from quarry.ingest.plaintext import PlainTextChunker

__all__ = [
    "BaseChunker",
    "ChunkingPolicy",
    "EmbeddingBatcher",
    "EmbeddingConfig",
    "HtmlChunker",
    "PlainTextChunker",
    "normalize_text",
]
