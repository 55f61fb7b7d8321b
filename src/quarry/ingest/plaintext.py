"""Plain text chunker: sentence-aware greedy packing with sentence overlap."""

from __future__ import annotations

import re

from quarry.db.models import Chunk, ChunkMetadata
from quarry.ingest.base import BaseChunker, ChunkingPolicy, GreedyPacker, make_unit

# Sentence end punctuation followed by whitespace, or a paragraph break.
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+|\n\s*\n")


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if s and s.strip()]


class PlainTextChunker(BaseChunker):
    """Split plain text into sentence-aligned chunks.

    Sentences are packed greedily up to ``target_words``/``max_words`` and
    each chunk after the first starts with the last ``overlap_units``
    sentences of its predecessor.
    """

    content_type_hint = "text"

    def __init__(self, policy: ChunkingPolicy | None = None) -> None:
        super().__init__(policy)

    def chunk(self, tenant_id: str, content: str, base: ChunkMetadata) -> list[Chunk]:
        if not content or not content.strip():
            return []
        packer = GreedyPacker(self.policy)
        for sentence in split_sentences(content):
            unit = make_unit(sentence)
            if unit.words:
                packer.add(unit)
        return self._make_chunks(tenant_id, base, packer.finish())
