"""Base chunker interface and shared sizing policy for all source types.

Both chunker variants reduce their input to an ordered list of units
(sentences or HTML elements) and pack them greedily:

1. If appending a unit would exceed ``max_words``, the accumulator is closed
   and a new one starts with the overlap window of the closed chunk followed
   by the unit.
2. Else if appending reaches ``target_words``, the unit is appended, the
   accumulator is closed and the next one starts with the overlap window.
3. Else the unit is appended.

A unit longer than ``max_words`` is cut into word windows first, and an
overlap window is dropped when window + unit would not fit, so no chunk
ever exceeds ``max_words``.
"""

from __future__ import annotations

import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace

from quarry.db.models import Chunk, ChunkMetadata, HeadingRef
from quarry.ingest.normalizer import normalize_text

_SIGNIFICANT_WORD_RE = re.compile(r"\b[a-zA-ZáéíóúüñÁÉÍÓÚÜÑ]{4,}\b")


@dataclass
class ChunkingPolicy:
    """Word-based sizing and validation thresholds shared by all chunkers."""

    target_words: int = 200
    max_words: int = 300
    min_chars: int = 50
    min_significant_words: int = 4
    overlap_units: int = 1

    def __post_init__(self) -> None:
        if self.max_words < 1:
            raise ValueError("max_words must be >= 1")
        if not 1 <= self.target_words <= self.max_words:
            raise ValueError("target_words must be in [1, max_words]")
        if self.overlap_units < 0:
            raise ValueError("overlap_units must be >= 0")


@dataclass(frozen=True)
class Unit:
    """One packable piece of text with the structure it was found in."""

    text: str
    words: int
    hierarchy: tuple[HeadingRef, ...] = ()
    tag: str = ""


@dataclass
class Piece:
    """A closed accumulator, not yet normalized or validated."""

    units: list[Unit] = field(default_factory=list)

    @property
    def hierarchy(self) -> tuple[HeadingRef, ...]:
        return self.units[-1].hierarchy if self.units else ()

    @property
    def tags(self) -> list[str]:
        seen: list[str] = []
        for u in self.units:
            if u.tag and u.tag not in seen:
                seen.append(u.tag)
        return seen


def count_words(text: str) -> int:
    return len(text.split())


def count_significant_words(text: str) -> int:
    """Alphabetic words of four or more letters."""
    return len(_SIGNIFICANT_WORD_RE.findall(text))


def make_unit(
    text: str, hierarchy: tuple[HeadingRef, ...] = (), tag: str = ""
) -> Unit:
    """Build a unit, counting words on the normalized text that will be stored."""
    return Unit(text=text, words=count_words(normalize_text(text)), hierarchy=hierarchy, tag=tag)


class GreedyPacker:
    """Accumulate units into pieces following the three size rules.

    ``seed_len`` tracks how many leading units of the accumulator are the
    overlap window carried over from the previous piece. An accumulator that
    holds nothing but its seed is never emitted.
    """

    def __init__(self, policy: ChunkingPolicy) -> None:
        self.policy = policy
        self.pieces: list[Piece] = []
        self._current: list[Unit] = []
        self._seed_len = 0

    @property
    def _current_words(self) -> int:
        return sum(u.words for u in self._current)

    def add(self, unit: Unit) -> None:
        for part in self._split_oversized(unit):
            self._add(part)

    def _add(self, unit: Unit) -> None:
        p = self.policy
        if self._current and self._current_words + unit.words > p.max_words:
            seed = self._close()
            if sum(u.words for u in seed) + unit.words > p.max_words:
                seed = []
            self._current = [*seed, unit]
            self._seed_len = len(seed)
        elif self._current_words + unit.words >= p.target_words:
            self._current.append(unit)
            self._start(self._close())
        else:
            self._current.append(unit)

    def section_break(self) -> None:
        """Close the accumulator at a structural boundary (e.g. a heading)."""
        if self._has_new_units():
            self._start(self._close())

    def finish(self) -> list[Piece]:
        if self._has_new_units():
            self._close()
        self._current = []
        self._seed_len = 0
        return self.pieces

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _has_new_units(self) -> bool:
        return len(self._current) > self._seed_len

    def _start(self, seed: list[Unit]) -> None:
        self._current = list(seed)
        self._seed_len = len(seed)

    def _close(self) -> list[Unit]:
        """Emit the accumulator unless it is pure overlap; return its overlap window."""
        closed = self._current
        if self._has_new_units():
            self.pieces.append(Piece(units=list(closed)))
        self._current = []
        self._seed_len = 0
        n = self.policy.overlap_units
        return list(closed[-n:]) if n > 0 else []

    def _split_oversized(self, unit: Unit) -> list[Unit]:
        max_words = self.policy.max_words
        if unit.words <= max_words:
            return [unit]
        words = unit.text.split()
        parts: list[Unit] = []
        start = 0
        while start < len(words):
            # Shrink the window until its normalized form fits; abbreviation
            # expansion can add words.
            end = min(start + max_words, len(words))
            while True:
                part = make_unit(" ".join(words[start:end]), unit.hierarchy, unit.tag)
                if part.words <= max_words or end - start == 1:
                    break
                end -= 1
            parts.append(part)
            start = end
        return parts


class BaseChunker(ABC):
    """Abstract base for all chunkers.

    Subclasses turn source content into units, pack them with
    ``GreedyPacker`` and hand the pieces to ``_make_chunks()``, which
    normalizes, validates and indexes them.
    """

    content_type_hint = "text"

    def __init__(self, policy: ChunkingPolicy | None = None) -> None:
        self.policy = policy or ChunkingPolicy()

    @abstractmethod
    def chunk(self, tenant_id: str, content: str, base: ChunkMetadata) -> list[Chunk]:
        """Split *content* into chunks carrying a copy of *base* metadata.

        Args:
            tenant_id: Owning tenant.
            content: Decoded source content (text or HTML).
            base: Shared source metadata; per-chunk fields are filled in.

        Returns:
            Ordered list of chunks with sequential ``chunk_index``.
        """

    def is_valid(self, text: str) -> bool:
        """True if *text* is long enough and has enough significant words."""
        return (
            len(text) >= self.policy.min_chars
            and count_significant_words(text) >= self.policy.min_significant_words
        )

    def _content_type_for(self, piece: Piece) -> str:
        return self.content_type_hint

    def _make_chunks(
        self, tenant_id: str, base: ChunkMetadata, pieces: list[Piece], separator: str = " "
    ) -> list[Chunk]:
        chunks: list[Chunk] = []
        for piece in pieces:
            text = normalize_text(separator.join(u.text for u in piece.units))
            if not self.is_valid(text):
                continue
            meta = replace(
                base,
                hierarchy=list(piece.hierarchy),
                chunk_index=len(chunks),
                chunk_char_length=len(text),
                content_type_hint=self._content_type_for(piece),
                contributing_tags=piece.tags,
                extra=dict(base.extra),
            )
            chunks.append(
                Chunk(id=str(uuid.uuid4()), tenant_id=tenant_id, content=text, metadata=meta)
            )
        return chunks
