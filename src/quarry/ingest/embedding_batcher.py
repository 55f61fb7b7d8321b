"""Embedding batcher: fixed-size LiteLLM embedding batches with partial-failure tolerance.

Per batch:
- newlines are replaced by spaces and the batch is embedded in one call;
- vectors are zipped back onto chunks by position;
- a count mismatch drops the whole batch, a missing vector drops its chunk;
- a fatal provider error (auth, quota, rate limit) aborts the run;
- any other provider error drops the batch and the run continues.

Batches are separated by a fixed delay (not after the last one).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from quarry.db.models import Chunk
from quarry.errors import EmbeddingProviderError
from quarry.rag import llm_client

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingConfig:
    """Configuration for embedding generation."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 20
    batch_delay: float = 0.5
    timeout: float = 60.0


@dataclass
class BatchError:
    """One failed batch (or the failed part of one).

    Attributes:
        batch_index: Zero-based batch number.
        start: Position of the batch's first chunk in the input list.
        chunk_ids: Ids of every chunk dropped by this failure.
        chunk_indexes: ``chunk_index`` of every dropped chunk.
        message: What went wrong.
    """

    batch_index: int
    start: int
    chunk_ids: list[str]
    chunk_indexes: list[int]
    message: str

    def __str__(self) -> str:
        return f"batch {self.batch_index} (chunks {self.chunk_indexes}): {self.message}"


@dataclass
class EmbeddingResult:
    embedded: list[Chunk] = field(default_factory=list)
    tokens_used: int = 0
    errors: list[BatchError] = field(default_factory=list)
    fatal: str | None = None

    @property
    def success(self) -> bool:
        if self.fatal is not None:
            return False
        return bool(self.embedded) or not self.errors


class EmbeddingBatcher:
    """Attach embeddings to chunks in batches.

    Args:
        config: Model, batch size, inter-batch delay and per-call timeout.
        sleep: Delay function, replaceable in tests.
    """

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config or EmbeddingConfig()
        if self._config.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._sleep = sleep

    @property
    def config(self) -> EmbeddingConfig:
        return self._config

    def embed(self, chunks: list[Chunk], log_context: str = "") -> EmbeddingResult:
        """Embed *chunks* in order. Chunks are mutated in place (``embedding``).

        Args:
            chunks: Chunks to embed.
            log_context: Prefix for log lines (e.g. tenant/source ids).

        Returns:
            EmbeddingResult with the chunks that received a vector, the
            aggregate token usage, per-batch errors and the fatal message if
            the run was aborted.
        """
        cfg = self._config
        result = EmbeddingResult()
        size = cfg.batch_size
        n_batches = (len(chunks) + size - 1) // size

        for batch_index, start in enumerate(range(0, len(chunks), size)):
            batch = chunks[start : start + size]
            inputs = [c.content.replace("\n", " ") for c in batch]
            logger.debug(
                "%sembedding batch %d/%d (%d chunks)", log_context, batch_index + 1, n_batches, len(batch)
            )
            try:
                vectors, tokens = llm_client.embed_batch(cfg.model, inputs, timeout=cfg.timeout)
            except EmbeddingProviderError as exc:
                result.errors.append(_batch_error(batch_index, start, batch, str(exc)))
                if exc.fatal:
                    logger.error("%sfatal embedding error, aborting run: %s", log_context, exc)
                    result.fatal = f"Fatal embedding error: {exc}"
                    return result
                logger.warning("%sembedding batch %d failed: %s", log_context, batch_index, exc)
            else:
                result.tokens_used += tokens
                self._attach(batch_index, start, batch, vectors, result, log_context)

            if start + size < len(chunks) and cfg.batch_delay > 0:
                self._sleep(cfg.batch_delay)

        logger.info(
            "%sembedded %d/%d chunks, %d tokens, %d batch errors",
            log_context,
            len(result.embedded),
            len(chunks),
            result.tokens_used,
            len(result.errors),
        )
        return result

    @staticmethod
    def _attach(
        batch_index: int,
        start: int,
        batch: list[Chunk],
        vectors: list[list[float] | None],
        result: EmbeddingResult,
        log_context: str,
    ) -> None:
        if len(vectors) != len(batch):
            msg = f"embedding count mismatch: expected {len(batch)}, got {len(vectors)}"
            logger.warning("%sbatch %d dropped: %s", log_context, batch_index, msg)
            result.errors.append(_batch_error(batch_index, start, batch, msg))
            return

        missing: list[Chunk] = []
        for chunk, vector in zip(batch, vectors):
            if vector is None:
                missing.append(chunk)
                continue
            chunk.embedding = list(vector)
            result.embedded.append(chunk)
        if missing:
            msg = f"{len(missing)} chunk(s) returned without an embedding"
            logger.warning("%sbatch %d: %s", log_context, batch_index, msg)
            result.errors.append(_batch_error(batch_index, start, missing, msg))


def _batch_error(batch_index: int, start: int, chunks: list[Chunk], message: str) -> BatchError:
    return BatchError(
        batch_index=batch_index,
        start=start,
        chunk_ids=[c.id for c in chunks],
        chunk_indexes=[c.chunk_index for c in chunks],
        message=message,
    )
