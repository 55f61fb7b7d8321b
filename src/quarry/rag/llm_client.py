"""LiteLLM client wrapper for embeddings, with API key validation.

All embedding calls (ingestion batches and search queries) route through this
module so both sides always use the same model and the same error mapping.
"""

from __future__ import annotations

import os

import litellm

from quarry.errors import EmbeddingProviderError

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "ollama": None,  # Local, no key required
}

_FATAL_STATUS = frozenset({401, 403, 429})


def provider_of(model: str) -> str:
    return model.split("/")[0].lower() if "/" in model else "openai"


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = provider_of(model)
    env_var = _PROVIDER_ENV.get(provider)

    if env_var is None:
        return

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def is_fatal_provider_error(exc: BaseException) -> bool:
    """True for authentication, permission, quota and rate-limit failures."""
    fatal_types = (
        litellm.AuthenticationError,
        litellm.PermissionDeniedError,
        litellm.RateLimitError,
    )
    if isinstance(exc, fatal_types):
        return True
    return getattr(exc, "status_code", None) in _FATAL_STATUS


def embed_batch(
    model: str,
    texts: list[str],
    timeout: float | None = None,
    num_retries: int = 0,
) -> tuple[list[list[float] | None], int]:
    """Embed *texts* in a single provider call.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        texts: Inputs, embedded in order.
        timeout: Per-call timeout in seconds.
        num_retries: LiteLLM retries on transient errors.

    Returns:
        (vectors, total_tokens). ``vectors`` has one entry per returned item,
        in provider order; an item without an embedding is None. Its length
        may differ from ``len(texts)`` if the provider misbehaves.

    Raises:
        EmbeddingProviderError: On any provider failure; ``fatal`` is set for
            errors that should abort the whole run.
    """
    try:
        response = litellm.embedding(
            model=model,
            input=texts,
            timeout=timeout,
            num_retries=num_retries,
        )
    except Exception as exc:
        raise EmbeddingProviderError(
            f"{type(exc).__name__}: {exc}",
            fatal=is_fatal_provider_error(exc),
            status=getattr(exc, "status_code", None),
        ) from exc

    vectors = [_vector_of(item) for item in response.data or []]
    return vectors, _total_tokens(response)


def embed(model: str, text: str, timeout: float | None = None, num_retries: int = 2) -> list[float]:
    """Embed a single text (search queries). Returns the embedding vector."""
    vectors, _ = embed_batch(model, [text], timeout=timeout, num_retries=num_retries)
    if not vectors or vectors[0] is None:
        raise EmbeddingProviderError(f"Provider returned no embedding for model '{model}'.")
    return vectors[0]


def _vector_of(item: object) -> list[float] | None:
    if isinstance(item, dict):
        return item.get("embedding")
    return getattr(item, "embedding", None)


def _total_tokens(response: object) -> int:
    usage = getattr(response, "usage", None)
    if usage is None:
        return 0
    if isinstance(usage, dict):
        return int(usage.get("total_tokens") or 0)
    value = getattr(usage, "total_tokens", 0)
    return value if isinstance(value, int) else 0
