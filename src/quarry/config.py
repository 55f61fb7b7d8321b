"""Quarry configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (QUARRY_EMBEDDING_MODEL, QUARRY_RERANKER_URL, QUARRY_DB,
     QUARRY_LOG_LEVEL)
  3. Per-project quarry.yaml
  4. Global ~/.quarry/config.yaml  (defaults only, no secrets)
  5. Hardcoded defaults

Secrets never live in config files. The reranker shared secret is read from
QUARRY_RERANKER_SECRET; provider keys from the provider's own variable.
All YAML reads use yaml.safe_load() and never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".quarry"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "quarry.yaml"

RERANKER_SECRET_ENV = "QUARRY_RERANKER_SECRET"

# Fields that suggest a credential; forbidden in the global config.
# Does NOT match legitimate config keys like max_tokens or top_k.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "chunking", "retrieval", "reranker", "monitor", "storage", "cache", "logging"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding model and batching (quarry.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 20
    batch_delay: float = 0.5
    timeout: float = 60.0


@dataclass
class ChunkingCfg:
    """Chunk sizing and validation (quarry.yaml: chunking:).

    Word counts are whitespace-separated words of the normalized text.
    """

    target_words: int = 200
    max_words: int = 300
    min_chars: int = 50
    min_significant_words: int = 4
    sentence_overlap: int = 1
    element_overlap: int = 1
    min_element_chars: int = 15


@dataclass
class RetrievalCfg:
    """Hybrid search (quarry.yaml: retrieval:)."""

    top_k: int = 5
    vector_weight: float = 0.5
    lexical_weight: float = 0.5
    match_threshold: float = 0.65
    candidate_multiplier: int = 2
    timeout: float = 10.0
    expand_query: bool = True
    adaptive_weights: bool = False
    recency_weight: float = 0.0


@dataclass
class RerankerCfg:
    """External cross-encoder service (quarry.yaml: reranker:)."""

    enabled: bool = False
    url: str = "http://localhost:8008"
    top_n: int = 20
    timeout: float = 4.0
    warm_interval: float = 600.0


@dataclass
class MonitorCfg:
    """URL source monitoring (quarry.yaml: monitor:)."""

    user_agent: str = "QuarryBot/0.1 (+knowledge-source-monitor)"
    timeout: float = 15.0
    recheck_days: int = 7


@dataclass
class StorageCfg:
    """Database and uploaded-file locations (quarry.yaml: storage:)."""

    db: str = ".quarry.db"
    root: str = "storage"


@dataclass
class CacheCfg:
    """Query cache (quarry.yaml: cache:). backend: memory | sqlite | none."""

    backend: str = "memory"
    max_entries: int = 1_000
    ttl_seconds: float = 300.0


@dataclass
class LoggingCfg:
    level: str = "INFO"


@dataclass
class QuarryConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    reranker: RerankerCfg = field(default_factory=RerankerCfg)
    monitor: MonitorCfg = field(default_factory=MonitorCfg)
    storage: StorageCfg = field(default_factory=StorageCfg)
    cache: CacheCfg = field(default_factory=CacheCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)

    @property
    def reranker_secret(self) -> str | None:
        return os.environ.get(RERANKER_SECRET_ENV)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any credential-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Config '{source}' contains a forbidden key '{full}'.\n"
                        f"  Secrets must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}', ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: QuarryConfig) -> None:
    ch = cfg.chunking
    if not 1 <= ch.target_words <= ch.max_words:
        raise ConfigError(
            f"chunking.target_words ({ch.target_words}) must be between 1 and "
            f"chunking.max_words ({ch.max_words})."
        )
    if cfg.cache.backend not in ("memory", "sqlite", "none"):
        raise ConfigError(
            f"cache.backend must be one of memory, sqlite, none; got '{cfg.cache.backend}'."
        )
    r = cfg.retrieval
    if r.vector_weight < 0 or r.lexical_weight < 0 or r.recency_weight < 0:
        raise ConfigError("retrieval weights must be >= 0.")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _parse_section(cls: type, raw: Any, where: str) -> Any:
    """Build dataclass *cls* from *raw*, coercing each value to the default's type."""
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config section '{where}' must be a mapping.")
    defaults = cls()
    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        if f.name not in raw:
            continue
        default = getattr(defaults, f.name)
        value = raw[f.name]
        try:
            if isinstance(default, bool):
                kwargs[f.name] = _to_bool(value)
            else:
                kwargs[f.name] = type(default)(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid value for {where}.{f.name}: {value!r}") from exc
    return cls(**kwargs)


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _cfg_from_dict(data: dict[str, Any]) -> QuarryConfig:
    """Build a *QuarryConfig* from a merged raw YAML dict."""
    cfg = QuarryConfig()
    for f in fields(QuarryConfig):
        if f.name in data:
            section_cls = type(getattr(cfg, f.name))
            setattr(cfg, f.name, _parse_section(section_cls, data[f.name], f.name))
    return cfg


def _apply_env_overrides(cfg: QuarryConfig) -> QuarryConfig:
    """Apply QUARRY_* environment variable overrides."""
    if model := os.environ.get("QUARRY_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if url := os.environ.get("QUARRY_RERANKER_URL"):
        cfg.reranker.url = url
        cfg.reranker.enabled = True
    if db := os.environ.get("QUARRY_DB"):
        cfg.storage.db = db
    if level := os.environ.get("QUARRY_LOG_LEVEL"):
        cfg.logging.level = level.upper()
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> QuarryConfig:
    """Load and return a merged *QuarryConfig*.

    Applies layers in order: global → per-project → env vars.

    Args:
        project_dir: Directory to search for *quarry.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If a config file contains credential-like fields or
            invalid values.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    for path in (global_path, search_dir / _PROJECT_CONFIG_NAME):
        if not path.exists():
            continue
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file '{path}' must contain a mapping at the top level.")
        _check_no_api_keys(raw, path)
        _warn_unknown_keys(raw, path)
        merged = _deep_merge(merged, raw)

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    _validate(cfg)
    return cfg
