"""noteindex configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (NOTEINDEX_EMBEDDING_MODEL, NOTEINDEX_COMPLETION_MODEL)
  3. Per-project noteindex.yaml  (next to the database)
  4. Global ~/.noteindex/config.yaml  (model defaults only — no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load() — never yaml.load().
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

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".noteindex"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "noteindex.yaml"

# Fields that suggest an API key are forbidden in global config.
# Does NOT match legitimate config keys like max_tokens or rrf_k.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # github_token, access_token (suffix)
    r"|^token$"                  # exactly "token" (standalone)
    r"|_secret$"                 # client_secret (suffix)
    r"|^secret$"                 # exactly "secret" (standalone)
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

# Known top-level sections; unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "completion", "chunker", "pipeline", "cluster", "search"]
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
    """Embedding model configuration (noteindex.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 100


@dataclass
class CompletionCfg:
    """Background LLM configuration (noteindex.yaml: completion:).

    Used for summaries, query expansion, re-ranking, cluster themes and
    entity detection.
    """

    model: str = "anthropic/claude-haiku-4-5"


@dataclass
class ChunkerCfg:
    """Sentence chunker budgets in characters (noteindex.yaml: chunker:)."""

    max_chars: int = 1600
    overlap_chars: int = 200
    context_label: str = "Document"


@dataclass
class PipelineCfg:
    """Background indexing pipeline (noteindex.yaml: pipeline:)."""

    recover_batch: int = 50
    workers: int = 4
    summary_max_chars: int = 6000


@dataclass
class ClusterCfg:
    """Layer-3 cluster batch (noteindex.yaml: cluster:)."""

    min_summaries: int = 5
    min_interval_hours: float = 23.0
    k_min: int = 2
    k_max: int = 20
    max_iter: int = 50
    epsilon: float = 1e-4
    representatives: int = 5


@dataclass
class SearchCfg:
    """Hybrid search tuning (noteindex.yaml: search:).

    rrf_k and cluster_boost are heuristics; they are exposed rather than
    derived.
    """

    result_limit: int = 15
    lexical_limit: int = 20
    vector_top_k: int = 20
    cluster_top_k: int = 3
    rrf_k: int = 60
    cluster_boost: float = 0.05
    backfill_threshold: int = 10
    backfill_rank: int = 21
    rerank_excerpt_chars: int = 250
    graph_neighbor_limit: int = 5


@dataclass
class NoteIndexConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    completion: CompletionCfg = field(default_factory=CompletionCfg)
    chunker: ChunkerCfg = field(default_factory=ChunkerCfg)
    pipeline: PipelineCfg = field(default_factory=PipelineCfg)
    cluster: ClusterCfg = field(default_factory=ClusterCfg)
    search: SearchCfg = field(default_factory=SearchCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names.

    Global config must never store credentials; they belong in env vars.
    """

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
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
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


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


def _parse_section(raw: Any, defaults: Any, section: str) -> Any:
    """Build a section dataclass from *raw*, coercing values to the default's type."""
    if raw is None:
        return defaults
    if not isinstance(raw, dict):
        raise ConfigError(f"Config section '{section}' must be a mapping, got {type(raw).__name__}")
    values: dict[str, Any] = {}
    for f in fields(defaults):
        current = getattr(defaults, f.name)
        if f.name not in raw:
            values[f.name] = current
            continue
        try:
            values[f.name] = type(current)(raw[f.name])
        except (TypeError, ValueError) as exc:
            raise ConfigError(
                f"Invalid value for '{section}.{f.name}': {raw[f.name]!r} ({exc})"
            ) from exc
    return type(defaults)(**values)


def _cfg_from_dict(data: dict[str, Any]) -> NoteIndexConfig:
    """Build a *NoteIndexConfig* from a merged raw YAML dict."""
    cfg = NoteIndexConfig()
    for f in fields(cfg):
        if f.name in data:
            setattr(cfg, f.name, _parse_section(data[f.name], getattr(cfg, f.name), f.name))

    if cfg.chunker.overlap_chars >= cfg.chunker.max_chars:
        raise ConfigError("chunker.overlap_chars must be smaller than chunker.max_chars")
    if cfg.cluster.k_min < 1 or cfg.cluster.k_min > cfg.cluster.k_max:
        raise ConfigError("cluster.k_min must be >= 1 and <= cluster.k_max")
    return cfg


def _apply_env_overrides(cfg: NoteIndexConfig) -> NoteIndexConfig:
    """Apply NOTEINDEX_* environment variable overrides (layer 2)."""
    if model := os.environ.get("NOTEINDEX_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if model := os.environ.get("NOTEINDEX_COMPLETION_MODEL"):
        cfg.completion.model = model
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> NoteIndexConfig:
    """Load and return a merged *NoteIndexConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *noteindex.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields or a value
            cannot be coerced to its field type.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    return _apply_env_overrides(cfg)


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.noteindex/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# noteindex global configuration: model defaults only.\n"
            "# NEVER store API keys here; use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "#   export ANTHROPIC_API_KEY=sk-ant-...\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-3-small\n"
            "  dimensions: 1536\n"
            "\n"
            "completion:\n"
            "  model: anthropic/claude-haiku-4-5\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
