"""Tests for the noteindex config loader."""

from __future__ import annotations

import stat
import warnings
from pathlib import Path

import pytest
import yaml

from noteindex.config import (
    _API_KEY_RE,
    ConfigError,
    ensure_global_config,
    load_config,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> None:
    path.write_text(yaml.dump(data), encoding="utf-8")


@pytest.fixture(autouse=True)
def _clear_model_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("NOTEINDEX_EMBEDDING_MODEL", raising=False)
    monkeypatch.delenv("NOTEINDEX_COMPLETION_MODEL", raising=False)


# ---------------------------------------------------------------------------
# Defaults with no config files present
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(tmp_path: Path) -> None:
    """No config files → all hardcoded defaults."""
    missing_global = tmp_path / "nonexistent" / "config.yaml"
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)

    assert cfg.embedding.model == "openai/text-embedding-3-small"
    assert cfg.embedding.dimensions == 1536
    assert cfg.completion.model == "anthropic/claude-haiku-4-5"
    assert cfg.chunker.max_chars == 1600
    assert cfg.chunker.overlap_chars == 200
    assert cfg.pipeline.recover_batch == 50
    assert cfg.cluster.min_summaries == 5
    assert cfg.cluster.min_interval_hours == 23.0
    assert cfg.search.result_limit == 15
    assert cfg.search.rrf_k == 60
    assert cfg.search.cluster_boost == 0.05
    assert cfg.search.backfill_threshold == 10


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_global_overrides_defaults(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"completion": {"model": "openai/gpt-4o-mini"}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.completion.model == "openai/gpt-4o-mini"
    assert cfg.embedding.model == "openai/text-embedding-3-small"


@pytest.mark.parametrize("content", ["", "null\n"])
def test_empty_global_file(tmp_path: Path, content: str) -> None:
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text(content, encoding="utf-8")

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.search.result_limit == 15


def test_project_overrides_global(tmp_path: Path) -> None:
    """Per-project noteindex.yaml wins over the global file, key by key."""
    global_cfg = tmp_path / "global.yaml"
    _write_yaml(global_cfg, {"search": {"result_limit": 20, "rrf_k": 50}})
    _write_yaml(tmp_path / "noteindex.yaml", {"search": {"result_limit": 5}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.search.result_limit == 5
    assert cfg.search.rrf_k == 50


def test_values_are_coerced(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "noteindex.yaml", {"cluster": {"min_interval_hours": 12, "k_max": "8"}})

    cfg = load_config(project_dir=tmp_path, global_config_path=tmp_path / "none.yaml")
    assert cfg.cluster.min_interval_hours == 12.0
    assert isinstance(cfg.cluster.min_interval_hours, float)
    assert cfg.cluster.k_max == 8


def test_bad_value_raises(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "noteindex.yaml", {"search": {"result_limit": "many"}})

    with pytest.raises(ConfigError, match="search.result_limit"):
        load_config(project_dir=tmp_path, global_config_path=tmp_path / "none.yaml")


def test_section_must_be_mapping(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "noteindex.yaml", {"chunker": [1, 2]})

    with pytest.raises(ConfigError, match="must be a mapping"):
        load_config(project_dir=tmp_path, global_config_path=tmp_path / "none.yaml")


def test_overlap_must_be_below_max(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "noteindex.yaml", {"chunker": {"max_chars": 100, "overlap_chars": 100}})

    with pytest.raises(ConfigError, match="overlap_chars"):
        load_config(project_dir=tmp_path, global_config_path=tmp_path / "none.yaml")


def test_k_bounds_validated(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "noteindex.yaml", {"cluster": {"k_min": 10, "k_max": 4}})

    with pytest.raises(ConfigError, match="k_min"):
        load_config(project_dir=tmp_path, global_config_path=tmp_path / "none.yaml")


# ---------------------------------------------------------------------------
# API key guard
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "bad_key",
    ["api_key", "apikey", "OPENAI_API_KEY", "secret", "password", "token", "api-key"],
)
def test_global_config_rejects_api_key_fields(tmp_path: Path, bad_key: str) -> None:
    """Global config containing API key-like field names raises ConfigError."""
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text(f"{bad_key}: sk-abc123\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="forbidden key"):
        load_config(project_dir=tmp_path, global_config_path=global_cfg)


def test_global_config_rejects_nested_api_key(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"embedding": {"api_key": "sk-secret"}})

    with pytest.raises(ConfigError, match="embedding.api_key"):
        load_config(project_dir=tmp_path, global_config_path=global_cfg)


@pytest.mark.parametrize("ok_key", ["max_tokens", "rrf_k", "batch_size", "dimensions"])
def test_api_key_pattern_allows_tuning_keys(ok_key: str) -> None:
    assert not _API_KEY_RE.search(ok_key)


# ---------------------------------------------------------------------------
# Unknown key warnings
# ---------------------------------------------------------------------------


def test_unknown_top_level_key_warns(tmp_path: Path) -> None:
    """Unknown top-level key in config emits UserWarning (not error)."""
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"unknown_section": {"foo": "bar"}})

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)

    assert any("unknown_section" in str(w.message) for w in caught)
    assert cfg.completion.model == "anthropic/claude-haiku-4-5"


# ---------------------------------------------------------------------------
# Environment variable overrides
# ---------------------------------------------------------------------------


def test_env_var_completion_model_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """NOTEINDEX_COMPLETION_MODEL overrides the config file value."""
    _write_yaml(tmp_path / "noteindex.yaml", {"completion": {"model": "openai/gpt-4o-mini"}})
    monkeypatch.setenv("NOTEINDEX_COMPLETION_MODEL", "ollama/llama3")

    cfg = load_config(project_dir=tmp_path, global_config_path=tmp_path / "none.yaml")
    assert cfg.completion.model == "ollama/llama3"


def test_env_var_embedding_model_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NOTEINDEX_EMBEDDING_MODEL", "openai/text-embedding-3-large")

    cfg = load_config(project_dir=tmp_path, global_config_path=tmp_path / "none.yaml")
    assert cfg.embedding.model == "openai/text-embedding-3-large"


def test_env_var_absent_does_not_override(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "noteindex.yaml", {"completion": {"model": "openai/gpt-4o-mini"}})

    cfg = load_config(project_dir=tmp_path, global_config_path=tmp_path / "none.yaml")
    assert cfg.completion.model == "openai/gpt-4o-mini"


# ---------------------------------------------------------------------------
# ensure_global_config
# ---------------------------------------------------------------------------


def test_ensure_global_config_creates_file(tmp_path: Path) -> None:
    target = tmp_path / ".noteindex" / "config.yaml"
    result = ensure_global_config(global_config_path=target)

    assert result == target
    parsed = yaml.safe_load(target.read_text(encoding="utf-8"))
    assert parsed["embedding"]["model"] == "openai/text-embedding-3-small"

    def _no_api_keys(obj: object) -> bool:
        if isinstance(obj, dict):
            return all(
                not _API_KEY_RE.search(str(k)) and _no_api_keys(v) for k, v in obj.items()
            )
        return True

    assert _no_api_keys(parsed)
    assert stat.S_IMODE(target.stat().st_mode) == 0o600

    # The generated file loads cleanly through the guard.
    cfg = load_config(project_dir=tmp_path, global_config_path=target)
    assert cfg.completion.model == "anthropic/claude-haiku-4-5"


def test_ensure_global_config_keeps_existing(tmp_path: Path) -> None:
    target = tmp_path / "config.yaml"
    target.write_text("search:\n  result_limit: 3\n", encoding="utf-8")

    ensure_global_config(global_config_path=target)
    assert target.read_text(encoding="utf-8") == "search:\n  result_limit: 3\n"
