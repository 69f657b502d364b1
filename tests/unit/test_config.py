"""Tests for iterforge config loader."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from iterforge.config import (
    ConfigError,
    IterforgeConfig,
    load_config,
    write_project_config,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> None:
    path.write_text(yaml.dump(data), encoding="utf-8")


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "ITERFORGE_GENERATION_MODEL",
        "ITERFORGE_CLASSIFIER_MODEL",
        "ITERFORGE_EMBEDDING_MODEL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def missing_global(tmp_path: Path) -> Path:
    return tmp_path / "nonexistent" / "config.yaml"


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(tmp_path: Path, missing_global: Path) -> None:
    """No config files → all hardcoded defaults."""
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)

    assert isinstance(cfg, IterforgeConfig)
    assert cfg.generation.model == "openai/gpt-4o"
    assert cfg.generation.timeout is None
    assert cfg.classifier.model == "openai/gpt-4o-mini"
    assert cfg.classifier.confidence_threshold == 80
    assert cfg.classifier.cache_size == 1_000
    assert cfg.retrieval.embedding_model == "openai/text-embedding-3-small"
    assert cfg.retrieval.message_limit == 20
    assert cfg.retrieval.max_files == 15
    assert cfg.retrieval.similarity_threshold == 0.3
    assert cfg.retrieval.include_tests is False
    assert cfg.sandbox.workspace is None
    assert cfg.sandbox.restart_command == []
    assert cfg.project.foreign is False


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_global_overrides_defaults(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"generation": {"model": "anthropic/claude-3-5-sonnet-20241022"}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.generation.model == "anthropic/claude-3-5-sonnet-20241022"
    # Other defaults unchanged
    assert cfg.generation.temperature == 0.7


def test_project_overrides_global(tmp_path: Path) -> None:
    global_cfg = tmp_path / "global.yaml"
    _write_yaml(global_cfg, {"classifier": {"model": "openai/gpt-4o", "cache_size": 10}})
    _write_yaml(tmp_path / "iterforge.yaml", {"classifier": {"model": "ollama/llama3"}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.classifier.model == "ollama/llama3"
    # Deep merge keeps the sibling key from the global layer.
    assert cfg.classifier.cache_size == 10


def test_project_section_is_read(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(
        tmp_path / "iterforge.yaml",
        {"project": {"id": "abc", "name": "shop", "foreign": True}},
    )
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.project.id == "abc"
    assert cfg.project.name == "shop"
    assert cfg.project.foreign is True


def test_env_overrides_files(
    tmp_path: Path, missing_global: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write_yaml(tmp_path / "iterforge.yaml", {"generation": {"model": "openai/gpt-4o-mini"}})
    monkeypatch.setenv("ITERFORGE_GENERATION_MODEL", "anthropic/claude-3-5-sonnet-20241022")
    monkeypatch.setenv("ITERFORGE_CLASSIFIER_MODEL", "openai/gpt-4.1-mini")
    monkeypatch.setenv("ITERFORGE_EMBEDDING_MODEL", "openai/text-embedding-3-large")

    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.generation.model == "anthropic/claude-3-5-sonnet-20241022"
    assert cfg.classifier.model == "openai/gpt-4.1-mini"
    assert cfg.retrieval.embedding_model == "openai/text-embedding-3-large"


def test_empty_file_is_treated_as_empty_mapping(tmp_path: Path, missing_global: Path) -> None:
    (tmp_path / "iterforge.yaml").write_text("", encoding="utf-8")
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.generation.model == "openai/gpt-4o"


# ---------------------------------------------------------------------------
# API key protection
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "bad_key",
    ["api_key", "apikey", "OPENAI_API_KEY", "secret", "password", "token", "api-key"],
)
def test_global_config_rejects_api_key_fields(tmp_path: Path, bad_key: str) -> None:
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text(f"{bad_key}: sk-abc123\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="forbidden key"):
        load_config(project_dir=tmp_path, global_config_path=global_cfg)


def test_global_config_rejects_nested_api_key(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"generation": {"api_key": "sk-secret"}})

    with pytest.raises(ConfigError, match="generation.api_key"):
        load_config(project_dir=tmp_path, global_config_path=global_cfg)


@pytest.mark.parametrize("key", ["max_tokens", "char_budget", "cache_size"])
def test_legitimate_keys_not_flagged(tmp_path: Path, key: str) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"generation": {key: 100}})
    load_config(project_dir=tmp_path, global_config_path=global_cfg)


# ---------------------------------------------------------------------------
# Unknown keys and invalid values
# ---------------------------------------------------------------------------


def test_unknown_top_level_key_warns(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"unknown_section": {"foo": "bar"}})

    with pytest.warns(UserWarning, match="unknown_section"):
        cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.generation.model == "openai/gpt-4o"


def test_non_mapping_file_raises(tmp_path: Path, missing_global: Path) -> None:
    (tmp_path / "iterforge.yaml").write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(project_dir=tmp_path, global_config_path=missing_global)


def test_bad_type_raises_config_error(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(tmp_path / "iterforge.yaml", {"retrieval": {"max_files": "many"}})
    with pytest.raises(ConfigError, match="Invalid config value"):
        load_config(project_dir=tmp_path, global_config_path=missing_global)


def test_section_must_be_mapping(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(tmp_path / "iterforge.yaml", {"generation": "gpt-4o"})
    with pytest.raises(ConfigError):
        load_config(project_dir=tmp_path, global_config_path=missing_global)


@pytest.mark.parametrize("threshold", [-1, 101])
def test_confidence_threshold_range(tmp_path: Path, missing_global: Path, threshold: int) -> None:
    _write_yaml(tmp_path / "iterforge.yaml", {"classifier": {"confidence_threshold": threshold}})
    with pytest.raises(ConfigError, match="confidence_threshold"):
        load_config(project_dir=tmp_path, global_config_path=missing_global)


def test_cache_size_must_be_positive(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(tmp_path / "iterforge.yaml", {"classifier": {"cache_size": 0}})
    with pytest.raises(ConfigError, match="cache_size"):
        load_config(project_dir=tmp_path, global_config_path=missing_global)


def test_negative_char_budget_raises(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(tmp_path / "iterforge.yaml", {"retrieval": {"char_budget": -5}})
    with pytest.raises(ConfigError, match="char_budget"):
        load_config(project_dir=tmp_path, global_config_path=missing_global)


# ---------------------------------------------------------------------------
# Sandbox
# ---------------------------------------------------------------------------


def test_restart_command_string_is_split(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(
        tmp_path / "iterforge.yaml",
        {"sandbox": {"workspace": "app", "restart_command": "npm run build --silent"}},
    )
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.sandbox.workspace == "app"
    assert cfg.sandbox.restart_command == ["npm", "run", "build", "--silent"]


def test_restart_command_list_is_kept(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(tmp_path / "iterforge.yaml", {"sandbox": {"restart_command": ["make", 1]}})
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.sandbox.restart_command == ["make", "1"]


def test_restart_command_bad_type(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(tmp_path / "iterforge.yaml", {"sandbox": {"restart_command": {"a": 1}}})
    with pytest.raises(ConfigError, match="restart_command"):
        load_config(project_dir=tmp_path, global_config_path=missing_global)


# ---------------------------------------------------------------------------
# write_project_config
# ---------------------------------------------------------------------------


def test_write_project_config_round_trips(tmp_path: Path, missing_global: Path) -> None:
    path = write_project_config(tmp_path, "pid-1", "shop", foreign=True)
    assert path == tmp_path / "iterforge.yaml"
    assert "NEVER store API keys" in path.read_text(encoding="utf-8")

    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)
    assert cfg.project.id == "pid-1"
    assert cfg.project.name == "shop"
    assert cfg.project.foreign is True


def test_write_project_config_keeps_existing(tmp_path: Path) -> None:
    existing = tmp_path / "iterforge.yaml"
    existing.write_text("project:\n  name: mine\n", encoding="utf-8")
    write_project_config(tmp_path, "pid-2", "other")
    assert existing.read_text(encoding="utf-8") == "project:\n  name: mine\n"
