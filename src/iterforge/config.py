"""iterforge configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (ITERFORGE_GENERATION_MODEL, ITERFORGE_CLASSIFIER_MODEL,
                             ITERFORGE_EMBEDDING_MODEL)
  3. Per-project iterforge.yaml  (next to .iterforge.db)
  4. Global ~/.iterforge/config.yaml  (model defaults only — no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import shlex
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".iterforge"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "iterforge.yaml"
DEFAULT_DB_NAME: str = ".iterforge.db"

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate config keys like max_tokens or char_budget.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # github_token, access_token (suffix)
    r"|^token$"                  # exactly "token"
    r"|_secret$"                 # client_secret (suffix)
    r"|^secret$"                 # exactly "secret"
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["project", "generation", "classifier", "retrieval", "sandbox"]
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
class ProjectCfg:
    """Project-level metadata (iterforge.yaml: project:).

    Attributes:
        id: Project id in the database, written by `iterforge init`.
        name: Human-readable project name.
        foreign: Project was imported from an existing codebase; generation
            runs in strict mode (no new files unless asked for).
    """

    id: str = ""
    name: str = ""
    foreign: bool = False


@dataclass
class GenerationCfg:
    """Code generation (iterforge.yaml: generation:)."""

    model: str = "openai/gpt-4o"
    temperature: float = 0.7
    max_tokens: int = 16_384
    num_retries: int = 3
    timeout: float | None = None


@dataclass
class ClassifierCfg:
    """Command classification (iterforge.yaml: classifier:)."""

    model: str = "openai/gpt-4o-mini"
    confidence_threshold: int = 80
    cache_size: int = 1_000


@dataclass
class RetrievalCfg:
    """Context building (iterforge.yaml: retrieval:)."""

    embedding_model: str = "openai/text-embedding-3-small"
    message_limit: int = 20
    max_files: int = 15
    similarity_threshold: float = 0.3
    char_budget: int = 400_000
    include_tests: bool = False


@dataclass
class SandboxCfg:
    """Execution target (iterforge.yaml: sandbox:).

    Attributes:
        workspace: Directory committed changes are applied to. None disables
            applying unless --apply-dir is given.
        restart: Send the restart signal after applying.
        restart_command: Command run in the workspace on restart; its exit
            code decides health.
    """

    workspace: str | None = None
    restart: bool = True
    restart_command: list[str] = field(default_factory=list)


@dataclass
class IterforgeConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    project: ProjectCfg = field(default_factory=ProjectCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    classifier: ClassifierCfg = field(default_factory=ClassifierCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    sandbox: SandboxCfg = field(default_factory=SandboxCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

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


def _load_yaml(path: Path) -> dict[str, Any]:
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping at the top level.")
    return raw


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


def _parse_command(raw: Any) -> list[str]:
    if not raw:
        return []
    if isinstance(raw, str):
        return shlex.split(raw)
    if isinstance(raw, list):
        return [str(part) for part in raw]
    raise ConfigError(f"sandbox.restart_command must be a string or list, got {raw!r}")


def _cfg_from_dict(data: dict[str, Any]) -> IterforgeConfig:
    """Build an *IterforgeConfig* from a merged raw YAML dict."""
    cfg = IterforgeConfig()

    try:
        if "project" in data:
            p = data["project"]
            cfg.project = ProjectCfg(
                id=str(p.get("id", cfg.project.id)),
                name=str(p.get("name", cfg.project.name)),
                foreign=bool(p.get("foreign", cfg.project.foreign)),
            )

        if "generation" in data:
            g = data["generation"]
            timeout = g.get("timeout", cfg.generation.timeout)
            cfg.generation = GenerationCfg(
                model=str(g.get("model", cfg.generation.model)),
                temperature=float(g.get("temperature", cfg.generation.temperature)),
                max_tokens=int(g.get("max_tokens", cfg.generation.max_tokens)),
                num_retries=int(g.get("num_retries", cfg.generation.num_retries)),
                timeout=float(timeout) if timeout is not None else None,
            )

        if "classifier" in data:
            c = data["classifier"]
            cfg.classifier = ClassifierCfg(
                model=str(c.get("model", cfg.classifier.model)),
                confidence_threshold=int(
                    c.get("confidence_threshold", cfg.classifier.confidence_threshold)
                ),
                cache_size=int(c.get("cache_size", cfg.classifier.cache_size)),
            )

        if "retrieval" in data:
            r = data["retrieval"]
            cfg.retrieval = RetrievalCfg(
                embedding_model=str(r.get("embedding_model", cfg.retrieval.embedding_model)),
                message_limit=int(r.get("message_limit", cfg.retrieval.message_limit)),
                max_files=int(r.get("max_files", cfg.retrieval.max_files)),
                similarity_threshold=float(
                    r.get("similarity_threshold", cfg.retrieval.similarity_threshold)
                ),
                char_budget=int(r.get("char_budget", cfg.retrieval.char_budget)),
                include_tests=bool(r.get("include_tests", cfg.retrieval.include_tests)),
            )

        if "sandbox" in data:
            s = data["sandbox"]
            cfg.sandbox = SandboxCfg(
                workspace=s.get("workspace") or cfg.sandbox.workspace,
                restart=bool(s.get("restart", cfg.sandbox.restart)),
                restart_command=_parse_command(s.get("restart_command")),
            )
    except ConfigError:
        raise
    except (AttributeError, TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    if not 0 <= cfg.classifier.confidence_threshold <= 100:
        raise ConfigError(
            "classifier.confidence_threshold must be between 0 and 100, "
            f"got {cfg.classifier.confidence_threshold}"
        )
    if cfg.classifier.cache_size < 1:
        raise ConfigError(f"classifier.cache_size must be >= 1, got {cfg.classifier.cache_size}")
    if cfg.retrieval.char_budget < 0:
        raise ConfigError(f"retrieval.char_budget must be >= 0, got {cfg.retrieval.char_budget}")

    return cfg


def _apply_env_overrides(cfg: IterforgeConfig) -> IterforgeConfig:
    """Apply ITERFORGE_* environment variable overrides (layer 2)."""
    if model := os.environ.get("ITERFORGE_GENERATION_MODEL"):
        cfg.generation.model = model
    if model := os.environ.get("ITERFORGE_CLASSIFIER_MODEL"):
        cfg.classifier.model = model
    if model := os.environ.get("ITERFORGE_EMBEDDING_MODEL"):
        cfg.retrieval.embedding_model = model
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> IterforgeConfig:
    """Load and return a merged *IterforgeConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *iterforge.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If the global config contains API-key-like fields, or a
            value has the wrong type or range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = _load_yaml(global_path)
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = _load_yaml(project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)
    return _apply_env_overrides(cfg)


def write_project_config(
    project_dir: Path, project_id: str, name: str, *, foreign: bool = False
) -> Path:
    """Write a starter ``iterforge.yaml`` unless one exists. Returns its path."""
    target = project_dir / _PROJECT_CONFIG_NAME
    if target.exists():
        return target
    data = {
        "project": {"id": project_id, "name": name, "foreign": foreign},
        "generation": {"model": GenerationCfg.model},
        "retrieval": {"embedding_model": RetrievalCfg.embedding_model},
    }
    header = (
        "# iterforge project configuration.\n"
        "# NEVER store API keys here — use environment variables:\n"
        "#   export OPENAI_API_KEY=sk-...\n\n"
    )
    target.write_text(header + yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return target
