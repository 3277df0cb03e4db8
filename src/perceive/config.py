"""perceive configuration loader.

Priority (high → low):
  1. CLI flags           (applied by the caller)
  2. Environment variables  (PERCEIVE_DB, PERCEIVE_LOG_LEVEL)
  3. Per-project perceive.yaml  (current working directory)
  4. Global ~/.perceive/config.yaml
  5. Hardcoded defaults

All YAML reads use yaml.safe_load().
"""

from __future__ import annotations

import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from perceive.errors import ConfigError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".perceive"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "perceive.yaml"

# Known top-level sections; unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["database", "index", "pipeline", "search", "logging"]
)

_METRICS: frozenset[str] = frozenset(["cosine", "l2"])
_LOG_LEVELS: frozenset[str] = frozenset(["DEBUG", "INFO", "WARNING", "ERROR"])


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class DatabaseCfg:
    """Item store location (perceive.yaml: database:)."""

    path: str = str(_GLOBAL_CONFIG_DIR / "perceive.db")


@dataclass
class IndexCfg:
    """HNSW construction and search parameters (perceive.yaml: index:).

    Attributes:
        m: Max connections per node on upper layers (layer 0 allows 2*m).
        ef_construction: Candidate list size while inserting.
        ef_search: Candidate list size while searching (raised to k if smaller).
        metric: Distance metric the embedding model was trained for.
        compact_ratio: Tombstone share that triggers a graph rebuild.
    """

    m: int = 16
    ef_construction: int = 100
    ef_search: int = 64
    metric: str = "cosine"
    compact_ratio: float = 0.25


@dataclass
class PipelineCfg:
    """Ingestion pipeline sizing (perceive.yaml: pipeline:)."""

    batch_size: int = 32
    token_budget: int = 8_192
    queue_size: int = 256
    source_workers: int = 4


@dataclass
class SearchCfg:
    """Query engine defaults (perceive.yaml: search:)."""

    top_k: int = 10
    overfetch: int = 3
    max_retries: int = 3


@dataclass
class LoggingCfg:
    """Log level for the perceive logger (perceive.yaml: logging:)."""

    level: str = "INFO"


@dataclass
class PerceiveConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    database: DatabaseCfg = field(default_factory=DatabaseCfg)
    index: IndexCfg = field(default_factory=IndexCfg)
    pipeline: PipelineCfg = field(default_factory=PipelineCfg)
    search: SearchCfg = field(default_factory=SearchCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: PerceiveConfig) -> None:
    """Raise ConfigError for values the engine cannot run with."""
    if cfg.index.metric not in _METRICS:
        raise ConfigError(
            f"index.metric must be one of {sorted(_METRICS)}, got '{cfg.index.metric}'"
        )
    if cfg.index.m < 2:
        raise ConfigError(f"index.m must be >= 2, got {cfg.index.m}")
    if cfg.index.ef_construction < 1 or cfg.index.ef_search < 1:
        raise ConfigError("index.ef_construction and index.ef_search must be >= 1")
    if not 0.0 < cfg.index.compact_ratio <= 1.0:
        raise ConfigError("index.compact_ratio must be in (0.0, 1.0]")
    for name in ("batch_size", "token_budget", "queue_size", "source_workers"):
        if getattr(cfg.pipeline, name) < 1:
            raise ConfigError(f"pipeline.{name} must be >= 1")
    if cfg.search.top_k < 1 or cfg.search.overfetch < 1:
        raise ConfigError("search.top_k and search.overfetch must be >= 1")
    if cfg.search.max_retries < 0:
        raise ConfigError("search.max_retries must be >= 0")
    if cfg.logging.level.upper() not in _LOG_LEVELS:
        raise ConfigError(
            f"logging.level must be one of {sorted(_LOG_LEVELS)}, got '{cfg.logging.level}'"
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


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    raw = data.get(name) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping, got {type(raw).__name__}")
    return raw


def _cfg_from_dict(data: dict[str, Any]) -> PerceiveConfig:
    """Build a *PerceiveConfig* from a merged raw YAML dict."""
    cfg = PerceiveConfig()

    try:
        if "database" in data:
            d = _section(data, "database")
            cfg.database = DatabaseCfg(
                path=str(Path(str(d.get("path", cfg.database.path))).expanduser()),
            )

        if "index" in data:
            i = _section(data, "index")
            cfg.index = IndexCfg(
                m=int(i.get("m", cfg.index.m)),
                ef_construction=int(i.get("ef_construction", cfg.index.ef_construction)),
                ef_search=int(i.get("ef_search", cfg.index.ef_search)),
                metric=str(i.get("metric", cfg.index.metric)).lower(),
                compact_ratio=float(i.get("compact_ratio", cfg.index.compact_ratio)),
            )

        if "pipeline" in data:
            p = _section(data, "pipeline")
            cfg.pipeline = PipelineCfg(
                batch_size=int(p.get("batch_size", cfg.pipeline.batch_size)),
                token_budget=int(p.get("token_budget", cfg.pipeline.token_budget)),
                queue_size=int(p.get("queue_size", cfg.pipeline.queue_size)),
                source_workers=int(p.get("source_workers", cfg.pipeline.source_workers)),
            )

        if "search" in data:
            s = _section(data, "search")
            cfg.search = SearchCfg(
                top_k=int(s.get("top_k", cfg.search.top_k)),
                overfetch=int(s.get("overfetch", cfg.search.overfetch)),
                max_retries=int(s.get("max_retries", cfg.search.max_retries)),
            )

        if "logging" in data:
            lg = _section(data, "logging")
            cfg.logging = LoggingCfg(level=str(lg.get("level", cfg.logging.level)).upper())
    except (TypeError, ValueError) as exc:
        if isinstance(exc, ConfigError):
            raise
        raise ConfigError(f"Invalid config value: {exc}") from exc

    return cfg


def _apply_env_overrides(cfg: PerceiveConfig) -> PerceiveConfig:
    """Apply PERCEIVE_* environment variable overrides (layer 2)."""
    if db_path := os.environ.get("PERCEIVE_DB"):
        cfg.database.path = str(Path(db_path).expanduser())
    if level := os.environ.get("PERCEIVE_LOG_LEVEL"):
        cfg.logging.level = level.upper()
    return cfg


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Could not parse '{path}': {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping at the top level.")
    return raw


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> PerceiveConfig:
    """Load and return a merged *PerceiveConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *perceive.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *PerceiveConfig* with env var overrides applied.

    Raises:
        ConfigError: If a config file cannot be parsed or holds invalid values.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = _read_yaml(global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = _read_yaml(project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.perceive/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).

    Args:
        global_config_path: Override path (for testing).

    Returns:
        Path to the global config file.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# perceive global configuration.\n"
            "\n"
            "database:\n"
            f"  path: {target.parent / 'perceive.db'}\n"
            "\n"
            "index:\n"
            "  m: 16\n"
            "  ef_construction: 100\n"
            "  ef_search: 64\n"
            "  metric: cosine\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
