"""
SPECGRAPH CONFIG - Layered Configuration

Configuration is resolved once per workspace from three layers:
1. Built-in defaults (the SpecGraphConfig field defaults)
2. The [specgraph] table of specgraph.toml in the repository root
3. SPECGRAPH_* environment variables

Usage:
    from infrastructure.config import load_config

    config = load_config(repo_dir)
    config.cache_ttl_seconds  # 1.5 by default
"""
import os
import tomllib
import warnings
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import msgspec

CONFIG_FILE_NAME = "specgraph.toml"
DEFAULT_CACHE_TTL_MS = 1500


class SpecGraphConfig(msgspec.Struct, kw_only=True, frozen=True, forbid_unknown_fields=True):
    """Resolved engine configuration."""
    default_directory: str = "specgraph"
    default_specgraph_version: str = "1.0.0"

    # === Snapshot Cache ===
    cache_ttl_ms: int = DEFAULT_CACHE_TTL_MS

    # === Schema Retrieval ===
    schema_dir: Optional[str] = None          # Directory holding both schemas
    schema_base_url: Optional[str] = None     # Base URL holding both schemas
    graph_schema: Optional[str] = None        # Per-file override (path or URL)
    node_schema: Optional[str] = None
    schema_fetch_timeout: float = 10.0        # Seconds

    # === Validation ===
    strict_pins: bool = False                 # Missing pin is an error, not a warning

    # === Logging ===
    log_level: str = "WARNING"
    mutation_log_path: Optional[str] = None   # NDJSON mutation log file

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_ttl_ms / 1000.0


# Environment variable -> (field, parser)
_ENV_FIELDS: Dict[str, tuple] = {
    "SPECGRAPH_DIRECTORY": ("default_directory", str),
    "SPECGRAPH_DEFAULT_SPECGRAPH_VERSION": ("default_specgraph_version", str),
    "SPECGRAPH_CACHE_TTL_MS": ("cache_ttl_ms", int),
    "SPECGRAPH_SCHEMA_DIR": ("schema_dir", str),
    "SPECGRAPH_SCHEMA_BASE_URL": ("schema_base_url", str),
    "SPECGRAPH_GRAPH_SCHEMA": ("graph_schema", str),
    "SPECGRAPH_NODE_SCHEMA": ("node_schema", str),
    "SPECGRAPH_SCHEMA_FETCH_TIMEOUT": ("schema_fetch_timeout", float),
    "SPECGRAPH_STRICT_PINS": ("strict_pins", lambda v: v.strip().lower() in ("1", "true", "yes", "on")),
    "SPECGRAPH_LOG_LEVEL": ("log_level", str),
    "SPECGRAPH_MUTATION_LOG": ("mutation_log_path", str),
}


def load_toml_config(path: Path) -> Dict[str, Any]:
    """
    Load the [specgraph] table from a TOML file.

    Returns:
        The table as a dict, or {} if the file is absent or unreadable
    """
    if not path.is_file():
        return {}
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        warnings.warn(f"Failed to load config from {path}: {e}")
        return {}

    section = data.get("specgraph", {})
    if not isinstance(section, dict):
        warnings.warn(f"Ignoring non-table [specgraph] section in {path}")
        return {}
    return section


def load_env_config(env: Mapping[str, str]) -> Dict[str, Any]:
    """Parse SPECGRAPH_* variables; unparseable values are warned and skipped."""
    values: Dict[str, Any] = {}
    for name, (field, parser) in _ENV_FIELDS.items():
        raw = env.get(name)
        if raw is None or raw == "":
            continue
        try:
            values[field] = parser(raw)
        except ValueError:
            warnings.warn(f"Ignoring invalid {name}={raw!r}")
    return values


def load_config(
    repo_dir: Optional[str | Path] = None,
    env: Optional[Mapping[str, str]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> SpecGraphConfig:
    """
    Resolve configuration for a repository.

    Args:
        repo_dir: Repository root holding specgraph.toml. None skips the file.
        env: Environment mapping. Defaults to os.environ.
        overrides: Explicit values that win over every other layer

    Returns:
        SpecGraphConfig
    """
    merged: Dict[str, Any] = {}
    if repo_dir is not None:
        merged.update(load_toml_config(Path(repo_dir) / CONFIG_FILE_NAME))
    merged.update(load_env_config(os.environ if env is None else env))
    if overrides:
        merged.update(overrides)

    try:
        config = msgspec.convert(merged, SpecGraphConfig)
    except msgspec.ValidationError as e:
        warnings.warn(f"Invalid specgraph configuration ({e}); using defaults")
        config = SpecGraphConfig()

    if config.cache_ttl_ms < 0:
        warnings.warn(f"Negative cache_ttl_ms={config.cache_ttl_ms}; using {DEFAULT_CACHE_TTL_MS}")
        config = msgspec.structs.replace(config, cache_ttl_ms=DEFAULT_CACHE_TTL_MS)

    return config
