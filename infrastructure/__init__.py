"""
SPECGRAPH INFRASTRUCTURE - Ambient Collaborators

This package contains the pieces the engine consumes from its environment:
- config: SpecGraphConfig from specgraph.toml and SPECGRAPH_* variables
- logger: logging setup and the NDJSON mutation log
- storage: file storage with canonical JSON and staged batch writes
- graph_cache: process-wide TTL snapshot cache with an injectable clock
- schema_registry: JSON Schema retrieval and validation (import directly;
  it depends on specgraph.schemas)
"""

from infrastructure.config import SpecGraphConfig, load_config
from infrastructure.graph_cache import GraphCache, get_graph_cache, reset_graph_cache, set_graph_cache
from infrastructure.logger import MutationEvent, MutationLogger, configure_logging
from infrastructure.storage import FileStorage, StorageError, WriteBatch

__all__ = [
    "SpecGraphConfig",
    "load_config",
    "GraphCache",
    "get_graph_cache",
    "set_graph_cache",
    "reset_graph_cache",
    "MutationEvent",
    "MutationLogger",
    "configure_logging",
    "FileStorage",
    "StorageError",
    "WriteBatch",
]
