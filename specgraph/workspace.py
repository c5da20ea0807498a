"""
SPECGRAPH WORKSPACE - The Embedding Surface

SpecGraphWorkspace binds a repository root and graph directory to its
collaborators (config, storage, snapshot cache, schema registry, mutation
log) and exposes every read, mutation and validation operation.

Usage:
    ws = SpecGraphWorkspace("/path/to/repo")
    ws.init_specgraph()
    ws.add_node({...})
    ws.get_effective_constraints("AUTH-01")
    report = ws.validate_specgraph()
"""
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from infrastructure.config import SpecGraphConfig, load_config
from infrastructure.graph_cache import GraphCache, get_graph_cache
from infrastructure.logger import MutationLogger
from infrastructure.schema_registry import SchemaRegistry, get_schema_registry
from infrastructure.storage import FileStorage
from specgraph.mutator import DEFAULT_ROOT_DESCRIPTION, DEFAULT_ROOT_TITLE, GraphMutator
from specgraph.ontology import DEFAULT_ROOT_ID
from specgraph.queries import QueryFacade
from specgraph.schemas import (
    AffectingNodes,
    DependencyList,
    EdgeList,
    EffectiveConstraints,
    FullDependencies,
    GroupSubgraph,
    NodeList,
    OperationResult,
    SearchResult,
    ValidationResult,
)
from specgraph.store import NodeStore, load_node_store
from specgraph.validator import validate_specgraph

logger = logging.getLogger(__name__)


class SpecGraphWorkspace:
    """
    One graph directory inside one repository.

    Reads go through the TTL cache; mutations always reload, and invalidate
    the cache before returning.
    """

    def __init__(
        self,
        repo_dir: str | Path,
        directory: Optional[str] = None,
        config: Optional[SpecGraphConfig] = None,
        cache: Optional[GraphCache] = None,
        schema_registry: Optional[SchemaRegistry] = None,
        mutation_logger: Optional[MutationLogger] = None,
    ):
        self.repo_dir = Path(repo_dir).resolve()
        self.config = config or load_config(self.repo_dir)
        self.directory = directory or self.config.default_directory
        self.storage = FileStorage(self.repo_dir, self.directory)
        if cache is not None:
            # An injected cache keeps its own TTL
            self.cache = cache
            self.cache_ttl_seconds: Optional[float] = None
        else:
            self.cache = get_graph_cache()
            self.cache_ttl_seconds = self.config.cache_ttl_seconds

        if schema_registry is not None:
            self.schema_registry = schema_registry
        elif any((self.config.schema_dir, self.config.schema_base_url,
                  self.config.graph_schema, self.config.node_schema)):
            self.schema_registry = SchemaRegistry.from_config(self.config)
        else:
            self.schema_registry = get_schema_registry()

        if mutation_logger is None:
            log_path = self.config.mutation_log_path
            mutation_logger = MutationLogger(log_path=Path(log_path) if log_path else None)
        self.mutation_logger = mutation_logger

        self.mutator = GraphMutator(
            self.storage,
            self.schema_registry,
            invalidate=self.invalidate,
            mutation_logger=self.mutation_logger,
            default_specgraph_version=self.config.default_specgraph_version,
        )

    def __repr__(self) -> str:
        return f"SpecGraphWorkspace({str(self.repo_dir)!r}, directory={self.directory!r})"

    # =========================================================================
    # SNAPSHOT
    # =========================================================================

    def load(self, force_reload: bool = False) -> NodeStore:
        """
        Raises:
            GraphLoadError: If the graph cannot be loaded
        """
        return self.cache.get(
            self.repo_dir, self.directory, lambda: load_node_store(self.storage),
            force_reload=force_reload, ttl_seconds=self.cache_ttl_seconds,
        )

    def invalidate(self) -> None:
        self.cache.invalidate(self.repo_dir, self.directory)

    def queries(self, force_reload: bool = False) -> QueryFacade:
        return QueryFacade(self.load(force_reload))

    # =========================================================================
    # READS
    # =========================================================================

    def list_nodes(self) -> NodeList:
        return self.queries().list_nodes()

    def get_node(self, node_id: str) -> Dict[str, Any]:
        return self.queries().get_node(node_id)

    def list_edges(self) -> EdgeList:
        return self.queries().list_edges()

    def search_nodes(self, query: str) -> SearchResult:
        return self.queries().search_nodes(query)

    def get_group_subgraph(self, group_id: str) -> GroupSubgraph:
        return self.queries().get_group_subgraph(group_id)

    def get_feature_subgraph(self, feature_id: str) -> GroupSubgraph:
        return self.queries().get_feature_subgraph(feature_id)

    def get_effective_constraints(self, node_id: str) -> EffectiveConstraints:
        return self.queries().get_effective_constraints(node_id)

    def list_dependencies(self, node_id: str) -> DependencyList:
        return self.queries().list_dependencies(node_id)

    def list_dependencies_full(self, node_id: str) -> FullDependencies:
        return self.queries().list_dependencies_full(node_id)

    def get_affecting_nodes(self, node_id: str) -> AffectingNodes:
        return self.queries().get_affecting_nodes(node_id)

    def get_upstream_context(self, node_id: str) -> AffectingNodes:
        return self.queries().get_upstream_context(node_id)

    def validate_specgraph(self, strict: Optional[bool] = None) -> ValidationResult:
        """
        Full validation report. strict defaults to config.strict_pins.

        Raises:
            GraphLoadError: Only if graph.json itself cannot be read
        """
        strict_pins = self.config.strict_pins if strict is None else strict
        return validate_specgraph(self.storage, self.schema_registry, strict_pins=strict_pins)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def add_node(self, document: Dict[str, Any]) -> OperationResult:
        return self.mutator.add_node(document)

    def update_node(self, document: Dict[str, Any]) -> OperationResult:
        return self.mutator.update_node(document)

    def remove_node(self, node_id: str) -> OperationResult:
        return self.mutator.remove_node(node_id)

    def add_edge(self, source: str, target: str, edge_type: str) -> OperationResult:
        return self.mutator.add_edge(source, target, edge_type)

    def remove_edge(self, source: str, target: str, edge_type: str) -> OperationResult:
        return self.mutator.remove_edge(source, target, edge_type)

    def init_specgraph(
        self,
        root_id: str = DEFAULT_ROOT_ID,
        title: str = DEFAULT_ROOT_TITLE,
        description: str = DEFAULT_ROOT_DESCRIPTION,
        specgraph_version: Optional[str] = None,
    ) -> OperationResult:
        return self.mutator.init_specgraph(root_id, title, description, specgraph_version)
