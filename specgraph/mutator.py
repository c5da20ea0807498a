"""
SPECGRAPH MUTATOR - Writes that Keep Index and Nodes Consistent

Every mutation follows the same shape:
1. Load a fresh snapshot (never the cached one)
2. Run every check; raise before anything touches storage
3. Stage all writes and deletes in one WriteBatch and commit
4. Invalidate the snapshot cache, record a MutationEvent
5. Return an OperationResult listing repository-relative changed paths

Operations:
- add_node / update_node (full replacement) / remove_node (scrub + orphan sweep)
- add_edge / remove_edge (idempotent)
- init_specgraph (root feature + index)
"""
import logging
from typing import Any, Callable, Dict, List, Optional

import msgspec

from specgraph.ontology import (
    DEFAULT_ROOT_ID,
    EDGE_TYPES,
    GRAPH_INDEX_FILE,
    GRAPH_SCHEMA_URL,
    NODE_SCHEMA_URL,
    NODES_DIR,
    NodeType,
    node_path_for,
)
from specgraph.schemas import GraphIndex, NodeRef, OperationResult, index_to_document
from specgraph.store import (
    DuplicateNodeError,
    MutationConflictError,
    NodeNotFoundError,
    NodeStore,
    SchemaInvalidError,
    SpecNode,
    load_node_store,
)

logger = logging.getLogger(__name__)

DEFAULT_ROOT_TITLE = "Root Feature"
DEFAULT_ROOT_DESCRIPTION = "Top-level feature for this spec graph."


def with_node_schema(document: Dict[str, Any]) -> Dict[str, Any]:
    """Inject the node schema URL when the document declares none."""
    if isinstance(document.get("$schema"), str):
        return document
    return {**document, "$schema": NODE_SCHEMA_URL}


def _unique(values: List[str]) -> List[str]:
    return list(dict.fromkeys(values))


class GraphMutator:
    """
    Mutations against one graph directory.

    Usage:
        mutator = GraphMutator(storage, registry, invalidate=cache_invalidator)
        result = mutator.add_node({"id": "AUTH", "type": "feature", ...})
        mutator.add_edge("ROOT", "AUTH", "contains")
    """

    def __init__(
        self,
        storage,
        schema_registry,
        invalidate: Optional[Callable[[], None]] = None,
        mutation_logger=None,
        default_specgraph_version: str = "1.0.0",
    ):
        self.storage = storage
        self.schema_registry = schema_registry
        self._invalidate = invalidate
        self.mutation_logger = mutation_logger
        self.default_specgraph_version = default_specgraph_version

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _load(self) -> NodeStore:
        return load_node_store(self.storage)

    def _validate_node(self, document: Dict[str, Any]) -> None:
        errors = self.schema_registry.validate_node(document)
        if errors:
            raise SchemaInvalidError(f"Node {document.get('id')}", errors)

    def _validate_index(self, document: Dict[str, Any]) -> None:
        errors = self.schema_registry.validate_graph(document)
        if errors:
            raise SchemaInvalidError("Graph index", errors)

    def _index_document(self, index: GraphIndex, refs: List[NodeRef], root: Optional[str]) -> Dict[str, Any]:
        updated = msgspec.structs.replace(
            index, nodes=sorted(refs, key=lambda ref: ref.id), root=root
        )
        return index_to_document(updated)

    def _finish(self, operation: str, node_id: Optional[str], changed: List[str]) -> OperationResult:
        files_changed = _unique(changed)
        if self._invalidate is not None:
            self._invalidate()
        if files_changed and self.mutation_logger is not None:
            self.mutation_logger.log_mutation(operation, node_id, files_changed)
        logger.info("%s %s: %d files changed", operation, node_id, len(files_changed))
        return OperationResult(
            success=True, operation=operation, node_id=node_id, files_changed=files_changed
        )

    @staticmethod
    def _assert_node_shape(document: Any) -> None:
        if not isinstance(document, dict):
            raise MutationConflictError("node must be an object")
        if not isinstance(document.get("id"), str) or not document["id"]:
            raise MutationConflictError("node.id must be a non-empty string")
        if not isinstance(document.get("type"), str) or not document["type"]:
            raise MutationConflictError("node.type must be a non-empty string")

    @staticmethod
    def _path_for(document: Dict[str, Any]) -> str:
        try:
            return node_path_for(document["id"], document["type"])
        except ValueError as e:
            raise MutationConflictError(str(e)) from e

    @staticmethod
    def _assert_edge_type(edge_type: str) -> None:
        if edge_type not in EDGE_TYPES:
            raise MutationConflictError(f"Invalid edge type: {edge_type}")

    # =========================================================================
    # NODES
    # =========================================================================

    def add_node(self, document: Dict[str, Any]) -> OperationResult:
        """
        Raises:
            DuplicateNodeError: If the id is already in the graph
            SchemaInvalidError: If the node fails the node schema
            MutationConflictError: On malformed input or a path collision
        """
        self._assert_node_shape(document)
        store = self._load()
        node_id = document["id"]

        if store.has_node(node_id):
            raise DuplicateNodeError(node_id)

        self._validate_node(document)
        path = self._path_for(document)
        if path in store.ref_paths():
            raise MutationConflictError(f"Node path already referenced by graph: {path}")
        if self.storage.exists(path):
            raise MutationConflictError(f"Path already exists: {path}")

        refs = list(store.index.nodes) + [NodeRef(id=node_id, path=path, expected_type=document["type"])]
        index_doc = self._index_document(store.index, refs, store.root)

        with self.storage.batch() as batch:
            batch.write_json(path, with_node_schema(document))
            batch.write_json(GRAPH_INDEX_FILE, index_doc)

        return self._finish("add_node", node_id, [
            self.storage.repo_path(path),
            self.storage.repo_path(GRAPH_INDEX_FILE),
        ])

    def update_node(self, document: Dict[str, Any]) -> OperationResult:
        """
        Replace a node document entirely; moves the file if its type changed.

        Raises:
            NodeNotFoundError: If the id is not in the graph
            SchemaInvalidError: If the node fails the node schema
            MutationConflictError: On malformed input or a path collision
        """
        self._assert_node_shape(document)
        store = self._load()
        node_id = document["id"]

        ref = store.ref_for(node_id)
        if ref is None:
            raise NodeNotFoundError(node_id)

        self._validate_node(document)
        new_path = self._path_for(document)
        if new_path != ref.path:
            for other in store.index.nodes:
                if other.path == new_path and other.id != node_id:
                    raise MutationConflictError(
                        f"Cannot move node to {new_path}: path is used by {other.id}"
                    )

        refs = [
            msgspec.structs.replace(r, path=new_path, expected_type=document["type"])
            if r.id == node_id else r
            for r in store.index.nodes
        ]
        changed = [self.storage.repo_path(new_path)]

        with self.storage.batch() as batch:
            batch.write_json(new_path, with_node_schema(document))
            if new_path != ref.path:
                batch.delete(ref.path)
                changed.append(self.storage.repo_path(ref.path))
            batch.write_json(GRAPH_INDEX_FILE, self._index_document(store.index, refs, store.root))

        changed.append(self.storage.repo_path(GRAPH_INDEX_FILE))
        return self._finish("update_node", node_id, changed)

    def remove_node(self, node_id: str) -> OperationResult:
        """
        Delete a node, scrub every inbound link to it, sweep orphaned node files.

        Raises:
            NodeNotFoundError: If the id is not in the graph
        """
        store = self._load()
        ref = store.ref_for(node_id)
        if ref is None:
            raise NodeNotFoundError(node_id)

        refs = [r for r in store.index.nodes if r.id != node_id]
        root = None if store.root == node_id else store.root
        changed = [self.storage.repo_path(ref.path)]

        scrubbed: Dict[str, SpecNode] = {}
        for node in store.iter_nodes():
            if node.id == node_id:
                continue
            updated = node.without_target(node_id)
            if updated is not None:
                scrubbed[node.id] = updated

        referenced = {r.path for r in refs}
        orphans = [
            path for path in self.storage.glob(f"{NODES_DIR}/**/*.json")
            if path not in referenced and path != ref.path
        ]

        with self.storage.batch() as batch:
            batch.delete(ref.path)
            for scrubbed_id, node in scrubbed.items():
                path = store.ref_for(scrubbed_id).path
                batch.write_json(path, with_node_schema(node.to_document()))
                changed.append(self.storage.repo_path(path))
            batch.write_json(GRAPH_INDEX_FILE, self._index_document(store.index, refs, root))
            changed.append(self.storage.repo_path(GRAPH_INDEX_FILE))
            for orphan in orphans:
                batch.delete(orphan)
                changed.append(self.storage.repo_path(orphan))

        if orphans:
            logger.info("Removed %d orphaned node files: %s", len(orphans), orphans)
        return self._finish("remove_node", node_id, changed)

    # =========================================================================
    # EDGES
    # =========================================================================

    def add_edge(self, source: str, target: str, edge_type: str) -> OperationResult:
        """
        Add source -[edge_type]-> target. Adding an existing edge is a no-op.

        Raises:
            MutationConflictError: Unknown edge type or self-reference
            NodeNotFoundError: Missing source or target
            SchemaInvalidError: If the updated source fails the node schema
        """
        self._assert_edge_type(edge_type)
        if source == target:
            raise MutationConflictError("Self-references are not allowed")

        store = self._load()
        source_node = store.find_node(source)
        if source_node is None:
            raise NodeNotFoundError(source, role="Source node")
        if not store.has_node(target):
            raise NodeNotFoundError(target, role="Target node")

        if source_node.has_target(edge_type, target):
            return self._finish("add_edge", source, [])

        updated = source_node.with_targets(edge_type, source_node.targets(edge_type) + (target,))
        return self._write_source("add_edge", store, updated)

    def remove_edge(self, source: str, target: str, edge_type: str) -> OperationResult:
        """
        Remove source -[edge_type]-> target. Removing an absent edge is a no-op.

        Raises:
            MutationConflictError: Unknown edge type or self-reference
            NodeNotFoundError: Missing source
            SchemaInvalidError: If the updated source fails the node schema
        """
        self._assert_edge_type(edge_type)
        if source == target:
            raise MutationConflictError("Self-references are not allowed")

        store = self._load()
        source_node = store.find_node(source)
        if source_node is None:
            raise NodeNotFoundError(source, role="Source node")

        if not source_node.has_target(edge_type, target):
            return self._finish("remove_edge", source, [])

        remaining = [t for t in source_node.targets(edge_type) if t != target]
        updated = source_node.with_targets(edge_type, remaining)
        return self._write_source("remove_edge", store, updated)

    def _write_source(self, operation: str, store: NodeStore, updated: SpecNode) -> OperationResult:
        document = updated.to_document()
        self._validate_node(document)
        path = store.ref_for(updated.id).path
        with self.storage.batch() as batch:
            batch.write_json(path, with_node_schema(document))
        return self._finish(operation, updated.id, [self.storage.repo_path(path)])

    # =========================================================================
    # INIT
    # =========================================================================

    def init_specgraph(
        self,
        root_id: str = DEFAULT_ROOT_ID,
        title: str = DEFAULT_ROOT_TITLE,
        description: str = DEFAULT_ROOT_DESCRIPTION,
        specgraph_version: Optional[str] = None,
    ) -> OperationResult:
        """
        Create graph.json plus a root feature node.

        Raises:
            MutationConflictError: If graph.json already exists
            SchemaInvalidError: If the root feature or index fails its schema
        """
        if self.storage.exists(GRAPH_INDEX_FILE):
            raise MutationConflictError(
                f"Spec graph already initialized: {self.storage.repo_path(GRAPH_INDEX_FILE)}"
            )

        root_node = {
            "$schema": NODE_SCHEMA_URL,
            "id": root_id,
            "type": NodeType.FEATURE.value,
            "title": title,
            "description": description,
        }
        self._validate_node(root_node)
        path = self._path_for(root_node)

        index = GraphIndex(
            schema_url=GRAPH_SCHEMA_URL,
            specgraph_version=specgraph_version or self.default_specgraph_version,
            root=root_id,
            nodes=[NodeRef(id=root_id, path=path, expected_type=NodeType.FEATURE.value)],
        )
        index_doc = index_to_document(index)
        self._validate_index(index_doc)

        with self.storage.batch() as batch:
            batch.write_json(path, root_node)
            batch.write_json(GRAPH_INDEX_FILE, index_doc)

        return self._finish("init_specgraph", root_id, [
            self.storage.repo_path(path),
            self.storage.repo_path(GRAPH_INDEX_FILE),
        ])
