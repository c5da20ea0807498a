"""
SPECGRAPH NODE STORE - The In-Memory Snapshot

The store is the leaf of the engine: an id -> node mapping plus the index that
references every node file. It carries no graph logic beyond lookup; adjacency
lives in indexes.py and is rebuilt from a store on demand.

Architecture:
  Storage (files)          graph.json + nodes/<type-dir>/<ID>.json
        |
  load_node_store()        decode, check ids, keep index order
        |
  NodeStore                refs_by_id, nodes_by_id (SpecNode values)

Node documents are value objects. SpecNode never mutates its document; every
edit (with_targets, without_target) returns a new SpecNode built from a deep
copy, so a bulk scrub cannot leak changes across nodes through shared lists.
"""
import copy
import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

import msgspec

from specgraph.ontology import (
    EDGE_TYPES,
    GRAPH_INDEX_FILE,
    NODE_TYPE_SPECS,
    NodeType,
    node_path_for,
)
from specgraph.schemas import GraphIndex, NodeRef, Pin, SchemaIssueDetail, decode_index

logger = logging.getLogger(__name__)


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class SpecGraphError(Exception):
    """Base exception for spec graph operations."""
    pass


class NodeNotFoundError(SpecGraphError):
    """Raised when a node id is not in the graph."""
    def __init__(self, node_id: str, role: str = "Node"):
        self.node_id = node_id
        super().__init__(f"{role} not found: {node_id}")


class DuplicateNodeError(SpecGraphError):
    """Raised when attempting to add a node with an existing id."""
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node already exists: {node_id}")


class NodeKindError(SpecGraphError):
    """Raised when a read asks for a node of the wrong kind (e.g. a subgraph of a leaf)."""
    def __init__(self, node_id: str, expected: str, actual: Optional[str]):
        self.node_id = node_id
        self.expected = expected
        self.actual = actual
        super().__init__(f"Node '{node_id}' is not a {expected} (type: {actual})")


class MutationConflictError(SpecGraphError):
    """Raised when a mutation conflicts with the graph (collision, bad edge, re-init)."""
    pass


class SchemaInvalidError(SpecGraphError):
    """Raised when a document fails JSON Schema validation."""
    def __init__(self, subject: str, errors: List[SchemaIssueDetail]):
        self.subject = subject
        self.errors = errors
        details = "; ".join(f"{e.path}: {e.message}" for e in errors[:5])
        super().__init__(f"{subject} schema validation failed: {details}")


class GraphLoadError(SpecGraphError):
    """Raised when the index or a node file cannot be loaded."""
    pass


# =============================================================================
# SPEC NODE (Value Wrapper)
# =============================================================================

class SpecNode(msgspec.Struct, frozen=True):
    """
    A node document as loaded from storage.

    `document` is the raw JSON object. Accessors are tolerant: a field of the
    wrong JSON type reads as None / empty so that traversal code keeps running
    over schema-invalid input while the validator reports it.
    """
    document: Dict[str, Any]

    @property
    def id(self) -> str:
        value = self.document.get("id")
        return value if isinstance(value, str) else ""

    @property
    def type(self) -> Optional[str]:
        return self.text("type")

    @property
    def title(self) -> Optional[str]:
        return self.text("title")

    @property
    def status(self) -> Optional[str]:
        return self.text("status")

    @property
    def statement(self) -> Optional[str]:
        return self.text("statement")

    @property
    def severity(self) -> Optional[str]:
        return self.text("severity")

    @property
    def category(self) -> Optional[str]:
        return self.text("category")

    def text(self, field: str) -> Optional[str]:
        value = self.document.get(field)
        return value if isinstance(value, str) else None

    @property
    def links(self) -> Dict[str, Any]:
        raw = self.document.get("links")
        return raw if isinstance(raw, dict) else {}

    def targets(self, edge_type: str) -> Tuple[str, ...]:
        """
        Outbound targets for one edge type.

        Set semantics over an ordered list: duplicates and non-string or empty
        entries are dropped, first occurrence order is kept.
        """
        raw = self.links.get(edge_type)
        if not isinstance(raw, list):
            return ()
        seen: Dict[str, None] = {}
        for target in raw:
            if isinstance(target, str) and target:
                seen.setdefault(target, None)
        return tuple(seen)

    def has_target(self, edge_type: str, target_id: str) -> bool:
        return target_id in self.targets(edge_type)

    @property
    def pins(self) -> List[Pin]:
        raw = self.document.get("pins")
        if not isinstance(raw, list):
            return []
        return [
            Pin(id=entry["id"], sha256=entry["sha256"])
            for entry in raw
            if isinstance(entry, dict)
            and isinstance(entry.get("id"), str)
            and isinstance(entry.get("sha256"), str)
        ]

    @property
    def artifact_sha256(self) -> Optional[str]:
        if self.type != NodeType.ARTIFACT.value:
            return None
        artifact = self.document.get("artifact")
        if isinstance(artifact, dict) and isinstance(artifact.get("sha256"), str):
            return artifact["sha256"]
        return None

    def to_document(self) -> Dict[str, Any]:
        """Deep copy of the document, safe to hand to callers."""
        return copy.deepcopy(self.document)

    def with_targets(self, edge_type: str, targets: Iterable[str]) -> "SpecNode":
        """Return a new node whose `links[edge_type]` is `targets`."""
        document = self.to_document()
        links = document.get("links")
        if not isinstance(links, dict):
            links = {}
        new_targets = list(targets)
        if new_targets:
            links[edge_type] = new_targets
        else:
            links.pop(edge_type, None)
        _set_links(document, links)
        return SpecNode(document)

    def without_target(self, target_id: str) -> Optional["SpecNode"]:
        """
        Remove `target_id` from every edge-type list.

        Returns:
            The scrubbed node, or None if no list referenced the target
        """
        links = self.links
        if not links:
            return None

        document = self.to_document()
        new_links = document["links"]
        changed = False
        for edge_type in EDGE_TYPES:
            targets = new_links.get(edge_type)
            if not isinstance(targets, list):
                continue
            kept = [t for t in targets if t != target_id]
            if len(kept) == len(targets):
                continue
            changed = True
            if kept:
                new_links[edge_type] = kept
            else:
                del new_links[edge_type]

        if not changed:
            return None
        _set_links(document, new_links)
        return SpecNode(document)


def _set_links(document: Dict[str, Any], links: Dict[str, Any]) -> None:
    """Store links, dropping the object entirely when no edge list remains."""
    has_edges = any(
        isinstance(links.get(edge_type), list) and links.get(edge_type)
        for edge_type in EDGE_TYPES
    )
    if has_edges:
        document["links"] = links
    else:
        document.pop("links", None)


# =============================================================================
# NODE STORE
# =============================================================================

class NodeStore:
    """
    Immutable-by-convention snapshot of one graph directory.

    Node iteration order is the index order; the cycle detector and the
    layer BFS rely on it for reproducible diagnostics.

    Usage:
        store = load_node_store(storage)
        node = store.get_node("AUTH-01")
        for node in store.iter_nodes():
            ...
    """

    def __init__(self, index: GraphIndex, nodes: Dict[str, SpecNode]):
        self._index = index
        self._refs_by_id: Dict[str, NodeRef] = {ref.id: ref for ref in index.nodes}
        self._nodes_by_id: Dict[str, SpecNode] = nodes

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def index(self) -> GraphIndex:
        return self._index

    @property
    def root(self) -> Optional[str]:
        return self._index.root

    @property
    def node_count(self) -> int:
        return len(self._nodes_by_id)

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes_by_id

    def get_node(self, node_id: str) -> SpecNode:
        """
        Raises:
            NodeNotFoundError: If node doesn't exist
        """
        node = self._nodes_by_id.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def find_node(self, node_id: str) -> Optional[SpecNode]:
        return self._nodes_by_id.get(node_id)

    def ref_for(self, node_id: str) -> Optional[NodeRef]:
        return self._refs_by_id.get(node_id)

    def node_ids(self) -> List[str]:
        return list(self._nodes_by_id)

    def iter_nodes(self) -> Iterator[SpecNode]:
        return iter(self._nodes_by_id.values())

    def nodes_of_type(self, node_type: str) -> List[SpecNode]:
        return [n for n in self._nodes_by_id.values() if n.type == node_type]

    def ref_paths(self) -> List[str]:
        return [ref.path for ref in self._index.nodes]

    def __len__(self) -> int:
        return len(self._nodes_by_id)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes_by_id

    def __repr__(self) -> str:
        return f"NodeStore(nodes={self.node_count}, root={self.root!r})"

    # =========================================================================
    # CONSTRUCTION
    # =========================================================================

    @classmethod
    def from_documents(
        cls,
        documents: Iterable[Dict[str, Any]],
        root: Optional[str] = None,
        specgraph_version: str = "1.0.0",
    ) -> "NodeStore":
        """
        Build a store from node documents held in memory, in the given order.

        For embedders that resolve or query a graph without a graph directory:

            store = NodeStore.from_documents(documents, root="ROOT")
            EffectiveGuidanceResolver(store).resolve("AUTH-01")

        Index paths follow the type-directory convention. Documents are
        copied, so later changes to the inputs do not reach the store.

        Raises:
            GraphLoadError: On a duplicate id or an unregistered node type
        """
        refs: List[NodeRef] = []
        nodes: Dict[str, SpecNode] = {}
        for document in documents:
            node = SpecNode(copy.deepcopy(document))
            if node.id in nodes:
                raise GraphLoadError(f"Duplicate node id in documents: {node.id}")
            if node.type not in NODE_TYPE_SPECS:
                raise GraphLoadError(f"Unsupported node type for {node.id}: {node.type}")
            refs.append(NodeRef(id=node.id, path=node_path_for(node.id, node.type), expected_type=node.type))
            nodes[node.id] = node
        index = GraphIndex(specgraph_version=specgraph_version, root=root, nodes=refs)
        return cls(index, nodes)


def load_node_store(storage) -> NodeStore:
    """
    Load graph.json and every referenced node file.

    Args:
        storage: infrastructure.storage.FileStorage rooted at the graph directory

    Raises:
        GraphLoadError: On unreadable/undecodable files, duplicate ids, or a
                        node file whose id differs from its index entry
    """
    from infrastructure.storage import StorageError

    try:
        index = decode_index(storage.read_bytes(GRAPH_INDEX_FILE))
    except StorageError as e:
        raise GraphLoadError(f"Cannot read graph index: {e}") from e
    except (msgspec.DecodeError, msgspec.ValidationError) as e:
        raise GraphLoadError(f"Invalid graph index {GRAPH_INDEX_FILE}: {e}") from e

    nodes: Dict[str, SpecNode] = {}
    for ref in index.nodes:
        if not ref.id:
            raise GraphLoadError(f"Invalid node id in graph index: {ref!r}")
        if ref.id in nodes:
            raise GraphLoadError(f"Duplicate node id in graph index: {ref.id}")
        if not ref.path:
            raise GraphLoadError(f"Invalid path for node {ref.id}")

        try:
            document = storage.read_json(ref.path)
        except StorageError as e:
            raise GraphLoadError(f"Cannot read node {ref.id}: {e}") from e
        except msgspec.DecodeError as e:
            raise GraphLoadError(f"Invalid JSON in node file {ref.path}: {e}") from e

        if not isinstance(document, dict):
            raise GraphLoadError(f"Node file is not a JSON object: {ref.path}")
        if document.get("id") != ref.id:
            raise GraphLoadError(
                f"Node file id mismatch: ref {ref.id} != node {document.get('id')} ({ref.path})"
            )
        nodes[ref.id] = SpecNode(document)

    logger.debug("Loaded %d nodes from %s", len(nodes), storage.graph_dir)
    return NodeStore(index, nodes)
