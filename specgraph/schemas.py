"""
SPECGRAPH SCHEMAS - The Grammar of the Engine

If ontology.py is the Dictionary (defining the words we can use),
schemas.py is the Grammar (defining how records are structured).

This module defines the typed records that flow in and out of the engine:
- NodeRef / GraphIndex: the persisted index document
- Validation records: SchemaIssue, StructuralIssue, ValidationResult
- OperationResult: what every mutation returns
- Query records: effective constraints, dependency context, affecting nodes

Node documents themselves stay plain JSON objects (see store.SpecNode): the
schema is the authority on their shape, and unknown-but-valid fields must
survive a load/save round trip untouched.

Design Principles:
1. STRICT TYPING: msgspec.Struct with no silent type coercion
2. KW_ONLY: Enforce keyword arguments to prevent positional mix-ups
3. WIRE NAMES: camelCase on disk where the file format says so
"""
from typing import Any, Dict, List, Optional

import msgspec


# =============================================================================
# PERSISTED INDEX
# =============================================================================

class NodeRef(msgspec.Struct, kw_only=True, omit_defaults=True, rename="camel"):
    """One entry of graph.json `nodes`."""
    id: str
    path: str                                  # Relative to the graph directory
    expected_type: Optional[str] = None        # Must equal node.type when set
    sha256: Optional[str] = None               # Tamper pin for the node file


class GraphIndex(msgspec.Struct, kw_only=True, omit_defaults=True, rename="camel"):
    """The graph.json document."""
    schema_url: Optional[str] = msgspec.field(default=None, name="$schema")
    specgraph_version: str
    root: Optional[str] = None
    node_search_paths: Optional[List[str]] = None
    nodes: List[NodeRef]
    defaults: Optional[Dict[str, Any]] = None


class Pin(msgspec.Struct, kw_only=True, frozen=True):
    """Hash of a derived_from source recorded at derivation time."""
    id: str
    sha256: str


# =============================================================================
# VALIDATION RECORDS
# =============================================================================

class SchemaIssueDetail(msgspec.Struct, kw_only=True, frozen=True):
    path: str                                  # JSON pointer, "/" for the root
    message: str


class SchemaIssue(msgspec.Struct, kw_only=True):
    node_id: str                               # "GRAPH" for the index itself
    file: str
    errors: List[SchemaIssueDetail] = msgspec.field(default_factory=list)


class StructuralIssue(msgspec.Struct, kw_only=True):
    node_id: str
    severity: str                              # IssueSeverity.value
    message: str
    rule: str = ""                             # Which check produced it


class ValidationResult(msgspec.Struct, kw_only=True):
    """Complete validation report for one graph directory."""
    valid: bool
    total_nodes: int
    valid_nodes: int
    schema_errors: List[SchemaIssue] = msgspec.field(default_factory=list)
    structural_issues: List[StructuralIssue] = msgspec.field(default_factory=list)

    @property
    def errors(self) -> List[StructuralIssue]:
        return [i for i in self.structural_issues if i.severity == "error"]

    @property
    def warnings(self) -> List[StructuralIssue]:
        return [i for i in self.structural_issues if i.severity == "warning"]


# =============================================================================
# MUTATION RESULT
# =============================================================================

class OperationResult(msgspec.Struct, kw_only=True):
    success: bool
    operation: str
    node_id: Optional[str] = None
    files_changed: List[str] = msgspec.field(default_factory=list)


# =============================================================================
# QUERY RECORDS
# =============================================================================

class NodeSummary(msgspec.Struct, kw_only=True):
    id: str
    type: Optional[str]
    title: Optional[str] = None
    status: Optional[str] = None


class NodeList(msgspec.Struct, kw_only=True):
    nodes: List[NodeSummary]
    count: int


class EdgeRecord(msgspec.Struct, kw_only=True, frozen=True):
    source: str
    target: str
    edge_type: str


class EdgeList(msgspec.Struct, kw_only=True):
    edges: List[EdgeRecord]
    count: int


class SearchResult(msgspec.Struct, kw_only=True):
    nodes: List[Dict[str, Any]]
    count: int


class GroupSubgraph(msgspec.Struct, kw_only=True):
    group: Dict[str, Any]
    children: List[Dict[str, Any]]


class ConstrainingNode(msgspec.Struct, kw_only=True):
    id: str
    type: str
    title: Optional[str] = None
    severity: Optional[str] = None
    statement: Optional[str] = None
    category: Optional[str] = None
    direct: bool = False                       # Target itself is constrained
    via_targets: List[str] = msgspec.field(default_factory=list)
    via_layers: List[str] = msgspec.field(default_factory=list)
    precedence_distance: int = 0               # 0 for non-layer matches


class PropagatedDecision(msgspec.Struct, kw_only=True):
    id: str
    title: Optional[str] = None
    category: Optional[str] = None
    statement: Optional[str] = None
    via_layers: List[str] = msgspec.field(default_factory=list)
    precedence_distance: int = 0
    origin: str = "layer_contains"             # layer_contains | layer_constrains | both


class LayerDependency(msgspec.Struct, kw_only=True):
    id: str
    distance: int
    path: List[str]                            # Target first, layer last


class AmbiguityRecord(msgspec.Struct, kw_only=True):
    target_id: str
    category: str
    decision_ids: List[str]
    message: str


class EffectiveConstraints(msgspec.Struct, kw_only=True):
    node_id: str
    contains_ancestors: List[str]
    constraining_nodes: List[ConstrainingNode]
    propagated_decisions: List[PropagatedDecision]
    layer_dependencies: List[LayerDependency]
    ambiguities: List[AmbiguityRecord]
    warnings: List[str]
    count: int


class DependencySummary(msgspec.Struct, kw_only=True):
    id: str
    type: Optional[str] = None
    title: Optional[str] = None


class DependencyList(msgspec.Struct, kw_only=True):
    node_id: str
    dependencies: List[DependencySummary]
    missing_dependencies: List[str]
    count: int


class DependencyNode(msgspec.Struct, kw_only=True):
    id: str
    type: Optional[str] = None
    title: Optional[str] = None
    depth: int = 1


class EffectiveConstraintNode(msgspec.Struct, kw_only=True):
    id: str
    type: str
    title: Optional[str] = None
    severity: Optional[str] = None
    statement: Optional[str] = None
    applies_to: List[str] = msgspec.field(default_factory=list)


class DependsOnEdge(msgspec.Struct, kw_only=True, frozen=True):
    source: str
    target: str


class DependencyCounts(msgspec.Struct, kw_only=True):
    direct_dependencies: int
    transitive_dependencies: int
    effective_constraints: int


class FullDependencies(msgspec.Struct, kw_only=True):
    node_id: str
    direct_dependencies: List[str]
    dependency_nodes: List[DependencyNode]
    decisions: List[DependencyNode]
    policies: List[DependencyNode]
    effective_constraint_nodes: List[EffectiveConstraintNode]
    effective_decisions: List[EffectiveConstraintNode]
    effective_policies: List[EffectiveConstraintNode]
    informational_only: List[str]              # Context without normative force
    missing_dependencies: List[str]
    warnings: List[str]
    depends_on_edges: List[DependsOnEdge]
    count: DependencyCounts


class AffectingNode(msgspec.Struct, kw_only=True):
    id: str
    type: Optional[str] = None
    title: Optional[str] = None
    reasons: List[str] = msgspec.field(default_factory=list)


class AffectingGroups(msgspec.Struct, kw_only=True):
    depends_on_transitive: List[str]
    constraining_nodes: List[str]
    contains_ancestors: List[str]
    layer_dependencies: List[str]
    propagated_decisions: List[str]
    implements_targets: List[str]
    verified_by_targets: List[str]
    derived_from_targets: List[str]
    superseded_by: List[str]


class AffectingNodes(msgspec.Struct, kw_only=True):
    node_id: str
    affecting_nodes: List[AffectingNode]
    groups: AffectingGroups
    count: int


# =============================================================================
# SERIALIZATION HELPERS
# =============================================================================

_index_decoder = msgspec.json.Decoder(type=GraphIndex)


def decode_index(data: bytes) -> GraphIndex:
    """Decode graph.json bytes into a GraphIndex (raises msgspec errors)."""
    return _index_decoder.decode(data)


def index_to_document(index: GraphIndex) -> Dict[str, Any]:
    """GraphIndex -> JSON object with wire names, defaults omitted."""
    return msgspec.to_builtins(index)
