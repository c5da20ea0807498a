"""
SPECGRAPH ONTOLOGY - The Dictionary of the Spec Graph

If schemas.py is the Grammar (how records are structured),
ontology.py is the Dictionary (the words a spec graph may use).

This module defines:
- Enums: The vocabulary (NodeType, EdgeType, DecisionCategory, PolicySeverity)
- NodeTypeSpec: Per-type descriptors (storage directory, grouping flag)
- NODE_TYPE_SPECS: The registry every other module consults instead of branching
  on type names

Key Principle: adding a node type is additive. Register a NodeTypeSpec here and
ship its shape in node.schema.json; no traversal code needs to change.
"""
from typing import Dict, FrozenSet, Optional, Tuple
from enum import Enum
import re

import msgspec


# =============================================================================
# ENUMS (The Vocabulary)
# =============================================================================

class NodeType(str, Enum):
    """Types of nodes in a spec graph."""
    # Grouping types
    FEATURE = "feature"
    LAYER = "layer"                          # Cross-cutting grouping
    # Leaf / contract types
    BEHAVIOR = "behavior"
    DECISION = "decision"
    DOMAIN = "domain"
    POLICY = "policy"
    DESIGN_TOKEN = "design_token"
    UI_CONTRACT = "ui_contract"
    API_CONTRACT = "api_contract"
    DATA_MODEL = "data_model"
    ARTIFACT = "artifact"
    EQUIVALENCE_CONTRACT = "equivalence_contract"
    PIPELINE = "pipeline"


class EdgeType(str, Enum):
    """Directed relations, stored as outbound lists under a node's `links`."""
    CONTAINS = "contains"                    # Grouping: parent -> child
    DEPENDS_ON = "depends_on"                # Ordering: must be acyclic
    CONSTRAINS = "constrains"                # Normative: decision/policy -> target
    IMPLEMENTS = "implements"
    DERIVED_FROM = "derived_from"            # Provenance, pinned by hash
    VERIFIED_BY = "verified_by"
    SUPERSEDES = "supersedes"                # Replacement: new -> old


class DecisionCategory(str, Enum):
    """Allowed `category` values for decision nodes."""
    ARCHITECTURE = "architecture"
    STACK = "stack"
    PATTERN = "pattern"
    INTERFACE = "interface"


class PolicySeverity(str, Enum):
    """Allowed `severity` values for policy nodes."""
    HARD = "hard"
    SOFT = "soft"


class IssueSeverity(str, Enum):
    """Severity of a structural finding."""
    ERROR = "error"      # Makes the graph invalid
    WARNING = "warning"  # Advisory only


# =============================================================================
# NODE TYPE REGISTRY
# =============================================================================

class NodeTypeSpec(msgspec.Struct, kw_only=True, frozen=True):
    """
    Descriptor for one node type.

    Storage and grouping questions go through the registry; per-type field
    shapes live in node.schema.json.
    """
    node_type: str                           # NodeType.value
    directory: str                           # Folder under nodes/ for this type
    grouping: bool = False                   # May parent other nodes via contains


NODE_TYPE_SPECS: Dict[str, NodeTypeSpec] = {
    NodeType.FEATURE.value: NodeTypeSpec(node_type=NodeType.FEATURE.value, directory="features", grouping=True),
    NodeType.LAYER.value: NodeTypeSpec(node_type=NodeType.LAYER.value, directory="layers", grouping=True),
    NodeType.BEHAVIOR.value: NodeTypeSpec(node_type=NodeType.BEHAVIOR.value, directory="behaviors"),
    NodeType.DECISION.value: NodeTypeSpec(node_type=NodeType.DECISION.value, directory="decisions"),
    NodeType.DOMAIN.value: NodeTypeSpec(node_type=NodeType.DOMAIN.value, directory="domains"),
    NodeType.POLICY.value: NodeTypeSpec(node_type=NodeType.POLICY.value, directory="policies"),
    NodeType.DESIGN_TOKEN.value: NodeTypeSpec(node_type=NodeType.DESIGN_TOKEN.value, directory="design_tokens"),
    NodeType.UI_CONTRACT.value: NodeTypeSpec(node_type=NodeType.UI_CONTRACT.value, directory="ui_contracts"),
    NodeType.API_CONTRACT.value: NodeTypeSpec(node_type=NodeType.API_CONTRACT.value, directory="api_contracts"),
    NodeType.DATA_MODEL.value: NodeTypeSpec(node_type=NodeType.DATA_MODEL.value, directory="data_models"),
    NodeType.ARTIFACT.value: NodeTypeSpec(node_type=NodeType.ARTIFACT.value, directory="artifacts"),
    NodeType.EQUIVALENCE_CONTRACT.value: NodeTypeSpec(
        node_type=NodeType.EQUIVALENCE_CONTRACT.value, directory="equivalence_contracts"
    ),
    NodeType.PIPELINE.value: NodeTypeSpec(node_type=NodeType.PIPELINE.value, directory="pipelines"),
}


# =============================================================================
# CONSTANTS
# =============================================================================

EDGE_TYPES: Tuple[str, ...] = tuple(et.value for et in EdgeType)

GROUPING_TYPES: FrozenSet[str] = frozenset(
    spec.node_type for spec in NODE_TYPE_SPECS.values() if spec.grouping
)

NODE_ID_PATTERN = re.compile(r"^[A-Z][A-Z0-9-]{0,79}$")

NODES_DIR = "nodes"
GRAPH_INDEX_FILE = "graph.json"
DEFAULT_ROOT_ID = "ROOT"

SCHEMA_BASE_URL = "https://oco-adam.github.io/specgraph/schemas/"
GRAPH_SCHEMA_NAME = "graph.schema.json"
NODE_SCHEMA_NAME = "node.schema.json"
GRAPH_SCHEMA_URL = SCHEMA_BASE_URL + GRAPH_SCHEMA_NAME
NODE_SCHEMA_URL = SCHEMA_BASE_URL + NODE_SCHEMA_NAME


# =============================================================================
# LOOKUP HELPERS
# =============================================================================

def is_grouping_type(node_type: Optional[str]) -> bool:
    """True for feature and layer."""
    return node_type in GROUPING_TYPES


def is_edge_type(value: str) -> bool:
    """Check if a string names one of the fixed edge types."""
    return value in EDGE_TYPES


def is_valid_node_id(value: object) -> bool:
    return isinstance(value, str) and NODE_ID_PATTERN.match(value) is not None


def node_path_for(node_id: str, node_type: str) -> str:
    """
    Storage path of a node file, relative to the graph directory.

    Raises:
        ValueError: If the node type is not registered
    """
    spec = NODE_TYPE_SPECS.get(node_type)
    if spec is None:
        raise ValueError(f"Unsupported node type: {node_type}")
    return f"{NODES_DIR}/{spec.directory}/{node_id}.json"
