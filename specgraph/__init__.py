"""
SPECGRAPH - Specification Graph Engine

This package provides:
- ontology / schemas: the vocabulary and the typed records
- store / indexes: the in-memory snapshot and its derived adjacency
- resolver: effective guidance (direct constraints, layer propagation,
  supersession, ambiguity)
- validator / mutator / queries: the operations over a graph directory

The embedding surface lives in specgraph.workspace:

    from specgraph.workspace import SpecGraphWorkspace
"""

from specgraph.ontology import (
    EDGE_TYPES,
    NODE_TYPE_SPECS,
    DecisionCategory,
    EdgeType,
    IssueSeverity,
    NodeType,
    PolicySeverity,
)
from specgraph.schemas import (
    EffectiveConstraints,
    OperationResult,
    ValidationResult,
)
from specgraph.store import (
    DuplicateNodeError,
    GraphLoadError,
    MutationConflictError,
    NodeKindError,
    NodeNotFoundError,
    NodeStore,
    SchemaInvalidError,
    SpecGraphError,
    SpecNode,
)

__all__ = [
    # Vocabulary
    "EDGE_TYPES",
    "NODE_TYPE_SPECS",
    "DecisionCategory",
    "EdgeType",
    "IssueSeverity",
    "NodeType",
    "PolicySeverity",
    # Records
    "EffectiveConstraints",
    "OperationResult",
    "ValidationResult",
    # Store + errors
    "NodeStore",
    "SpecNode",
    "SpecGraphError",
    "NodeNotFoundError",
    "DuplicateNodeError",
    "MutationConflictError",
    "NodeKindError",
    "SchemaInvalidError",
    "GraphLoadError",
]
