"""
SPECGRAPH QUERIES - Read-Only Composite Views

QueryFacade wraps one NodeStore snapshot and answers every read operation.
Nothing here mutates the store; results are msgspec records (see schemas.py)
or deep copies of node documents.
"""
from typing import Any, Dict, List, Set

from specgraph.indexes import GraphIndexes
from specgraph.ontology import EDGE_TYPES, EdgeType, NodeType, is_grouping_type
from specgraph.resolver import EffectiveGuidanceResolver
from specgraph.schemas import (
    AffectingGroups,
    AffectingNode,
    AffectingNodes,
    DependencyCounts,
    DependencyList,
    DependencyNode,
    DependencySummary,
    EdgeList,
    EdgeRecord,
    EffectiveConstraintNode,
    EffectiveConstraints,
    FullDependencies,
    GroupSubgraph,
    NodeList,
    NodeSummary,
    SearchResult,
)
from specgraph.store import NodeKindError, NodeNotFoundError, NodeStore, SpecNode


def _string_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return " ".join(entry for entry in value if isinstance(entry, str))
    return ""


def _metadata_text(metadata: Any) -> str:
    if not isinstance(metadata, dict):
        return ""
    parts = [
        _string_text(metadata.get("rationale")),
        _string_text(metadata.get("notes")),
        _string_text(metadata.get("owner")),
        _string_text(metadata.get("tags")),
    ]
    rejected = metadata.get("rejected_alternatives")
    if isinstance(rejected, list):
        for alternative in rejected:
            if isinstance(alternative, dict):
                parts.append(_string_text(alternative.get("title")))
                parts.append(_string_text(alternative.get("reason")))
    return " ".join(parts)


def search_text(node: SpecNode) -> str:
    """Lower-cased text a node is searchable by."""
    document = node.document
    parts = [node.id]
    for field in ("title", "description", "expectation", "statement", "verification"):
        parts.append(_string_text(document.get(field)))
    parts.append(_metadata_text(document.get("metadata")))
    return " ".join(parts).lower()


class QueryFacade:
    """
    Read operations over one snapshot.

    Usage:
        queries = QueryFacade(store)
        queries.get_effective_constraints("AUTH-01")
        queries.list_dependencies_full("AUTH-01")
    """

    def __init__(self, store: NodeStore):
        self.store = store
        self.indexes = GraphIndexes.of(store)
        self.resolver = EffectiveGuidanceResolver(store, self.indexes)

    # =========================================================================
    # SIMPLE READS
    # =========================================================================

    def list_nodes(self) -> NodeList:
        nodes = sorted(
            (
                NodeSummary(id=node.id, type=node.type, title=node.title, status=node.status)
                for node in self.store.iter_nodes()
            ),
            key=lambda summary: summary.id,
        )
        return NodeList(nodes=nodes, count=len(nodes))

    def get_node(self, node_id: str) -> Dict[str, Any]:
        """
        Raises:
            NodeNotFoundError: If node doesn't exist
        """
        return self.store.get_node(node_id).to_document()

    def list_edges(self) -> EdgeList:
        edges = [
            EdgeRecord(source=node.id, target=target_id, edge_type=edge_type)
            for node in self.store.iter_nodes()
            for edge_type in EDGE_TYPES
            for target_id in node.targets(edge_type)
        ]
        return EdgeList(edges=edges, count=len(edges))

    def search_nodes(self, query: str) -> SearchResult:
        """Case-insensitive substring search; an empty query matches nothing."""
        needle = query.strip().lower()
        if not needle:
            return SearchResult(nodes=[], count=0)
        nodes = [
            node.to_document()
            for node in self.store.iter_nodes()
            if needle in search_text(node)
        ]
        return SearchResult(nodes=nodes, count=len(nodes))

    # =========================================================================
    # SUBGRAPHS
    # =========================================================================

    def get_group_subgraph(self, group_id: str) -> GroupSubgraph:
        """
        A grouping node plus everything it transitively contains.

        Raises:
            NodeNotFoundError: If the group doesn't exist
            NodeKindError: If the node is not a feature or layer
        """
        group = self.store.find_node(group_id)
        if group is None:
            raise NodeNotFoundError(group_id, role="Group node")
        if not is_grouping_type(group.type):
            raise NodeKindError(group_id, "grouping node", group.type)
        return self._subgraph(group)

    def get_feature_subgraph(self, feature_id: str) -> GroupSubgraph:
        feature = self.store.find_node(feature_id)
        if feature is None:
            raise NodeNotFoundError(feature_id, role="Feature node")
        if feature.type != NodeType.FEATURE.value:
            raise NodeKindError(feature_id, "feature", feature.type)
        return self._subgraph(feature)

    def _subgraph(self, group: SpecNode) -> GroupSubgraph:
        children = []
        for member_id in self.indexes.contains_closure(group.id)[1:]:
            member = self.store.find_node(member_id)
            if member is not None:
                children.append(member.to_document())
        return GroupSubgraph(group=group.to_document(), children=children)

    # =========================================================================
    # GUIDANCE
    # =========================================================================

    def get_effective_constraints(self, node_id: str) -> EffectiveConstraints:
        return self.resolver.resolve(node_id)

    # =========================================================================
    # DEPENDENCIES
    # =========================================================================

    def list_dependencies(self, node_id: str) -> DependencyList:
        """Direct depends_on targets, split into existing and missing."""
        node = self.store.get_node(node_id)
        dependencies = []
        missing = []
        for dep_id in node.targets(EdgeType.DEPENDS_ON.value):
            dep = self.store.find_node(dep_id)
            if dep is None:
                missing.append(dep_id)
            else:
                dependencies.append(DependencySummary(id=dep.id, type=dep.type, title=dep.title))
        dependencies.sort(key=lambda summary: summary.id)
        return DependencyList(
            node_id=node_id,
            dependencies=dependencies,
            missing_dependencies=sorted(missing),
            count=len(dependencies),
        )

    def list_dependencies_full(self, node_id: str) -> FullDependencies:
        """
        Transitive depends_on context, cross-referenced with effective guidance.

        Effective constraints are collected for the node and for every existing
        dependency; applies_to names which of those each constraint reached.
        Decision and policy dependencies that never act as guidance on the
        node itself are listed in informational_only.
        """
        node = self.store.get_node(node_id)
        direct = list(node.targets(EdgeType.DEPENDS_ON.value))
        depths, missing = self.indexes.dependency_depths(node_id)

        dependency_nodes = []
        for dep_id in sorted(depths, key=lambda dep_id: (depths[dep_id], dep_id)):
            dep = self.store.find_node(dep_id)
            dependency_nodes.append(DependencyNode(
                id=dep_id,
                type=dep.type if dep else None,
                title=dep.title if dep else None,
                depth=depths[dep_id],
            ))
        decisions = [d for d in dependency_nodes if d.type == NodeType.DECISION.value]
        policies = [d for d in dependency_nodes if d.type == NodeType.POLICY.value]

        applies_to: Dict[str, Set[str]] = {}
        effective_by_id: Dict[str, EffectiveConstraintNode] = {}
        warnings: List[str] = []
        own = self.resolver.resolve(node_id)
        context_ids = [node_id] + [d.id for d in dependency_nodes if d.id not in missing]

        for target_id in context_ids:
            effective = own if target_id == node_id else self.resolver.resolve(target_id)
            for warning in effective.warnings:
                if warning not in warnings:
                    warnings.append(warning)
            for constraint in effective.constraining_nodes:
                applies_to.setdefault(constraint.id, set()).add(target_id)
                if constraint.id not in effective_by_id:
                    effective_by_id[constraint.id] = EffectiveConstraintNode(
                        id=constraint.id,
                        type=constraint.type,
                        title=constraint.title,
                        severity=constraint.severity,
                        statement=constraint.statement,
                    )

        effective_nodes = []
        for constraint_id in sorted(effective_by_id):
            entry = effective_by_id[constraint_id]
            entry.applies_to = sorted(applies_to[constraint_id])
            effective_nodes.append(entry)

        normative = {c.id for c in own.constraining_nodes} | {d.id for d in own.propagated_decisions}
        informational = [d.id for d in decisions + policies if d.id not in normative]
        informational.sort(key=lambda dep_id: (depths[dep_id], dep_id))

        return FullDependencies(
            node_id=node_id,
            direct_dependencies=direct,
            dependency_nodes=dependency_nodes,
            decisions=decisions,
            policies=policies,
            effective_constraint_nodes=effective_nodes,
            effective_decisions=[e for e in effective_nodes if e.type == NodeType.DECISION.value],
            effective_policies=[e for e in effective_nodes if e.type == NodeType.POLICY.value],
            informational_only=informational,
            missing_dependencies=sorted(missing),
            warnings=warnings,
            depends_on_edges=self.indexes.depends_on_edges(node_id, depths),
            count=DependencyCounts(
                direct_dependencies=len(direct),
                transitive_dependencies=len(dependency_nodes),
                effective_constraints=len(effective_nodes),
            ),
        )

    # =========================================================================
    # AFFECTING NODES
    # =========================================================================

    def get_affecting_nodes(self, node_id: str) -> AffectingNodes:
        """
        Every upstream node that can change what node_id means, with reasons.

        Raises:
            NodeNotFoundError: If node doesn't exist
        """
        node = self.store.get_node(node_id)
        depths, missing = self.indexes.dependency_depths(node_id)
        effective = self.resolver.resolve(node_id)

        dependency_ids = sorted(
            (dep_id for dep_id in depths if dep_id not in missing),
            key=lambda dep_id: (depths[dep_id], dep_id),
        )
        implements_targets = list(node.targets(EdgeType.IMPLEMENTS.value))
        verified_by_targets = list(node.targets(EdgeType.VERIFIED_BY.value))
        derived_from_targets = list(node.targets(EdgeType.DERIVED_FROM.value))
        superseded_by = self.indexes.inbound(EdgeType.SUPERSEDES.value, node_id)

        reasons: Dict[str, Set[str]] = {}

        def add(affecting_id: str, reason: str) -> None:
            if self.store.has_node(affecting_id):
                reasons.setdefault(affecting_id, set()).add(reason)

        for dep_id in dependency_ids:
            add(dep_id, "depends_on")
        for constraint in effective.constraining_nodes:
            if constraint.precedence_distance > 0:
                add(constraint.id, "constrains_layer")
            elif constraint.direct:
                add(constraint.id, "constrains_direct")
            else:
                add(constraint.id, "constrains_inherited")
        for ancestor_id in effective.contains_ancestors:
            add(ancestor_id, "contains_ancestor")
        for layer in effective.layer_dependencies:
            add(layer.id, "layer_dependency")
        for decision in effective.propagated_decisions:
            add(decision.id, "layer_decision")
        for target_id in implements_targets:
            add(target_id, "implements_target")
        for target_id in verified_by_targets:
            add(target_id, "verified_by_target")
        for target_id in derived_from_targets:
            add(target_id, "derived_from_target")
        for source_id in superseded_by:
            add(source_id, "superseded_by")

        affecting = []
        for affecting_id in sorted(reasons):
            affecting_node = self.store.get_node(affecting_id)
            affecting.append(AffectingNode(
                id=affecting_id,
                type=affecting_node.type,
                title=affecting_node.title,
                reasons=sorted(reasons[affecting_id]),
            ))

        return AffectingNodes(
            node_id=node_id,
            affecting_nodes=affecting,
            groups=AffectingGroups(
                depends_on_transitive=dependency_ids,
                constraining_nodes=[c.id for c in effective.constraining_nodes],
                contains_ancestors=effective.contains_ancestors,
                layer_dependencies=[layer.id for layer in effective.layer_dependencies],
                propagated_decisions=[d.id for d in effective.propagated_decisions],
                implements_targets=implements_targets,
                verified_by_targets=verified_by_targets,
                derived_from_targets=derived_from_targets,
                superseded_by=superseded_by,
            ),
            count=len(affecting),
        )

    def get_upstream_context(self, node_id: str) -> AffectingNodes:
        """Alias of get_affecting_nodes."""
        return self.get_affecting_nodes(node_id)
