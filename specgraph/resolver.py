"""
SPECGRAPH RESOLVER - Effective Guidance for a Node

Answers one question: which decisions, policies and other constraining nodes
normatively apply to a target node, and why.

Resolution runs in seven steps over one NodeStore snapshot:

1. Direct constraints: every node whose `constrains` list hits the target or
   one of its contains-ancestors.
2. Layer distances: BFS from the target over depends_on targets plus
   contains-parents that are features or layers; every layer reached (other
   than the target itself) is recorded with its hop distance and path.
3. Layer guidance: for each such layer, decisions inside its contains closure
   are candidates "via contains"; constraining nodes matched (step 1 logic)
   by any closure member are candidates "via constrains".
4. Supersession: candidates transitively superseded by another candidate are
   dropped. Pruning is global across all layers feeding the target.
5. Merge: surviving "via constrains" candidates join the direct matches;
   surviving decisions are also reported as propagated decisions.
6. Ambiguity: more than one surviving propagated decision in a category.
7. Severity overlap: hard and soft policies with the same statement text.

Ordering:
- BFS expands neighbours in sorted id order, so recorded layer paths do not
  depend on how edge lists happen to be ordered on disk.
- A candidate reached from several layers keeps all of them in via_layers;
  its precedence distance is the smallest of their distances, or 0 when it is
  also a direct match.
- Result lists are sorted by (precedence distance, id); via_layers by
  (layer distance, id).
"""
import logging
from collections import deque
from typing import Dict, List, Optional, Set, Tuple

import msgspec

from specgraph.indexes import GraphIndexes
from specgraph.ontology import EdgeType, NodeType, PolicySeverity
from specgraph.schemas import (
    AmbiguityRecord,
    ConstrainingNode,
    EffectiveConstraints,
    LayerDependency,
    PropagatedDecision,
)
from specgraph.store import NodeStore

logger = logging.getLogger(__name__)

ORIGIN_CONTAINS = "layer_contains"
ORIGIN_CONSTRAINS = "layer_constrains"
ORIGIN_BOTH = "both"


class DirectMatch(msgspec.Struct, kw_only=True):
    """One constraining node matched against a target's ancestry."""
    id: str
    direct: bool
    via_targets: Set[str]


class Candidate(msgspec.Struct, kw_only=True):
    """One id propagated to a target through one or more layers."""
    id: str
    layers: Dict[str, int] = {}               # layer id -> layer distance
    contained: bool = False                   # Decision inside a layer closure
    constrained: bool = False                 # Matched via constrains from a closure
    via_targets: Set[str] = set()

    @property
    def distance(self) -> int:
        return min(self.layers.values())

    @property
    def origin(self) -> str:
        if self.contained and self.constrained:
            return ORIGIN_BOTH
        return ORIGIN_CONTAINS if self.contained else ORIGIN_CONSTRAINS


class Propagation(msgspec.Struct, kw_only=True):
    """Steps 2-4 for one target."""
    layer_dependencies: List[LayerDependency]
    candidates: Dict[str, Candidate]
    active: Set[str]


class EffectiveGuidanceResolver:
    """
    Resolves effective guidance against one snapshot.

    Intermediate results (direct matches per node, layer guidance per layer)
    are memoized on the resolver, so a graph-wide sweep reuses them across
    targets. Create a new resolver for a new snapshot.

    Usage:
        resolver = EffectiveGuidanceResolver(store)
        result = resolver.resolve("AUTH-01")
        for constraint in result.constraining_nodes:
            print(constraint.id, constraint.precedence_distance)
    """

    def __init__(self, store: NodeStore, indexes: Optional[GraphIndexes] = None):
        self.store = store
        self.indexes = indexes or GraphIndexes.of(store)
        self._direct_cache: Dict[str, Dict[str, DirectMatch]] = {}
        self._layer_cache: Dict[str, Tuple[List[str], Dict[str, DirectMatch]]] = {}

    # =========================================================================
    # STEP 1: DIRECT CONSTRAINTS
    # =========================================================================

    def direct_matches(self, node_id: str) -> Dict[str, DirectMatch]:
        """Constraining nodes whose constrains list hits node_id's ancestry."""
        cached = self._direct_cache.get(node_id)
        if cached is not None:
            return cached

        ancestry = set(self.indexes.contains_ancestors(node_id))
        matches: Dict[str, DirectMatch] = {}
        for source_id, targets in self.indexes.outbound[EdgeType.CONSTRAINS.value].items():
            matched = {t for t in targets if t in ancestry}
            if not matched:
                continue
            matches[source_id] = DirectMatch(
                id=source_id,
                direct=node_id in matched,
                via_targets=matched,
            )
        self._direct_cache[node_id] = matches
        return matches

    # =========================================================================
    # STEP 2: LAYER DISTANCES
    # =========================================================================

    def layer_dependencies(self, node_id: str) -> List[LayerDependency]:
        """Every layer reachable from node_id, with hop distance and path."""
        distance: Dict[str, int] = {node_id: 0}
        previous: Dict[str, Optional[str]] = {node_id: None}
        found: List[str] = []
        queue = deque([node_id])

        while queue:
            current = queue.popleft()
            node = self.store.find_node(current)
            if node is None:
                continue
            if current != node_id and node.type == NodeType.LAYER.value:
                found.append(current)

            neighbors = set(self.indexes.targets(EdgeType.DEPENDS_ON.value, current))
            neighbors.update(self.indexes.grouping_parents(current))
            for next_id in sorted(neighbors):
                if next_id in distance:
                    continue
                distance[next_id] = distance[current] + 1
                previous[next_id] = current
                queue.append(next_id)

        dependencies = []
        for layer_id in found:
            path = [layer_id]
            while previous[path[-1]] is not None:
                path.append(previous[path[-1]])
            path.reverse()
            dependencies.append(LayerDependency(id=layer_id, distance=distance[layer_id], path=path))
        dependencies.sort(key=lambda dep: (dep.distance, dep.id))
        return dependencies

    # =========================================================================
    # STEP 3: LAYER GUIDANCE
    # =========================================================================

    def layer_guidance(self, layer_id: str) -> Tuple[List[str], Dict[str, DirectMatch]]:
        """
        What one layer propagates.

        Returns:
            (decision ids in the layer's contains closure,
             constraining matches unioned over every closure member)
        """
        cached = self._layer_cache.get(layer_id)
        if cached is not None:
            return cached

        decisions: List[str] = []
        constraints: Dict[str, DirectMatch] = {}
        for member_id in self.indexes.contains_closure(layer_id):
            member = self.store.find_node(member_id)
            if member is None:
                continue
            if member.type == NodeType.DECISION.value:
                decisions.append(member_id)
            for match in self.direct_matches(member_id).values():
                merged = constraints.get(match.id)
                if merged is None:
                    constraints[match.id] = DirectMatch(
                        id=match.id, direct=False, via_targets=set(match.via_targets)
                    )
                else:
                    merged.via_targets |= match.via_targets

        result = (decisions, constraints)
        self._layer_cache[layer_id] = result
        return result

    # =========================================================================
    # STEP 4: SUPERSESSION
    # =========================================================================

    def prune_superseded(self, candidate_ids: Set[str]) -> Set[str]:
        """
        Drop every candidate superseded (transitively) by another candidate.

        Two candidates that supersede each other are both dropped.
        """
        superseded: Set[str] = set()
        for source_id in candidate_ids:
            superseded |= self.indexes.supersedes_closure(source_id) & candidate_ids
        return candidate_ids - superseded

    def propagate(self, node_id: str) -> Propagation:
        """Steps 2-4."""
        layer_deps = self.layer_dependencies(node_id)
        candidates: Dict[str, Candidate] = {}

        def candidate(candidate_id: str, layer: LayerDependency) -> Candidate:
            entry = candidates.get(candidate_id)
            if entry is None:
                entry = Candidate(id=candidate_id, layers={}, via_targets=set())
                candidates[candidate_id] = entry
            known = entry.layers.get(layer.id)
            if known is None or layer.distance < known:
                entry.layers[layer.id] = layer.distance
            return entry

        for layer in layer_deps:
            decisions, constraints = self.layer_guidance(layer.id)
            for decision_id in decisions:
                candidate(decision_id, layer).contained = True
            for match in constraints.values():
                entry = candidate(match.id, layer)
                entry.constrained = True
                entry.via_targets |= match.via_targets

        active = self.prune_superseded(set(candidates))
        if len(active) < len(candidates):
            logger.debug(
                "Superseded candidates pruned for %s: %s",
                node_id, sorted(set(candidates) - active),
            )
        return Propagation(layer_dependencies=layer_deps, candidates=candidates, active=active)

    # =========================================================================
    # STEP 6: AMBIGUITY
    # =========================================================================

    def find_ambiguities(self, node_id: str, propagated: List[PropagatedDecision]) -> List[AmbiguityRecord]:
        by_category: Dict[str, Set[str]] = {}
        for decision in propagated:
            if decision.category:
                by_category.setdefault(decision.category, set()).add(decision.id)

        records = []
        for category in sorted(by_category):
            decision_ids = sorted(by_category[category])
            if len(decision_ids) <= 1:
                continue
            records.append(AmbiguityRecord(
                target_id=node_id,
                category=category,
                decision_ids=decision_ids,
                message=ambiguity_message(node_id, category, decision_ids),
            ))
        return records

    def ambiguities_for(self, node_id: str) -> List[AmbiguityRecord]:
        """Steps 2-4 and 6 only; used by the graph-wide sweep."""
        propagation = self.propagate(node_id)
        return self.find_ambiguities(node_id, self._propagated_decisions(propagation))

    # =========================================================================
    # FULL RESOLUTION
    # =========================================================================

    def resolve(self, node_id: str) -> EffectiveConstraints:
        """
        Raises:
            NodeNotFoundError: If node_id is not in the store
        """
        self.store.get_node(node_id)

        ancestors = self.indexes.contains_ancestors(node_id)
        direct = self.direct_matches(node_id)
        propagation = self.propagate(node_id)

        # Step 5: merge surviving constrains-candidates into the direct set
        merged: Dict[str, ConstrainingNode] = {}
        for match in direct.values():
            merged[match.id] = self._constraining_node(match.id, match.direct, match.via_targets, {}, 0)

        for candidate_id in propagation.active:
            entry = propagation.candidates[candidate_id]
            if not entry.constrained:
                continue
            existing = merged.get(candidate_id)
            if existing is None:
                merged[candidate_id] = self._constraining_node(
                    candidate_id, False, entry.via_targets, entry.layers, entry.distance
                )
            else:
                layers = dict(entry.layers)
                via_targets = set(existing.via_targets) | entry.via_targets
                merged[candidate_id] = self._constraining_node(
                    candidate_id, existing.direct, via_targets, layers,
                    min(existing.precedence_distance, entry.distance),
                )

        constraining = sorted(merged.values(), key=lambda c: (c.precedence_distance, c.id))
        propagated = self._propagated_decisions(propagation)
        ambiguities = self.find_ambiguities(node_id, propagated)
        warnings = collect_severity_warnings(constraining)

        return EffectiveConstraints(
            node_id=node_id,
            contains_ancestors=sorted(ancestors[1:]),
            constraining_nodes=constraining,
            propagated_decisions=propagated,
            layer_dependencies=propagation.layer_dependencies,
            ambiguities=ambiguities,
            warnings=warnings,
            count=len(constraining),
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _constraining_node(
        self,
        node_id: str,
        direct: bool,
        via_targets: Set[str],
        layers: Dict[str, int],
        precedence: int,
    ) -> ConstrainingNode:
        node = self.store.get_node(node_id)
        return ConstrainingNode(
            id=node_id,
            type=node.type or "",
            title=node.title,
            severity=node.severity,
            statement=node.statement,
            category=node.category,
            direct=direct,
            via_targets=sorted(via_targets),
            via_layers=_sorted_layers(layers),
            precedence_distance=precedence,
        )

    def _propagated_decisions(self, propagation: Propagation) -> List[PropagatedDecision]:
        decisions = []
        for candidate_id in propagation.active:
            node = self.store.find_node(candidate_id)
            if node is None or node.type != NodeType.DECISION.value:
                continue
            entry = propagation.candidates[candidate_id]
            decisions.append(PropagatedDecision(
                id=candidate_id,
                title=node.title,
                category=node.category,
                statement=node.statement,
                via_layers=_sorted_layers(entry.layers),
                precedence_distance=entry.distance,
                origin=entry.origin,
            ))
        decisions.sort(key=lambda d: (d.precedence_distance, d.id))
        return decisions


# =============================================================================
# MODULE FUNCTIONS
# =============================================================================

def _sorted_layers(layers: Dict[str, int]) -> List[str]:
    return sorted(layers, key=lambda layer_id: (layers[layer_id], layer_id))


def ambiguity_message(node_id: str, category: str, decision_ids: List[str]) -> str:
    return (
        f"Ambiguous propagated decisions for '{node_id}' in category '{category}' "
        f"({', '.join(decision_ids)}): disambiguate with supersedes and/or dependency structure"
    )


def collect_severity_warnings(constraining: List[ConstrainingNode]) -> List[str]:
    """
    Hard/soft policy pairs sharing a statement (trimmed, case-folded).

    Groups are reported in first-seen order; ids keep the input order.
    """
    groups: Dict[str, Dict[str, List[str]]] = {}
    for node in constraining:
        if node.type != NodeType.POLICY.value or not node.statement or not node.severity:
            continue
        key = node.statement.strip().casefold()
        if not key:
            continue
        bucket = groups.setdefault(key, {PolicySeverity.HARD.value: [], PolicySeverity.SOFT.value: []})
        if node.severity in bucket:
            bucket[node.severity].append(node.id)

    warnings = []
    for statement, bucket in groups.items():
        hard = bucket[PolicySeverity.HARD.value]
        soft = bucket[PolicySeverity.SOFT.value]
        if hard and soft:
            warnings.append(
                f'Severity overlap detected for statement "{statement}": '
                f"hard policies ({', '.join(hard)}) override soft policies ({', '.join(soft)})."
            )
    return warnings


def get_effective_constraints(store: NodeStore, node_id: str) -> EffectiveConstraints:
    return EffectiveGuidanceResolver(store).resolve(node_id)


def find_layer_propagation_ambiguities(store: NodeStore) -> List[AmbiguityRecord]:
    """Ambiguities for every node, in stored node order."""
    resolver = EffectiveGuidanceResolver(store)
    records: List[AmbiguityRecord] = []
    for node_id in store.node_ids():
        records.extend(resolver.ambiguities_for(node_id))
    return records
