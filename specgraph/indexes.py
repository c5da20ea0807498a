"""
SPECGRAPH INDEXES - Derived Adjacency over a NodeStore

Built in one pass over the store and never mutated afterwards. Every query
builds a fresh GraphIndexes from the current snapshot (see GraphIndexes.of,
which memoizes per NodeStore instance).

Architecture:
- contains_by_parent / parents_by_child: the containment DAG, both directions
- outbound[edge_type][source]: deduplicated target tuples, dangling ids kept
- depends_on: rustworkx PyDiGraph over existing nodes only
  (node payload = node id, edge payload = None)

Closures (ancestors, contains-closure, supersedes-closure) are breadth-first
with an explicit visited set; only depends_on acyclicity is validated, so
contains and supersedes may legitimately contain cycles here.
"""
import weakref
from collections import deque
from typing import Dict, FrozenSet, List, Set, Tuple

import rustworkx as rx

from specgraph.ontology import EDGE_TYPES, EdgeType, is_grouping_type
from specgraph.schemas import DependsOnEdge
from specgraph.store import NodeStore

_INDEX_CACHE: "weakref.WeakKeyDictionary[NodeStore, GraphIndexes]" = weakref.WeakKeyDictionary()


class GraphIndexes:
    """
    Read-only adjacency views over one NodeStore snapshot.

    Usage:
        idx = GraphIndexes.of(store)
        idx.contains_ancestors("AUTH-01")   # ['AUTH-01', 'AUTH', 'ROOT']
        idx.supersedes_closure("D3")        # frozenset({'D2'})
    """

    def __init__(self, store: NodeStore):
        self.store = store
        self.outbound: Dict[str, Dict[str, Tuple[str, ...]]] = {et: {} for et in EDGE_TYPES}
        self.parents_by_child: Dict[str, List[str]] = {}

        for node in store.iter_nodes():
            for edge_type in EDGE_TYPES:
                targets = node.targets(edge_type)
                if targets:
                    self.outbound[edge_type][node.id] = targets
            for child_id in node.targets(EdgeType.CONTAINS.value):
                self.parents_by_child.setdefault(child_id, []).append(node.id)

        self._supersedes_cache: Dict[str, FrozenSet[str]] = {}

        # depends_on as a rustworkx graph over existing nodes
        self.depends_on_graph = rx.PyDiGraph()
        self.node_map: Dict[str, int] = {}
        for node_id in store.node_ids():
            self.node_map[node_id] = self.depends_on_graph.add_node(node_id)
        for source_id, targets in self.outbound[EdgeType.DEPENDS_ON.value].items():
            for target_id in targets:
                if target_id in self.node_map:
                    self.depends_on_graph.add_edge(
                        self.node_map[source_id], self.node_map[target_id], None
                    )

    @classmethod
    def of(cls, store: NodeStore) -> "GraphIndexes":
        """Indexes for `store`, built once per snapshot."""
        indexes = _INDEX_CACHE.get(store)
        if indexes is None:
            indexes = cls(store)
            _INDEX_CACHE[store] = indexes
        return indexes

    @property
    def contains_by_parent(self) -> Dict[str, Tuple[str, ...]]:
        return self.outbound[EdgeType.CONTAINS.value]

    # =========================================================================
    # ADJACENCY
    # =========================================================================

    def targets(self, edge_type: str, source_id: str) -> Tuple[str, ...]:
        return self.outbound.get(edge_type, {}).get(source_id, ())

    def inbound(self, edge_type: str, target_id: str) -> List[str]:
        """Sorted ids of nodes whose `edge_type` list contains target_id."""
        return sorted(
            source_id
            for source_id, targets in self.outbound.get(edge_type, {}).items()
            if target_id in targets
        )

    def grouping_parents(self, node_id: str) -> List[str]:
        """contains-parents of type feature or layer."""
        parents = []
        for parent_id in self.parents_by_child.get(node_id, ()):
            parent = self.store.find_node(parent_id)
            if parent is not None and is_grouping_type(parent.type):
                parents.append(parent_id)
        return parents

    # =========================================================================
    # CLOSURES
    # =========================================================================

    def contains_ancestors(self, node_id: str) -> List[str]:
        """node_id followed by every contains-ancestor, breadth-first."""
        return _bfs(node_id, lambda current: self.parents_by_child.get(current, ()))

    def contains_closure(self, root_id: str) -> List[str]:
        """root_id followed by every transitively contained id, breadth-first."""
        return _bfs(root_id, lambda current: self.contains_by_parent.get(current, ()))

    def supersedes_closure(self, source_id: str) -> FrozenSet[str]:
        """
        Every id transitively superseded by source_id.

        source_id itself is never in its own closure, even on a cycle.
        """
        cached = self._supersedes_cache.get(source_id)
        if cached is not None:
            return cached
        reached = _bfs(source_id, lambda current: self.targets(EdgeType.SUPERSEDES.value, current))
        closure = frozenset(reached[1:])
        self._supersedes_cache[source_id] = closure
        return closure

    # =========================================================================
    # DEPENDENCIES
    # =========================================================================

    def dependency_depths(self, node_id: str) -> Tuple[Dict[str, int], Set[str]]:
        """
        Hop distance to every transitive depends_on target.

        Returns:
            (depth_by_id for existing nodes, missing ids referenced along the way)
            Missing ids also get a depth: one more than their shallowest source.
        """
        depths: Dict[str, int] = {}
        start = self.node_map.get(node_id)
        if start is not None:
            lengths = rx.dijkstra_shortest_path_lengths(
                self.depends_on_graph, start, lambda _edge: 1.0
            )
            for idx, length in lengths.items():
                depths[self.depends_on_graph[idx]] = int(length)
        depths.pop(node_id, None)

        missing: Set[str] = set()
        sources = [(node_id, 0)] + list(depths.items())
        for source_id, depth in sources:
            for target_id in self.targets(EdgeType.DEPENDS_ON.value, source_id):
                if target_id in self.node_map:
                    continue
                missing.add(target_id)
                known = depths.get(target_id)
                if known is None or depth + 1 < known:
                    depths[target_id] = depth + 1
        return depths, missing

    def depends_on_edges(self, node_id: str, depths: Dict[str, int]) -> List[DependsOnEdge]:
        """depends_on edges of node_id and of every existing dependency, by (depth, id)."""
        edges = [
            DependsOnEdge(source=node_id, target=target_id)
            for target_id in self.targets(EdgeType.DEPENDS_ON.value, node_id)
        ]
        ordered = sorted(
            (dep_id for dep_id in depths if dep_id in self.node_map),
            key=lambda dep_id: (depths[dep_id], dep_id),
        )
        for source_id in ordered:
            for target_id in self.targets(EdgeType.DEPENDS_ON.value, source_id):
                edges.append(DependsOnEdge(source=source_id, target=target_id))
        return edges

    def is_depends_on_acyclic(self) -> bool:
        return rx.is_directed_acyclic_graph(self.depends_on_graph)


def _bfs(start: str, neighbors) -> List[str]:
    """Visit order of a breadth-first walk from start (start first)."""
    visited = {start}
    order = [start]
    queue = deque([start])
    while queue:
        current = queue.popleft()
        for next_id in neighbors(current):
            if next_id in visited:
                continue
            visited.add(next_id)
            order.append(next_id)
            queue.append(next_id)
    return order
