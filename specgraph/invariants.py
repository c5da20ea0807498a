"""
SPECGRAPH INVARIANTS - Ordering Rules over depends_on

depends_on is the only relation whose acyclicity the engine enforces, and the
only one with a directional policy:

1. DAG Acyclicity: depends_on must not contain a cycle. When it does, report
   the first cycle found as the id path from the repeated node back to itself.
2. No Inversion: a layer must not depend_on a feature (layers are
   cross-cutting and must not bind to feature-specific logic).

Checks run over a GraphIndexes snapshot. rustworkx gives the O(V+E) yes/no
answer; the diagnostic path comes from a three-colour DFS that walks node ids
in stored index order, so the same graph always reports the same cycle.
"""
from typing import Dict, List, Optional

from specgraph.indexes import GraphIndexes
from specgraph.ontology import EdgeType, IssueSeverity, NodeType
from specgraph.schemas import StructuralIssue

WHITE, GRAY, BLACK = 0, 1, 2


class GraphInvariants:
    """
    Static validators over a GraphIndexes snapshot.
    """

    @staticmethod
    def find_depends_on_cycle(indexes: GraphIndexes) -> Optional[List[str]]:
        """
        First depends_on cycle in stored node order.

        Dangling targets are ignored. The DFS is iterative but visits nodes in
        exactly the order a recursive walk would.

        Returns:
            e.g. ['A', 'B', 'A'], or None if depends_on is acyclic
        """
        if indexes.is_depends_on_acyclic():
            return None

        store = indexes.store
        color: Dict[str, int] = {node_id: WHITE for node_id in store.node_ids()}
        depends_on = EdgeType.DEPENDS_ON.value

        for start in store.node_ids():
            if color[start] != WHITE:
                continue

            path: List[str] = [start]
            color[start] = GRAY
            # Each frame: (node id, iterator over its existing targets)
            stack = [(start, iter(indexes.targets(depends_on, start)))]

            while stack:
                node_id, targets = stack[-1]
                advanced = False
                for target_id in targets:
                    state = color.get(target_id)
                    if state is None or state == BLACK:
                        continue
                    if state == GRAY:
                        return path[path.index(target_id):] + [target_id]
                    color[target_id] = GRAY
                    path.append(target_id)
                    stack.append((target_id, iter(indexes.targets(depends_on, target_id))))
                    advanced = True
                    break
                if not advanced:
                    stack.pop()
                    path.pop()
                    color[node_id] = BLACK

        return None

    @staticmethod
    def validate_dag_acyclicity(indexes: GraphIndexes) -> Optional[StructuralIssue]:
        cycle = GraphInvariants.find_depends_on_cycle(indexes)
        if cycle is None:
            return None
        return StructuralIssue(
            node_id=cycle[0],
            severity=IssueSeverity.ERROR.value,
            message=f"depends_on cycle detected: {' -> '.join(cycle)}",
            rule="depends_on_cycle",
        )

    @staticmethod
    def validate_no_dependency_inversion(indexes: GraphIndexes) -> List[StructuralIssue]:
        """Every layer -> feature depends_on edge, in stored order."""
        store = indexes.store
        issues = []
        for layer in store.nodes_of_type(NodeType.LAYER.value):
            for target_id in indexes.targets(EdgeType.DEPENDS_ON.value, layer.id):
                target = store.find_node(target_id)
                if target is not None and target.type == NodeType.FEATURE.value:
                    issues.append(StructuralIssue(
                        node_id=layer.id,
                        severity=IssueSeverity.ERROR.value,
                        message=(
                            f"Invalid dependency inversion: layer '{layer.id}' "
                            f"cannot depend_on feature '{target_id}'"
                        ),
                        rule="dependency_inversion",
                    ))
        return issues


def find_depends_on_cycle(indexes: GraphIndexes) -> Optional[List[str]]:
    """Convenience wrapper for GraphInvariants.find_depends_on_cycle."""
    return GraphInvariants.find_depends_on_cycle(indexes)
