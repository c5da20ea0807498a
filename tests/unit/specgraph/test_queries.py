"""
Tests for the read-only query facade.
"""
import pytest

from specgraph.queries import QueryFacade, search_text
from specgraph.store import MutationConflictError, NodeKindError, NodeNotFoundError, NodeStore


@pytest.fixture
def queries(scenario_store):
    return QueryFacade(scenario_store)


# =============================================================================
# SIMPLE READS
# =============================================================================

def test_list_nodes_sorted(queries):
    listing = queries.list_nodes()
    assert listing.count == 6
    assert [n.id for n in listing.nodes] == ["AUTH", "AUTH-01", "D1", "D2", "PLATFORM", "ROOT"]
    assert listing.nodes[0].type == "feature"


def test_get_node_returns_copy(queries, scenario_store):
    document = queries.get_node("AUTH")
    document["links"]["contains"].append("MUTATED")
    assert scenario_store.get_node("AUTH").targets("contains") == ("AUTH-01",)


def test_get_node_missing(queries):
    with pytest.raises(NodeNotFoundError):
        queries.get_node("NOPE")


def test_list_edges(queries):
    edges = {(e.source, e.target, e.edge_type) for e in queries.list_edges().edges}
    assert edges == {
        ("ROOT", "AUTH", "contains"),
        ("ROOT", "PLATFORM", "contains"),
        ("AUTH", "AUTH-01", "contains"),
        ("AUTH-01", "PLATFORM", "depends_on"),
        ("D1", "AUTH", "constrains"),
        ("PLATFORM", "D2", "contains"),
    }


def test_search_is_case_insensitive(queries):
    result = queries.search_nodes("LAYER platform")
    assert [n["id"] for n in result.nodes] == ["PLATFORM"]
    assert queries.search_nodes("   ").count == 0


def test_search_covers_metadata(spec):
    decision = spec.decision("D1", metadata={
        "rationale": "Keeps deployments boring.",
        "tags": ["infra"],
        "rejected_alternatives": [{"title": "Kubernetes", "reason": "Too much surface"}],
    })
    store = NodeStore.from_documents([decision])
    text = search_text(store.get_node("D1"))
    for needle in ("boring", "infra", "kubernetes", "too much surface", "d1 statement"):
        assert needle in text


# =============================================================================
# SUBGRAPHS
# =============================================================================

def test_group_subgraph(queries):
    subgraph = queries.get_group_subgraph("ROOT")
    assert subgraph.group["id"] == "ROOT"
    assert [c["id"] for c in subgraph.children] == ["AUTH", "PLATFORM", "AUTH-01", "D2"]


def test_group_subgraph_accepts_layer(queries):
    assert [c["id"] for c in queries.get_group_subgraph("PLATFORM").children] == ["D2"]


def test_group_subgraph_rejects_leaf(queries):
    with pytest.raises(NodeKindError, match="Node 'D1' is not a grouping node") as excinfo:
        queries.get_group_subgraph("D1")
    assert (excinfo.value.node_id, excinfo.value.actual) == ("D1", "decision")
    assert not isinstance(excinfo.value, MutationConflictError)
    with pytest.raises(NodeNotFoundError, match="Group node not found: NOPE"):
        queries.get_group_subgraph("NOPE")


def test_feature_subgraph_rejects_layer(queries):
    with pytest.raises(NodeKindError, match="Node 'PLATFORM' is not a feature"):
        queries.get_feature_subgraph("PLATFORM")
    assert queries.get_feature_subgraph("AUTH").children[0]["id"] == "AUTH-01"


# =============================================================================
# DEPENDENCIES
# =============================================================================

@pytest.fixture
def dependency_store(spec):
    return NodeStore.from_documents([
        spec.behavior("APP", depends_on=["SVC", "GONE"]),
        spec.behavior("SVC", depends_on=["DEC", "POL"]),
        spec.decision("DEC", "pattern"),
        spec.policy("POL", constrains=["APP"]),
        spec.policy("SVC-RULE", "soft", constrains=["SVC"]),
    ])


def test_list_dependencies_direct(dependency_store):
    result = QueryFacade(dependency_store).list_dependencies("APP")
    assert [d.id for d in result.dependencies] == ["SVC"]
    assert result.missing_dependencies == ["GONE"]
    assert result.count == 1


def test_list_dependencies_full(dependency_store):
    result = QueryFacade(dependency_store).list_dependencies_full("APP")

    assert result.direct_dependencies == ["SVC", "GONE"]
    assert [(d.id, d.depth) for d in result.dependency_nodes] == [
        ("GONE", 1), ("SVC", 1), ("DEC", 2), ("POL", 2),
    ]
    assert [d.id for d in result.decisions] == ["DEC"]
    assert [d.id for d in result.policies] == ["POL"]
    assert result.missing_dependencies == ["GONE"]

    effective = {e.id: e.applies_to for e in result.effective_constraint_nodes}
    assert effective == {"POL": ["APP"], "SVC-RULE": ["SVC"]}
    assert [e.id for e in result.effective_policies] == ["POL", "SVC-RULE"]
    assert result.effective_decisions == []

    # POL constrains APP itself; DEC is only context
    assert result.informational_only == ["DEC"]

    assert [(e.source, e.target) for e in result.depends_on_edges] == [
        ("APP", "SVC"), ("APP", "GONE"), ("SVC", "DEC"), ("SVC", "POL"),
    ]
    assert result.count.direct_dependencies == 2
    assert result.count.transitive_dependencies == 4
    assert result.count.effective_constraints == 2


def test_list_dependencies_missing_node(queries):
    with pytest.raises(NodeNotFoundError):
        queries.list_dependencies_full("NOPE")


# =============================================================================
# AFFECTING NODES
# =============================================================================

def test_affecting_nodes_reasons(queries):
    result = queries.get_affecting_nodes("AUTH-01")
    reasons = {n.id: n.reasons for n in result.affecting_nodes}
    assert reasons == {
        "AUTH": ["contains_ancestor"],
        "D1": ["constrains_inherited"],
        "D2": ["layer_decision"],
        "PLATFORM": ["depends_on", "layer_dependency"],
        "ROOT": ["contains_ancestor"],
    }
    assert result.groups.depends_on_transitive == ["PLATFORM"]
    assert result.groups.contains_ancestors == ["AUTH", "ROOT"]
    assert result.count == 5


def test_affecting_nodes_edge_groups(spec):
    store = NodeStore.from_documents([
        spec.contract("API", "api_contract", implements=["SPEC"], verified_by=["CHECK"],
                      derived_from=["SRC"]),
        spec.contract("SPEC", "api_contract"),
        spec.behavior("CHECK"),
        spec.contract("SRC", "data_model"),
        spec.contract("API-V2", "api_contract", supersedes=["API"]),
        spec.policy("P1", constrains=["API"]),
    ])
    result = QueryFacade(store).get_upstream_context("API")
    reasons = {n.id: n.reasons for n in result.affecting_nodes}
    assert reasons["SPEC"] == ["implements_target"]
    assert reasons["CHECK"] == ["verified_by_target"]
    assert reasons["SRC"] == ["derived_from_target"]
    assert reasons["API-V2"] == ["superseded_by"]
    assert reasons["P1"] == ["constrains_direct"]
    assert result.groups.superseded_by == ["API-V2"]
