"""
Integration tests: SpecGraphWorkspace end to end, and the CLI on top of it.

These exercise the real stack (FileStorage, bundled schemas, TTL cache,
mutation log) against graphs written into tmp_path.
"""
import json

import pytest

from infrastructure.config import SpecGraphConfig
from infrastructure.graph_cache import GraphCache, get_graph_cache
from infrastructure.logger import MutationLogger
from main import main
from specgraph.store import NodeNotFoundError
from specgraph.workspace import SpecGraphWorkspace


# =============================================================================
# WORKSPACE
# =============================================================================

class TestWorkspaceLifecycle:

    def test_build_graph_from_scratch(self, make_workspace, spec):
        ws = make_workspace()
        ws.init_specgraph()
        ws.add_node(spec.feature("AUTH"))
        ws.add_node(spec.behavior("AUTH-01"))
        ws.add_node(spec.decision("D1", "stack"))
        ws.add_edge("ROOT", "AUTH", "contains")
        ws.add_edge("AUTH", "AUTH-01", "contains")
        ws.add_edge("D1", "AUTH", "constrains")

        effective = ws.get_effective_constraints("AUTH-01")
        d1 = effective.constraining_nodes[0]
        assert (d1.id, d1.direct, d1.via_targets) == ("D1", False, ["AUTH"])

        report = ws.validate_specgraph()
        assert report.valid, report.structural_issues
        assert report.total_nodes == 4

    def test_reads_see_mutations_immediately(self, scenario_workspace, spec):
        assert scenario_workspace.list_nodes().count == 6
        scenario_workspace.add_node(spec.behavior("AUTH-02"))
        assert scenario_workspace.list_nodes().count == 7

    def test_remove_scenario(self, scenario_workspace):
        scenario_workspace.remove_node("AUTH")
        assert scenario_workspace.get_node("AUTH-01")["id"] == "AUTH-01"
        assert all(edge.target != "AUTH" for edge in scenario_workspace.list_edges().edges)
        with pytest.raises(NodeNotFoundError):
            scenario_workspace.get_node("AUTH")

    def test_supersession_scenario(self, scenario_workspace, spec):
        scenario_workspace.add_node(spec.decision("D3", "architecture", supersedes=["D2"]))
        scenario_workspace.add_edge("PLATFORM", "D3", "contains")

        effective = scenario_workspace.get_effective_constraints("AUTH-01")
        assert [d.id for d in effective.propagated_decisions] == ["D3"]
        assert effective.ambiguities == []
        assert scenario_workspace.validate_specgraph().valid

    def test_unpruned_same_category_is_invalid(self, scenario_workspace, spec):
        scenario_workspace.add_node(spec.decision("D3", "architecture"))
        scenario_workspace.add_edge("PLATFORM", "D3", "contains")
        report = scenario_workspace.validate_specgraph()
        assert not report.valid
        assert any(i.node_id == "AUTH-01" and i.rule == "propagation_ambiguity" for i in report.errors)


class TestWorkspaceCollaborators:

    def test_cache_reused_within_ttl(self, tmp_path, graph_storage, scenario_documents, schema_registry):
        graph_storage(scenario_documents)
        cache = GraphCache(ttl_seconds=60)
        ws = SpecGraphWorkspace(tmp_path, config=SpecGraphConfig(), cache=cache,
                                schema_registry=schema_registry)
        assert ws.load() is ws.load()
        assert ws.load(force_reload=True) is not ws.load(force_reload=True)

    def test_mutation_through_one_workspace_reaches_another(self, scenario_workspace, schema_registry):
        reader = scenario_workspace
        assert reader.get_node("AUTH-01")["links"] == {"depends_on": ["PLATFORM"]}

        writer = SpecGraphWorkspace(reader.repo_dir, config=SpecGraphConfig(),
                                    schema_registry=schema_registry)
        assert writer.cache is reader.cache is get_graph_cache()
        writer.add_edge("AUTH-01", "ROOT", "implements")

        assert reader.get_node("AUTH-01")["links"]["implements"] == ["ROOT"]

    def test_shared_cache_uses_workspace_ttl(self, scenario_workspace, schema_registry):
        cached = SpecGraphWorkspace(scenario_workspace.repo_dir, config=SpecGraphConfig(cache_ttl_ms=60000),
                                    schema_registry=schema_registry)
        uncached = SpecGraphWorkspace(scenario_workspace.repo_dir, config=SpecGraphConfig(cache_ttl_ms=0),
                                      schema_registry=schema_registry)
        assert cached.load() is cached.load()
        assert uncached.load() is not uncached.load()

    def test_mutation_log_file(self, tmp_path, make_workspace, spec):
        log_path = tmp_path / "mutations.jsonl"
        ws = make_workspace(mutation_log_path=str(log_path))
        ws.init_specgraph()
        ws.add_node(spec.feature("AUTH"))
        events = MutationLogger(log_path=log_path).read_file_log()
        assert [(e.operation, e.node_id) for e in events] == [("init_specgraph", "ROOT"), ("add_node", "AUTH")]

    def test_strict_pins_from_config(self, make_workspace, spec):
        documents = [
            spec.feature("ROOT"),
            spec.contract("SRC", "api_contract"),
            spec.contract("OUT", "data_model", derived_from=["SRC"]),
        ]
        assert make_workspace(documents).validate_specgraph().valid
        assert not make_workspace(documents, strict_pins=True).validate_specgraph().valid

    def test_custom_directory(self, tmp_path, schema_registry):
        ws = SpecGraphWorkspace(tmp_path, directory="docs/spec", config=SpecGraphConfig(),
                                schema_registry=schema_registry)
        result = ws.init_specgraph()
        assert result.files_changed[-1] == "docs/spec/graph.json"
        assert (tmp_path / "docs" / "spec" / "graph.json").is_file()


# =============================================================================
# CLI
# =============================================================================

def _run(capsys, *argv):
    code = main(list(argv))
    captured = capsys.readouterr()
    return code, captured.out, captured.err


class TestCli:

    def test_init_then_validate(self, tmp_path, capsys):
        code, out, _ = _run(capsys, "--repo", str(tmp_path), "init", "--root-id", "APP", "--title", "My App")
        assert code == 0
        assert json.loads(out)["files_changed"] == ["specgraph/nodes/features/APP.json", "specgraph/graph.json"]

        code, out, _ = _run(capsys, "--repo", str(tmp_path), "validate")
        assert code == 0
        assert json.loads(out)["valid"] is True

    def test_effective(self, scenario_workspace, capsys):
        code, out, _ = _run(capsys, "--repo", str(scenario_workspace.repo_dir), "effective", "AUTH-01")
        assert code == 0
        payload = json.loads(out)
        assert [d["id"] for d in payload["propagated_decisions"]] == ["D2"]
        assert payload["count"] == 1

    def test_deps_full_and_affecting(self, scenario_workspace, capsys):
        repo = str(scenario_workspace.repo_dir)
        code, out, _ = _run(capsys, "--repo", repo, "deps", "AUTH-01", "--full")
        assert code == 0
        assert json.loads(out)["direct_dependencies"] == ["PLATFORM"]

        code, out, _ = _run(capsys, "--repo", repo, "affecting", "AUTH-01")
        assert json.loads(out)["count"] == 5

    def test_read_commands(self, scenario_workspace, capsys):
        repo = str(scenario_workspace.repo_dir)
        assert json.loads(_run(capsys, "--repo", repo, "nodes")[1])["count"] == 6
        assert json.loads(_run(capsys, "--repo", repo, "node", "D1")[1])["category"] == "stack"
        assert json.loads(_run(capsys, "--repo", repo, "edges")[1])["count"] == 6
        assert json.loads(_run(capsys, "--repo", repo, "search", "platform")[1])["count"] >= 1
        assert len(json.loads(_run(capsys, "--repo", repo, "subgraph", "ROOT")[1])["children"]) == 4

    def test_not_found_exits_1(self, scenario_workspace, capsys):
        code, out, err = _run(capsys, "--repo", str(scenario_workspace.repo_dir), "node", "NOPE")
        assert code == 1
        assert out == ""
        assert "Node not found: NOPE" in err

    def test_invalid_graph_exits_1(self, make_workspace, spec, capsys):
        ws = make_workspace([spec.feature("ROOT", contains=["GHOST"])])
        code, out, _ = _run(capsys, "--repo", str(ws.repo_dir), "validate")
        assert code == 1
        assert json.loads(out)["valid"] is False

    def test_missing_graph_exits_1(self, tmp_path, capsys):
        code, _, err = _run(capsys, "--repo", str(tmp_path), "nodes")
        assert code == 1
        assert "Cannot read graph index" in err
