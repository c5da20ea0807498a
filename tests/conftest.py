"""
Pytest configuration and shared fixtures for the SpecGraph test suite.
"""
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


# =============================================================================
# NODE FACTORY
# =============================================================================

class SpecFactory:
    """
    Builds schema-valid node documents.

    Edge lists are passed as keyword arguments named after the edge type:
        spec.feature("AUTH", contains=["AUTH-01"])
        spec.decision("D1", "stack", constrains=["AUTH"])
    """

    EDGE_KEYS = (
        "contains", "depends_on", "constrains", "implements",
        "derived_from", "verified_by", "supersedes",
    )

    def _node(self, node_id: str, node_type: str, title: Optional[str], fields: Dict[str, Any]) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "id": node_id,
            "type": node_type,
            "title": title or f"{node_id} title",
        }
        links = {}
        for key in self.EDGE_KEYS:
            targets = fields.pop(key, None)
            if targets:
                links[key] = list(targets)
        document.update(fields)
        if links:
            document["links"] = links
        return document

    def feature(self, node_id: str, title: Optional[str] = None, **fields) -> Dict[str, Any]:
        fields.setdefault("description", f"Feature {node_id}")
        return self._node(node_id, "feature", title, fields)

    def layer(self, node_id: str, title: Optional[str] = None, **fields) -> Dict[str, Any]:
        fields.setdefault("description", f"Layer {node_id}")
        return self._node(node_id, "layer", title, fields)

    def behavior(self, node_id: str, title: Optional[str] = None, **fields) -> Dict[str, Any]:
        fields.setdefault("expectation", "When triggered, the system responds correctly.")
        fields.setdefault("verification", "pytest -k behavior")
        return self._node(node_id, "behavior", title, fields)

    def contract(self, node_id: str, node_type: str, title: Optional[str] = None, **fields) -> Dict[str, Any]:
        fields.setdefault("statement", f"{node_id} statement text")
        fields.setdefault("verification", ["manual review of the contract"])
        return self._node(node_id, node_type, title, fields)

    def decision(self, node_id: str, category: str = "architecture", **fields) -> Dict[str, Any]:
        fields.setdefault("category", category)
        fields.setdefault("metadata", {"rationale": "Chosen for consistency across the code base."})
        return self.contract(node_id, "decision", **fields)

    def policy(self, node_id: str, severity: str = "hard", **fields) -> Dict[str, Any]:
        fields.setdefault("severity", severity)
        return self.contract(node_id, "policy", **fields)

    def artifact(self, node_id: str, sha256: str, **fields) -> Dict[str, Any]:
        fields.setdefault("artifact", {"sha256": sha256})
        return self.contract(node_id, "artifact", **fields)


@pytest.fixture
def spec() -> SpecFactory:
    return SpecFactory()


# =============================================================================
# GRAPHS
# =============================================================================

def write_graph(repo_dir: Path, documents: Iterable[Dict[str, Any]], root: Optional[str] = "ROOT",
                directory: str = "specgraph") -> Path:
    """Write documents plus a graph.json index under repo_dir/directory."""
    from infrastructure.storage import FileStorage
    from specgraph.ontology import node_path_for

    storage = FileStorage(repo_dir, directory)
    refs: List[Dict[str, Any]] = []
    for document in documents:
        path = node_path_for(document["id"], document["type"])
        storage.write_json(path, document)
        refs.append({"id": document["id"], "path": path, "expectedType": document["type"]})

    index: Dict[str, Any] = {"specgraphVersion": "1.0.0"}
    if root:
        index["root"] = root
    index["nodes"] = sorted(refs, key=lambda ref: ref["id"])
    storage.write_json("graph.json", index)
    return storage.graph_dir


@pytest.fixture
def scenario_documents(spec) -> List[Dict[str, Any]]:
    """
    ROOT (feature) contains AUTH (feature) contains AUTH-01 (behavior).
    D1 (stack) constrains AUTH. PLATFORM (layer) contains D2 (architecture).
    AUTH-01 depends_on PLATFORM.
    """
    return [
        spec.feature("ROOT", contains=["AUTH", "PLATFORM"]),
        spec.feature("AUTH", contains=["AUTH-01"]),
        spec.behavior("AUTH-01", depends_on=["PLATFORM"]),
        spec.decision("D1", "stack", constrains=["AUTH"]),
        spec.layer("PLATFORM", contains=["D2"]),
        spec.decision("D2", "architecture"),
    ]


@pytest.fixture
def scenario_store(scenario_documents):
    from specgraph.store import NodeStore
    return NodeStore.from_documents(scenario_documents, root="ROOT")


@pytest.fixture
def schema_registry():
    """Registry backed by the bundled schemas (no network)."""
    from infrastructure.schema_registry import SchemaRegistry
    return SchemaRegistry()


@pytest.fixture
def make_workspace(tmp_path, schema_registry):
    """Factory for workspaces rooted at tmp_path with default config."""
    from infrastructure.config import SpecGraphConfig
    from specgraph.workspace import SpecGraphWorkspace

    def _make(documents: Optional[Iterable[Dict[str, Any]]] = None, root: Optional[str] = "ROOT", **config):
        workspace = SpecGraphWorkspace(
            tmp_path,
            config=SpecGraphConfig(**config),
            schema_registry=schema_registry,
        )
        if documents is not None:
            write_graph(tmp_path, documents, root=root)
            # Written behind the mutator's back
            workspace.invalidate()
        return workspace

    return _make


@pytest.fixture
def scenario_workspace(make_workspace, scenario_documents):
    return make_workspace(scenario_documents)


@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset the process-wide schema registry, snapshot cache and package loggers around each test."""
    from infrastructure.graph_cache import reset_graph_cache
    from infrastructure.schema_registry import reset_schema_registry

    reset_schema_registry()
    reset_graph_cache()
    yield
    reset_schema_registry()
    reset_graph_cache()
    for name in ("specgraph", "infrastructure"):
        log = logging.getLogger(name)
        log.handlers[:] = []
        log.setLevel(logging.NOTSET)
        log.propagate = True


@pytest.fixture
def graph_storage(tmp_path):
    """Factory: write documents under tmp_path and return a FileStorage for them."""
    from infrastructure.storage import FileStorage

    def _write(documents: Iterable[Dict[str, Any]], root: Optional[str] = "ROOT"):
        write_graph(tmp_path, documents, root=root)
        return FileStorage(tmp_path, "specgraph")

    return _write
