"""
SPECGRAPH STRUCTURAL VALIDATOR - The Full Report

validate_specgraph() reads the index and every referenced node file directly
(not through load_node_store, which stops at the first problem) and collects
every finding into one ValidationResult:

Schema errors (SchemaIssue):
- graph.json against graph.schema.json
- malformed index entries, unreadable node files
- every node document against node.schema.json

Structural issues (StructuralIssue, error unless noted):
- duplicate ids, ref/node id mismatch, expectedType mismatch, sha256 tamper
- root pointing at a missing node
- malformed links, empty/non-string targets, self-references, dangling targets
- depends_on cycles and layer -> feature inversions (invariants.py)
- propagated decision ambiguities for every node (resolver.py)
- hard/soft severity overlap (warning)
- derived_from pins: missing pin (warning, or error when strict), stale pin

Content problems never raise. Only an index that cannot be read at all is a
GraphLoadError.
"""
import logging
from typing import Any, Dict, List, Optional, Set

import msgspec

from infrastructure.storage import StorageError
from specgraph.indexes import GraphIndexes
from specgraph.invariants import GraphInvariants
from specgraph.ontology import EDGE_TYPES, GRAPH_INDEX_FILE, EdgeType, IssueSeverity
from specgraph.resolver import EffectiveGuidanceResolver
from specgraph.schemas import (
    GraphIndex,
    NodeRef,
    SchemaIssue,
    SchemaIssueDetail,
    StructuralIssue,
    ValidationResult,
)
from specgraph.store import GraphLoadError, NodeStore, SpecNode

logger = logging.getLogger(__name__)

GRAPH_ISSUE_ID = "GRAPH"

ERROR = IssueSeverity.ERROR.value
WARNING = IssueSeverity.WARNING.value


class StructuralValidator:
    """
    One validation run over one graph directory.

    Usage:
        validator = StructuralValidator(storage, registry, strict_pins=False)
        result = validator.validate()
        if not result.valid:
            for issue in result.errors:
                print(issue.node_id, issue.message)
    """

    def __init__(self, storage, schema_registry, strict_pins: bool = False):
        self.storage = storage
        self.schema_registry = schema_registry
        self.strict_pins = strict_pins

        self.schema_errors: List[SchemaIssue] = []
        self.structural_issues: List[StructuralIssue] = []
        self.invalid_ids: Set[str] = set()

    # =========================================================================
    # REPORTING
    # =========================================================================

    def _schema_error(self, node_id: str, file: str, errors: List[SchemaIssueDetail]) -> None:
        self.schema_errors.append(SchemaIssue(node_id=node_id, file=file, errors=errors))

    def _issue(self, node_id: str, message: str, rule: str, severity: str = ERROR) -> None:
        self.structural_issues.append(
            StructuralIssue(node_id=node_id, severity=severity, message=message, rule=rule)
        )

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    def validate(self) -> ValidationResult:
        """
        Raises:
            GraphLoadError: If graph.json is missing, unreadable, not JSON or not an object
        """
        raw_index = self._read_index()

        graph_errors = self.schema_registry.validate_graph(raw_index)
        if graph_errors:
            self._schema_error(GRAPH_ISSUE_ID, GRAPH_INDEX_FILE, graph_errors)

        raw_refs = raw_index.get("nodes")
        raw_refs = raw_refs if isinstance(raw_refs, list) else []

        refs, documents = self._load_nodes(raw_refs)
        known_ids = set(documents)

        root = raw_index.get("root")
        if isinstance(root, str) and root and root not in known_ids and root not in self.invalid_ids:
            self._issue(GRAPH_ISSUE_ID, f"graph.root references missing node: {root}", "missing_root")

        # Structural graph: only nodes whose file id matches their index entry
        store = NodeStore(
            GraphIndex(specgraph_version=str(raw_index.get("specgraphVersion", "")), nodes=list(refs.values())),
            {node_id: SpecNode(doc) for node_id, doc in documents.items()},
        )
        indexes = GraphIndexes(store)

        self._check_links(documents, known_ids | self.invalid_ids)

        inversion_issues = GraphInvariants.validate_no_dependency_inversion(indexes)
        self.structural_issues.extend(inversion_issues)
        cycle_issue = GraphInvariants.validate_dag_acyclicity(indexes)
        if cycle_issue is not None:
            self.structural_issues.append(cycle_issue)

        self._check_guidance(store, indexes)
        self._check_pins(store, refs)

        total = len(raw_refs)
        valid_nodes = max(0, total - len(self.invalid_ids))
        has_errors = any(issue.severity == ERROR for issue in self.structural_issues)

        result = ValidationResult(
            valid=not self.schema_errors and not has_errors,
            total_nodes=total,
            valid_nodes=valid_nodes,
            schema_errors=self.schema_errors,
            structural_issues=self.structural_issues,
        )
        logger.debug(
            "Validated %s: valid=%s, %d schema errors, %d structural issues",
            self.storage.graph_dir, result.valid, len(self.schema_errors), len(self.structural_issues),
        )
        return result

    # =========================================================================
    # LOADING
    # =========================================================================

    def _read_index(self) -> Dict[str, Any]:
        try:
            raw_index = self.storage.read_json(GRAPH_INDEX_FILE)
        except StorageError as e:
            raise GraphLoadError(f"Cannot read graph index: {e}") from e
        except msgspec.DecodeError as e:
            raise GraphLoadError(f"Invalid JSON in {GRAPH_INDEX_FILE}: {e}") from e
        if not isinstance(raw_index, dict):
            raise GraphLoadError(f"{GRAPH_INDEX_FILE} is not a JSON object")
        return raw_index

    def _load_nodes(self, raw_refs: List[Any]):
        """Per-entry identity checks; returns (refs, documents) keyed by id."""
        refs: Dict[str, NodeRef] = {}
        documents: Dict[str, Dict[str, Any]] = {}
        seen: Set[str] = set()

        for raw_ref in raw_refs:
            if (
                not isinstance(raw_ref, dict)
                or not isinstance(raw_ref.get("id"), str)
                or not raw_ref["id"]
                or not isinstance(raw_ref.get("path"), str)
                or not raw_ref["path"]
            ):
                self._schema_error(GRAPH_ISSUE_ID, GRAPH_INDEX_FILE, [
                    SchemaIssueDetail(
                        path="/nodes",
                        message=f"invalid node reference: {msgspec.json.encode(raw_ref).decode()}",
                    )
                ])
                continue

            node_id = raw_ref["id"]
            path = raw_ref["path"]
            if node_id in seen:
                self._issue(node_id, f"duplicate node id '{node_id}' in graph.json", "duplicate_id")
                self.invalid_ids.add(node_id)
                continue
            seen.add(node_id)

            try:
                raw_bytes = self.storage.read_bytes(path)
                document = msgspec.json.decode(raw_bytes)
            except (StorageError, msgspec.DecodeError) as e:
                self._schema_error(node_id, path, [
                    SchemaIssueDetail(path="/", message=f"failed to read node file: {e}")
                ])
                self.invalid_ids.add(node_id)
                continue

            if not isinstance(document, dict):
                self._schema_error(node_id, path, [
                    SchemaIssueDetail(path="/", message="node file is not a JSON object")
                ])
                self.invalid_ids.add(node_id)
                continue

            expected_type = raw_ref.get("expectedType")
            declared_hash = raw_ref.get("sha256")
            ref = NodeRef(
                id=node_id,
                path=path,
                expected_type=expected_type if isinstance(expected_type, str) else None,
                sha256=declared_hash if isinstance(declared_hash, str) else None,
            )

            if document.get("id") != node_id:
                self._issue(
                    node_id,
                    f"graph ref id '{node_id}' does not match node.id '{document.get('id')}'",
                    "id_mismatch",
                )
                self.invalid_ids.add(node_id)

            if ref.expected_type and document.get("type") != ref.expected_type:
                self._issue(
                    node_id,
                    f"expectedType mismatch: graph.json={ref.expected_type}, node.type={document.get('type')}",
                    "expected_type_mismatch",
                )

            if ref.sha256:
                actual = self.storage.sha256(path)
                if actual.lower() != ref.sha256.lower():
                    self._issue(
                        node_id,
                        f"sha256 mismatch for {node_id}: graph.json={ref.sha256}, file={actual}",
                        "sha256_mismatch",
                    )

            node_errors = self.schema_registry.validate_node(document)
            if node_errors:
                self._schema_error(node_id, path, node_errors)
                self.invalid_ids.add(node_id)

            if document.get("id") == node_id:
                refs[node_id] = ref
                documents[node_id] = document

        return refs, documents

    # =========================================================================
    # LINKS
    # =========================================================================

    def _check_links(self, documents: Dict[str, Dict[str, Any]], known_ids: Set[str]) -> None:
        for source_id, document in documents.items():
            if "links" not in document:
                continue
            links = document["links"]
            if not isinstance(links, dict):
                self._issue(source_id, "links must be an object when present", "links_shape")
                continue

            for edge_type in EDGE_TYPES:
                if edge_type not in links:
                    continue
                targets = links[edge_type]
                if not isinstance(targets, list):
                    self._issue(source_id, f"links.{edge_type} must be an array", "links_shape")
                    continue

                for target_id in targets:
                    if not isinstance(target_id, str) or not target_id:
                        self._issue(
                            source_id, f"links.{edge_type} contains a non-string target", "links_shape"
                        )
                        continue
                    if target_id == source_id:
                        self._issue(
                            source_id, f"self-reference is not allowed in links.{edge_type}", "self_reference"
                        )
                    if target_id not in known_ids:
                        self._issue(
                            source_id,
                            f"{edge_type} target '{target_id}' does not exist in the graph",
                            "dangling_target",
                        )

    # =========================================================================
    # GUIDANCE (ambiguity + severity overlap)
    # =========================================================================

    def _check_guidance(self, store: NodeStore, indexes: GraphIndexes) -> None:
        resolver = EffectiveGuidanceResolver(store, indexes)
        seen_warnings: Set[str] = set()
        for node_id in store.node_ids():
            effective = resolver.resolve(node_id)
            for ambiguity in effective.ambiguities:
                self._issue(node_id, ambiguity.message, "propagation_ambiguity")
            for warning in effective.warnings:
                if warning in seen_warnings:
                    continue
                seen_warnings.add(warning)
                self._issue(node_id, warning, "severity_overlap", WARNING)

    # =========================================================================
    # PINS
    # =========================================================================

    def _check_pins(self, store: NodeStore, refs: Dict[str, NodeRef]) -> None:
        live_hashes: Dict[str, Optional[str]] = {}

        def live_hash(source_id: str) -> Optional[str]:
            if source_id not in live_hashes:
                try:
                    live_hashes[source_id] = self.storage.sha256(refs[source_id].path)
                except StorageError as e:
                    logger.warning("Cannot hash %s for pin check: %s", source_id, e)
                    live_hashes[source_id] = None
            return live_hashes[source_id]

        for node in store.iter_nodes():
            derived_from = node.targets(EdgeType.DERIVED_FROM.value)
            if not derived_from:
                continue
            pins = {pin.id: pin.sha256 for pin in node.pins}

            for source_id in derived_from:
                pinned = pins.get(source_id)
                if not pinned:
                    message = f"{node.id} has derived_from {source_id} but is missing a matching pins entry"
                    if self.strict_pins:
                        self._issue(node.id, message, "missing_pin")
                    else:
                        logger.warning(message)
                        self._issue(node.id, message, "missing_pin", WARNING)
                    continue

                source = store.find_node(source_id)
                if source is None:
                    continue
                expected = source.artifact_sha256 or live_hash(source_id)
                if expected and expected.lower() != pinned.lower():
                    self._issue(
                        node.id,
                        f"{node.id} pins {source_id} at {pinned} but current source hash is {expected}",
                        "stale_pin",
                    )


def validate_specgraph(storage, schema_registry, strict_pins: bool = False) -> ValidationResult:
    """Run a full validation pass; see StructuralValidator."""
    return StructuralValidator(storage, schema_registry, strict_pins=strict_pins).validate()
