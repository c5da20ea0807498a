"""
SPECGRAPH SCHEMA REGISTRY - JSON Schema Retrieval and Validation

Two schemas govern a spec graph: graph.schema.json (the index) and
node.schema.json (every node document). Each is located once per registry,
in this order:

1. Per-file override (config.graph_schema / config.node_schema), path or URL
2. Schema directory override (config.schema_dir)
3. Base URL override (config.schema_base_url)
4. The bundled copy in infrastructure/schemas/
5. The published schema URL

Validators are compiled once (Draft 2020-12) and reused for the lifetime of
the registry.
"""
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import jsonschema
import msgspec
import requests

from specgraph.ontology import GRAPH_SCHEMA_NAME, NODE_SCHEMA_NAME, SCHEMA_BASE_URL
from specgraph.schemas import SchemaIssueDetail

logger = logging.getLogger(__name__)

BUNDLED_SCHEMA_DIR = Path(__file__).parent / "schemas"


class SchemaFetchError(Exception):
    """Raised when a schema cannot be read, fetched or compiled."""
    pass


def _is_http_url(value: str) -> bool:
    return value.startswith("http://") or value.startswith("https://")


def _pointer(path) -> str:
    """jsonschema error path -> JSON pointer ("/" for the document root)."""
    parts = [str(p).replace("~", "~0").replace("/", "~1") for p in path]
    return "/" + "/".join(parts) if parts else "/"


class SchemaRegistry:
    """
    Locates, loads and compiles the two governing schemas.

    Usage:
        registry = SchemaRegistry(schema_dir="/opt/schemas")
        errors = registry.validate_node(document)
        if errors:
            ...
    """

    def __init__(
        self,
        schema_dir: Optional[str] = None,
        schema_base_url: Optional[str] = None,
        graph_schema: Optional[str] = None,
        node_schema: Optional[str] = None,
        fetch_timeout: float = 10.0,
        bundled_dir: Path = BUNDLED_SCHEMA_DIR,
    ):
        self.schema_dir = schema_dir
        self.schema_base_url = schema_base_url
        self.overrides = {GRAPH_SCHEMA_NAME: graph_schema, NODE_SCHEMA_NAME: node_schema}
        self.fetch_timeout = fetch_timeout
        self.bundled_dir = Path(bundled_dir)
        self._validators: Dict[str, jsonschema.protocols.Validator] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> "SchemaRegistry":
        return cls(
            schema_dir=config.schema_dir,
            schema_base_url=config.schema_base_url,
            graph_schema=config.graph_schema,
            node_schema=config.node_schema,
            fetch_timeout=config.schema_fetch_timeout,
        )

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    def resolve_location(self, schema_name: str) -> str:
        """Where `schema_name` will be loaded from (file path or URL)."""
        override = self.overrides.get(schema_name)
        if override:
            return override
        if self.schema_dir:
            return str(Path(self.schema_dir) / schema_name)
        if self.schema_base_url:
            base = self.schema_base_url if self.schema_base_url.endswith("/") else self.schema_base_url + "/"
            return urljoin(base, schema_name)
        bundled = self.bundled_dir / schema_name
        if bundled.is_file():
            return str(bundled)
        return urljoin(SCHEMA_BASE_URL, schema_name)

    def load_schema(self, schema_name: str) -> Dict[str, Any]:
        """
        Raises:
            SchemaFetchError: If the schema cannot be read or is not a JSON object
        """
        location = self.resolve_location(schema_name)
        logger.debug("Loading %s from %s", schema_name, location)

        if _is_http_url(location):
            try:
                response = requests.get(location, timeout=self.fetch_timeout)
            except requests.RequestException as e:
                raise SchemaFetchError(f"Failed to fetch schema {location}: {e}") from e
            if response.status_code != 200:
                raise SchemaFetchError(
                    f"Failed to fetch schema {location}: {response.status_code} {response.reason}"
                )
            raw = response.content
        else:
            try:
                raw = Path(location).read_bytes()
            except OSError as e:
                raise SchemaFetchError(f"Failed to read schema {location}: {e}") from e

        try:
            schema = msgspec.json.decode(raw)
        except msgspec.DecodeError as e:
            raise SchemaFetchError(f"Schema {location} is not valid JSON: {e}") from e
        if not isinstance(schema, dict):
            raise SchemaFetchError(f"Schema {location} is not a JSON object")
        return schema

    def _validator(self, schema_name: str):
        with self._lock:
            validator = self._validators.get(schema_name)
            if validator is None:
                schema = self.load_schema(schema_name)
                try:
                    jsonschema.Draft202012Validator.check_schema(schema)
                except jsonschema.SchemaError as e:
                    raise SchemaFetchError(f"Invalid schema {schema_name}: {e.message}") from e
                validator = jsonschema.Draft202012Validator(schema)
                self._validators[schema_name] = validator
            return validator

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def validate(self, schema_name: str, document: Any) -> List[SchemaIssueDetail]:
        """All violations of one schema, sorted by path; [] means valid."""
        validator = self._validator(schema_name)
        issues = {
            SchemaIssueDetail(path=_pointer(error.absolute_path), message=error.message)
            for error in validator.iter_errors(document)
        }
        return sorted(issues, key=lambda issue: (issue.path, issue.message))

    def validate_node(self, document: Any) -> List[SchemaIssueDetail]:
        return self.validate(NODE_SCHEMA_NAME, document)

    def validate_graph(self, document: Any) -> List[SchemaIssueDetail]:
        return self.validate(GRAPH_SCHEMA_NAME, document)


# =============================================================================
# PROCESS-WIDE REGISTRY
# =============================================================================

_registry: Optional[SchemaRegistry] = None
_registry_lock = threading.Lock()


def get_schema_registry() -> SchemaRegistry:
    """Get or create the process-wide registry (bundled schemas by default)."""
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = SchemaRegistry()
        return _registry


def set_schema_registry(registry: SchemaRegistry) -> None:
    global _registry
    with _registry_lock:
        _registry = registry


def reset_schema_registry() -> None:
    global _registry
    with _registry_lock:
        _registry = None
