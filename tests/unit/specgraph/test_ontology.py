"""
Tests for the spec graph vocabulary and node type registry.
"""
import unittest

import pytest

from specgraph.ontology import (
    EDGE_TYPES,
    GROUPING_TYPES,
    NODE_TYPE_SPECS,
    EdgeType,
    NodeType,
    is_edge_type,
    is_grouping_type,
    is_valid_node_id,
    node_path_for,
)


class TestNodeTypeRegistry(unittest.TestCase):
    """Every NodeType has exactly one descriptor."""

    def test_every_type_registered(self):
        self.assertEqual(set(NODE_TYPE_SPECS), {t.value for t in NodeType})

    def test_grouping_types(self):
        self.assertEqual(GROUPING_TYPES, frozenset({"feature", "layer"}))
        self.assertTrue(is_grouping_type("layer"))
        self.assertFalse(is_grouping_type("decision"))
        self.assertFalse(is_grouping_type(None))

    def test_directories_unique(self):
        directories = [spec.directory for spec in NODE_TYPE_SPECS.values()]
        self.assertEqual(len(directories), len(set(directories)))

    def test_unknown_type_not_registered(self):
        self.assertNotIn("widget", NODE_TYPE_SPECS)
        self.assertFalse(is_grouping_type("widget"))


class TestEdgeTypes(unittest.TestCase):

    def test_fixed_set(self):
        self.assertEqual(
            set(EDGE_TYPES),
            {"contains", "depends_on", "constrains", "implements",
             "derived_from", "verified_by", "supersedes"},
        )
        self.assertEqual(EdgeType.DEPENDS_ON.value, "depends_on")

    def test_is_edge_type(self):
        self.assertTrue(is_edge_type("supersedes"))
        self.assertFalse(is_edge_type("parent_of"))


@pytest.mark.parametrize("value,expected", [
    ("ROOT", True),
    ("AUTH-01", True),
    ("A", True),
    ("auth", False),
    ("1AUTH", False),
    ("AUTH_01", False),
    ("", False),
    (None, False),
    ("A" * 81, False),
])
def test_node_id_pattern(value, expected):
    assert is_valid_node_id(value) is expected


def test_node_path_uses_type_directory():
    assert node_path_for("AUTH", "feature") == "nodes/features/AUTH.json"
    assert node_path_for("PLATFORM", "layer") == "nodes/layers/PLATFORM.json"
    assert node_path_for("D1", "decision") == "nodes/decisions/D1.json"
    assert node_path_for("P1", "policy") == "nodes/policies/P1.json"


def test_node_path_rejects_unknown_type():
    with pytest.raises(ValueError, match="Unsupported node type: widget"):
        node_path_for("W1", "widget")
