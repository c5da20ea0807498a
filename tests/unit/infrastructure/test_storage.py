"""
Unit tests for infrastructure.storage.

Covers canonical JSON encoding, path containment, hashing and the
staged WriteBatch commit.
"""
import hashlib
from unittest.mock import patch

import pytest

from infrastructure.storage import FileStorage, StorageError, encode_canonical_json


@pytest.fixture
def storage(tmp_path):
    return FileStorage(tmp_path, "specgraph")


class TestCanonicalJson:

    def test_pretty_printed_with_trailing_newline(self):
        encoded = encode_canonical_json({"id": "A", "links": {"contains": ["B"]}})
        assert encoded == b'{\n  "id": "A",\n  "links": {\n    "contains": [\n      "B"\n    ]\n  }\n}\n'

    def test_key_order_preserved(self):
        encoded = encode_canonical_json({"type": "feature", "id": "A"})
        assert encoded.index(b'"type"') < encoded.index(b'"id"')


class TestPaths:

    def test_repo_path(self, storage):
        assert storage.repo_path("nodes/features/A.json") == "specgraph/nodes/features/A.json"

    def test_escape_rejected(self, storage):
        with pytest.raises(StorageError, match="escapes graph directory"):
            storage.resolve("../outside.json")
        with pytest.raises(StorageError):
            storage.write_json("../../etc/x.json", {})


class TestReadWrite:

    def test_write_read_round_trip(self, storage):
        storage.write_json("nodes/features/A.json", {"id": "A"})
        assert storage.exists("nodes/features/A.json")
        assert storage.read_json("nodes/features/A.json") == {"id": "A"}

    def test_sha256_of_raw_bytes(self, storage):
        storage.write_json("graph.json", {"nodes": []})
        raw = storage.resolve("graph.json").read_bytes()
        assert storage.sha256("graph.json") == hashlib.sha256(raw).hexdigest()

    def test_read_missing(self, storage):
        with pytest.raises(StorageError, match="Failed to read"):
            storage.read_bytes("missing.json")

    def test_delete_missing_is_not_error(self, storage):
        assert storage.delete("missing.json") is False
        storage.write_json("a.json", {})
        assert storage.delete("a.json") is True

    def test_glob_sorted_relative(self, storage):
        storage.write_json("nodes/layers/B.json", {})
        storage.write_json("nodes/features/A.json", {})
        assert storage.glob("nodes/**/*.json") == ["nodes/features/A.json", "nodes/layers/B.json"]

    def test_glob_without_directory(self, tmp_path):
        assert FileStorage(tmp_path, "absent").glob("**/*.json") == []


class TestWriteBatch:

    def test_commit_applies_writes_then_deletes(self, storage):
        storage.write_json("old.json", {"id": "OLD"})
        with storage.batch() as batch:
            batch.write_json("new.json", {"id": "NEW"})
            batch.delete("old.json")
            assert not storage.exists("new.json")
        assert storage.read_json("new.json") == {"id": "NEW"}
        assert not storage.exists("old.json")

    def test_exception_in_block_discards_batch(self, storage):
        with pytest.raises(RuntimeError):
            with storage.batch() as batch:
                batch.write_json("a.json", {"id": "A"})
                raise RuntimeError("abort")
        assert not storage.exists("a.json")

    def test_unencodable_document_leaves_no_files(self, storage):
        storage.write_json("keep.json", {"v": 1})
        with pytest.raises(StorageError, match="Failed to stage"):
            with storage.batch() as batch:
                batch.write_json("keep.json", {"v": 2})
                batch.write_json("bad.json", {"v": object()})
        assert storage.read_json("keep.json") == {"v": 1}
        assert storage.glob("*") == ["keep.json"]

    def test_replace_failure_is_storage_error(self, storage):
        with patch("infrastructure.storage.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StorageError, match="Failed to write a.json"):
                with storage.batch() as batch:
                    batch.write_json("a.json", {})
