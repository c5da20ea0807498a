"""
SPECGRAPH FILE STORAGE - The Key-Value Collaborator

The engine treats persistence as a load/store of relative path -> JSON
document under one graph directory. This module is the only place that
touches the filesystem for graph data.

Responsibilities:
- Canonical JSON: UTF-8, 2-space indent, key order preserved, trailing newline
- Containment: every relative path must resolve inside the graph directory
- Hashing: SHA-256 of raw file bytes for tamper and pin checks
- WriteBatch: staged multi-file mutation (temp files first, then os.replace)

Usage:
    storage = FileStorage(repo_dir, "specgraph")
    index = storage.read_json("graph.json")

    with storage.batch() as batch:
        batch.write_json("nodes/features/AUTH.json", node)
        batch.write_json("graph.json", index)
        batch.delete("nodes/features/OLD.json")
"""
import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, List, Tuple

import msgspec

logger = logging.getLogger(__name__)

_encoder = msgspec.json.Encoder()


class StorageError(Exception):
    """Raised when a storage read, write or delete fails."""
    pass


def encode_canonical_json(document: Any) -> bytes:
    """Pretty-printed JSON with a trailing newline."""
    return msgspec.json.format(_encoder.encode(document), indent=2) + b"\n"


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FileStorage:
    """
    Filesystem storage rooted at `<repo_dir>/<directory>`.

    All public methods take paths relative to the graph directory, written
    with forward slashes.
    """

    def __init__(self, repo_dir: str | Path, directory: str):
        self._repo_dir = Path(repo_dir).resolve()
        self._graph_dir = (self._repo_dir / directory).resolve()

    @property
    def repo_dir(self) -> Path:
        return self._repo_dir

    @property
    def graph_dir(self) -> Path:
        return self._graph_dir

    # =========================================================================
    # PATHS
    # =========================================================================

    def resolve(self, relative_path: str) -> Path:
        """
        Absolute path for a graph-relative path.

        Raises:
            StorageError: If the path escapes the graph directory
        """
        resolved = (self._graph_dir / relative_path).resolve()
        if resolved != self._graph_dir and self._graph_dir not in resolved.parents:
            raise StorageError(f"Path escapes graph directory: {relative_path}")
        return resolved

    def repo_path(self, relative_path: str) -> str:
        """Repository-relative POSIX path, as reported in files_changed."""
        absolute = self.resolve(relative_path)
        return absolute.relative_to(self._repo_dir).as_posix()

    # =========================================================================
    # READS
    # =========================================================================

    def exists(self, relative_path: str) -> bool:
        return self.resolve(relative_path).is_file()

    def read_bytes(self, relative_path: str) -> bytes:
        path = self.resolve(relative_path)
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read {relative_path}: {e}") from e

    def read_json(self, relative_path: str) -> Any:
        """
        Raises:
            StorageError: If the file cannot be read
            msgspec.DecodeError: If the file is not valid JSON
        """
        return msgspec.json.decode(self.read_bytes(relative_path))

    def sha256(self, relative_path: str) -> str:
        return sha256_hex(self.read_bytes(relative_path))

    def glob(self, pattern: str) -> List[str]:
        """Files matching a glob under the graph directory, sorted."""
        if not self._graph_dir.is_dir():
            return []
        return sorted(
            p.relative_to(self._graph_dir).as_posix()
            for p in self._graph_dir.glob(pattern)
            if p.is_file()
        )

    # =========================================================================
    # WRITES
    # =========================================================================

    def write_json(self, relative_path: str, document: Any) -> None:
        with self.batch() as batch:
            batch.write_json(relative_path, document)

    def delete(self, relative_path: str) -> bool:
        """
        Delete a file. A missing file is not an error.

        Returns:
            True if a file was removed
        """
        path = self.resolve(relative_path)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete {relative_path}: {e}") from e

    def batch(self) -> "WriteBatch":
        return WriteBatch(self)


class WriteBatch:
    """
    Staged writes and deletes committed together.

    Commit protocol:
    1. Encode every document and write it to a temp file beside its target.
    2. os.replace every temp file onto its target.
    3. Delete the staged deletions.

    A failure in step 1 removes all temp files and leaves the graph as it
    was. A failure in step 2 or 3 can leave a partially applied batch; each
    individual file is still either fully old or fully new.
    """

    def __init__(self, storage: FileStorage):
        self._storage = storage
        self._writes: List[Tuple[str, Any]] = []
        self._deletes: List[str] = []

    def write_json(self, relative_path: str, document: Any) -> None:
        self._storage.resolve(relative_path)
        self._writes.append((relative_path, document))

    def delete(self, relative_path: str) -> None:
        self._storage.resolve(relative_path)
        self._deletes.append(relative_path)

    def __enter__(self) -> "WriteBatch":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            self.commit()
        return False

    def commit(self) -> None:
        staged: List[Tuple[str, Path]] = []
        try:
            for relative_path, document in self._writes:
                target = self._storage.resolve(relative_path)
                target.parent.mkdir(parents=True, exist_ok=True)
                fd, temp_name = tempfile.mkstemp(
                    prefix=f".{target.name}.", suffix=".tmp", dir=target.parent
                )
                staged.append((relative_path, Path(temp_name)))
                with os.fdopen(fd, "wb") as handle:
                    handle.write(encode_canonical_json(document))
                os.chmod(temp_name, 0o644)
        except (OSError, TypeError, msgspec.EncodeError) as e:
            for _, temp_path in staged:
                temp_path.unlink(missing_ok=True)
            raise StorageError(f"Failed to stage write batch: {e}") from e

        for relative_path, temp_path in staged:
            try:
                os.replace(temp_path, self._storage.resolve(relative_path))
            except OSError as e:
                raise StorageError(f"Failed to write {relative_path}: {e}") from e

        for relative_path in self._deletes:
            self._storage.delete(relative_path)

        logger.debug(
            "Committed batch: %d writes, %d deletes", len(staged), len(self._deletes)
        )
        self._writes.clear()
        self._deletes.clear()

