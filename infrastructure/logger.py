"""
SPECGRAPH MUTATION LOGGER - Audit Trail for Graph Writes

Every successful mutation is recorded as a MutationEvent so that a session's
writes can be replayed or inspected after the fact.

Architecture:
- MutationLogger: Core logging interface
- FileLogger: Optional NDJSON log file
- EventBuffer: In-memory ring buffer for recent events

Usage:
    logger = MutationLogger(log_path=Path("specgraph-mutations.jsonl"))
    logger.log_mutation("add_node", "AUTH", ["nodes/features/AUTH.json", "graph.json"])

    for event in logger.get_by_node("AUTH"):
        print(f"{event.sequence} {event.timestamp}: {event.operation}")
"""
import logging
import sys
import threading
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

import msgspec

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "WARNING", stream=None) -> None:
    """
    Configure the root handler for the "specgraph" and "infrastructure" loggers.

    Library modules only call logging.getLogger(__name__); the CLI calls this
    once at startup.
    """
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.WARNING
    for name in ("specgraph", "infrastructure"):
        log = logging.getLogger(name)
        log.handlers[:] = [handler]
        log.setLevel(numeric)
        log.propagate = False


class MutationEvent(msgspec.Struct, kw_only=True, frozen=True):
    """One successful graph mutation."""
    sequence: int
    timestamp: str
    operation: str
    node_id: Optional[str] = None
    files_changed: List[str] = []


# =============================================================================
# EVENT BUFFER
# =============================================================================

class EventBuffer:
    """
    Thread-safe ring buffer for recent mutation events.
    """

    def __init__(self, max_size: int = 10000):
        self._buffer: deque[MutationEvent] = deque(maxlen=max_size)
        self._lock = threading.RLock()
        self._sequence = 0

    def append(self, event: MutationEvent) -> None:
        with self._lock:
            self._buffer.append(event)

    def get_last(self, n: int) -> List[MutationEvent]:
        """Get the last n events."""
        with self._lock:
            items = list(self._buffer)
            return items[-n:] if n > 0 else []

    def get_by_node(self, node_id: str) -> List[MutationEvent]:
        with self._lock:
            return [e for e in self._buffer if e.node_id == node_id]

    def get_by_type(self, operation: str) -> List[MutationEvent]:
        with self._lock:
            return [e for e in self._buffer if e.operation == operation]

    def next_sequence(self) -> int:
        with self._lock:
            self._sequence += 1
            return self._sequence

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


# =============================================================================
# FILE LOGGER
# =============================================================================

class FileLogger:
    """
    Appends events to a file as newline-delimited JSON.
    """

    def __init__(self, log_path: Path):
        self._log_path = Path(log_path)
        self._lock = threading.Lock()
        self._encoder = msgspec.json.Encoder()
        self._log_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._log_path

    def write(self, event: MutationEvent) -> None:
        line = self._encoder.encode(event) + b"\n"
        with self._lock:
            with open(self._log_path, "ab") as f:
                f.write(line)

    def read_log(self) -> List[MutationEvent]:
        """Read every event back; malformed lines are logged and skipped."""
        if not self._log_path.exists():
            return []

        events = []
        decoder = msgspec.json.Decoder(type=MutationEvent)
        with open(self._log_path, "rb") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(decoder.decode(line))
                except msgspec.DecodeError as e:
                    logging.getLogger(__name__).warning(
                        "Skipping malformed mutation log line %d in %s: %s", lineno, self._log_path, e
                    )
        return events


# =============================================================================
# MUTATION LOGGER (Main Interface)
# =============================================================================

class MutationLogger:
    """
    Main logging interface for graph mutations.

    Events always go to the in-memory buffer, and to the NDJSON file when a
    log path is configured. Subscribers are called synchronously after both.
    """

    def __init__(self, log_path: Optional[Path] = None, buffer_size: int = 10000):
        self._buffer = EventBuffer(buffer_size)
        self._file_logger: Optional[FileLogger] = FileLogger(log_path) if log_path else None
        self._subscribers: List[Callable[[MutationEvent], None]] = []
        self._log = logging.getLogger(__name__)

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def log_mutation(
        self,
        operation: str,
        node_id: Optional[str],
        files_changed: List[str],
    ) -> MutationEvent:
        """Record a successful mutation."""
        event = MutationEvent(
            sequence=self._buffer.next_sequence(),
            timestamp=self._now(),
            operation=operation,
            node_id=node_id,
            files_changed=list(files_changed),
        )
        self._buffer.append(event)
        if self._file_logger:
            try:
                self._file_logger.write(event)
            except OSError as e:
                self._log.warning("Failed to append mutation log %s: %s", self._file_logger.path, e)
        self._log.info("%s %s (%d files)", operation, node_id or "-", len(event.files_changed))
        for subscriber in self._subscribers:
            subscriber(event)
        return event

    # =========================================================================
    # QUERY METHODS
    # =========================================================================

    def get_recent(self, n: int = 100) -> List[MutationEvent]:
        return self._buffer.get_last(n)

    def get_by_node(self, node_id: str) -> List[MutationEvent]:
        return self._buffer.get_by_node(node_id)

    def get_by_type(self, operation: str) -> List[MutationEvent]:
        return self._buffer.get_by_type(operation)

    def read_file_log(self) -> List[MutationEvent]:
        return self._file_logger.read_log() if self._file_logger else []

    def subscribe(self, callback: Callable[[MutationEvent], None]) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[MutationEvent], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def __len__(self) -> int:
        return len(self._buffer)
