"""
SPECGRAPH SNAPSHOT CACHE - Time-Boxed Read Cache

Repeated queries within the TTL window reuse the loaded NodeStore instead of
re-reading every node file. Mutations invalidate their entry before
returning; force_reload bypasses the TTL.

One cache serves the whole process (get_graph_cache), so a mutation made
through any workspace drops the snapshot that every other workspace on the
same (repository root, graph directory) would read. Callers may still pass
their own GraphCache.

The clock is injected so tests can advance time without sleeping.
"""
import logging
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Generic, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

CacheKey = Tuple[str, str]


def cache_key(repo_dir, directory: str) -> CacheKey:
    """(resolved repository root, graph directory)"""
    return (str(Path(repo_dir).resolve()), directory)


class GraphCache(Generic[T]):
    """
    TTL cache of loaded snapshots keyed by (repository root, graph directory).

    Usage:
        cache = GraphCache(ttl_seconds=1.5)
        store = cache.get(repo_dir, "specgraph", lambda: load_node_store(storage))
        ...
        cache.invalidate(repo_dir, "specgraph")
    """

    def __init__(self, ttl_seconds: float = 1.5, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[CacheKey, Tuple[float, T]] = {}
        self._lock = threading.RLock()

    def get(
        self,
        repo_dir,
        directory: str,
        loader: Callable[[], T],
        force_reload: bool = False,
        ttl_seconds: Optional[float] = None,
    ) -> T:
        """
        Return the cached snapshot, loading it when absent, expired or forced.

        ttl_seconds overrides the cache's own TTL for this lookup only.
        Loader exceptions propagate and leave the cache without an entry.
        """
        key = cache_key(repo_dir, directory)
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            now = self._clock()
            if not force_reload:
                entry = self._entries.get(key)
                if entry is not None:
                    loaded_at, value = entry
                    if now - loaded_at < ttl:
                        logger.debug("Cache hit for %s", key)
                        return value
            logger.debug("Cache miss for %s (force_reload=%s)", key, force_reload)
            self._entries.pop(key, None)
            value = loader()
            self._entries[key] = (self._clock(), value)
            return value

    def peek(self, repo_dir, directory: str) -> Optional[T]:
        """The cached value regardless of age, or None."""
        with self._lock:
            entry = self._entries.get(cache_key(repo_dir, directory))
            return entry[1] if entry else None

    def invalidate(self, repo_dir, directory: str) -> bool:
        with self._lock:
            return self._entries.pop(cache_key(repo_dir, directory), None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# =============================================================================
# PROCESS-WIDE CACHE
# =============================================================================

_graph_cache: Optional[GraphCache] = None
_graph_cache_lock = threading.Lock()


def get_graph_cache() -> GraphCache:
    """Get or create the process-wide snapshot cache."""
    global _graph_cache
    with _graph_cache_lock:
        if _graph_cache is None:
            _graph_cache = GraphCache()
        return _graph_cache


def set_graph_cache(cache: GraphCache) -> None:
    global _graph_cache
    with _graph_cache_lock:
        _graph_cache = cache


def reset_graph_cache() -> None:
    global _graph_cache
    with _graph_cache_lock:
        _graph_cache = None
