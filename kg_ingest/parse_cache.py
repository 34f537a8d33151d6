"""
parse_cache.py - Bounded in-memory caches for the parsing pass.

Three LRU regions live in one ParseCache instance:

    files     (path, content_hash) -> CacheEntry (tree + ParsedFile)
    queries   (language, query_name) -> compiled tree-sitter Query
    grammars  language -> Grammar

Design notes
------------
- Invalidation is content-driven (SHA-256 of the file text), never time-based.
  A changed file gets a new key; the stale entry ages out through LRU.
- ``get_or_parse`` is an atomic insert-or-fetch: a per-key lock makes racing
  workers wait for the first parse instead of parsing the same file twice.
- The files region is bounded both by entry count and by an approximate byte
  budget. Once past the low-water mark ``relieve_memory_pressure`` trims it,
  drops compiled queries and runs the garbage collector; the pipeline calls it
  between batches.
- The cache is always injected (ParseCache instance passed to the pipeline),
  never a module global, so tests and concurrent runs stay isolated.
"""

from __future__ import annotations

import gc
import hashlib
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Hashable, Optional, TypeVar

from tree_sitter import Tree

from kg_ingest.errors import CacheCorruption
from kg_ingest.grammar import Grammar, load_grammar
from kg_ingest.models import IngestionConfig, ParsedFile
from kg_ingest import metrics

logger = logging.getLogger(__name__)

V = TypeVar("V")

# Rough multiplier from source size to in-memory tree + definitions size.
TREE_BYTES_PER_SOURCE_BYTE = 8
LOW_WATER_RATIO = 0.75


class LRURegion(Generic[V]):
    """Thread-safe LRU map bounded by entry count and optional byte budget."""

    def __init__(
        self,
        name: str,
        max_entries: int,
        max_bytes: Optional[int] = None,
        sizeof: Optional[Callable[[V], int]] = None,
    ) -> None:
        self.name = name
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self._sizeof = sizeof
        self._store: OrderedDict[Hashable, V] = OrderedDict()
        self._sizes: dict[Hashable, int] = {}
        self._bytes = 0
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._store

    @property
    def bytes(self) -> int:
        return self._bytes

    def get(self, key: Hashable, count: bool = True) -> Optional[V]:
        with self._lock:
            value = self._store.get(key)
            if value is None:
                if count:
                    self.misses += 1
                return None
            self._store.move_to_end(key)
            if count:
                self.hits += 1
            return value

    def put(self, key: Hashable, value: V) -> None:
        size = self._sizeof(value) if self._sizeof is not None else 0
        with self._lock:
            if key in self._store:
                self._bytes -= self._sizes.pop(key, 0)
                del self._store[key]
            self._store[key] = value
            self._sizes[key] = size
            self._bytes += size
            self._evict_locked(self.max_entries, self.max_bytes)

    def pop(self, key: Hashable) -> Optional[V]:
        with self._lock:
            value = self._store.pop(key, None)
            if value is not None:
                self._bytes -= self._sizes.pop(key, 0)
            return value

    def keys(self) -> list[Hashable]:
        with self._lock:
            return list(self._store)

    def trim(self, max_bytes: int) -> int:
        """Evict least-recently-used entries until under *max_bytes*."""
        with self._lock:
            return self._evict_locked(self.max_entries, max_bytes)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._sizes.clear()
            self._bytes = 0

    def _evict_locked(self, max_entries: int, max_bytes: Optional[int]) -> int:
        evicted = 0
        while self._store and (
            len(self._store) > max_entries
            or (max_bytes is not None and self._bytes > max_bytes and len(self._store) > 1)
        ):
            key, _ = self._store.popitem(last=False)
            self._bytes -= self._sizes.pop(key, 0)
            evicted += 1
        self.evictions += evicted
        if evicted:
            logger.debug("%s cache evicted %d entries", self.name, evicted)
        return evicted

    def stats(self) -> dict[str, Any]:
        total = self.hits + self.misses
        return {
            "size": len(self._store),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / total if total else 0.0,
            "evictions": self.evictions,
            "bytes": self._bytes,
        }


@dataclass
class CacheEntry:
    """One parsed file as stored in the files region."""
    path: str
    content_hash: str
    language: str
    file_size: int
    parsed: ParsedFile
    tree: Optional[Tree] = None
    checksum: str = ""
    last_accessed: float = field(default_factory=time.monotonic)


def _entry_size(entry: CacheEntry) -> int:
    return max(entry.file_size, 1) * TREE_BYTES_PER_SOURCE_BYTE


def parsed_checksum(parsed: ParsedFile) -> str:
    return hashlib.sha256(parsed.model_dump_json().encode()).hexdigest()


class ParseCache:
    """Content-addressed cache of parse results, compiled queries and grammars.

    Usage::

        cache = ParseCache()
        parsed, hit = cache.get_or_parse(path, content_hash, lambda: parse(path))
        print(cache.stats())
    """

    def __init__(
        self,
        max_entries: int = 200,
        max_bytes: int = 100 * 1024 * 1024,
        query_max_entries: int = 1000,
        grammar_max_entries: int = 10,
        verify_integrity: bool = False,
    ) -> None:
        self.max_bytes = max_bytes
        self.verify_integrity = verify_integrity
        self._files: LRURegion[CacheEntry] = LRURegion(
            "files", max_entries, max_bytes, sizeof=_entry_size
        )
        self._queries: LRURegion[Any] = LRURegion("queries", max(query_max_entries, 1))
        self._grammars: LRURegion[Grammar] = LRURegion("grammars", grammar_max_entries)
        self._key_locks: dict[tuple[str, str], threading.Lock] = {}
        self._key_locks_guard = threading.Lock()
        self._grammar_lock = threading.Lock()
        self._query_cache_enabled = query_max_entries > 0

    @classmethod
    def from_config(cls, config: IngestionConfig) -> "ParseCache":
        return cls(
            max_entries=config.cache_max_entries,
            max_bytes=config.cache_max_bytes,
            query_max_entries=config.query_cache_max_entries,
            grammar_max_entries=config.grammar_cache_max_entries,
            verify_integrity=config.verify_cache_integrity,
        )

    # ------------------------------------------------------------------
    # Hashing
    # ------------------------------------------------------------------

    @staticmethod
    def hash_content(content: str) -> str:
        """SHA-256 hex digest of the file text (UTF-8 encoded)."""
        return hashlib.sha256(content.encode("utf-8", errors="surrogatepass")).hexdigest()

    # ------------------------------------------------------------------
    # Files region
    # ------------------------------------------------------------------

    def _lock_for(self, key: tuple[str, str]) -> threading.Lock:
        with self._key_locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def _check(self, entry: CacheEntry, path: str, content_hash: str) -> None:
        if entry.path != path or entry.content_hash != content_hash:
            raise CacheCorruption(
                path, f"entry stored for ({entry.path}, {entry.content_hash[:12]})"
            )
        if entry.parsed.file_path != path or entry.parsed.content_hash != content_hash:
            raise CacheCorruption(path, "parsed payload does not match its key")
        if self.verify_integrity and entry.checksum != parsed_checksum(entry.parsed):
            raise CacheCorruption(path, "checksum mismatch")

    def get(self, path: str, content_hash: str) -> Optional[ParsedFile]:
        """Return the cached ParsedFile for this exact content, or None."""
        entry = self._files.get((path, content_hash))
        if entry is None:
            metrics.CACHE_LOOKUPS.labels(result="miss").inc()
            logger.debug("ParseCache MISS: %s", path)
            return None
        self._check(entry, path, content_hash)
        entry.last_accessed = time.monotonic()
        metrics.CACHE_LOOKUPS.labels(result="hit").inc()
        logger.debug("ParseCache HIT : %s", path)
        return entry.parsed

    def put(self, path: str, content_hash: str, parsed: ParsedFile,
            tree: Optional[Tree] = None) -> None:
        entry = CacheEntry(
            path=path,
            content_hash=content_hash,
            language=parsed.language,
            file_size=parsed.file_size,
            parsed=parsed,
            tree=tree,
            checksum=parsed_checksum(parsed) if self.verify_integrity else "",
        )
        self._files.put((path, content_hash), entry)
        logger.debug("ParseCache PUT : %s", path)

    def get_or_parse(
        self,
        path: str,
        content_hash: str,
        parse_fn: Callable[[], tuple[ParsedFile, Optional[Tree]]],
    ) -> tuple[ParsedFile, bool]:
        """Atomic insert-or-fetch. Returns (parsed, was_cache_hit).

        Exceptions raised by *parse_fn* propagate and nothing is cached.
        """
        cached = self.get(path, content_hash)
        if cached is not None:
            return cached, True

        key = (path, content_hash)
        with self._lock_for(key):
            entry = self._files.get(key, count=False)
            if entry is not None:
                # Another worker parsed it while we waited.
                self._check(entry, path, content_hash)
                return entry.parsed, True
            parsed, tree = parse_fn()
            self.put(path, content_hash, parsed, tree)
            return parsed, False

    def get_tree(self, path: str, content_hash: str) -> Optional[Tree]:
        entry = self._files.get((path, content_hash), count=False)
        return entry.tree if entry is not None else None

    def evict(self, path: str) -> None:
        """Remove every cached version of *path*."""
        for key in self._files.keys():
            if key[0] == path:
                self._files.pop(key)
                logger.debug("ParseCache EVICT: %s", path)

    # ------------------------------------------------------------------
    # Grammar / query regions
    # ------------------------------------------------------------------

    @property
    def query_region(self) -> Optional[LRURegion[Any]]:
        return self._queries if self._query_cache_enabled else None

    def grammar(self, language: str) -> Grammar:
        """Cached load_grammar(); raises UnsupportedLanguage for unknown languages."""
        grammar = self._grammars.get(language)
        if grammar is not None:
            return grammar
        with self._grammar_lock:
            grammar = self._grammars.get(language, count=False)
            if grammar is None:
                grammar = load_grammar(language, query_cache=self.query_region)
                self._grammars.put(language, grammar)
            return grammar

    # ------------------------------------------------------------------
    # Memory management
    # ------------------------------------------------------------------

    def relieve_memory_pressure(self) -> int:
        """Release memory once the files region is past the low-water mark.

        Under pressure the files region is trimmed to the mark, compiled
        queries and idle key locks are dropped and the garbage collector
        runs. Below the mark nothing is touched, so warm queries survive
        from one batch to the next. Returns the number of evicted file
        entries.
        """
        low_water = int(self.max_bytes * LOW_WATER_RATIO)
        if self._files.bytes <= low_water:
            return 0
        evicted = self._files.trim(low_water)
        self._queries.clear()
        with self._key_locks_guard:
            self._key_locks.clear()
        gc.collect()
        logger.debug("ParseCache released %d entries under memory pressure", evicted)
        return evicted

    def clear(self) -> None:
        """Evict everything from all regions."""
        self._files.clear()
        self._queries.clear()
        self._grammars.clear()
        with self._key_locks_guard:
            self._key_locks.clear()
        logger.debug("ParseCache cleared")

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, Any]:
        """Snapshot of cache counters.

        Top-level keys describe the files region (``size``, ``hits``,
        ``misses``, ``hit_rate``, ``evictions``, ``bytes``); the
        ``queries`` and ``grammars`` keys hold the same counters for the
        other regions.
        """
        result = self._files.stats()
        result["queries"] = self._queries.stats()
        result["grammars"] = self._grammars.stats()
        return result
