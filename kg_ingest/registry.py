"""
registry.py - Cross-file Definition Registry.

An arena-indexed trie keyed by the dot-separated segments of qualified
names. Trie nodes live in one flat list and refer to each other by integer
index, so there are no parent/child object cycles. The call pass finds
``Class.method`` targets through it; ``find_ending_with`` serves callers
that only know a trailing part of a qualified name.

Secondary indexes:
    file_path -> [Definition]
    name      -> [Definition]
    path suffix (trailing path segments) -> {file_path}
    stem      -> {file_path}

The registry only grows; it is rebuilt for every pipeline run.
"""

from __future__ import annotations

import logging
import posixpath
import threading
from dataclasses import dataclass, field
from typing import Iterable, Optional

from kg_ingest.models import Definition

logger = logging.getLogger(__name__)


@dataclass
class _TrieNode:
    segment: str
    parent: int
    children: dict[str, int] = field(default_factory=dict)
    definitions: list[Definition] = field(default_factory=list)


def module_path(file_path: str) -> str:
    """``src/pkg/mod.py`` -> ``src.pkg.mod``."""
    root, _ = posixpath.splitext(file_path)
    return root.replace("/", ".")


def qualified_name_for(file_path: str, name: str, parent_class: Optional[str] = None) -> str:
    parts = [module_path(file_path)]
    if parent_class:
        parts.append(parent_class)
    parts.append(name)
    return ".".join(p for p in parts if p)


def _split(qualified_name: str) -> list[str]:
    return [s for s in qualified_name.split(".") if s]


class DefinitionRegistry:
    """Symbol table shared by the resolution passes."""

    def __init__(self) -> None:
        self._arena: list[_TrieNode] = [_TrieNode(segment="", parent=-1)]
        self._by_segment: dict[str, list[int]] = {}
        self._by_file: dict[str, list[Definition]] = {}
        self._by_name: dict[str, list[Definition]] = {}
        self._by_suffix: dict[str, set[str]] = {}
        self._by_stem: dict[str, set[str]] = {}
        self._files: set[str] = set()
        self._count = 0
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Inserts
    # ------------------------------------------------------------------

    def add_definition(self, definition: Definition) -> None:
        with self._lock:
            idx = 0
            for segment in _split(definition.qualified_name):
                child = self._arena[idx].children.get(segment)
                if child is None:
                    child = len(self._arena)
                    self._arena.append(_TrieNode(segment=segment, parent=idx))
                    self._arena[idx].children[segment] = child
                    self._by_segment.setdefault(segment, []).append(child)
                idx = child
            self._arena[idx].definitions.append(definition)
            self._by_file.setdefault(definition.file_path, []).append(definition)
            self._by_name.setdefault(definition.name, []).append(definition)
            self._count += 1
        self.register_file(definition.file_path)

    def register_file(self, file_path: str) -> None:
        """Index *file_path* for suffix / stem lookups (idempotent)."""
        with self._lock:
            if file_path in self._files:
                return
            self._files.add(file_path)
            parts = file_path.split("/")
            for i in range(len(parts)):
                self._by_suffix.setdefault("/".join(parts[i:]), set()).add(file_path)
            stem = posixpath.splitext(parts[-1])[0]
            self._by_stem.setdefault(stem, set()).add(file_path)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _walk(self, segments: list[str]) -> Optional[int]:
        idx = 0
        for segment in segments:
            nxt = self._arena[idx].children.get(segment)
            if nxt is None:
                return None
            idx = nxt
        return idx

    def find_by_qualified_name(self, qualified_name: str, prefix: bool = False) -> list[Definition]:
        """Exact lookup, or every definition under the name when *prefix*."""
        idx = self._walk(_split(qualified_name))
        if idx is None:
            return []
        if not prefix:
            return list(self._arena[idx].definitions)
        found: list[Definition] = []
        stack = [idx]
        while stack:
            node = self._arena[stack.pop()]
            found.extend(node.definitions)
            stack.extend(node.children.values())
        return found

    def find_ending_with(self, name: str) -> list[Definition]:
        """Definitions whose qualified name ends with the segments of *name*."""
        segments = _split(name)
        if not segments:
            return []
        found: list[Definition] = []
        for idx in self._by_segment.get(segments[-1], []):
            node = self._arena[idx]
            cursor = node.parent
            matched = True
            for segment in reversed(segments[:-1]):
                if cursor <= 0 or self._arena[cursor].segment != segment:
                    matched = False
                    break
                cursor = self._arena[cursor].parent
            if matched:
                found.extend(node.definitions)
        return found

    def find_by_name(self, name: str) -> list[Definition]:
        return list(self._by_name.get(name, []))

    def find_by_name_in_file(self, file_path: str, name: str) -> list[Definition]:
        return [d for d in self._by_file.get(file_path, []) if d.name == name]

    def definitions_in_file(self, file_path: str) -> list[Definition]:
        return list(self._by_file.get(file_path, []))

    def find_files_by_suffix(self, suffix: str) -> list[str]:
        return sorted(self._by_suffix.get(suffix.strip("/"), set()))

    def find_files_by_stem(self, stem: str) -> list[str]:
        return sorted(self._by_stem.get(stem, set()))

    def has_file(self, file_path: str) -> bool:
        return file_path in self._files

    @property
    def files(self) -> set[str]:
        return set(self._files)

    @staticmethod
    def import_distance(from_path: str, to_path: str) -> int:
        """Directory distance between two files; siblings get a bonus of one."""
        a = [p for p in from_path.split("/") if p]
        b = [p for p in to_path.split("/") if p]
        common = 0
        for x, y in zip(a, b):
            if x != y:
                break
            common += 1
        distance = max(len(a), len(b)) - common
        if common == min(len(a), len(b)) - 1:
            distance -= 1
        return distance

    def closest(self, from_path: str, candidates: Iterable[str]) -> Optional[str]:
        """Nearest candidate path by import_distance; ties broken by path order."""
        ranked = sorted(candidates, key=lambda p: (self.import_distance(from_path, p), p))
        return ranked[0] if ranked else None

    def stats(self) -> dict[str, int]:
        return {
            "definitions": self._count,
            "files": len(self._files),
            "trie_nodes": len(self._arena),
            "names": len(self._by_name),
        }
