"""
heritage.py - EXTENDS / IMPLEMENTS edges between type definitions.

Each name in a class / interface / enum ``extends`` or ``implements`` list is
resolved by its last dotted segment: first through the file's import
bindings (including namespace bindings for ``pkg.Base``), then against types
defined in the same file. Unresolved names are counted only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from kg_ingest.graph import KnowledgeGraph
from kg_ingest.imports import ImportMap
from kg_ingest.models import (
    Definition, GraphRelationship, ImportKind, ParsedFile, RelKind, TYPE_KINDS,
)
from kg_ingest.registry import DefinitionRegistry

logger = logging.getLogger(__name__)


@dataclass
class HeritageResult:
    resolved: int = 0
    unresolved: int = 0


class HeritageResolver:
    def __init__(self, graph: KnowledgeGraph, registry: DefinitionRegistry,
                 import_map: ImportMap) -> None:
        self.graph = graph
        self.registry = registry
        self.import_map = import_map

    def _types_in(self, file_path: str, name: str) -> list[Definition]:
        return [
            d for d in self.registry.find_by_name_in_file(file_path, name)
            if d.kind in TYPE_KINDS
        ]

    def resolve_type(self, file_path: str, type_name: str) -> tuple[Optional[Definition], str]:
        """Returns (definition, resolution) where resolution is ``import`` or ``local``."""
        segments = type_name.split(".")
        simple = segments[-1]

        binding = self.import_map.binding(file_path, simple)
        if binding is not None:
            lookup = binding.imported_name if binding.kind == ImportKind.NAMED and binding.imported_name else simple
            found = self._types_in(binding.target_file, lookup)
            if found:
                return found[0], "import"
        if len(segments) > 1:
            namespace = self.import_map.binding(file_path, ".".join(segments[:-1]))
            if namespace is not None:
                found = self._types_in(namespace.target_file, simple)
                if found:
                    return found[0], "import"
        for target in self.import_map.wildcard_targets(file_path):
            found = self._types_in(target, simple)
            if found:
                return found[0], "import"

        found = self._types_in(file_path, simple)
        if found:
            return found[0], "local"
        return None, ""

    def run(self, parsed_files: dict[str, ParsedFile]) -> HeritageResult:
        result = HeritageResult()
        for path in sorted(parsed_files):
            for definition in parsed_files[path].definitions:
                if definition.kind not in TYPE_KINDS:
                    continue
                if not self.graph.has_node(definition.node_id):
                    continue
                for rel, names in ((RelKind.EXTENDS, definition.extends),
                                   (RelKind.IMPLEMENTS, definition.implements)):
                    for type_name in names:
                        target, how = self.resolve_type(path, type_name)
                        if target is None or target.node_id == definition.node_id:
                            result.unresolved += 1
                            continue
                        result.resolved += 1
                        self.graph.add_relationship(GraphRelationship(
                            type=rel, source=definition.node_id, target=target.node_id,
                            properties={"typeName": type_name, "resolution": how},
                        ))
        logger.info("Heritage pass: %d resolved, %d unresolved", result.resolved, result.unresolved)
        return result
