"""
calls.py - Call resolution pass.

Every CallSite collected during parsing moves from Unclassified to exactly one
terminal state; the first rule that matches wins:

    BuiltinIgnored   built-in function / method / receiver (builtins.py)
    ImportResolved   reached through the caller file's import bindings,
                     following re-exports up to max_reexport_depth
    LocalResolved    defined in the caller's own file
    Unresolved       recorded in the diagnostic report

Only functions, methods and classes are valid targets. CALLS edges run from
the caller definition (or the File node for module-level calls) to the
target, one edge per (caller, target) pair with aggregated line numbers.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from kg_ingest import metrics
from kg_ingest.builtins import SELF_RECEIVERS, BuiltinFilter
from kg_ingest.graph import KnowledgeGraph
from kg_ingest.imports import ImportMap
from kg_ingest.models import (
    CALLABLE_KINDS, CallClassification, CallSite, Definition, DefinitionKind,
    GraphRelationship, ImportBinding, ImportKind, ParsedFile, RelKind,
    UnresolvedCall,
)
from kg_ingest.registry import DefinitionRegistry, qualified_name_for

logger = logging.getLogger(__name__)


@dataclass
class CallResult:
    stats: Counter = field(
        default_factory=lambda: Counter({c.value: 0 for c in CallClassification})
    )
    unresolved: list[UnresolvedCall] = field(default_factory=list)
    edges: int = 0

    @property
    def resolved(self) -> int:
        return (self.stats[CallClassification.IMPORT_RESOLVED.value]
                + self.stats[CallClassification.LOCAL_RESOLVED.value])

    @property
    def resolution_rate(self) -> float:
        attempted = self.resolved + self.stats[CallClassification.UNRESOLVED.value]
        return self.resolved / attempted if attempted else 0.0


class CallResolver:
    """Classifies call sites and writes CALLS edges."""

    def __init__(
        self,
        graph: KnowledgeGraph,
        registry: DefinitionRegistry,
        import_map: ImportMap,
        file_ids: dict[str, str],
        builtin_filter: Optional[BuiltinFilter] = None,
        max_reexport_depth: int = 5,
    ) -> None:
        self.graph = graph
        self.registry = registry
        self.import_map = import_map
        self.file_ids = file_ids
        self.builtins = builtin_filter or BuiltinFilter()
        self.max_reexport_depth = max_reexport_depth

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _callables(self, file_path: str, name: str) -> list[Definition]:
        defs = [
            d for d in self.registry.find_by_name_in_file(file_path, name)
            if d.kind in CALLABLE_KINDS
        ]
        # top-level first, then by position
        return sorted(defs, key=lambda d: (d.parent_class is not None, d.start_byte))

    def _methods_of(self, file_path: str, class_name: str, name: str) -> list[Definition]:
        qualified = qualified_name_for(file_path, name, class_name)
        methods = [
            d for d in self.registry.find_by_qualified_name(qualified)
            if d.file_path == file_path and d.kind in CALLABLE_KINDS
        ]
        return sorted(methods, key=lambda d: d.start_byte)

    def lookup_exported(
        self, file_path: str, name: str, depth: int = 0,
        visited: Optional[set[tuple[str, str]]] = None,
    ) -> Optional[Definition]:
        """Find *name* defined in *file_path*, following its own imports (re-exports)."""
        visited = visited if visited is not None else set()
        if (file_path, name) in visited:
            return None
        visited.add((file_path, name))

        found = [d for d in self._callables(file_path, name) if d.parent_class is None]
        if found:
            return found[0]
        if depth >= self.max_reexport_depth:
            return None

        binding = self.import_map.binding(file_path, name)
        if binding is not None:
            target = self._follow_binding(binding, depth + 1, visited)
            if target is not None:
                return target
        for wildcard in self.import_map.wildcard_targets(file_path):
            target = self.lookup_exported(wildcard, name, depth + 1, visited)
            if target is not None:
                return target
        return None

    def lookup_default(
        self, file_path: str, depth: int = 0,
        visited: Optional[set[tuple[str, str]]] = None,
    ) -> Optional[Definition]:
        visited = visited if visited is not None else set()
        if (file_path, "default") in visited:
            return None
        visited.add((file_path, "default"))
        defaults = [
            d for d in self.registry.definitions_in_file(file_path)
            if d.is_default_export and d.kind in CALLABLE_KINDS
        ]
        if defaults:
            return defaults[0]
        if depth >= self.max_reexport_depth:
            return None
        binding = self.import_map.binding(file_path, "default")
        if binding is not None:
            return self._follow_binding(binding, depth + 1, visited)
        return None

    def _follow_binding(
        self, binding: ImportBinding, depth: int, visited: set[tuple[str, str]],
    ) -> Optional[Definition]:
        if binding.kind == ImportKind.DEFAULT:
            return self.lookup_default(binding.target_file, depth, visited)
        if binding.kind == ImportKind.NAMESPACE:
            return self.lookup_default(binding.target_file, depth, visited)
        name = binding.imported_name or binding.local_name
        return self.lookup_exported(binding.target_file, name, depth, visited)

    def _receiver_binding(self, file_path: str, receiver: str) -> Optional[ImportBinding]:
        return self.import_map.binding(file_path, receiver.strip())

    def _wildcard_class(self, file_path: str, name: str) -> Optional[Definition]:
        """Class called *name* exported by one of the file's wildcard imports."""
        for target in self.import_map.wildcard_targets(file_path):
            for definition in self.registry.find_by_name_in_file(target, name):
                if definition.kind == DefinitionKind.CLASS and definition.parent_class is None:
                    return definition
        return None

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def resolve_via_imports(self, site: CallSite) -> Optional[Definition]:
        path = site.file_path
        if site.receiver is None:
            binding = self.import_map.binding(path, site.called_name)
            if binding is not None:
                return self._follow_binding(binding, 0, set())
            for wildcard in self.import_map.wildcard_targets(path):
                target = self.lookup_exported(wildcard, site.called_name, 1)
                if target is not None:
                    return target
            return None

        if site.receiver in SELF_RECEIVERS:
            return None
        binding = self._receiver_binding(path, site.receiver)
        if binding is None:
            owner = self._wildcard_class(path, site.receiver)
            if owner is None:
                return None
            methods = self._methods_of(owner.file_path, owner.name, site.called_name)
            return methods[0] if methods else None
        if binding.kind in (ImportKind.NAMESPACE, ImportKind.DEFAULT):
            target = self.lookup_exported(binding.target_file, site.called_name)
            if target is not None:
                return target
            if binding.kind == ImportKind.NAMESPACE:
                return None
        # Imported.method(): find the class, then the method on it
        owner = self._follow_binding(binding, 0, set())
        if owner is not None and owner.kind == DefinitionKind.CLASS:
            methods = self._methods_of(owner.file_path, owner.name, site.called_name)
            if methods:
                return methods[0]
        return None

    def resolve_locally(self, site: CallSite) -> Optional[Definition]:
        path = site.file_path
        if site.receiver is None:
            candidates = self._callables(path, site.called_name)
            top_level = [d for d in candidates if d.parent_class is None]
            if top_level:
                return top_level[0]
            if site.caller_class:
                methods = self._methods_of(path, site.caller_class, site.called_name)
                if methods:
                    return methods[0]
            return None

        if site.receiver in SELF_RECEIVERS:
            if site.caller_class:
                methods = self._methods_of(path, site.caller_class, site.called_name)
                if methods:
                    return methods[0]
            candidates = self._callables(path, site.called_name)
            return candidates[0] if candidates else None

        # ClassName.method() on a class defined in the same file
        classes = [
            d for d in self.registry.find_by_name_in_file(path, site.receiver)
            if d.kind == DefinitionKind.CLASS
        ]
        if classes:
            methods = self._methods_of(path, classes[0].name, site.called_name)
            if methods:
                return methods[0]
        return None

    def classify(self, site: CallSite, language: str) -> tuple[CallClassification, Optional[Definition]]:
        receiver_is_import = False
        if site.receiver is not None:
            receiver_is_import = (
                self._receiver_binding(site.file_path, site.receiver) is not None
                or self.import_map.binding(site.file_path, site.receiver_root or "") is not None
                or self._wildcard_class(site.file_path, site.receiver) is not None
            )
        if self.builtins.is_builtin(language, site.called_name, site.receiver, receiver_is_import):
            return CallClassification.BUILTIN_IGNORED, None
        target = self.resolve_via_imports(site)
        if target is not None:
            return CallClassification.IMPORT_RESOLVED, target
        target = self.resolve_locally(site)
        if target is not None:
            return CallClassification.LOCAL_RESOLVED, target
        return CallClassification.UNRESOLVED, None

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, parsed_files: dict[str, ParsedFile]) -> CallResult:
        result = CallResult()
        edges: dict[tuple[str, str], dict] = {}
        for path in sorted(parsed_files):
            parsed = parsed_files[path]
            file_id = self.file_ids.get(path)
            for site in parsed.call_sites:
                classification, target = self.classify(site, parsed.language)
                result.stats[classification.value] += 1
                metrics.CALL_SITES_TOTAL.labels(classification=classification.value).inc()
                if classification == CallClassification.UNRESOLVED:
                    result.unresolved.append(UnresolvedCall(
                        file_path=path, line=site.line, called_name=site.called_name,
                        receiver=site.receiver, caller=site.caller_name,
                    ))
                    continue
                if target is None:
                    continue
                source_id = site.caller_id if site.caller_id and self.graph.has_node(site.caller_id) else file_id
                if source_id is None or not self.graph.has_node(target.node_id):
                    continue
                key = (source_id, target.node_id)
                props = edges.get(key)
                if props is None:
                    edges[key] = {
                        "callType": classification.value,
                        "calledName": site.called_name,
                        "lines": [site.line],
                        "callCount": 1,
                    }
                else:
                    props["lines"].append(site.line)
                    props["callCount"] += 1

        for (source_id, target_id), props in edges.items():
            if self.graph.add_relationship(GraphRelationship(
                type=RelKind.CALLS, source=source_id, target=target_id, properties=props,
            )):
                result.edges += 1

        logger.info(
            "Call pass: %s, %d CALLS edges, resolution rate %.1f%%",
            dict(result.stats), result.edges, result.resolution_rate * 100,
        )
        return result
