"""
imports.py - Import resolution pass.

Maps every import Definition to a concrete File node and builds the
ImportMap consumed by heritage and call resolution.

Resolution order (first hit wins):

    1. exact         candidate path is a known file              confidence 1.0
    2. root_relative a known file ends with the candidate's
                     trailing segments (src/ layouts, aliases)   confidence 0.8
    3. basename      a known file with the same stem and a
                     compatible extension                        confidence 0.4

Ambiguous matches are broken by DefinitionRegistry.import_distance. Anything
left over is tallied as unresolved; unresolved imports are never errors.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from typing import Optional

from kg_ingest import metrics
from kg_ingest.graph import KnowledgeGraph
from kg_ingest.models import (
    Definition, GraphRelationship, ImportBinding, ImportKind, ImportSpec,
    ParsedFile, RelKind, UnresolvedImport,
)
from kg_ingest.registry import DefinitionRegistry

logger = logging.getLogger(__name__)

EXACT = "exact"
ROOT_RELATIVE = "root_relative"
BASENAME = "basename"

CONFIDENCE: dict[str, float] = {EXACT: 1.0, ROOT_RELATIVE: 0.8, BASENAME: 0.4}

_PY_EXTS = (".py", ".pyi")
_JS_EXTS = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".mts", ".cts", ".d.ts")
_JAVA_EXTS = (".java",)

EXTENSION_FAMILIES: dict[str, tuple[str, ...]] = {
    "python": _PY_EXTS,
    "javascript": _JS_EXTS,
    "typescript": _JS_EXTS,
    "tsx": _JS_EXTS,
    "java": _JAVA_EXTS,
}


# ---------------------------------------------------------------------------
# Import map
# ---------------------------------------------------------------------------

@dataclass
class FileImports:
    bindings: dict[str, ImportBinding] = field(default_factory=dict)
    wildcard_targets: list[str] = field(default_factory=list)


class ImportMap:
    """Per importing file: local name -> ImportBinding, plus wildcard targets."""

    def __init__(self) -> None:
        self._files: dict[str, FileImports] = {}

    def _entry(self, file_path: str) -> FileImports:
        entry = self._files.get(file_path)
        if entry is None:
            entry = self._files[file_path] = FileImports()
        return entry

    def add_binding(self, file_path: str, binding: ImportBinding) -> None:
        self._entry(file_path).bindings.setdefault(binding.local_name, binding)

    def add_wildcard(self, file_path: str, target: str) -> None:
        targets = self._entry(file_path).wildcard_targets
        if target not in targets:
            targets.append(target)

    def binding(self, file_path: str, local_name: str) -> Optional[ImportBinding]:
        entry = self._files.get(file_path)
        return entry.bindings.get(local_name) if entry is not None else None

    def bindings(self, file_path: str) -> dict[str, ImportBinding]:
        entry = self._files.get(file_path)
        return dict(entry.bindings) if entry is not None else {}

    def wildcard_targets(self, file_path: str) -> list[str]:
        entry = self._files.get(file_path)
        return list(entry.wildcard_targets) if entry is not None else []


@dataclass
class Resolution:
    target: str
    confidence: float
    strategy: str


@dataclass
class ImportResult:
    import_map: ImportMap
    total: int = 0
    resolved: int = 0
    unresolved: list[UnresolvedImport] = field(default_factory=list)

    @property
    def resolution_rate(self) -> float:
        return self.resolved / self.total if self.total else 0.0


# ---------------------------------------------------------------------------
# Candidate paths per language
# ---------------------------------------------------------------------------

def _python_base(importer: str, spec: ImportSpec) -> str:
    parts = [p for p in spec.module.split(".") if p]
    if spec.level > 0:
        directory = posixpath.dirname(importer)
        for _ in range(spec.level - 1):
            directory = posixpath.dirname(directory)
        return posixpath.join(directory, *parts) if parts else directory
    return "/".join(parts)


def _python_module_candidates(base: str) -> list[str]:
    if not base:
        return []
    return [base + ".py", base + ".pyi", base + "/__init__.py"]


def _js_candidates(importer: str, module: str) -> list[str]:
    if module.startswith("."):
        joined = posixpath.normpath(posixpath.join(posixpath.dirname(importer), module))
    else:
        joined = module.lstrip("/")
    if joined.startswith("../") or joined == "..":
        return []
    candidates = [joined]
    stem, ext = posixpath.splitext(joined)
    if ext in (".js", ".jsx", ".mjs", ".cjs"):
        # TypeScript sources imported through their emitted .js name
        candidates.extend(stem + e for e in (".ts", ".tsx", ".mts", ".cts"))
    candidates.extend(joined + e for e in _JS_EXTS)
    candidates.extend(f"{joined}/index{e}" for e in _JS_EXTS)
    return candidates


def _java_candidates(module: str) -> list[str]:
    return [module.replace(".", "/") + ".java"]


def _is_bare_js(spec: ImportSpec) -> bool:
    return not spec.module.startswith((".", "/"))


# ---------------------------------------------------------------------------
# Resolution pass
# ---------------------------------------------------------------------------

class ImportResolver:
    """Resolves import Definitions against the registered file paths."""

    def __init__(self, graph: KnowledgeGraph, registry: DefinitionRegistry,
                 file_ids: dict[str, str]) -> None:
        self.graph = graph
        self.registry = registry
        self.file_ids = file_ids

    # ------------------------------------------------------------------
    # Path matching
    # ------------------------------------------------------------------

    def resolve_path(
        self, importer: str, candidates: list[str], language: str, allow_basename: bool = True,
    ) -> Optional[Resolution]:
        candidates = [c for c in candidates if c and c != importer]
        for candidate in candidates:
            if self.registry.has_file(candidate):
                return Resolution(candidate, CONFIDENCE[EXACT], EXACT)

        for candidate in candidates:
            parts = candidate.split("/")
            for i in range(0, len(parts) - 1):
                matches = [
                    p for p in self.registry.find_files_by_suffix("/".join(parts[i:]))
                    if p != importer
                ]
                if matches:
                    best = self.registry.closest(importer, matches)
                    return Resolution(best, CONFIDENCE[ROOT_RELATIVE], ROOT_RELATIVE)

        if not allow_basename:
            return None
        family = EXTENSION_FAMILIES.get(language, ())
        for candidate in candidates:
            stem = _meaningful_stem(candidate)
            if not stem:
                continue
            matches = [
                p for p in self.registry.find_files_by_stem(stem)
                if p != importer and p.lower().endswith(family)
            ]
            if matches:
                best = self.registry.closest(importer, matches)
                return Resolution(best, CONFIDENCE[BASENAME], BASENAME)
        return None

    # ------------------------------------------------------------------
    # Per-language import handling
    # ------------------------------------------------------------------

    def resolve_spec(
        self, importer: str, language: str, spec: ImportSpec,
    ) -> list[tuple[Resolution, list[ImportBinding], bool]]:
        """Targets for one import statement.

        Returns a list of (resolution, bindings, is_wildcard) tuples; empty
        when nothing resolved.
        """
        if language == "python":
            return self._resolve_python(importer, spec)
        if language == "java":
            return self._resolve_java(importer, spec)
        resolution = self.resolve_path(
            importer, _js_candidates(importer, spec.module), language,
            allow_basename=not _is_bare_js(spec),
        )
        if resolution is None:
            return []
        return [(resolution, *_bindings_for(spec.names, resolution.target))]

    def _resolve_python(self, importer: str, spec: ImportSpec) -> list[tuple[Resolution, list[ImportBinding], bool]]:
        base = _python_base(importer, spec)
        module = self.resolve_path(importer, _python_module_candidates(base), "python")
        results: list[tuple[Resolution, list[ImportBinding], bool]] = []
        remaining = []
        for name in spec.names:
            if name.kind == ImportKind.NAMED and name.imported_name:
                defined = module is not None and bool(
                    self.registry.find_by_name_in_file(module.target, name.imported_name)
                )
                resolution = None if defined else self._resolve_submodule(
                    importer, base, module, name.imported_name,
                )
                if resolution is not None:
                    binding = ImportBinding(
                        local_name=name.local_name or name.imported_name,
                        target_file=resolution.target, kind=ImportKind.NAMESPACE,
                    )
                    results.append((resolution, [binding], False))
                    continue
            remaining.append(name)

        if module is not None and (remaining or not spec.names):
            results.append((module, *_bindings_for(tuple(remaining), module.target)))
        return results

    def _resolve_submodule(
        self, importer: str, base: str, module: Optional[Resolution], name: str,
    ) -> Optional[Resolution]:
        """``from pkg import name`` where *name* is a module inside ``pkg``.

        Only the exact path or a path inside the package directory the base
        module resolved to are accepted; suffix matches elsewhere in the tree
        are not.
        """
        sub = posixpath.join(base, name) if base else name
        for candidate in _python_module_candidates(sub):
            if candidate != importer and self.registry.has_file(candidate):
                return Resolution(candidate, CONFIDENCE[EXACT], EXACT)
        if module is None or module.strategy == EXACT or not module.target.endswith("/__init__.py"):
            return None
        package_dir = posixpath.dirname(module.target)
        for candidate in _python_module_candidates(posixpath.join(package_dir, name)):
            if candidate != importer and self.registry.has_file(candidate):
                return Resolution(candidate, module.confidence, module.strategy)
        return None

    def _resolve_java(self, importer: str, spec: ImportSpec) -> list[tuple[Resolution, list[ImportBinding], bool]]:
        if any(n.kind == ImportKind.WILDCARD for n in spec.names):
            directory = spec.module.replace(".", "/")
            parts = directory.split("/")
            for i in range(len(parts)):
                suffix = "/".join(parts[i:])
                members = sorted(
                    p for p in self.registry.files
                    if p.endswith(".java") and p != importer
                    and (posixpath.dirname(p) == suffix or posixpath.dirname(p).endswith("/" + suffix))
                )
                if members:
                    strategy = EXACT if i == 0 and posixpath.dirname(members[0]) == suffix else ROOT_RELATIVE
                    return [
                        (Resolution(m, CONFIDENCE[strategy], strategy), [], True) for m in members
                    ]
            return []
        resolution = self.resolve_path(importer, _java_candidates(spec.module), "java")
        if resolution is None:
            return []
        return [(resolution, *_bindings_for(spec.names, resolution.target))]

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, parsed_files: dict[str, ParsedFile]) -> ImportResult:
        result = ImportResult(import_map=ImportMap())
        for path in sorted(parsed_files):
            parsed = parsed_files[path]
            edges: dict[str, dict] = {}
            for definition in parsed.imports():
                self._resolve_definition(path, parsed.language, definition, result, edges)
            importer_id = self.file_ids.get(path)
            if importer_id is None:
                continue
            for target, props in edges.items():
                target_id = self.file_ids.get(target)
                if target_id is None:
                    continue
                self.graph.add_relationship(GraphRelationship(
                    type=RelKind.IMPORTS, source=importer_id, target=target_id, properties=props,
                ))

        logger.info(
            "Import pass: %d/%d resolved (%.1f%%)",
            result.resolved, result.total, result.resolution_rate * 100,
        )
        return result

    def _resolve_definition(
        self, path: str, language: str, definition: Definition,
        result: ImportResult, edges: dict[str, dict],
    ) -> None:
        spec = definition.import_spec
        if spec is None:
            return
        result.total += 1
        resolved = self.resolve_spec(path, language, spec)
        if not resolved:
            result.unresolved.append(UnresolvedImport(
                file_path=path, module=definition.name, line=spec.line or definition.start_line,
            ))
            metrics.IMPORTS_TOTAL.labels(status="unresolved").inc()
            logger.debug("Unresolved import '%s' in %s", definition.name, path)
            return

        result.resolved += 1
        metrics.IMPORTS_TOTAL.labels(status="resolved").inc()
        for resolution, bindings, is_wildcard in resolved:
            for binding in bindings:
                result.import_map.add_binding(path, binding)
            if is_wildcard:
                result.import_map.add_wildcard(path, resolution.target)
            names = [b.imported_name or b.local_name for b in bindings]
            props = edges.get(resolution.target)
            if props is None:
                edges[resolution.target] = {
                    "module": definition.name,
                    "confidence": resolution.confidence,
                    "strategy": resolution.strategy,
                    "names": names,
                }
            else:
                props["names"] = list(dict.fromkeys(props["names"] + names))
                if resolution.confidence > props["confidence"]:
                    props["confidence"] = resolution.confidence
                    props["strategy"] = resolution.strategy


def _bindings_for(names, target: str) -> tuple[list[ImportBinding], bool]:
    """Bindings for the imported names of one resolved statement."""
    bindings: list[ImportBinding] = []
    wildcard = False
    for name in names:
        if name.kind == ImportKind.WILDCARD:
            wildcard = True
            continue
        if not name.local_name:
            continue
        bindings.append(ImportBinding(
            local_name=name.local_name,
            target_file=target,
            imported_name=name.imported_name,
            kind=name.kind,
        ))
    return bindings, wildcard


def _meaningful_stem(candidate: str) -> str:
    parts = candidate.split("/")
    stem = posixpath.splitext(parts[-1])[0]
    if stem.endswith(".d"):
        stem = stem[:-2]
    if stem in ("__init__", "index") and len(parts) > 1:
        stem = parts[-2]
    return stem
