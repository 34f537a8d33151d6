"""
config_files.py - Definitions harvested from well-known configuration files.

    package.json        scripts -> function, dependencies -> variable
    tsconfig*.json      TypeScriptConfig + compilerOptions.paths aliases -> variable
    Dockerfile*         FROM base images -> variable
    .env*               variable names -> variable
    requirements*.txt   requirement names -> variable
    pyproject.toml      dependencies -> variable, [project.scripts] -> function

Malformed JSON / TOML raises ParseError so the parsing pass records the file
as a parse failure instead of dropping it silently.
"""

from __future__ import annotations

import json
import logging
import posixpath
import re
import tomllib
from typing import Any, Iterable, Optional

from kg_ingest.errors import ParseError
from kg_ingest.models import Definition, DefinitionKind
from kg_ingest.registry import qualified_name_for

logger = logging.getLogger(__name__)

_REQUIREMENT_NAME = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")
_ENV_NAME = re.compile(r"^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_.]*)\s*=")


class _LineIndex:
    """Maps line numbers to byte offsets and finds the first line mentioning a key."""

    def __init__(self, content: str) -> None:
        self.lines = content.split("\n")
        self.offsets: list[int] = []
        offset = 0
        for line in self.lines:
            self.offsets.append(offset)
            offset += len(line.encode("utf-8")) + 1

    def span(self, line_no: int) -> tuple[int, int]:
        idx = max(0, min(line_no - 1, len(self.lines) - 1))
        start = self.offsets[idx]
        return start, start + len(self.lines[idx].encode("utf-8"))

    def find(self, needle: str, start_line: int = 1) -> int:
        for i in range(max(start_line - 1, 0), len(self.lines)):
            if needle in self.lines[i]:
                return i + 1
        return 1


def _definition(path: str, name: str, kind: DefinitionKind, line: int,
                index: _LineIndex) -> Definition:
    start_byte, end_byte = index.span(line)
    return Definition(
        qualified_name=qualified_name_for(path, name),
        file_path=path,
        name=name,
        kind=kind,
        start_line=line,
        end_line=line,
        start_byte=start_byte,
        end_byte=end_byte,
        language="config",
    )


def _load_json(path: str, content: str) -> dict[str, Any]:
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ParseError(path, f"invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ParseError(path, "expected a JSON object at top level")
    return data


def _package_json(path: str, content: str, index: _LineIndex) -> list[Definition]:
    data = _load_json(path, content)
    defs: list[Definition] = []
    scripts = data.get("scripts") or {}
    if isinstance(scripts, dict):
        anchor = index.find('"scripts"')
        for name in scripts:
            defs.append(_definition(path, name, DefinitionKind.FUNCTION,
                                    index.find(f'"{name}"', anchor), index))
    for section in ("dependencies", "devDependencies", "peerDependencies", "optionalDependencies"):
        deps = data.get(section) or {}
        if not isinstance(deps, dict):
            continue
        anchor = index.find(f'"{section}"')
        for name in deps:
            defs.append(_definition(path, name, DefinitionKind.VARIABLE,
                                    index.find(f'"{name}"', anchor), index))
    return defs


def _tsconfig(path: str, content: str, index: _LineIndex) -> list[Definition]:
    data = _load_json(path, content)
    options = data.get("compilerOptions")
    if not isinstance(options, dict):
        return []
    defs = [_definition(path, "TypeScriptConfig", DefinitionKind.VARIABLE,
                        index.find('"compilerOptions"'), index)]
    paths = options.get("paths") or {}
    if isinstance(paths, dict):
        anchor = index.find('"paths"')
        for alias in paths:
            defs.append(_definition(path, alias, DefinitionKind.VARIABLE,
                                    index.find(f'"{alias}"', anchor), index))
    return defs


def _dockerfile(path: str, index: _LineIndex) -> list[Definition]:
    defs = []
    for i, line in enumerate(index.lines, start=1):
        stripped = line.strip()
        if stripped.upper().startswith("FROM "):
            image = stripped[5:].split(" AS ")[0].split(" as ")[0].strip()
            if image:
                defs.append(_definition(path, image, DefinitionKind.VARIABLE, i, index))
    return defs


def _dotenv(path: str, index: _LineIndex) -> list[Definition]:
    defs = []
    for i, line in enumerate(index.lines, start=1):
        if line.lstrip().startswith("#"):
            continue
        m = _ENV_NAME.match(line)
        if m:
            defs.append(_definition(path, m.group(1), DefinitionKind.VARIABLE, i, index))
    return defs


def _requirement_names(lines: Iterable[tuple[int, str]]) -> Iterable[tuple[int, str]]:
    for line_no, line in lines:
        stripped = line.strip()
        if not stripped or stripped.startswith(("#", "-")):
            continue
        m = _REQUIREMENT_NAME.match(stripped)
        if m:
            yield line_no, m.group(1)


def _requirements(path: str, index: _LineIndex) -> list[Definition]:
    return [
        _definition(path, name, DefinitionKind.VARIABLE, line_no, index)
        for line_no, name in _requirement_names(enumerate(index.lines, start=1))
    ]


def _pyproject(path: str, content: str, index: _LineIndex) -> list[Definition]:
    try:
        data = tomllib.loads(content)
    except tomllib.TOMLDecodeError as exc:
        raise ParseError(path, f"invalid TOML: {exc}") from exc
    defs: list[Definition] = []
    project = data.get("project") or {}
    dependencies: list[str] = list(project.get("dependencies") or [])
    for extra in (project.get("optional-dependencies") or {}).values():
        dependencies.extend(extra)
    poetry = (data.get("tool") or {}).get("poetry") or {}
    dependencies.extend(name for name in (poetry.get("dependencies") or {}) if name != "python")

    seen: set[str] = set()
    for spec in dependencies:
        m = _REQUIREMENT_NAME.match(spec)
        if not m or m.group(1) in seen:
            continue
        name = m.group(1)
        seen.add(name)
        defs.append(_definition(path, name, DefinitionKind.VARIABLE, index.find(name), index))

    scripts = dict(project.get("scripts") or {})
    scripts.update(poetry.get("scripts") or {})
    for name in scripts:
        defs.append(_definition(path, name, DefinitionKind.FUNCTION, index.find(name), index))
    return defs


def harvest_config_definitions(path: str, content: str) -> list[Definition]:
    """Extract definitions from a configuration file; [] for unknown files."""
    name = posixpath.basename(path).lower()
    index = _LineIndex(content)
    defs: Optional[list[Definition]] = None
    if name == "package.json":
        defs = _package_json(path, content, index)
    elif name.startswith("tsconfig") and name.endswith(".json"):
        defs = _tsconfig(path, content, index)
    elif name.startswith("dockerfile"):
        defs = _dockerfile(path, index)
    elif name.startswith(".env"):
        defs = _dotenv(path, index)
    elif name.startswith("requirements") and name.endswith(".txt"):
        defs = _requirements(path, index)
    elif name == "pyproject.toml":
        defs = _pyproject(path, content, index)
    if defs is None:
        return []
    logger.debug("Harvested %d definitions from config file %s", len(defs), path)
    return defs
