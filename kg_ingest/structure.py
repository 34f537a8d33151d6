"""
structure.py - Structure pass: Project, Folder / Package and File nodes.

Builds the containment skeleton of the graph before any file is parsed:

    Project -CONTAINS-> Folder -CONTAINS-> Folder ... -CONTAINS-> File

A folder holding an ``__init__.py`` is labelled Package. Intermediate
directories that never appear in the input are created on the fly.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from typing import Iterable

from kg_ingest.graph import KnowledgeGraph
from kg_ingest.models import (
    GraphNode, GraphRelationship, NodeKind, RelKind, make_structure_id,
)

logger = logging.getLogger(__name__)


@dataclass
class StructureResult:
    project_id: str
    file_ids: dict[str, str] = field(default_factory=dict)
    folder_ids: dict[str, str] = field(default_factory=dict)


def split_files_and_directories(paths: Iterable[str]) -> tuple[list[str], set[str]]:
    """A path is a directory when another path starts with ``path + '/'``."""
    unique = list(dict.fromkeys(p for p in paths if p))
    prefixes: set[str] = set()
    for path in unique:
        parts = path.split("/")
        for i in range(1, len(parts)):
            prefixes.add("/".join(parts[:i]))
    files = [p for p in unique if p not in prefixes]
    return files, prefixes


def build_structure(
    graph: KnowledgeGraph,
    project_name: str,
    project_root: str,
    file_paths: list[str],
) -> StructureResult:
    """Insert the Project node, every folder on the way to each file, and File nodes."""
    project_id = make_structure_id(NodeKind.PROJECT, project_name)
    graph.add_node(GraphNode(
        id=project_id,
        label=NodeKind.PROJECT,
        properties={"name": project_name, "path": project_root},
    ))
    result = StructureResult(project_id=project_id)

    package_dirs = {
        posixpath.dirname(p) for p in file_paths if posixpath.basename(p) == "__init__.py"
    }

    def folder_id(directory: str) -> str:
        if not directory:
            return project_id
        existing = result.folder_ids.get(directory)
        if existing is not None:
            return existing
        parent_id = folder_id(posixpath.dirname(directory))
        label = NodeKind.PACKAGE if directory in package_dirs else NodeKind.FOLDER
        node_id = make_structure_id(label, directory)
        graph.add_node(GraphNode(
            id=node_id,
            label=label,
            properties={
                "name": posixpath.basename(directory),
                "path": directory,
                "depth": directory.count("/") + 1,
            },
        ))
        graph.add_relationship(GraphRelationship(
            type=RelKind.CONTAINS, source=parent_id, target=node_id,
        ))
        result.folder_ids[directory] = node_id
        return node_id

    for path in file_paths:
        parent_id = folder_id(posixpath.dirname(path))
        file_id = make_structure_id(NodeKind.FILE, path)
        graph.add_node(GraphNode(
            id=file_id,
            label=NodeKind.FILE,
            properties={
                "name": posixpath.basename(path),
                "path": path,
                "extension": posixpath.splitext(path)[1].lower(),
            },
        ))
        graph.add_relationship(GraphRelationship(
            type=RelKind.CONTAINS, source=parent_id, target=file_id,
        ))
        result.file_ids[path] = file_id

    logger.info(
        "Structure pass: %d folders, %d files", len(result.folder_ids), len(result.file_ids)
    )
    return result
