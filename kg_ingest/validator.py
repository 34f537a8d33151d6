"""
validator.py - Graph integrity validation.

A single pass over nodes and relationships that reports, without raising:

- relationships whose source or target node does not exist
- File nodes with content that have no DEFINES edge and are not flagged
  ``noDefinitions``
- counts of isolated nodes (no incident relationship) per label
"""

from __future__ import annotations

import logging
from collections import Counter

from kg_ingest.graph import KnowledgeGraph
from kg_ingest.models import IntegrityReport, IntegrityViolation, NodeKind, RelKind

logger = logging.getLogger(__name__)


def validate_graph(graph: KnowledgeGraph) -> IntegrityReport:
    nodes = {n.id: n for n in graph.nodes}
    relationships = graph.relationships
    report = IntegrityReport(node_count=len(nodes), relationship_count=len(relationships))

    connected: set[str] = set()
    defines_sources: set[str] = set()
    for rel in relationships:
        for endpoint, node_id in (("source", rel.source), ("target", rel.target)):
            if node_id in nodes:
                connected.add(node_id)
            else:
                report.violations.append(IntegrityViolation(
                    relationship_id=rel.id,
                    rel_type=rel.type.value,
                    missing_endpoint=endpoint,
                    node_id=node_id,
                ))
        if rel.type == RelKind.DEFINES:
            defines_sources.add(rel.source)

    isolated: Counter = Counter()
    for node_id, node in nodes.items():
        if node_id not in connected:
            isolated[node.label.value] += 1
        if node.label != NodeKind.FILE:
            continue
        props = node.properties
        if props.get("hasContent") and node_id not in defines_sources and not props.get("noDefinitions"):
            report.unflagged_files.append(props.get("path", node_id))
    report.isolated_node_counts = dict(isolated)

    if report.violations:
        logger.warning("Integrity check: %d dangling relationship endpoints", len(report.violations))
    if report.unflagged_files:
        logger.warning("Integrity check: %d files without DEFINES edges or noDefinitions flag",
                       len(report.unflagged_files))
    return report
