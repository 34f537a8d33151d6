"""
graph.py - In-memory KnowledgeGraph owned by one pipeline run.

The graph is append-only: nodes and relationships are inserted once and
never removed. A second insert with an existing id is a no-op that returns
False, which the parsing pass uses as its duplicate-definition detector.

After ``freeze()`` the graph is handed to the caller and every mutation
raises GraphFrozenError.
"""

from __future__ import annotations

import threading
from collections import Counter
from typing import Any, Optional

from kg_ingest.errors import GraphFrozenError
from kg_ingest.models import (
    GraphNode, GraphRelationship, NODE_PROPERTY_SCHEMA, check_properties,
)


class KnowledgeGraph:
    """Thread-safe container of GraphNode / GraphRelationship records."""

    def __init__(self) -> None:
        self._nodes: dict[str, GraphNode] = {}
        self._relationships: dict[str, GraphRelationship] = {}
        self._lock = threading.Lock()
        self._frozen = False

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_node(self, node: GraphNode) -> bool:
        """Insert *node*; returns False when a node with that id already exists."""
        with self._lock:
            self._check_mutable()
            if node.id in self._nodes:
                return False
            self._nodes[node.id] = node
            return True

    def add_relationship(self, rel: GraphRelationship) -> bool:
        """Insert *rel*; returns False for a repeated (source, type, target)."""
        with self._lock:
            self._check_mutable()
            if rel.id in self._relationships:
                return False
            self._relationships[rel.id] = rel
            return True

    def update_node_properties(self, node_id: str, **props: Any) -> None:
        """Merge *props* into an existing node, checked against its schema."""
        with self._lock:
            self._check_mutable()
            node = self._nodes.get(node_id)
            if node is None:
                raise KeyError(node_id)
            clean = check_properties(
                node.label.value, NODE_PROPERTY_SCHEMA[node.label], props
            )
            node.properties.update(clean)

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_mutable(self) -> None:
        if self._frozen:
            raise GraphFrozenError("KnowledgeGraph is frozen; it can no longer be modified")

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def nodes(self) -> list[GraphNode]:
        return list(self._nodes.values())

    @property
    def relationships(self) -> list[GraphRelationship]:
        return list(self._relationships.values())

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        return self._nodes.get(node_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def get_relationship(self, rel_id: str) -> Optional[GraphRelationship]:
        return self._relationships.get(rel_id)

    def node_count(self) -> int:
        return len(self._nodes)

    def relationship_count(self) -> int:
        return len(self._relationships)

    def counts_by_label(self) -> dict[str, int]:
        return dict(Counter(n.label.value for n in self._nodes.values()))

    def counts_by_type(self) -> dict[str, int]:
        return dict(Counter(r.type.value for r in self._relationships.values()))

    def to_dict(self) -> dict[str, Any]:
        """Plain-data view: ``{"nodes": [...], "relationships": [...]}``."""
        return {
            "nodes": [n.to_dict() for n in self._nodes.values()],
            "relationships": [r.to_dict() for r in self._relationships.values()],
        }
