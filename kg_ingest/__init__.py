"""
kg_ingest - Multi-pass code ingestion engine that builds a knowledge graph.

Parses Python, JavaScript, TypeScript (incl. TSX) and Java with tree-sitter,
resolves imports, heritage and calls across files, and returns an immutable
graph together with a diagnostic report.
"""

__version__ = "0.1.0"
__author__ = "kg-ingest contributors"
