"""
grammar.py - Language Grammar Adapter.

Wraps a tree-sitter Language together with its named query table:

    grammar = load_grammar("python")
    tree = grammar.parse(source, path="pkg/mod.py")
    for match in grammar.query("functions", tree.root_node):
        name_node = match["name"][0]

Parsers are not thread safe, so each thread gets its own Parser instance.
Compiled queries go through an optional bounded LRU region supplied by the
ParseCache; a query that fails to compile is remembered and reported as a
QueryError on every use.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

import tree_sitter_java as tsjava
import tree_sitter_javascript as tsjs
import tree_sitter_python as tspython
import tree_sitter_typescript as tsts
from tree_sitter import Language, Node, Parser, Query, QueryCursor, Tree

from kg_ingest.errors import ParseError, QueryError, UnsupportedLanguage
from kg_ingest.language_queries import (
    CLASS_NODE_TYPES, FUNCTION_NODE_TYPES, LANGUAGE_QUERIES,
)

if TYPE_CHECKING:
    from kg_ingest.parse_cache import LRURegion

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Grammar bindings
# ---------------------------------------------------------------------------

GRAMMAR_LOADERS: dict[str, Callable[[], Any]] = {
    "python":     tspython.language,
    "javascript": tsjs.language,
    "typescript": tsts.language_typescript,
    "tsx":        tsts.language_tsx,
    "java":       tsjava.language,
}

Match = dict[str, list[Node]]


class Grammar:
    """One loaded language: parser factory plus named queries."""

    def __init__(self, name: str, language: Language,
                 query_cache: Optional["LRURegion"] = None) -> None:
        self.name = name
        self.language = language
        self.query_sources: dict[str, str] = LANGUAGE_QUERIES.get(name, {})
        self.class_node_types = CLASS_NODE_TYPES.get(name, frozenset())
        self.function_node_types = FUNCTION_NODE_TYPES.get(name, frozenset())
        self._query_cache = query_cache
        self._local_queries: dict[str, Query] = {}
        self._failed_queries: dict[str, str] = {}
        self._local = threading.local()
        self._lock = threading.Lock()

    @property
    def query_names(self) -> list[str]:
        return list(self.query_sources)

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def _parser(self) -> Parser:
        parser = getattr(self._local, "parser", None)
        if parser is None:
            parser = Parser(self.language)
            self._local.parser = parser
        return parser

    def parse(self, content: Union[str, bytes], path: str = "") -> Tree:
        """Parse *content*; trees containing error nodes are still returned.

        Raises ParseError when the parser fails or produces no tree.
        """
        source = content.encode("utf-8") if isinstance(content, str) else content
        try:
            tree = self._parser().parse(source)
        except Exception as exc:
            raise ParseError(path, f"{type(exc).__name__}: {exc}") from exc
        if tree is None or tree.root_node is None:
            raise ParseError(path, "parser returned no tree")
        return tree

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def compiled_query(self, query_name: str) -> Query:
        if query_name not in self.query_sources:
            raise QueryError(self.name, query_name, "unknown query")
        failure = self._failed_queries.get(query_name)
        if failure is not None:
            raise QueryError(self.name, query_name, failure)

        key = (self.name, query_name)
        if self._query_cache is not None:
            cached = self._query_cache.get(key)
            if cached is not None:
                return cached
        else:
            cached = self._local_queries.get(query_name)
            if cached is not None:
                return cached

        with self._lock:
            try:
                query = Query(self.language, self.query_sources[query_name])
            except Exception as exc:
                reason = f"failed to compile: {exc}"
                self._failed_queries[query_name] = reason
                logger.warning("Failed to compile query '%s' for '%s': %s",
                               query_name, self.name, exc)
                raise QueryError(self.name, query_name, reason) from exc
        if self._query_cache is not None:
            self._query_cache.put(key, query)
        else:
            self._local_queries[query_name] = query
        return query

    def query(self, query_name: str, node: Union[Tree, Node]) -> list[Match]:
        """Run a named query; each match maps capture name -> list of nodes."""
        query = self.compiled_query(query_name)
        root = node.root_node if isinstance(node, Tree) else node
        try:
            raw = QueryCursor(query).matches(root)
        except Exception as exc:
            raise QueryError(self.name, query_name, f"execution failed: {exc}") from exc

        matches: list[Match] = []
        for _, captures in raw:
            match: Match = {}
            for capture, value in captures.items():
                match[capture] = value if isinstance(value, list) else [value]
            matches.append(match)
        return matches


def load_grammar(language: str, query_cache: Optional["LRURegion"] = None) -> Grammar:
    """Build the Grammar for *language*; raises UnsupportedLanguage if unknown."""
    loader = GRAMMAR_LOADERS.get(language)
    if loader is None:
        raise UnsupportedLanguage(language)
    try:
        lang = Language(loader())
    except Exception as exc:
        logger.warning("Grammar binding for '%s' failed to load: %s", language, exc)
        raise UnsupportedLanguage(language) from exc
    logger.debug("Loaded grammar '%s'", language)
    return Grammar(language, lang, query_cache=query_cache)


def supported_languages() -> list[str]:
    return sorted(GRAMMAR_LOADERS)


def grammar_availability() -> dict[str, dict[str, Any]]:
    """Try every registered grammar; used by the ``languages`` CLI command."""
    report: dict[str, dict[str, Any]] = {}
    for name in supported_languages():
        try:
            grammar = load_grammar(name)
        except UnsupportedLanguage as exc:
            report[name] = {"available": False, "queries": 0, "failed": [], "error": str(exc)}
            continue
        failed = []
        for qname in grammar.query_names:
            try:
                grammar.compiled_query(qname)
            except QueryError:
                failed.append(qname)
        report[name] = {
            "available": True,
            "queries": len(grammar.query_names) - len(failed),
            "failed": failed,
            "error": None,
        }
    return report
