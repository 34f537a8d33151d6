"""
pipeline.py - GraphPipeline: runs the ingestion passes in order.

    Structure -> Parsing -> Import -> Heritage -> Call -> Validate

Usage::

    pipeline = GraphPipeline(IngestionConfig(max_workers=4))
    result = pipeline.run(IngestionInput(file_paths=paths, file_contents=contents))
    result.graph.to_dict()
    result.report.call_resolution_rate

The graph and registry are created fresh for each run; the ParseCache is
injected (or built from the config) and survives across runs, so a second
run over unchanged content is served from the cache.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from kg_ingest import filters
from kg_ingest import metrics
from kg_ingest.builtins import BuiltinFilter
from kg_ingest.calls import CallResolver
from kg_ingest.errors import CancellationToken, IngestionCancelled, IngestionConfigError
from kg_ingest.graph import KnowledgeGraph
from kg_ingest.heritage import HeritageResolver
from kg_ingest.imports import ImportResolver
from kg_ingest.models import DiagnosticReport, IngestionConfig, IngestionInput
from kg_ingest.parse_cache import ParseCache
from kg_ingest.parsing import ParsingPass
from kg_ingest.registry import DefinitionRegistry
from kg_ingest.structure import build_structure, split_files_and_directories
from kg_ingest.validator import validate_graph

logger = logging.getLogger(__name__)


@dataclass
class IngestionResult:
    """Frozen graph plus the diagnostic report for one run."""
    graph: KnowledgeGraph
    report: DiagnosticReport

    def to_dict(self) -> dict[str, Any]:
        return {"graph": self.graph.to_dict(), "report": self.report.model_dump()}


class GraphPipeline:
    """Multi-pass ingestion engine."""

    def __init__(self, config: Optional[IngestionConfig] = None,
                 cache: Optional[ParseCache] = None) -> None:
        self.config = config or IngestionConfig()
        self.cache = cache if cache is not None else ParseCache.from_config(self.config)

    @staticmethod
    def _checkpoint(token: Optional[CancellationToken], stage: str) -> None:
        if token is not None:
            token.raise_if_cancelled(stage)

    @metrics.track_latency(metrics.INGEST_LATENCY)
    def run(self, ingestion_input: IngestionInput,
            cancel_token: Optional[CancellationToken] = None) -> IngestionResult:
        """Build the knowledge graph for *ingestion_input*.

        Raises:
            IngestionConfigError: nothing to ingest, or the explicit
                directory / extension filters exclude every file.
            IngestionCancelled: *cancel_token* was triggered; the partial
                graph is discarded.
            CacheCorruption: a cache entry does not match its key.
        """
        started = time.perf_counter()
        if not ingestion_input.file_paths:
            raise IngestionConfigError("No file paths to ingest")

        files, _directories = split_files_and_directories(ingestion_input.file_paths)
        contents = ingestion_input.file_contents
        file_filter = filters.FileFilter(self.config, ingestion_input.options)

        excluded: dict[str, str] = {}
        for path in files:
            reason = file_filter.exclusion_reason(path, contents.get(path))
            if reason is not None:
                excluded[path] = reason
        if file_filter.has_explicit_filters and all(
            excluded.get(p) in (filters.DIRECTORY_FILTER, filters.EXTENSION_FILTER) for p in files
        ):
            raise IngestionConfigError(
                f"Directory / extension filters left no files out of {len(files)}"
            )
        visible = [p for p in files if excluded.get(p) in (None, filters.EMPTY)]

        graph = KnowledgeGraph()
        registry = DefinitionRegistry()
        logger.info("Ingesting %d files (%d visible) for project '%s'",
                    len(files), len(visible), ingestion_input.project_name)

        try:
            self._checkpoint(cancel_token, "structure")
            with metrics.PASS_LATENCY.labels(stage="structure").time():
                structure = build_structure(
                    graph, ingestion_input.project_name, ingestion_input.project_root, visible,
                )
                for path in visible:
                    registry.register_file(path)

            self._checkpoint(cancel_token, "parsing")
            with metrics.PASS_LATENCY.labels(stage="parsing").time():
                parsing = ParsingPass(self.config, self.cache, graph, registry, file_filter).run(
                    files, contents, excluded, structure.file_ids, cancel_token,
                )

            self._checkpoint(cancel_token, "imports")
            with metrics.PASS_LATENCY.labels(stage="imports").time():
                imports = ImportResolver(graph, registry, structure.file_ids).run(parsing.parsed_files)

            self._checkpoint(cancel_token, "heritage")
            with metrics.PASS_LATENCY.labels(stage="heritage").time():
                heritage = HeritageResolver(graph, registry, imports.import_map).run(parsing.parsed_files)

            self._checkpoint(cancel_token, "calls")
            with metrics.PASS_LATENCY.labels(stage="calls").time():
                calls = CallResolver(
                    graph, registry, imports.import_map, structure.file_ids,
                    BuiltinFilter(self.config.extra_builtins),
                    self.config.max_reexport_depth,
                ).run(parsing.parsed_files)

            self._checkpoint(cancel_token, "validation")
            with metrics.PASS_LATENCY.labels(stage="validation").time():
                integrity = validate_graph(graph)
        except IngestionCancelled:
            logger.info("Ingestion of '%s' cancelled; discarding partial graph",
                        ingestion_input.project_name)
            raise

        graph.freeze()
        metrics.GRAPH_NODES_TOTAL.set(graph.node_count())
        metrics.GRAPH_EDGES_TOTAL.set(graph.relationship_count())

        report = DiagnosticReport(
            files_processed=parsing.files_processed,
            files_failed=parsing.files_failed,
            files_skipped=parsing.files_skipped,
            skipped_by_reason=dict(parsing.skipped_by_reason),
            definitions_by_type=dict(parsing.definitions_by_type),
            duplicate_definitions=parsing.duplicate_definitions,
            imports_total=imports.total,
            imports_resolved=imports.resolved,
            import_resolution_rate=imports.resolution_rate,
            unresolved_imports=imports.unresolved,
            call_resolution_rate=calls.resolution_rate,
            call_stats=dict(calls.stats),
            unresolved_calls=calls.unresolved,
            heritage_resolved=heritage.resolved,
            heritage_unresolved=heritage.unresolved,
            parse_failures=parsing.parse_failures,
            query_failures=parsing.query_failures,
            integrity_violations=integrity.violations,
            unflagged_files=integrity.unflagged_files,
            isolated_node_counts=integrity.isolated_node_counts,
            node_counts=graph.counts_by_label(),
            relationship_counts=graph.counts_by_type(),
            cache_stats=self.cache.stats(),
            elapsed_seconds=time.perf_counter() - started,
        )
        logger.info(
            "Ingestion finished: %d nodes, %d relationships in %.2fs",
            graph.node_count(), graph.relationship_count(), report.elapsed_seconds,
        )
        return IngestionResult(graph=graph, report=report)
