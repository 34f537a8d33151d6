"""
parsing.py - Parsing pass: filter, parse, extract and write definitions.

For every input file the pass ends in exactly one of three states:

    processed   parsed (or harvested) successfully, possibly zero definitions
    failed      ParseError / ParseTimeout; File node flagged parseError
    skipped     excluded by a filter or demoted to a generic File node

Workers only compute per-file outcomes (parsing through the shared
ParseCache); graph and registry writes happen on the calling thread in input
order, so duplicate detection is deterministic regardless of worker count.
"""

from __future__ import annotations

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Optional

from tree_sitter import Tree

from kg_ingest import filters
from kg_ingest import metrics
from kg_ingest.ast_parser import parse_source
from kg_ingest.config_files import harvest_config_definitions
from kg_ingest.errors import (
    CancellationToken, ParseError, ParseTimeout, UnsupportedLanguage,
)
from kg_ingest.graph import KnowledgeGraph
from kg_ingest.grammar import Grammar
from kg_ingest.models import (
    Definition, DefinitionKind, FileFailure, GraphNode, GraphRelationship,
    IngestionConfig, ParsedFile, QueryFailure, RelKind, TYPE_KINDS,
)
from kg_ingest.parse_cache import ParseCache
from kg_ingest.registry import DefinitionRegistry

logger = logging.getLogger(__name__)

PROCESSED = "processed"
FAILED = "failed"
SKIPPED = "skipped"


@dataclass
class FileOutcome:
    """Result of handling one file, before anything is written to the graph."""
    path: str
    status: str
    reason: Optional[str] = None
    category: str = filters.OTHER
    language: Optional[str] = None
    content_hash: Optional[str] = None
    file_size: int = 0
    parsed: Optional[ParsedFile] = None
    failure: Optional[FileFailure] = None
    cache_hit: bool = False


@dataclass
class ParsingResult:
    parsed_files: dict[str, ParsedFile] = field(default_factory=dict)
    files_processed: int = 0
    files_failed: int = 0
    skipped_by_reason: Counter = field(default_factory=Counter)
    definitions_by_type: Counter = field(default_factory=Counter)
    duplicate_definitions: int = 0
    parse_failures: list[FileFailure] = field(default_factory=list)
    query_failures: list[QueryFailure] = field(default_factory=list)

    @property
    def files_skipped(self) -> int:
        return sum(self.skipped_by_reason.values())


class ParsingPass:
    """Runs the parsing pass for one pipeline run."""

    def __init__(
        self,
        config: IngestionConfig,
        cache: ParseCache,
        graph: KnowledgeGraph,
        registry: DefinitionRegistry,
        file_filter: filters.FileFilter,
    ) -> None:
        self.config = config
        self.cache = cache
        self.graph = graph
        self.registry = registry
        self.file_filter = file_filter

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(
        self,
        files: list[str],
        contents: dict[str, str],
        excluded: dict[str, str],
        file_ids: dict[str, str],
        cancel_token: Optional[CancellationToken] = None,
    ) -> ParsingResult:
        """Process *files* in batches.

        ``excluded`` maps already-filtered paths to their skip reason; those
        files are counted but never parsed. ``file_ids`` maps every file that
        has a File node to its id.
        """
        result = ParsingResult()
        for path in files:
            reason = excluded.get(path)
            if reason is None:
                continue
            result.skipped_by_reason[reason] += 1
            metrics.FILES_TOTAL.labels(status=SKIPPED).inc()
            if path in file_ids:
                self._write_skipped(FileOutcome(path=path, status=SKIPPED, reason=reason),
                                    file_ids[path], contents.get(path))

        pending = [p for p in files if p not in excluded]
        batch_size = self.config.batch_size
        timeout_pool: Optional[ThreadPoolExecutor] = None
        if self.config.parse_timeout_seconds:
            timeout_pool = ThreadPoolExecutor(
                max_workers=self.config.max_workers * 2, thread_name_prefix="kg-parse"
            )
        worker_pool: Optional[ThreadPoolExecutor] = None
        if self.config.max_workers > 1:
            worker_pool = ThreadPoolExecutor(
                max_workers=self.config.max_workers, thread_name_prefix="kg-worker"
            )
        try:
            for start in range(0, len(pending), batch_size):
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled("parsing")
                batch = pending[start:start + batch_size]
                if worker_pool is not None:
                    outcomes = list(worker_pool.map(
                        lambda p: self.process_file(p, contents.get(p, ""), timeout_pool), batch
                    ))
                else:
                    outcomes = [self.process_file(p, contents.get(p, ""), timeout_pool) for p in batch]
                for outcome in outcomes:
                    self._write(outcome, file_ids[outcome.path], contents.get(outcome.path), result)
                self.cache.relieve_memory_pressure()
                logger.debug("Parsed batch %d-%d of %d", start + 1, start + len(batch), len(pending))
        finally:
            if worker_pool is not None:
                worker_pool.shutdown(wait=True)
            if timeout_pool is not None:
                timeout_pool.shutdown(wait=False, cancel_futures=True)

        logger.info(
            "Parsing pass: %d processed, %d failed, %d skipped, %d definitions",
            result.files_processed, result.files_failed, result.files_skipped,
            sum(result.definitions_by_type.values()),
        )
        return result

    # ------------------------------------------------------------------
    # Per-file work (may run on a worker thread)
    # ------------------------------------------------------------------

    def process_file(
        self, path: str, content: str, timeout_pool: Optional[ThreadPoolExecutor] = None,
    ) -> FileOutcome:
        category, language = self.file_filter.classify(path)
        content_hash = ParseCache.hash_content(content)
        outcome = FileOutcome(
            path=path, status=PROCESSED, category=category, language=language,
            content_hash=content_hash, file_size=len(content),
        )

        if category == filters.CONFIG:
            try:
                definitions = harvest_config_definitions(path, content)
            except ParseError as exc:
                return self._failed(outcome, exc)
            outcome.parsed = ParsedFile(
                file_path=path, language="config", content_hash=content_hash,
                file_size=len(content), definitions=tuple(definitions),
            )
            return outcome

        if category != filters.SOURCE or language is None:
            outcome.status, outcome.reason = SKIPPED, filters.NON_SOURCE
            return outcome

        generated = self.file_filter.generated_reason(content)
        if generated is not None:
            logger.debug("Skipping %s (%s)", path, generated)
            outcome.status, outcome.reason = SKIPPED, generated
            return outcome

        try:
            grammar = self.cache.grammar(language)
        except UnsupportedLanguage:
            logger.debug("No grammar for %s (%s)", path, language)
            outcome.status, outcome.reason = SKIPPED, filters.UNSUPPORTED_LANGUAGE
            return outcome

        try:
            parsed, hit = self.cache.get_or_parse(
                path, content_hash,
                lambda: self._parse_with_timeout(grammar, path, content, content_hash, timeout_pool),
            )
        except ParseError as exc:
            return self._failed(outcome, exc)
        outcome.parsed = parsed
        outcome.cache_hit = hit
        return outcome

    def _parse_with_timeout(
        self,
        grammar: Grammar,
        path: str,
        content: str,
        content_hash: str,
        timeout_pool: Optional[ThreadPoolExecutor],
    ) -> tuple[ParsedFile, Tree]:
        timeout = self.config.parse_timeout_seconds
        if timeout_pool is None or not timeout:
            return parse_source(grammar, path, content, content_hash)
        future = timeout_pool.submit(parse_source, grammar, path, content, content_hash)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout as exc:
            future.cancel()
            raise ParseTimeout(path, timeout) from exc

    @staticmethod
    def _failed(outcome: FileOutcome, exc: ParseError) -> FileOutcome:
        logger.warning("Failed to parse %s: %s", outcome.path, exc.reason)
        outcome.status = FAILED
        outcome.failure = FileFailure(path=outcome.path, error=type(exc).__name__, reason=exc.reason)
        return outcome

    # ------------------------------------------------------------------
    # Write path (calling thread only)
    # ------------------------------------------------------------------

    def _write(
        self, outcome: FileOutcome, file_id: str, content: Optional[str], result: ParsingResult,
    ) -> None:
        metrics.FILES_TOTAL.labels(status=outcome.status).inc()
        if outcome.status == SKIPPED:
            result.skipped_by_reason[outcome.reason or filters.NON_SOURCE] += 1
            self._write_skipped(outcome, file_id, content)
            return

        if outcome.status == FAILED:
            result.files_failed += 1
            if outcome.failure is not None:
                result.parse_failures.append(outcome.failure)
            self.graph.update_node_properties(
                file_id,
                category=outcome.category,
                language=outcome.language or "",
                hasContent=True,
                parseError=True,
                parseErrorReason=outcome.failure.reason if outcome.failure else "",
                noDefinitions=True,
                definitionCount=0,
                contentHash=outcome.content_hash,
                fileSize=outcome.file_size,
            )
            return

        parsed = outcome.parsed
        if parsed is None:
            raise ValueError(f"processed outcome for {outcome.path} carries no parse result")
        result.files_processed += 1
        result.parsed_files[outcome.path] = parsed
        for error in parsed.query_errors:
            query_name, _, reason = error.partition(": ")
            result.query_failures.append(QueryFailure(
                path=outcome.path, language=parsed.language, query=query_name, reason=reason,
            ))

        emitted = self._write_definitions(parsed.definitions, file_id, result)
        self.graph.update_node_properties(
            file_id,
            category=outcome.category,
            language=parsed.language,
            definitionCount=emitted,
            noDefinitions=emitted == 0,
            hasContent=True,
            contentHash=parsed.content_hash,
            fileSize=parsed.file_size,
            hasSyntaxErrors=parsed.has_syntax_errors,
        )

    def _write_definitions(
        self, definitions: tuple[Definition, ...], file_id: str, result: ParsingResult,
    ) -> int:
        classes = [d for d in definitions if d.kind in TYPE_KINDS]
        emitted = 0
        for definition in definitions:
            node = GraphNode(
                id=definition.node_id,
                label=definition.label,
                properties=definition.to_node_properties(),
            )
            if not self.graph.add_node(node):
                result.duplicate_definitions += 1
                logger.debug("Duplicate definition %s in %s", definition.name, definition.file_path)
                continue
            emitted += 1
            result.definitions_by_type[definition.kind.value] += 1
            self.graph.add_relationship(GraphRelationship(
                type=RelKind.DEFINES, source=file_id, target=definition.node_id,
            ))
            self.registry.add_definition(definition)
            if definition.kind == DefinitionKind.METHOD and definition.parent_class:
                owner = _owning_class(definition, classes)
                if owner is not None:
                    self.graph.add_relationship(GraphRelationship(
                        type=RelKind.BELONGS_TO, source=definition.node_id, target=owner.node_id,
                    ))
        return emitted

    def _write_skipped(self, outcome: FileOutcome, file_id: str, content: Optional[str]) -> None:
        has_content = bool(content and content.strip())
        props = {
            "skipReason": outcome.reason,
            "hasContent": has_content,
            "noDefinitions": True,
            "definitionCount": 0,
        }
        if outcome.category:
            props["category"] = outcome.category
        if outcome.language:
            props["language"] = outcome.language
        if outcome.content_hash:
            props["contentHash"] = outcome.content_hash
            props["fileSize"] = outcome.file_size
        self.graph.update_node_properties(file_id, **props)


def _owning_class(method: Definition, classes: list[Definition]) -> Optional[Definition]:
    """Innermost same-named class whose span contains the method."""
    best: Optional[Definition] = None
    for cls in classes:
        if cls.name != method.parent_class:
            continue
        if cls.start_byte <= method.start_byte and method.end_byte <= cls.end_byte:
            if best is None or (cls.end_byte - cls.start_byte) < (best.end_byte - best.start_byte):
                best = cls
    return best
