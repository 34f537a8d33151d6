"""
errors.py - Exception taxonomy for the ingestion engine.

Non-fatal (caught per file / per query and turned into report entries):
    UnsupportedLanguage, ParseError, ParseTimeout, QueryError

Fatal (propagate out of GraphPipeline.run):
    CacheCorruption, IngestionConfigError, IngestionCancelled

GraphFrozenError guards the hand-off contract: once a graph has been
returned to a caller it cannot be mutated. CancellationToken is the
cooperative stop signal checked between passes and between batches.
"""

from __future__ import annotations

import threading
from typing import Optional


class IngestionError(Exception):
    """Base class for every error raised by kg_ingest."""


class UnsupportedLanguage(IngestionError):
    """No grammar is registered for the requested language."""

    def __init__(self, language: str) -> None:
        super().__init__(f"No grammar registered for language '{language}'")
        self.language = language


class ParseError(IngestionError):
    """The parser could not produce a tree for a file."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class ParseTimeout(ParseError):
    """Parsing exceeded the per-file soft timeout."""

    def __init__(self, path: str, timeout: float) -> None:
        super().__init__(path, f"parse exceeded {timeout:.1f}s budget")
        self.timeout = timeout


class QueryError(IngestionError):
    """A named query is missing, failed to compile, or failed to run."""

    def __init__(self, language: str, query_name: str, reason: str) -> None:
        super().__init__(f"{language}/{query_name}: {reason}")
        self.language = language
        self.query_name = query_name
        self.reason = reason


class CacheCorruption(IngestionError):
    """A cache entry does not match the key it was stored under."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Corrupted cache entry for {path}: {reason}")
        self.path = path
        self.reason = reason


class IngestionConfigError(IngestionError):
    """The ingestion request cannot produce a graph (e.g. nothing to ingest)."""


class IngestionCancelled(IngestionError):
    """The run was cancelled; the partial graph has been discarded."""

    def __init__(self, stage: Optional[str] = None) -> None:
        msg = "Ingestion cancelled" + (f" during {stage}" if stage else "")
        super().__init__(msg)
        self.stage = stage


class GraphFrozenError(IngestionError):
    """Mutation attempted on a graph that was already handed off."""


class CancellationToken:
    """Cooperative cancellation flag checked at batch and pass boundaries."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: Optional[str] = None) -> None:
        if self._event.is_set():
            raise IngestionCancelled(stage)
