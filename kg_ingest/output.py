"""
output.py - Output formatters for CLI.

Abstraction layer for formatting CLI output. Supports:
- JSON (machine-friendly, default)
- Human-readable (Rich tables, with --humanize flag)
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any

from rich.console import Console
from rich.table import Table

from kg_ingest.pipeline import IngestionResult


console = Console()


class OutputFormatter(ABC):
    """Abstract base class for output formatters."""

    @abstractmethod
    def format_result(self, result: IngestionResult, include_graph: bool = False) -> None:
        """Format the diagnostic report of one ingestion run."""
        pass

    @abstractmethod
    def format_languages(self, availability: dict[str, dict[str, Any]]) -> None:
        """Format grammar availability."""
        pass


class JSONFormatter(OutputFormatter):
    """Machine-friendly JSON output (default)."""

    def format_result(self, result: IngestionResult, include_graph: bool = False) -> None:
        output: dict[str, Any] = {"report": result.report.model_dump()}
        if include_graph:
            output["graph"] = result.graph.to_dict()
        print(json.dumps(output, indent=2, default=str))

    def format_languages(self, availability: dict[str, dict[str, Any]]) -> None:
        print(json.dumps(availability, indent=2))


class HumanFormatter(OutputFormatter):
    """Human-readable output using Rich (table format)."""

    COLOR_MAP = {
        "BuiltinIgnored": "dim",
        "ImportResolved": "green",
        "LocalResolved": "cyan",
        "Unresolved": "yellow",
    }

    def _colorize(self, key: str) -> str:
        color = self.COLOR_MAP.get(key)
        if not color:
            return key
        return f"[{color}]{key}[/{color}]"

    @staticmethod
    def _counts_table(title: str, counts: dict[str, int], header: str = "Kind") -> Table:
        table = Table(header, "Count", title=title)
        for key, value in sorted(counts.items()):
            table.add_row(key, str(value))
        return table

    def format_result(self, result: IngestionResult, include_graph: bool = False) -> None:
        report = result.report
        console.print(
            f"[bold]Files[/bold]  processed {report.files_processed}  "
            f"failed {report.files_failed}  skipped {report.files_skipped}  "
            f"({report.elapsed_seconds:.2f}s)"
        )
        console.print(self._counts_table("Nodes", report.node_counts, "Label"))
        console.print(self._counts_table("Relationships", report.relationship_counts, "Type"))
        if report.skipped_by_reason:
            console.print(self._counts_table("Skipped files", report.skipped_by_reason, "Reason"))

        calls = Table("Classification", "Count", title="Call sites")
        for key, value in report.call_stats.items():
            calls.add_row(self._colorize(key), str(value))
        console.print(calls)
        console.print(
            f"Import resolution: {report.imports_resolved}/{report.imports_total} "
            f"({report.import_resolution_rate:.1%})   "
            f"Call resolution: {report.call_resolution_rate:.1%}"
        )

        if report.parse_failures:
            failures = Table("File", "Error", "Reason", title="Parse failures")
            for f in report.parse_failures:
                failures.add_row(f.path, f.error, f.reason)
            console.print(failures)
        if report.unresolved_imports:
            unresolved = Table("File", "Line", "Module", title="Unresolved imports")
            for u in report.unresolved_imports:
                unresolved.add_row(u.file_path, str(u.line), u.module)
            console.print(unresolved)
        if report.integrity_violations or report.unflagged_files:
            console.print(
                f"[red]Integrity: {len(report.integrity_violations)} dangling endpoints, "
                f"{len(report.unflagged_files)} unflagged files[/red]"
            )
        else:
            console.print("[green]Integrity check passed.[/green]")
        if include_graph:
            console.print_json(json.dumps(result.graph.to_dict(), default=str))

    def format_languages(self, availability: dict[str, dict[str, Any]]) -> None:
        table = Table("Language", "Available", "Queries", "Failed", title="Grammars")
        for name, info in sorted(availability.items()):
            table.add_row(
                name,
                "[green]yes[/green]" if info["available"] else f"[red]no[/red] {info.get('error') or ''}",
                str(info["queries"]),
                ", ".join(info["failed"]),
            )
        console.print(table)


def get_formatter(humanize: bool = False) -> OutputFormatter:
    """Get the appropriate formatter based on flags."""
    if humanize:
        return HumanFormatter()
    return JSONFormatter()
