"""
cli.py - Typer-based CLI for kg_ingest.

Commands:
  ingest    <path>     Build the knowledge graph for a directory tree
  languages            Show which grammars and queries are available
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from kg_ingest.errors import IngestionError
from kg_ingest.grammar import grammar_availability
from kg_ingest.metrics import start_metrics_server
from kg_ingest.models import IngestionConfig, IngestionInput, IngestionOptions
from kg_ingest.output import get_formatter
from kg_ingest.pipeline import GraphPipeline

app = typer.Typer(
    name="kg-ingest",
    help="Multi-pass code ingestion into a knowledge graph.",
    add_completion=False,
)
console = Console(stderr=True)

humanize_option = typer.Option(
    False,
    "--humanize",
    "-H",
    help="Use human-readable output (tables) instead of JSON",
)

# ---------------------------------------------------------------------------
# Configuration helpers
# ---------------------------------------------------------------------------


def _load_config(config_path: Optional[str] = None) -> IngestionConfig:
    """Load engine config from JSON file or return defaults."""
    if config_path and Path(config_path).exists():
        return IngestionConfig.model_validate_json(Path(config_path).read_text())
    # Check for kg_ingest_config.json in CWD
    default = Path("kg_ingest_config.json")
    if default.exists():
        return IngestionConfig.model_validate_json(default.read_text())
    return IngestionConfig()


def _setup_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


def walk_project(root: str, exclude_dirs: list[str]) -> tuple[list[str], dict[str, str]]:
    """Collect every file under *root* with its text content.

    Returns (relative_paths, contents). Excluded directories are pruned
    in place; everything else is left to the pipeline's own filters.
    """
    excluded = {d.lower() for d in exclude_dirs}
    paths: list[str] = []
    contents: dict[str, str] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d.lower() not in excluded)
        for fname in sorted(filenames):
            full = os.path.join(dirpath, fname)
            rel = os.path.relpath(full, root).replace(os.sep, "/")
            try:
                with open(full, "r", encoding="utf-8", errors="replace") as fh:
                    contents[rel] = fh.read()
            except OSError as exc:
                logging.getLogger(__name__).warning("Cannot read %s: %s", full, exc)
                continue
            paths.append(rel)
    return paths, contents


# ---------------------------------------------------------------------------
# ingest command
# ---------------------------------------------------------------------------


@app.command()
def ingest(
    path: str = typer.Argument(..., help="Root directory of the codebase to ingest"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to config JSON"),
    dir_filter: Optional[str] = typer.Option(
        None, "--dir-filter", "-d", help="Comma separated directory substrings to keep"
    ),
    ext: Optional[str] = typer.Option(
        None, "--ext", "-e", help="Comma separated file extensions to keep (e.g. .py,.ts)"
    ),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Parallel parse workers"),
    graph: bool = typer.Option(False, "--graph", "-g", help="Include the full graph in the output"),
    output: Optional[str] = typer.Option(
        None, "--output", "-o", help="Write the graph JSON to this file"
    ),
    metrics_port: Optional[int] = typer.Option(
        None, "--metrics-port", help="Expose Prometheus metrics on this port"
    ),
    humanize: bool = humanize_option,
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Ingest the source tree at PATH and print the diagnostic report."""
    _setup_logging(verbose)

    cfg = _load_config(config)
    if workers is not None:
        cfg = cfg.model_copy(update={"max_workers": max(1, workers)})
    root = os.path.abspath(path)
    if not os.path.isdir(root):
        console.print(f"[red]Not a directory: {root}[/red]")
        raise typer.Exit(1)
    if metrics_port is not None:
        start_metrics_server(metrics_port)

    console.rule(f"[bold blue]kg-ingest[/bold blue]: {root}")
    with console.status("Reading files..."):
        paths, contents = walk_project(root, cfg.ignore_patterns)
    console.print(f"Found [bold]{len(paths)}[/bold] files.")

    ingestion_input = IngestionInput(
        file_paths=paths,
        file_contents=contents,
        options=IngestionOptions(directory_filter=dir_filter, file_extensions=ext),
        project_name=os.path.basename(root) or root,
        project_root=root,
    )
    try:
        with console.status("Building knowledge graph..."):
            result = GraphPipeline(cfg).run(ingestion_input)
    except IngestionError as exc:
        console.print(f"[red]{type(exc).__name__}: {exc}[/red]")
        raise typer.Exit(1)

    if output:
        Path(output).write_text(json.dumps(result.graph.to_dict(), indent=2, default=str))
        console.print(f"Graph written to [bold]{output}[/bold]")
    get_formatter(humanize).format_result(result, include_graph=graph)
    console.rule("[bold green]Done[/bold green]")


# ---------------------------------------------------------------------------
# languages command
# ---------------------------------------------------------------------------


@app.command()
def languages(
    humanize: bool = humanize_option,
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Show grammar availability and query compilation status per language."""
    _setup_logging(verbose)
    get_formatter(humanize).format_languages(grammar_availability())


if __name__ == "__main__":
    app()
