"""
__main__.py - Entry point for `python -m kg_ingest`.

Delegates to the Typer CLI defined in cli.py.
"""

from kg_ingest.cli import app

if __name__ == "__main__":
    app()
