"""Catalog crawler CLI: entry-point for scraping and parser debugging.

Usage:
    python cli/main.py --help

Commands:
    scrape    → resolve, fetch and parse every course of the given subjects
    parse     → parse a saved course detail page (no network)
    subjects  → show the configured required-subject list
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the project root is on sys.path so that
# `from catalog_crawler.xxx import ...` works when the CLI is invoked as
# `python cli/main.py` from any working directory.
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

import dataclasses
import json
import logging
from typing import List, Optional

import typer

from catalog_crawler.config import settings
from catalog_crawler.scraper import LaunchFailure, parse_course_details, scrape_catalog

app = typer.Typer(
    name="catalog-crawler",
    help="University catalog crawler and course record extractor.",
    no_args_is_help=True,
)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Configure logging for every command."""
    _configure_logging(verbose)


# ---------------------------------------------------------------------------
# Scrape
# ---------------------------------------------------------------------------
@app.command("scrape")
def scrape(
    term: str = typer.Option(..., help="Academic term label, e.g. Fall2025."),
    subject: Optional[List[str]] = typer.Option(
        None,
        "--subject",
        "-s",
        help="Subject code (repeatable). Defaults to the required-subject list.",
    ),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-c", min=1, help="Max in-flight detail requests."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print full results as JSON."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Scrape the catalog and print per-subject results."""
    if verbose:
        _configure_logging(verbose)
    config = settings
    if concurrency is not None:
        config = dataclasses.replace(settings, request_concurrency=concurrency)

    try:
        results = scrape_catalog(term, list(subject) if subject else None, config)
    except LaunchFailure as exc:
        typer.echo(f"[scrape] ✗ {exc}", err=True)
        raise typer.Exit(code=1)

    if as_json:
        typer.echo(json.dumps([r.to_dict() for r in results], indent=2))
        return

    for result in results:
        typer.echo(f"[scrape] {result.subject}: {result.count} courses")
    total = sum(r.count for r in results)
    typer.echo(f"[scrape] Total: {total} courses across {len(results)} subject(s)")


# ---------------------------------------------------------------------------
# Parse
# ---------------------------------------------------------------------------
@app.command("parse")
def parse(
    path: Path = typer.Argument(
        ..., exists=True, dir_okay=False, readable=True, help="Saved detail page HTML."
    ),
    coid: str = typer.Option("", help="coid to attach to the record."),
    url: str = typer.Option("", help="URL to attach to the record."),
) -> None:
    """Parse a saved course detail page and print the record as JSON."""
    html = path.read_text(encoding="utf-8", errors="replace")
    record = dataclasses.replace(parse_course_details(html), coid=coid, url=url)
    typer.echo(json.dumps(record.to_dict(), indent=2))


# ---------------------------------------------------------------------------
# Subjects
# ---------------------------------------------------------------------------
@app.command("subjects")
def subjects() -> None:
    """Show the required-subject list and the request concurrency."""
    typer.echo(f"Required subjects : {', '.join(settings.required_subjects)}")
    typer.echo(f"Concurrency       : {settings.request_concurrency}")
    typer.echo(f"Catalog           : {settings.catalog_base_url}")


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    app()
