# catalog_ingest/cli/runner.py

"""Headless CLI commands built on the async services."""

import json
import logging
import sys

from rich.console import Console
from rich.table import Table

from catalog_ingest.config.settings import Settings
from catalog_ingest.errors import InvalidArgument
from catalog_ingest.filters.listing_filter import FilterBounds
from catalog_ingest.models.job import RunSummary
from catalog_ingest.models.listing import NormalizedListing, listing_to_dict
from catalog_ingest.services.aggregate_service import (
    AggregateQuery,
    AggregateService,
)
from catalog_ingest.services.batch_runner import (
    BatchRunner,
    MissingDetailWorkSource,
    RescrapeDispatcher,
)
from catalog_ingest.services.fetch_orchestrator import FetchOrchestrator
from catalog_ingest.services.rescrape_client import RescrapeClient
from catalog_ingest.services.topoff import CoverageWorkSource, TopoffDispatcher
from catalog_ingest.storage.image_cache import LocalImageCache
from catalog_ingest.storage.listing_db import SqliteListingStore
from catalog_ingest.storage.progress_store import JsonProgressStore
from catalog_ingest.storage.result_cache import ResultCache
from catalog_ingest.storage.taxonomy import JsonTaxonomy

logger = logging.getLogger("catalog_ingest.cli")

# Stderr console for status messages so stdout stays clean for JSON
_err = Console(stderr=True)

_HEALTH_BADGES = {
    "ok": "[green]✅ OK[/green]",
    "slow": "[yellow]⚠️  SLOW[/yellow]",
    "degraded": "[yellow]⚠️  DEGRADED[/yellow]",
    "blocked": "[red]⛔ BLOCKED[/red]",
    "down": "[red]❌ DOWN[/red]",
}


def _print_table(listings: list[NormalizedListing], total: int) -> None:
    """Render a Rich table of listings to stdout."""
    table = Table(
        title=f"Listings ({len(listings)} of {total})",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("#", style="dim", width=4)
    table.add_column("Title", max_width=60)
    table.add_column("Price", justify="right", style="green")
    table.add_column("MOQ", justify="right")
    table.add_column("Platform", style="magenta")
    table.add_column("URL", overflow="fold", style="dim")

    for idx, x in enumerate(listings, 1):
        table.add_row(
            str(idx),
            x.title[:60],
            x.price_text or "N/A",
            str(x.parsed_moq) if x.parsed_moq is not None else "?",
            x.platform,
            x.canonical_url or x.url,
        )
    Console().print(table)


async def cli_search(
    query: str,
    platform: str,
    bounds: FilterBounds,
    offset: int,
    limit: int,
    headless: bool,
    nocache: bool,
    debug: bool,
    output_format: str,
) -> int:
    """Run one aggregate query and print the page (0=ok, 1=empty)."""
    store = SqliteListingStore()
    service = AggregateService(FetchOrchestrator(), ResultCache(), store)
    _err.print(
        f"[bold]Searching:[/bold] {query}  [dim]platform={platform.upper()}[/dim]"
    )
    try:
        result = await service.query(AggregateQuery(
            query=query,
            platform=platform,
            offset=offset,
            limit=limit,
            bounds=bounds,
            headless=headless,
            nocache=nocache,
            debug=debug,
        ))
    finally:
        store.close()

    if result.meta:
        for pid, message in result.meta.get("errors", {}).items():
            _err.print(f"[red]{pid}: {message}[/red]")

    if not result.items:
        _err.print("[yellow]No listings found.[/yellow]")
        if output_format == "json":
            json.dump({"items": [], "total": result.total}, sys.stdout)
            sys.stdout.write("\n")
        return 1

    _err.print(f"[green]✓ {len(result.items)} listings of {result.total}[/green]")
    if output_format == "table":
        _print_table(result.items, result.total)
    else:
        body: dict[str, object] = {
            "items": [listing_to_dict(x) for x in result.items],
            "total": result.total,
        }
        if result.meta is not None:
            body["meta"] = result.meta
        json.dump(body, sys.stdout, ensure_ascii=False, indent=2)
        sys.stdout.write("\n")
    return 0


def _print_summary(title: str, summary: RunSummary) -> None:
    p = summary.progress
    table = Table(title=title, title_style="bold cyan")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Processed", f"{p.offset}/{summary.total}")
    table.add_row("[green]Good[/green]", str(p.succeeded))
    table.add_row("[yellow]Partial[/yellow]", str(p.partial))
    table.add_row("[red]Bad[/red]", str(p.failed))
    table.add_row("Block cooldowns", str(summary.cooldowns))
    table.add_row("Rate-limit backoffs", str(summary.rate_limit_backoffs))
    Console().print(table)
    if not summary.completed:
        _err.print(
            "[yellow]Stopped early; progress saved, rerun to resume.[/yellow]"
        )


async def run_topoff(
    platform: str,
    min_coverage: int,
    terms_cap: int,
    combos: int,
    headless: bool,
    cache_images: bool,
) -> int:
    """Fill category leaves below ``min_coverage`` listings."""
    orchestrator = FetchOrchestrator()
    platforms = orchestrator.resolve(platform)
    store = SqliteListingStore()
    progress_path = Settings.PROGRESS_PATH.with_name(
        f"topoff-{platform.lower()}-progress.json"
    )
    runner = BatchRunner(
        work_source=CoverageWorkSource(
            JsonTaxonomy(), store, platforms, min_coverage
        ),
        dispatcher=TopoffDispatcher(
            orchestrator,
            store,
            platform,
            image_cache=LocalImageCache() if cache_images else None,
            min_coverage=min_coverage,
            headless=headless,
            terms_cap=terms_cap,
            combos=combos,
        ),
        progress_store=JsonProgressStore(progress_path),
    )
    _err.print(
        f"[bold]Top-off:[/bold] platform={platform.upper()} min={min_coverage}"
    )
    try:
        summary = await runner.run()
    finally:
        store.close()
    _print_summary("Top-off Summary", summary)
    return 0 if summary.completed else 1


async def run_rescrape(platform: str | None, rescrape_url: str | None) -> int:
    """Trigger detail rescrapes for listings that lack detail."""
    store = SqliteListingStore()
    runner = BatchRunner(
        work_source=MissingDetailWorkSource(
            store, platform.upper() if platform else None
        ),
        dispatcher=RescrapeDispatcher(RescrapeClient(rescrape_url)),
        progress_store=JsonProgressStore(),
    )
    _err.print(
        f"[bold]Rescrape:[/bold] endpoint={rescrape_url or Settings.RESCRAPE_URL}"
    )
    try:
        summary = await runner.run()
    finally:
        store.close()
    _print_summary("Rescrape Summary", summary)
    return 0 if summary.completed else 1


def _select_platforms(platform: str) -> list[dict[str, str]]:
    selector = (platform or Settings.ALL_PLATFORMS).upper()
    if selector == Settings.ALL_PLATFORMS:
        return list(Settings.AVAILABLE_PLATFORMS)
    chosen = [p for p in Settings.AVAILABLE_PLATFORMS if p["id"] == selector]
    if not chosen:
        raise InvalidArgument(f"Unsupported platform '{platform}'")
    return chosen


async def run_health_check(
    platform: str = Settings.ALL_PLATFORMS,
    canary_query: str | None = None,
) -> int:
    """Check platform reachability, and search when ``canary_query`` is set.

    Returns 1 when any platform is down or blocking, else 0.
    """
    from catalog_ingest.services.health_checker import HealthChecker

    checker = HealthChecker(_select_platforms(platform), canary_query)
    _err.print("[bold]Running provider health check...[/bold]")
    results = await checker.check_all()

    table = Table(
        title="Provider Health Check",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("Platform", style="bold")
    table.add_column("Status", justify="center")
    table.add_column("Latency", justify="right")
    if canary_query:
        table.add_column("Listings", justify="right")
    table.add_column("Notes", style="dim")

    for r in results:
        status = _HEALTH_BADGES.get(r.status, r.status)
        latency = f"{r.latency_ms:.0f}ms" if r.latency_ms > 0 else "-"
        cells = [r.platform, status, latency]
        if canary_query:
            cells.append("-" if r.listings is None else str(r.listings))
        table.add_row(*cells, r.message)

    Console().print(table)
    return HealthChecker.exit_code(results)
