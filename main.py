# main.py

"""Entry point for the catalog_ingest command line."""

import argparse
import asyncio
import logging
import sys

from rich.console import Console

from catalog_ingest.config.logging_config import setup_logging
from catalog_ingest.config.settings import Settings
from catalog_ingest.errors import InvalidArgument

logger = logging.getLogger("catalog_ingest.main")

_err = Console(stderr=True)


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    valid_ids = ", ".join(p["id"] for p in Settings.AVAILABLE_PLATFORMS)

    parser = argparse.ArgumentParser(
        prog="catalog-ingest",
        description="Wholesale marketplace listing ingestion.",
        epilog=f"Platforms: {Settings.ALL_PLATFORMS}, {valid_ids}",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    search = sub.add_parser("search", help="Aggregate search across platforms.")
    search.add_argument("query", help="Search query.")
    search.add_argument(
        "-p", "--platform", default=Settings.ALL_PLATFORMS,
        help="Platform id or ALL (default: ALL).",
    )
    search.add_argument("--min-price", type=float, default=None)
    search.add_argument("--max-price", type=float, default=None)
    search.add_argument("--min-moq", type=float, default=None)
    search.add_argument("--max-moq", type=float, default=None)
    search.add_argument("--offset", type=int, default=0)
    search.add_argument(
        "--limit", type=int, default=Settings.DEFAULT_PAGE_LIMIT,
        help=f"Page size, 1..{Settings.MAX_PAGE_LIMIT}.",
    )
    search.add_argument("--headless", action="store_true", default=False)
    search.add_argument("--nocache", action="store_true", default=False)
    search.add_argument("--debug", action="store_true", default=False)
    search.add_argument(
        "-f", "--format",
        choices=["json", "table"],
        default="json",
        dest="output_format",
        help="Output format (default: json).",
    )

    topoff = sub.add_parser("topoff", help="Fill sparse category leaves.")
    topoff.add_argument("-p", "--platform", default="INDIAMART")
    topoff.add_argument(
        "--min", type=int, default=Settings.MIN_COVERAGE, dest="min_coverage",
        help="Target listings per leaf.",
    )
    topoff.add_argument("--terms-cap", type=int, default=Settings.TERMS_CAP)
    topoff.add_argument("--combos", type=int, choices=[0, 1, 2],
                        default=Settings.TERM_COMBOS)
    topoff.add_argument("--headless", action="store_true", default=False)
    topoff.add_argument("--cache-images", action="store_true", default=False)

    rescrape = sub.add_parser(
        "rescrape", help="Re-scrape listings missing detail.",
    )
    rescrape.add_argument("-p", "--platform", default=None)
    rescrape.add_argument("--rescrape-url", default=None)

    health = sub.add_parser(
        "health", help="Probe each platform's homepage (and search).",
    )
    health.add_argument("-p", "--platform", default=Settings.ALL_PLATFORMS)
    health.add_argument(
        "--search", nargs="?", const=Settings.HEALTH_CANARY_QUERY,
        default=None, dest="canary_query", metavar="QUERY",
        help="Also parse page 1 of a search (default canary query).",
    )
    return parser


def _dispatch(args: argparse.Namespace) -> int:
    from catalog_ingest.cli import runner
    from catalog_ingest.filters.listing_filter import FilterBounds

    if args.command == "search":
        return asyncio.run(runner.cli_search(
            query=args.query,
            platform=args.platform,
            bounds=FilterBounds(
                min_price=args.min_price,
                max_price=args.max_price,
                min_moq=args.min_moq,
                max_moq=args.max_moq,
            ),
            offset=args.offset,
            limit=args.limit,
            headless=args.headless,
            nocache=args.nocache,
            debug=args.debug,
            output_format=args.output_format,
        ))
    if args.command == "topoff":
        return asyncio.run(runner.run_topoff(
            platform=args.platform,
            min_coverage=args.min_coverage,
            terms_cap=args.terms_cap,
            combos=args.combos,
            headless=args.headless,
            cache_images=args.cache_images,
        ))
    if args.command == "rescrape":
        return asyncio.run(runner.run_rescrape(args.platform, args.rescrape_url))
    return asyncio.run(
        runner.run_health_check(args.platform, args.canary_query)
    )


def main(argv: list[str] | None = None) -> None:
    """Parse arguments, run the chosen command and exit with its code."""
    args = _build_parser().parse_args(argv)
    log_file = setup_logging(args.command)
    logger.info("catalog_ingest %s starting, log file: %s", args.command, log_file)

    try:
        exit_code = _dispatch(args)
    except InvalidArgument as exc:
        _err.print(f"[red]Error: {exc}[/red]")
        sys.exit(2)
    except Exception:
        logger.critical("Fatal error during %s", args.command, exc_info=True)
        raise
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
