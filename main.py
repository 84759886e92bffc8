"""CLI entry point for the TheMuse job crawler."""

import argparse
import asyncio
import json
import logging
import os
import re
import sys
from typing import Any

from musejobs.core.config import CONFIG_FIELDS, ConfigError, CrawlConfig, load_input_file, resolve_config
from musejobs.core.schemas import CrawlSummary
from musejobs.core.sink import open_sink
from musejobs.http.session import HttpSession, redact_url
from musejobs.pipeline.orchestrator import run_crawl

INPUT_ENV = "MUSEJOBS_INPUT"

_FIELD_HELP: dict[str, str] = {
    "query": "Keyword search (API 'q')",
    "category": "Job category, e.g. 'Software Engineering' (default when no other filter)",
    "location": "Location filter, e.g. 'New York, NY'",
    "company": "Company filter",
    "level": "Experience level filter, e.g. 'Senior Level'",
    "datePosted": "Only jobs posted within a range: 'week', '3d', 14, or an ISO date",
    "maxItems": "Maximum records to save, 0 = unlimited (default: 200)",
    "maxPages": "Maximum pages per parameter set, 0 = unlimited (default: 0)",
    "perPage": "API page size, 1-50 (default: 20)",
    "collectDetails": "Fetch each job's detail record",
    "dedupe": "Drop jobs already saved this run (default: true)",
    "htmlFallback": "Crawl HTML search pages when the API yields nothing",
    "startUrls": "API or search URLs: one URL, comma-separated, or a JSON array",
    "cookies": "Raw Cookie header",
    "cookiesJson": "Cookies as JSON ([{name, value}] or {name: value})",
    "userAgent": "User-Agent header (default: rotated built-in list)",
    "proxyConfiguration": "Proxy URL, list of URLs, or {proxyUrls: [...]}",
    "minDelayMs": "Minimum delay between pages in ms (default: 300)",
    "maxDelayMs": "Maximum delay between pages in ms (default: 700)",
    "requestRetries": "Retries for listing requests (default: 3)",
    "detailRetries": "Retries for detail requests (default: 2)",
    "requestTimeoutMs": "Per-request timeout in ms, at least 1000 (default: 30000)",
    "concurrency": "Accepted for compatibility; requests are always sequential (default: 2)",
    "output": "Output path: .jsonl, or .db/.sqlite for SQLite (default: storage/datasets/jobs.jsonl)",
}


def _kebab(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "-", key).lower()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="TheMuse job crawler - API first, HTML fallback, JSONL/SQLite output",
        epilog=(
            "Every option can also be set in the --input file (same camelCase keys) "
            "or through environment variables (e.g. CATEGORY, MAX_ITEMS). "
            "Precedence: environment > flags > input file."
        ),
    )
    parser.add_argument(
        "--input",
        default=os.environ.get(INPUT_ENV),
        help=f"Path to a JSON/YAML input object (default: ${INPUT_ENV})",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the resolved configuration and exit without network calls",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    group = parser.add_argument_group("crawl options")
    for f in CONFIG_FIELDS:
        flags = list(dict.fromkeys([f"--{f.key}", f"--{_kebab(f.key)}"]))
        kwargs: dict[str, Any] = {"dest": f.key, "default": None, "help": _FIELD_HELP.get(f.key)}
        if f.kind == "bool":
            # bare flag means true
            kwargs.update(nargs="?", const="true", metavar="BOOL")
        group.add_argument(*flags, **kwargs)

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def cli_values(args: argparse.Namespace) -> dict[str, Any]:
    """Config-key flags that were actually given."""
    values = {}
    for f in CONFIG_FIELDS:
        value = getattr(args, f.key, None)
        if value is not None:
            values[f.key] = value
    return values


def load_config(args: argparse.Namespace) -> CrawlConfig:
    """Resolve env vars, flags and the input file. Raises ConfigError."""
    input_obj = load_input_file(args.input) if args.input else {}
    return resolve_config(input_obj=input_obj, cli=cli_values(args), env=os.environ)


def redacted_config_json(config: CrawlConfig) -> str:
    """Resolved configuration as indented JSON, cookie and proxy secrets masked."""
    data = config.model_dump(mode="json")
    if data.get("cookie_header"):
        data["cookie_header"] = "***"
    if data.get("proxy"):
        data["proxy"]["proxy_urls"] = [redact_url(u) for u in data["proxy"]["proxy_urls"]]
    return json.dumps(data, indent=2)


async def run(config: CrawlConfig) -> CrawlSummary:
    """Run one crawl with a real HTTP session."""
    sink = open_sink(config.output)
    try:
        async with HttpSession(config) as session:
            return await run_crawl(config, session, sink)
    finally:
        sink.close()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = load_config(args)
    except ConfigError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    if args.dry_run:
        print("[DRY RUN] Resolved configuration:")
        print(redacted_config_json(config))
        return

    summary = asyncio.run(run(config))

    print(f"\nCrawl complete: {summary.total_saved} saved, "
          f"{summary.total_requests} requests, {summary.pages_fetched} pages, "
          f"{summary.api_errors} errors.")
    print(f"  Output: {config.output}")


if __name__ == "__main__":
    main()
