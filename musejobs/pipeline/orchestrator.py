"""Orchestrator: wires resolver, pagination engine, HTML fallback and sink.

Data flow:
  1. Resolve the category against the live taxonomy (no start URLs only)
  2. Build crawl targets (start URLs, resolved value or raw variants)
  3. Run each target's parameter set through the pagination engine
  4. HTML fallback for targets that saved nothing
  5. Summary (logged, recorded by the sink when it supports it)
All targets share one CrawlState, so the item budget and dedupe are global.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import parse_qsl, urlparse

from musejobs.core.config import CrawlConfig, parse_int
from musejobs.core.schemas import CrawlSummary
from musejobs.core.sink import DatasetSink
from musejobs.http.session import Fetcher
from musejobs.pipeline.engine import PaginationEngine
from musejobs.pipeline.html_crawler import HtmlCrawler
from musejobs.pipeline.state import CrawlState
from musejobs.platforms.themuse.adapter import TheMuseAdapter
from musejobs.platforms.themuse.resolver import FilterResolver
from musejobs.platforms.themuse.searcher import (
    UrlKind,
    build_html_search_url,
    build_params,
    category_variants,
    classify_url,
    ensure_core_params,
    extract_api_params,
    html_url_to_api_params,
)

logger = logging.getLogger(__name__)


@dataclass
class CrawlTarget:
    """One unit of work: an API parameter set and/or an HTML listing URL.

    ``params`` is None for HTML start URLs that do not translate to the API.
    ``html_url`` is where the HTML fallback starts for this target.
    """

    label: str
    params: dict[str, str] | None = None
    start_page: int = 1
    html_url: str | None = None
    # HTML start URLs fall back to HTML even when html_fallback is off
    always_fallback: bool = False


def build_targets(config: CrawlConfig, resolved_category: str | None = None) -> list[CrawlTarget]:
    """Ordered crawl targets for a run."""
    if config.start_urls:
        return [_start_url_target(url, config.per_page) for url in config.start_urls]

    if resolved_category is not None:
        values = [resolved_category]
    elif config.category:
        values = category_variants(config.category)
    else:
        values = [""]

    targets: list[CrawlTarget] = []
    for value in values:
        params = build_params(config, category=value or None)
        targets.append(CrawlTarget(
            label=f"category={value}" if value else "filters",
            params=params,
            html_url=build_html_search_url(params),
        ))
    return targets


def _start_url_target(url: str, per_page: int) -> CrawlTarget:
    if classify_url(url) is UrlKind.API:
        params, start_page = extract_api_params(url)
        params = ensure_core_params(params, per_page)
        return CrawlTarget(
            label=url,
            params=params,
            start_page=start_page,
            html_url=build_html_search_url(params),
        )

    translated = html_url_to_api_params(url)
    if translated is None:
        logger.info("Start URL %s has no API equivalent - crawling HTML only", url)
        return CrawlTarget(label=url, html_url=url, always_fallback=True)
    return CrawlTarget(
        label=url,
        params=ensure_core_params(translated, per_page),
        start_page=_html_start_page(url),
        html_url=url,
        always_fallback=True,
    )


def _html_start_page(url: str) -> int:
    for key, value in parse_qsl(urlparse(url).query):
        if key == "page":
            return max(parse_int(value, 1), 1)
    return 1


async def run_crawl(
    config: CrawlConfig,
    fetcher: Fetcher,
    sink: DatasetSink,
    *,
    now: datetime | None = None,
) -> CrawlSummary:
    """Execute one full crawl run and return its summary."""
    state = CrawlState(max_items=config.max_items, dedupe=config.dedupe)
    if config.concurrency > 1:
        logger.debug("concurrency=%d ignored: requests run one at a time", config.concurrency)
    adapter = TheMuseAdapter()

    resolved: str | None = None
    if config.category and not config.start_urls:
        resolver = FilterResolver(
            adapter,
            fetcher,
            per_page=config.per_page,
            retries=config.request_retries,
            on_attempt=state.record_request,
        )
        resolved = await resolver.resolve(config.category)

    targets = build_targets(config, resolved)
    logger.info("Crawling %d target(s)", len(targets))

    engine = PaginationEngine(adapter, fetcher, config, state, sink, now=now)
    html_crawler = HtmlCrawler(fetcher, config, state, sink, now=now)

    for target in targets:
        if state.budget_reached():
            logger.info("Item budget (%d) reached - skipping remaining targets", config.max_items)
            break

        saved = 0
        if target.params is not None:
            logger.info("Target %s", target.label)
            outcome = await engine.run(
                target.params, target.start_page, referer=adapter.referer(target.params),
            )
            saved = outcome.saved

        wants_html = target.params is None or target.always_fallback or config.html_fallback
        if saved == 0 and wants_html and target.html_url and not state.budget_reached():
            logger.info("HTML fallback for %s: %s", target.label, target.html_url)
            await html_crawler.crawl(target.html_url)

    summary = state.summary()
    logger.info(
        "Crawl finished: total_saved=%d total_requests=%d pages_fetched=%d api_errors=%d",
        summary.total_saved, summary.total_requests, summary.pages_fetched, summary.api_errors,
    )
    if summary.total_saved == 0:
        logger.warning("No jobs were saved")

    record_run = getattr(sink, "record_run", None)
    if callable(record_run):
        record_run(summary)
    return summary
