"""HTML fallback crawl: listing pages -> JSON-LD postings and job links.

Per page, in order:
  (a) JSON-LD job objects, formatted directly
  (b) job-path anchors while the item budget remains; with collect_details
      each link is fetched and its JSON-LD used, else a minimal record
Then the next page is located (rel=next, "next" control, page+1).
"""

import logging
from datetime import datetime

from bs4 import BeautifulSoup

from musejobs.core.config import CrawlConfig
from musejobs.core.schemas import CanonicalJobRecord
from musejobs.core.sink import DatasetSink
from musejobs.http.retry import RetriesExhausted, fetch_with_retry
from musejobs.http.session import Fetcher
from musejobs.pipeline.politeness import BackoffKind, polite_sleep
from musejobs.pipeline.state import CrawlState
from musejobs.platforms.themuse.formatter import format_anchor_job, format_jsonld_job
from musejobs.platforms.themuse.html_parser import (
    JobLink,
    canonical_url,
    extract_job_links,
    extract_jsonld_jobs,
    find_next_page,
    page_title,
    parse_document,
)

logger = logging.getLogger(__name__)


class HtmlCrawler:
    """Crawls HTML listing pages for one run; the visited set spans all start URLs."""

    def __init__(
        self,
        fetcher: Fetcher,
        config: CrawlConfig,
        state: CrawlState,
        sink: DatasetSink,
        *,
        now: datetime | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._config = config
        self._state = state
        self._sink = sink
        self._now = now
        self.visited: set[str] = set()

    async def crawl(self, start_url: str) -> int:
        """Crawl listing pages from ``start_url``. Returns records saved."""
        saved = 0
        pages = 0
        url: str | None = canonical_url(start_url)

        while url and not self._state.budget_reached():
            if url in self.visited:
                logger.debug("Already crawled %s", url)
                break
            if self._config.max_pages > 0 and pages >= self._config.max_pages:
                logger.info("HTML page budget (%d) reached", self._config.max_pages)
                break
            self.visited.add(url)

            html = await self._fetch_html(url, retries=self._config.request_retries)
            if html is None:
                break
            pages += 1
            self._state.pages_fetched += 1

            soup = parse_document(html)
            page_saved, found = await self._process_page(soup, url)
            saved += page_saved
            logger.info("HTML page %s: %d candidates, %d saved", url, found, page_saved)

            if self._state.budget_reached():
                break
            url = find_next_page(soup, url, allow_increment=found > 0)
            if url:
                await polite_sleep(self._config.min_delay_ms, self._config.max_delay_ms)

        return saved

    async def _process_page(self, soup: BeautifulSoup, page_url: str) -> tuple[int, int]:
        """Run both extraction passes. Returns (saved, candidates found)."""
        saved = 0
        postings = extract_jsonld_jobs(soup)
        for obj in postings:
            if self._state.budget_reached():
                return saved, len(postings)
            record = format_jsonld_job(obj, page_url)
            if not self._config.date_filter.accepts(record.publication_date, self._now):
                continue
            if self._state.save(record, self._sink):
                saved += 1

        links = extract_job_links(soup, page_url)
        for link in links:
            if self._state.budget_reached():
                break
            if self._state.is_seen(f"url:{link.url}"):
                continue
            record = await self._link_record(link)
            if record is None:
                continue
            if self._state.save(record, self._sink):
                saved += 1
        return saved, len(postings) + len(links)

    async def _link_record(self, link: JobLink) -> CanonicalJobRecord | None:
        """Record for a job link; None if its posting fails the date filter."""
        if not self._config.collect_details:
            return format_anchor_job(link.title, link.url)

        html = await self._fetch_html(
            link.url, retries=self._config.detail_retries, network_kind=BackoffKind.DETAIL_NETWORK,
        )
        if html is None:
            return format_anchor_job(link.title, link.url)

        soup = parse_document(html)
        postings = extract_jsonld_jobs(soup)
        if postings:
            # identity stays the link URL so dedupe matches the pre-fetch check
            record = format_jsonld_job(postings[0], link.url).model_copy(update={"url": link.url})
            if not self._config.date_filter.accepts(record.publication_date, self._now):
                return None
            return record
        return format_anchor_job(page_title(soup) or link.title, link.url)

    async def _fetch_html(
        self,
        url: str,
        *,
        retries: int,
        network_kind: BackoffKind = BackoffKind.NETWORK,
    ) -> str | None:
        try:
            result = await fetch_with_retry(
                self._fetcher,
                url,
                retries=retries,
                network_kind=network_kind,
                on_attempt=self._state.record_request,
            )
        except RetriesExhausted as e:
            self._state.api_errors += 1
            logger.error("Giving up on %s: %s", url, e)
            return None
        if result.status_code != 200 or not isinstance(result.body, str):
            logger.info("HTTP %d for %s - no HTML to extract", result.status_code, url)
            return None
        return result.body
