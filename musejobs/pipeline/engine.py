"""Pagination engine: drives one parameter set through the listing API.

State machine per parameter set::

    FETCHING -> PROCESSING -> CONTINUING -> FETCHING ...
                                        \\-> STOPPED

Design rules:
  - One outstanding request at a time; pages and jobs are processed in order.
  - Every continuation decision goes through next_stop_reason().
  - Exhausted listing retries abort this parameter set only, never the run.
  - A failed detail fetch degrades to summary data, never aborts the page.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from musejobs.core.config import CrawlConfig
from musejobs.core.schemas import ListingPage
from musejobs.core.sink import DatasetSink
from musejobs.http.retry import RetriesExhausted, fetch_with_retry
from musejobs.http.session import Fetcher
from musejobs.pipeline.politeness import BackoffKind, polite_sleep
from musejobs.pipeline.state import CrawlState
from musejobs.platforms.base import JobBoardAdapter

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    FETCHING = "fetching"
    PROCESSING = "processing"
    CONTINUING = "continuing"
    STOPPED = "stopped"


class StopReason(str, Enum):
    ITEM_BUDGET = "item_budget"
    PAGE_BUDGET = "page_budget"
    EMPTY = "empty"
    LAST_PAGE = "last_page"
    ABORTED = "aborted"


@dataclass
class ParamSetOutcome:
    """What happened to one parameter set."""

    pages_fetched: int = 0
    saved: int = 0
    stop_reason: StopReason | None = None


def next_stop_reason(
    *,
    budget_reached: bool,
    pages_fetched: int,
    max_pages: int,
    result_count: int,
    page: int,
    page_count: int | None,
) -> StopReason | None:
    """Decide whether pagination stops after a processed page.

    ``max_pages`` 0 means unlimited. ``page_count`` is the API's own
    total-page count, when it reports one.
    """
    if budget_reached:
        return StopReason.ITEM_BUDGET
    if max_pages > 0 and pages_fetched >= max_pages:
        return StopReason.PAGE_BUDGET
    if result_count == 0:
        return StopReason.EMPTY
    if page_count is not None and page >= page_count:
        return StopReason.LAST_PAGE
    return None


class PaginationEngine:
    """Runs parameter sets against one adapter, sharing the run's CrawlState.

    Usage::

        engine = PaginationEngine(adapter, session, config, state, sink)
        outcome = await engine.run({"category": "Data Science"})
    """

    def __init__(
        self,
        adapter: JobBoardAdapter,
        fetcher: Fetcher,
        config: CrawlConfig,
        state: CrawlState,
        sink: DatasetSink,
        *,
        now: datetime | None = None,
    ) -> None:
        self._adapter = adapter
        self._fetcher = fetcher
        self._config = config
        self._state = state
        self._sink = sink
        self._now = now

    async def run(
        self,
        params: dict[str, str],
        start_page: int = 1,
        referer: str | None = None,
    ) -> ParamSetOutcome:
        """Paginate one parameter set until a stop reason applies."""
        outcome = ParamSetOutcome()
        headers = {"Referer": referer} if referer else None
        page_num = max(start_page, 1)
        listing = ListingPage()
        engine_state = EngineState.FETCHING

        if self._state.budget_reached():
            outcome.stop_reason = StopReason.ITEM_BUDGET
            engine_state = EngineState.STOPPED

        while engine_state is not EngineState.STOPPED:
            if engine_state is EngineState.FETCHING:
                try:
                    fetched = await self._fetch_page(params, page_num, headers)
                except RetriesExhausted as e:
                    self._state.api_errors += 1
                    logger.error("Aborting parameter set %s: %s", params, e)
                    outcome.stop_reason = StopReason.ABORTED
                    engine_state = EngineState.STOPPED
                    continue
                outcome.pages_fetched += 1
                self._state.pages_fetched += 1
                if fetched is None:
                    outcome.stop_reason = StopReason.EMPTY
                    engine_state = EngineState.STOPPED
                    continue
                listing = fetched
                engine_state = EngineState.PROCESSING

            elif engine_state is EngineState.PROCESSING:
                saved = await self._process_jobs(listing.results)
                outcome.saved += saved
                logger.info(
                    "Page %d: %d jobs, %d saved (total %d)",
                    page_num, len(listing.results), saved, self._state.total_saved,
                )
                engine_state = EngineState.CONTINUING

            elif engine_state is EngineState.CONTINUING:
                reason = next_stop_reason(
                    budget_reached=self._state.budget_reached(),
                    pages_fetched=outcome.pages_fetched,
                    max_pages=self._config.max_pages,
                    result_count=len(listing.results),
                    page=listing.page if listing.page is not None else page_num,
                    page_count=listing.page_count,
                )
                if reason is not None:
                    outcome.stop_reason = reason
                    engine_state = EngineState.STOPPED
                    continue
                await polite_sleep(self._config.min_delay_ms, self._config.max_delay_ms)
                page_num += 1
                engine_state = EngineState.FETCHING

        logger.info(
            "Parameter set %s stopped (%s): %d pages, %d saved",
            params, outcome.stop_reason.value if outcome.stop_reason else "-",
            outcome.pages_fetched, outcome.saved,
        )
        return outcome

    async def _fetch_page(
        self, params: dict[str, str], page_num: int, headers: dict[str, str] | None,
    ) -> ListingPage | None:
        """Fetch one listing page; None means "no data here" (stop cleanly).

        Raises RetriesExhausted when 429/5xx/transport failures persist.
        """
        url = self._adapter.listing_url(params, page_num)
        logger.debug("Fetching listing page %d: %s", page_num, url)
        result = await fetch_with_retry(
            self._fetcher,
            url,
            retries=self._config.request_retries,
            network_kind=BackoffKind.NETWORK,
            expect_json=True,
            headers=headers,
            on_attempt=self._state.record_request,
        )
        if result.status_code != 200:
            logger.info("HTTP %d for %s - treating as no results", result.status_code, url)
            return None
        listing = self._adapter.parse_listing(result.body)
        if listing is None:
            logger.warning("Unparseable listing body from %s - treating as no results", url)
        return listing

    async def _process_jobs(self, jobs: list[dict[str, Any]]) -> int:
        saved = 0
        for job in jobs:
            if self._state.budget_reached():
                break
            published = self._adapter.publication_date(job)
            if not self._config.date_filter.accepts(published, self._now):
                logger.debug("Date filter rejected job %s", job.get("id"))
                continue
            identity = self._adapter.job_identity(job)
            if self._state.is_seen(identity):
                logger.debug("Skipping already seen job %s", identity)
                continue
            detail = await self._fetch_detail(job) if self._config.collect_details else None
            record = self._adapter.format_job(job, detail)
            if self._state.save(record, self._sink):
                saved += 1
        return saved

    async def _fetch_detail(self, summary: dict[str, Any]) -> dict[str, Any] | None:
        """Detail record for a job, or None on any failure."""
        url = self._adapter.detail_url(summary)
        if url is None:
            return None
        try:
            result = await fetch_with_retry(
                self._fetcher,
                url,
                retries=self._config.detail_retries,
                network_kind=BackoffKind.DETAIL_NETWORK,
                expect_json=True,
                on_attempt=self._state.record_request,
            )
        except RetriesExhausted as e:
            logger.warning("Detail fetch failed, using summary: %s", e)
            return None
        if result.status_code != 200 or not isinstance(result.body, dict):
            logger.debug("No usable detail for %s (HTTP %d)", url, result.status_code)
            return None
        return result.body
