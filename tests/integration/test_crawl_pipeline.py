"""Integration test: full crawl against a fake TheMuse (no network)."""

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest

from musejobs.core.config import CrawlConfig
from musejobs.core.schemas import JobSource
from musejobs.core.sink import SqliteSink, open_sink
from musejobs.http.session import FetchResult
from musejobs.pipeline.orchestrator import run_crawl
from musejobs.platforms.themuse.searcher import API_BASE_URL
from tests.helpers import FakeFetcher, ListSink, api_job, api_page, query_of, scripted

NOW = datetime(2024, 5, 10, tzinfo=timezone.utc)

# ---------------------------------------------------------------------------
# Fake site
# ---------------------------------------------------------------------------


class FakeMuse:
    """Routes API listing/detail requests and HTML pages.

    ``catalog`` maps an exact category value to its jobs; unfiltered
    listings return every job. Listing pages are ``per_page`` slices.
    """

    def __init__(
        self,
        catalog: dict[str, list[dict[str, object]]],
        html: dict[str, str] | None = None,
        details: dict[str, dict[str, object]] | None = None,
    ) -> None:
        self.catalog = catalog
        self.html = html or {}
        self.details = details or {}

    def __call__(self, url: str) -> FetchResult:
        if url in self.html:
            return FetchResult(200, self.html[url])
        if not url.startswith(API_BASE_URL):
            return FetchResult(404, "not found")
        if url.startswith(API_BASE_URL + "/"):
            job_id = url.rsplit("/", 1)[1]
            if job_id in self.details:
                return FetchResult(200, self.details[job_id])
            return FetchResult(404, {"error": "not found"})

        query = query_of(url)
        if "category" in query:
            jobs = self.catalog.get(query["category"], [])
        else:
            jobs = [job for jobs in self.catalog.values() for job in jobs]
        per_page = int(query.get("per_page", "20"))
        page = int(query["page"])
        page_count = max((len(jobs) + per_page - 1) // per_page, 1)
        chunk = jobs[(page - 1) * per_page: page * per_page]
        return api_page(chunk, page=page, page_count=page_count)


def _config(**kw: object) -> CrawlConfig:
    defaults: dict[str, object] = {"min_delay_ms": 0, "max_delay_ms": 0, "per_page": 2}
    defaults.update(kw)
    return CrawlConfig(**defaults)  # type: ignore[arg-type]


def _engineering_jobs(n: int) -> list[dict[str, object]]:
    return [api_job(i) for i in range(1, n + 1)]


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestCategoryCrawl:
    """Resolver -> engine -> sink, driven from configuration."""

    async def test_resolved_category_crawl(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        site = FakeMuse({"Software Engineering": _engineering_jobs(5)})
        fetcher = FakeFetcher(site)
        sink = ListSink()

        summary = await run_crawl(_config(category="software_engineering"), fetcher, sink, now=NOW)

        assert summary.total_saved == 5
        assert [r.job_id for r in sink.records] == ["1", "2", "3", "4", "5"]
        assert summary.pages_fetched == 3
        assert summary.api_errors == 0
        # resolver probes (3) + listing pages (3)
        assert summary.total_requests == 6
        assert sink.runs == [summary]

    async def test_referer_is_search_page(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        fetcher = FakeFetcher(FakeMuse({"Design": [api_job(1)]}))
        await run_crawl(_config(category="Design"), fetcher, ListSink(), now=NOW)
        listing_headers = [h for u, h in fetcher.calls if "Referer" in h]
        assert listing_headers
        assert listing_headers[0]["Referer"] == "https://www.themuse.com/search/category/Design?page=1"

    async def test_max_items_bounds_output(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        fetcher = FakeFetcher(FakeMuse({"Design": _engineering_jobs(9)}))
        sink = ListSink()
        summary = await run_crawl(_config(category="Design", max_items=4), fetcher, sink, now=NOW)
        assert summary.total_saved == 4
        assert len(sink.records) == 4

    async def test_unresolved_category_tries_every_variant_with_one_budget(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        """Resolver finds nothing, so every raw variant becomes its own parameter set."""
        handler = _late_listing(lambda category: [api_job(f"{category}-{i}") for i in range(3)])
        sink = ListSink()

        summary = await run_crawl(
            _config(category="odd_value", max_items=5), FakeFetcher(handler), sink, now=NOW,
        )

        assert summary.total_saved == 5
        assert len({r.identity for r in sink.records}) == 5
        # first variant saved three, second filled the remaining budget
        assert {r.job_id for r in sink.records} == {
            "odd_value-0", "odd_value-1", "odd_value-2", "odd value-0", "odd value-1",
        }

    async def test_dedupe_across_variant_parameter_sets(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        handler = _late_listing(lambda category: [api_job(1), api_job(2)])
        sink = ListSink()

        summary = await run_crawl(_config(category="x_y"), FakeFetcher(handler), sink, now=NOW)

        assert summary.total_saved == 2
        assert [r.identity for r in sink.records] == ["api:1", "api:2"]


def _late_listing(jobs_for):  # type: ignore[no-untyped-def]
    """Category probes see nothing; later page-1 listings see ``jobs_for(category)``.

    Models an API whose filter matching is too loose for the resolver's
    first probe but still returns data once a parameter set is crawled.
    """
    seen: dict[str, int] = {}

    def _handler(url: str) -> FetchResult:
        query = query_of(url)
        category = query.get("category", "")
        seen[category] = seen.get(category, 0) + 1
        if category and seen[category] > 1 and query["page"] == "1":
            return api_page(jobs_for(category), page=1)
        return api_page([], page=int(query["page"]))

    return _handler


class TestStartUrls:
    async def test_api_start_url(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        site = FakeMuse({"Design": _engineering_jobs(6)})
        url = f"{API_BASE_URL}?category=Design&page=2&per_page=2"
        sink = ListSink()
        summary = await run_crawl(_config(start_urls=[url]), FakeFetcher(site), sink, now=NOW)
        assert [r.job_id for r in sink.records] == ["3", "4", "5", "6"]
        assert summary.total_saved == 4

    async def test_html_start_url_translated_to_api(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        site = FakeMuse({"data science": [api_job(1)]})
        url = "https://www.themuse.com/search/category/data-science"
        fetcher = FakeFetcher(site)
        sink = ListSink()

        await run_crawl(_config(start_urls=[url]), fetcher, sink, now=NOW)

        assert [r.job_id for r in sink.records] == ["1"]
        assert query_of(fetcher.urls[0])["category"] == "data science"
        assert url not in fetcher.urls

    async def test_html_only_start_url(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        page = "https://www.themuse.com/jobs/acme"
        posting = {
            "@type": "JobPosting",
            "title": "Designer",
            "url": "https://www.themuse.com/jobs/acme/designer",
            "hiringOrganization": {"name": "Acme"},
        }
        site = FakeMuse({}, html={page: f'<script type="application/ld+json">{json.dumps(posting)}</script>'})
        sink = ListSink()
        summary = await run_crawl(_config(start_urls=[page]), FakeFetcher(site), sink, now=NOW)
        assert summary.total_saved == 1
        assert sink.records[0].source is JobSource.JSON_LD
        assert sink.records[0].company == "Acme"


class TestHtmlFallback:
    SEARCH = "https://www.themuse.com/search/category/Design?page=1"

    def _site(self) -> FakeMuse:
        return FakeMuse(
            {},
            html={self.SEARCH: '<a href="/jobs/acme/ux">UX Designer</a>'},
        )

    async def test_fallback_when_api_empty(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        sink = ListSink()
        summary = await run_crawl(
            _config(category="Design", html_fallback=True), FakeFetcher(self._site()), sink, now=NOW,
        )
        assert summary.total_saved == 1
        assert sink.records[0].source is JobSource.HTML_ANCHOR
        assert sink.records[0].url == "https://www.themuse.com/jobs/acme/ux"

    async def test_no_fallback_when_disabled(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        sink = ListSink()
        summary = await run_crawl(
            _config(category="Design", html_fallback=False), FakeFetcher(self._site()), sink, now=NOW,
        )
        assert summary.total_saved == 0
        assert sink.records == []


class TestErrorHandling:
    async def test_run_completes_when_api_down(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        def handler(url: str) -> FetchResult:
            raise httpx.ConnectError("down")

        sink = ListSink()
        summary = await run_crawl(
            _config(
                start_urls=[f"{API_BASE_URL}?category=Design"], request_retries=1, html_fallback=False,
            ),
            FakeFetcher(handler),
            sink,
            now=NOW,
        )
        assert summary.total_saved == 0
        assert summary.api_errors == 1
        assert summary.total_requests == 2

    async def test_redirect_loop_still_returns_summary(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        sink = ListSink()
        summary = await run_crawl(
            _config(category="X", request_retries=0),
            FakeFetcher(scripted(httpx.TooManyRedirects("loop"))),
            sink,
            now=NOW,
        )
        # resolver lookups fail quietly, then each variant set ("X", "x") aborts
        assert summary.total_saved == 0
        assert summary.api_errors == 2
        assert sink.runs == [summary]

    async def test_detail_failure_keeps_summary_fields(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        site = FakeMuse({"Design": [api_job(1)]})
        sink = ListSink()
        await run_crawl(
            _config(category="Design", collect_details=True), FakeFetcher(site), sink, now=NOW,
        )
        assert sink.records[0].description_text == "Build things #1"
        assert sink.records[0].title == "Engineer 1"


class TestSinks:
    async def test_sqlite_output(self, no_sleep, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
        site = FakeMuse({"Design": _engineering_jobs(3)})
        sink = open_sink(tmp_path / "jobs.db")
        assert isinstance(sink, SqliteSink)
        try:
            await run_crawl(_config(category="Design"), FakeFetcher(site), sink, now=NOW)
        finally:
            sink.close()
        conn = sqlite3.connect(tmp_path / "jobs.db")
        assert conn.execute("SELECT COUNT(*) FROM jobs").fetchone()[0] == 3
        assert conn.execute("SELECT total_saved FROM crawl_runs").fetchone()[0] == 3
        conn.close()

    async def test_jsonl_output(self, no_sleep, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
        site = FakeMuse({"Design": _engineering_jobs(2)})
        path = tmp_path / "out" / "jobs.jsonl"
        sink = open_sink(path)
        try:
            await run_crawl(_config(category="Design"), FakeFetcher(site), sink, now=NOW)
        finally:
            sink.close()
        rows = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        assert [row["job_id"] for row in rows] == ["1", "2"]
        assert rows[0]["raw"]["id"] == 1


@pytest.mark.parametrize("max_items", [1, 3, 7])
async def test_budget_holds_for_any_page_size(no_sleep, max_items: int) -> None:  # type: ignore[no-untyped-def]
    site = FakeMuse({"Design": _engineering_jobs(10)})
    sink = ListSink()
    await run_crawl(_config(category="Design", max_items=max_items, per_page=3), FakeFetcher(site), sink, now=NOW)
    assert len(sink.records) == max_items
