"""Tests for the HTML fallback crawl loop."""

import json
from datetime import datetime, timezone

import httpx

from musejobs.core.config import CrawlConfig
from musejobs.core.date_filter import DateFilter
from musejobs.core.schemas import JobSource
from musejobs.http.session import FetchResult
from musejobs.pipeline.html_crawler import HtmlCrawler
from musejobs.pipeline.state import CrawlState
from tests.helpers import FakeFetcher, ListSink

BASE = "https://www.themuse.com"
START = f"{BASE}/search/category/Design?page=1"
NOW = datetime(2024, 5, 10, tzinfo=timezone.utc)


def _ld(data: object) -> str:
    return f'<script type="application/ld+json">{json.dumps(data)}</script>'


def _posting(title: str, url: str, date: str = "2024-05-09") -> dict[str, object]:
    return {
        "@type": "JobPosting",
        "title": title,
        "url": url,
        "datePosted": date,
        "hiringOrganization": {"name": "Acme"},
    }


def _site(pages: dict[str, str]):  # type: ignore[no-untyped-def]
    """Serve HTML by exact URL; anything else is a 404."""

    def _handler(url: str) -> FetchResult:
        if url in pages:
            return FetchResult(200, pages[url])
        return FetchResult(404, "not found")

    return _handler


def _crawler(
    fetcher: FakeFetcher, config: CrawlConfig | None = None,
) -> tuple[HtmlCrawler, CrawlState, ListSink]:
    config = config or CrawlConfig(min_delay_ms=0, max_delay_ms=0)
    state = CrawlState(max_items=config.max_items, dedupe=config.dedupe)
    sink = ListSink()
    return HtmlCrawler(fetcher, config, state, sink, now=NOW), state, sink


class TestJsonLdPass:
    async def test_postings_saved(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        html = _ld([_posting("A", "/jobs/acme/a"), _posting("B", "/jobs/acme/b")])
        crawler, state, sink = _crawler(FakeFetcher(_site({START: html})))
        saved = await crawler.crawl(START)
        assert saved == 2
        assert [r.source for r in sink.records] == [JobSource.JSON_LD, JobSource.JSON_LD]
        assert sink.records[0].url == f"{BASE}/jobs/acme/a"

    async def test_date_filter_applied(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        html = _ld([_posting("New", "/jobs/n"), _posting("Old", "/jobs/o", date="2023-01-01")])
        config = CrawlConfig(date_filter=DateFilter.range(7), min_delay_ms=0, max_delay_ms=0)
        crawler, _, sink = _crawler(FakeFetcher(_site({START: html})), config)
        await crawler.crawl(START)
        assert [r.title for r in sink.records] == ["New"]

    async def test_jsonld_and_anchor_for_same_job_deduped(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        html = _ld(_posting("A", "/jobs/acme/a")) + '<a href="/jobs/acme/a">A again</a>'
        crawler, _, sink = _crawler(FakeFetcher(_site({START: html})))
        await crawler.crawl(START)
        assert len(sink.records) == 1


class TestAnchorPass:
    async def test_minimal_records_without_details(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        html = '<a href="/jobs/acme/a">Engineer A</a><a href="/about">About</a>'
        fetcher = FakeFetcher(_site({START: html}))
        crawler, _, sink = _crawler(fetcher)
        await crawler.crawl(START)
        assert [(r.source, r.title, r.url) for r in sink.records] == [
            (JobSource.HTML_ANCHOR, "Engineer A", f"{BASE}/jobs/acme/a"),
        ]
        assert f"{BASE}/jobs/acme/a" not in fetcher.urls

    async def test_detail_jsonld_used_with_collect_details(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        pages = {
            START: '<a href="/jobs/acme/a">A</a>',
            f"{BASE}/jobs/acme/a": _ld(_posting("Full A", "https://elsewhere.example/a")),
        }
        config = CrawlConfig(collect_details=True, min_delay_ms=0, max_delay_ms=0)
        crawler, _, sink = _crawler(FakeFetcher(_site(pages)), config)
        await crawler.crawl(START)
        record = sink.records[0]
        assert record.source is JobSource.JSON_LD
        assert record.title == "Full A"
        assert record.company == "Acme"
        assert record.url == f"{BASE}/jobs/acme/a"

    async def test_detail_without_jsonld_uses_page_title(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        pages = {
            START: '<a href="/jobs/acme/a">short</a>',
            f"{BASE}/jobs/acme/a": "<html><h1>Senior Designer</h1></html>",
        }
        config = CrawlConfig(collect_details=True, min_delay_ms=0, max_delay_ms=0)
        crawler, _, sink = _crawler(FakeFetcher(_site(pages)), config)
        await crawler.crawl(START)
        assert sink.records[0].source is JobSource.HTML_ANCHOR
        assert sink.records[0].title == "Senior Designer"

    async def test_detail_failure_falls_back_to_link(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        def handler(url: str) -> FetchResult:
            if url == START:
                return FetchResult(200, '<a href="/jobs/acme/a">Link Title</a>')
            raise httpx.ConnectError("refused")

        config = CrawlConfig(collect_details=True, detail_retries=1, min_delay_ms=0, max_delay_ms=0)
        crawler, _, sink = _crawler(FakeFetcher(handler), config)
        await crawler.crawl(START)
        assert sink.records[0].title == "Link Title"

    async def test_budget_stops_anchor_pass(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        html = "".join(f'<a href="/jobs/acme/{i}">Job {i}</a>' for i in range(10))
        config = CrawlConfig(max_items=3, min_delay_ms=0, max_delay_ms=0)
        fetcher = FakeFetcher(_site({START: html}))
        crawler, _, sink = _crawler(fetcher, config)
        await crawler.crawl(START)
        assert len(sink.records) == 3
        assert fetcher.urls == [START]


class TestPagination:
    async def test_follows_rel_next_and_stops_on_404(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        page2 = f"{BASE}/search/category/Design?page=2"
        pages = {
            START: '<a href="/jobs/a">A</a><link rel="next" href="/search/category/Design?page=2">',
            page2: '<a href="/jobs/b">B</a>',
        }
        fetcher = FakeFetcher(_site(pages))
        crawler, state, sink = _crawler(fetcher)
        saved = await crawler.crawl(START)
        assert saved == 2
        # page 2 has jobs, so page 3 is tried by increment and 404s
        assert fetcher.urls == [START, page2, f"{BASE}/search/category/Design?page=3"]
        assert state.pages_fetched == 2

    async def test_empty_page_does_not_increment(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        fetcher = FakeFetcher(_site({START: "<p>nothing here</p>"}))
        crawler, _, _ = _crawler(fetcher)
        await crawler.crawl(START)
        assert fetcher.urls == [START]

    async def test_page_budget(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        def handler(url: str) -> FetchResult:
            return FetchResult(200, f'<a href="/jobs/{abs(hash(url))}">J</a>')

        config = CrawlConfig(max_pages=2, min_delay_ms=0, max_delay_ms=0)
        fetcher = FakeFetcher(handler)
        crawler, _, sink = _crawler(fetcher, config)
        await crawler.crawl(START)
        assert len(fetcher.urls) == 2
        assert len(sink.records) == 2

    async def test_visited_pages_not_recrawled(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        fetcher = FakeFetcher(_site({START: "<p>none</p>"}))
        crawler, _, _ = _crawler(fetcher)
        await crawler.crawl(START)
        await crawler.crawl(START + "#again")
        assert fetcher.urls == [START]

    async def test_retries_exhausted_counts_error(self, no_sleep) -> None:  # type: ignore[no-untyped-def]
        config = CrawlConfig(request_retries=1, min_delay_ms=0, max_delay_ms=0)
        fetcher = FakeFetcher(lambda url: FetchResult(503, "busy"))
        crawler, state, _ = _crawler(fetcher, config)
        assert await crawler.crawl(START) == 0
        assert state.api_errors == 1
        assert len(fetcher.calls) == 2
