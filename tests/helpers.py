"""Shared test doubles: a scripted fetcher and TheMuse payload builders."""

from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qsl, urlparse

from musejobs.http.session import FetchResult

Handler = Callable[[str], FetchResult]


class FakeFetcher:
    """Fetcher stand-in: ``handler(url)`` returns a FetchResult or raises.

    Every call is recorded as ``(url, headers)``.
    """

    def __init__(self, handler: Handler) -> None:
        self.handler = handler
        self.calls: list[tuple[str, dict[str, str]]] = []

    async def fetch(
        self,
        url: str,
        *,
        expect_json: bool = False,
        headers: dict[str, str] | None = None,
    ) -> FetchResult:
        self.calls.append((url, dict(headers or {})))
        return self.handler(url)

    @property
    def urls(self) -> list[str]:
        return [url for url, _ in self.calls]


def scripted(*responses: FetchResult | Exception) -> Handler:
    """Handler that replays ``responses`` in order, repeating the last one."""
    remaining = list(responses)

    def _handler(url: str) -> FetchResult:
        item = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        if isinstance(item, Exception):
            raise item
        return item

    return _handler


def query_of(url: str) -> dict[str, str]:
    return dict(parse_qsl(urlparse(url).query))


def api_job(job_id: int | str, **overrides: Any) -> dict[str, Any]:
    """A TheMuse API job summary."""
    job: dict[str, Any] = {
        "id": job_id,
        "short_name": f"job-{job_id}",
        "name": f"Engineer {job_id}",
        "type": "external",
        "publication_date": "2024-05-01T12:00:00Z",
        "contents": f"<p>Build <b>things</b> #{job_id}</p>",
        "company": {"id": 7, "name": "Acme"},
        "locations": [{"name": "New York, NY"}],
        "categories": [{"name": "Software Engineering"}],
        "levels": [{"name": "Senior Level", "short_name": "senior"}],
        "tags": [],
        "refs": {"landing_page": f"https://www.themuse.com/jobs/acme/job-{job_id}"},
    }
    job.update(overrides)
    return job


def api_page(jobs: list[dict[str, Any]], page: int = 1, page_count: int | None = None) -> FetchResult:
    body: dict[str, Any] = {"results": jobs, "page": page}
    if page_count is not None:
        body["page_count"] = page_count
        body["total"] = page_count * max(len(jobs), 1)
    return FetchResult(200, body)


class ListSink:
    """In-memory sink."""

    def __init__(self) -> None:
        self.records: list[Any] = []
        self.runs: list[Any] = []
        self.closed = False

    def write(self, record: Any) -> None:
        self.records.append(record)

    def record_run(self, summary: Any) -> None:
        self.runs.append(summary)

    def close(self) -> None:
        self.closed = True
