"""TheMuse platform adapter - wires URL builder, listing parser and formatter."""

import logging
from typing import Any

from musejobs.core.config import parse_int
from musejobs.core.schemas import CanonicalJobRecord, ListingPage
from musejobs.platforms.base import JobBoardAdapter
from musejobs.platforms.themuse.formatter import format_api_job
from musejobs.platforms.themuse.searcher import (
    build_detail_url,
    build_html_search_url,
    build_listing_url,
)

logger = logging.getLogger(__name__)


class TheMuseAdapter(JobBoardAdapter):
    """TheMuse public jobs API (``/api/public/jobs``)."""

    @property
    def platform_id(self) -> str:
        return "themuse"

    def listing_url(self, params: dict[str, str], page: int) -> str:
        return build_listing_url(params, page)

    def detail_url(self, summary: dict[str, Any]) -> str | None:
        job_id = summary.get("id")
        if job_id is None or job_id == "":
            return None
        return build_detail_url(job_id)

    def parse_listing(self, body: Any) -> ListingPage | None:
        """``{results, page, page_count, total}``; None if the body is not that shape."""
        if not isinstance(body, dict):
            return None
        results = body.get("results")
        if results is None:
            results = []
        if not isinstance(results, list):
            logger.debug("Listing 'results' is %s, not a list", type(results).__name__)
            return None
        return ListingPage(
            results=[r for r in results if isinstance(r, dict)],
            page=_optional_int(body.get("page")),
            page_count=_optional_int(body.get("page_count")),
            total=_optional_int(body.get("total")),
        )

    def job_identity(self, summary: dict[str, Any]) -> str:
        job_id = summary.get("id")
        if job_id is not None and job_id != "":
            return f"api:{job_id}"
        refs = summary.get("refs") if isinstance(summary.get("refs"), dict) else {}
        return f"url:{refs.get('landing_page') or ''}"

    def publication_date(self, summary: dict[str, Any]) -> str | None:
        value = summary.get("publication_date")
        return str(value) if value else None

    def format_job(
        self, summary: dict[str, Any], detail: dict[str, Any] | None,
    ) -> CanonicalJobRecord:
        return format_api_job(summary, detail)

    def referer(self, params: dict[str, str]) -> str | None:
        return build_html_search_url(params)


def _optional_int(value: Any) -> int | None:
    number = parse_int(value, -1)
    return None if number < 0 else number
