"""Core data models for the job crawler."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobSource(str, Enum):
    """Where a canonical record came from."""

    API = "api"
    JSON_LD = "json_ld"
    HTML_ANCHOR = "html_anchor"


class CanonicalJobRecord(BaseModel):
    """One output unit. Every source variant converges on this shape.

    Frozen; ``raw`` keeps the unmodified source object for auditing.
    """

    model_config = ConfigDict(frozen=True)

    source: JobSource
    job_id: str | None = None
    slug: str = ""
    title: str = ""
    company: str = ""
    company_id: str | None = None
    locations: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    levels: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    job_type: str = ""
    publication_date: str = ""
    url: str = ""
    api_url: str = ""
    description_html: str = ""
    description_text: str = ""
    raw: dict[str, Any] = Field(default_factory=dict)
    scraped_at: datetime = Field(default_factory=_utc_now)

    @property
    def identity(self) -> str:
        """Dedupe key: native job id for API records, absolute URL otherwise."""
        if self.source is JobSource.API and self.job_id:
            return f"{self.source.value}:{self.job_id}"
        return f"url:{self.url}"


class ListingPage(BaseModel):
    """One page of listing results as reported by the API."""

    model_config = ConfigDict(frozen=True)

    results: list[dict[str, Any]] = Field(default_factory=list)
    page: int | None = None
    page_count: int | None = None
    total: int | None = None


class CrawlSummary(BaseModel):
    """Run summary, logged and printed at shutdown."""

    total_saved: int = 0
    total_requests: int = 0
    pages_fetched: int = 0
    api_errors: int = 0
    started_at: datetime = Field(default_factory=_utc_now)
    finished_at: datetime = Field(default_factory=_utc_now)
