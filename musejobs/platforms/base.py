"""Abstract base class for job-board adapters."""

from abc import ABC, abstractmethod
from typing import Any

from musejobs.core.schemas import CanonicalJobRecord, ListingPage


class JobBoardAdapter(ABC):
    """Everything the pagination engine needs to know about one job board."""

    @property
    @abstractmethod
    def platform_id(self) -> str:
        """Unique identifier for this board (e.g. 'themuse')."""

    @abstractmethod
    def listing_url(self, params: dict[str, str], page: int) -> str:
        """API URL for one listing page of a parameter set."""

    @abstractmethod
    def detail_url(self, summary: dict[str, Any]) -> str | None:
        """API URL for a job's detail record, or None if it has no id."""

    @abstractmethod
    def parse_listing(self, body: Any) -> ListingPage | None:
        """Turn a decoded response body into a ListingPage; None if malformed."""

    @abstractmethod
    def job_identity(self, summary: dict[str, Any]) -> str:
        """Dedupe key for a raw job; must equal the formatted record's identity."""

    @abstractmethod
    def publication_date(self, summary: dict[str, Any]) -> str | None:
        """Raw publication date used by the date filter."""

    @abstractmethod
    def format_job(
        self, summary: dict[str, Any], detail: dict[str, Any] | None,
    ) -> CanonicalJobRecord:
        """Canonicalize a summary record, merging the detail record over it."""

    def referer(self, params: dict[str, str]) -> str | None:
        """Human-facing page to send as Referer for a parameter set."""
        return None
