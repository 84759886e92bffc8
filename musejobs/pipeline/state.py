"""Per-run crawl state: counters, item budget and the seen-jobs set.

One instance per run, mutated only from the single crawl control flow.
Never persisted; read at shutdown for the summary.
"""

import logging
from datetime import datetime, timezone

from musejobs.core.schemas import CanonicalJobRecord, CrawlSummary
from musejobs.core.sink import DatasetSink

logger = logging.getLogger(__name__)


class CrawlState:
    """Counters plus dedupe tracking for one run.

    Usage::

        state = CrawlState(max_items=200, dedupe=True)
        if not state.budget_reached() and not state.is_seen(identity):
            state.save(record, sink)
    """

    def __init__(self, max_items: int = 0, dedupe: bool = True) -> None:
        self.max_items = max_items
        self.total_saved = 0
        self.total_requests = 0
        self.pages_fetched = 0
        self.api_errors = 0
        self.seen_jobs: set[str] | None = set() if dedupe else None
        self.started_at = datetime.now(timezone.utc)

    def budget_reached(self) -> bool:
        """True once max_items records are saved (0 means unlimited)."""
        return self.max_items > 0 and self.total_saved >= self.max_items

    def remaining(self) -> int | None:
        """Records left in the budget, or None when unlimited."""
        if self.max_items <= 0:
            return None
        return max(0, self.max_items - self.total_saved)

    def is_seen(self, identity: str) -> bool:
        return self.seen_jobs is not None and identity in self.seen_jobs

    def record_request(self) -> None:
        self.total_requests += 1

    def save(self, record: CanonicalJobRecord, sink: DatasetSink) -> bool:
        """Write a record unless the budget is spent or it is a duplicate.

        Returns True if the record was written.
        """
        if self.budget_reached():
            return False
        identity = record.identity
        if self.is_seen(identity):
            logger.debug("Skipping duplicate job %s", identity)
            return False
        sink.write(record)
        self.total_saved += 1
        if self.seen_jobs is not None:
            self.seen_jobs.add(identity)
        return True

    def summary(self) -> CrawlSummary:
        return CrawlSummary(
            total_saved=self.total_saved,
            total_requests=self.total_requests,
            pages_fetched=self.pages_fetched,
            api_errors=self.api_errors,
            started_at=self.started_at,
            finished_at=datetime.now(timezone.utc),
        )
