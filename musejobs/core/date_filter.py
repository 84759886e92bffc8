"""Date filter: turns a human "date posted" value into a posting predicate.

Accepted forms, tried in order:
  - empty / "any" / "all"        -> no filtering
  - a bare number of days        -> Range(days)
  - a named range ("week", ...)  -> Range(days) via NAMED_RANGES
  - "<N><unit>" ("3d", "2 weeks")-> Range(days)
  - an ISO date or datetime      -> Since(timestamp)
Anything else is logged and treated as no filtering.
"""

import logging
import math
import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

NAMED_RANGES: dict[str, int] = {
    "today": 1,
    "24h": 1,
    "day": 1,
    "3days": 3,
    "week": 7,
    "2weeks": 14,
    "fortnight": 14,
    "month": 30,
    "3months": 90,
    "quarter": 90,
    "6months": 180,
    "year": 365,
}

_UNIT_DAYS: dict[str, int] = {
    "d": 1,
    "w": 7,
    "m": 30,
    "y": 365,
}

_RELATIVE_RE = re.compile(
    r"^(\d+)\s*(h|hours?|hrs?|d|days?|w|weeks?|m|months?|y|years?)$",
    re.IGNORECASE,
)
_NO_FILTER_TOKENS = {"", "any", "all", "anytime", "none"}


class DateFilterKind(str, Enum):
    NONE = "none"
    RANGE = "range"
    SINCE = "since"


class DateFilter(BaseModel):
    """Tagged variant: NONE, RANGE(days) or SINCE(timestamp)."""

    model_config = ConfigDict(frozen=True)

    kind: DateFilterKind = DateFilterKind.NONE
    days: int | None = None
    since: datetime | None = None

    @classmethod
    def none(cls) -> "DateFilter":
        return cls()

    @classmethod
    def range(cls, days: int) -> "DateFilter":
        return cls(kind=DateFilterKind.RANGE, days=days)

    @classmethod
    def since_timestamp(cls, ts: datetime) -> "DateFilter":
        return cls(kind=DateFilterKind.SINCE, since=_as_utc(ts))

    def cutoff(self, now: datetime | None = None) -> datetime | None:
        """Earliest accepted publication instant, or None when unfiltered."""
        if self.kind is DateFilterKind.RANGE and self.days is not None:
            now = _as_utc(now or datetime.now(timezone.utc))
            return now - timedelta(days=self.days)
        if self.kind is DateFilterKind.SINCE:
            return self.since
        return None

    def accepts(self, published: Any, now: datetime | None = None) -> bool:
        """Return True if a posting published at ``published`` passes the filter.

        Postings with a missing or unparseable date are always accepted.
        """
        cutoff = self.cutoff(now)
        if cutoff is None:
            return True
        published_at = parse_timestamp(published)
        if published_at is None:
            return True
        return published_at >= cutoff


def normalize_date_filter(raw: Any) -> DateFilter:
    """Build a DateFilter from a raw string or number."""
    if raw is None or isinstance(raw, bool):
        return DateFilter.none()

    if isinstance(raw, (int, float)):
        days = int(raw)
        return DateFilter.range(days) if days > 0 else DateFilter.none()

    text = str(raw).strip()
    if text.isdigit():
        days = int(text)
        return DateFilter.range(days) if days > 0 else DateFilter.none()

    key = _range_key(text)
    if key in _NO_FILTER_TOKENS:
        return DateFilter.none()

    if key in NAMED_RANGES:
        return DateFilter.range(NAMED_RANGES[key])

    m = _RELATIVE_RE.match(key)
    if m:
        amount = int(m.group(1))
        unit = m.group(2)[0].lower()
        if unit == "h":
            days = math.ceil(amount / 24)
        else:
            days = amount * _UNIT_DAYS[unit]
        return DateFilter.range(days) if days > 0 else DateFilter.none()

    try:
        return DateFilter.since_timestamp(date_parser.isoparse(text))
    except (ValueError, OverflowError):
        logger.warning("Unrecognized datePosted value '%s' - not filtering by date", text)
        return DateFilter.none()


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-ish timestamp into an aware UTC datetime, or None."""
    if isinstance(value, datetime):
        return _as_utc(value)
    if not value or not isinstance(value, str):
        return None
    try:
        return _as_utc(date_parser.isoparse(value.strip()))
    except (ValueError, OverflowError):
        pass
    try:
        return _as_utc(date_parser.parse(value.strip()))
    except (ValueError, OverflowError):
        logger.debug("Unparseable publication date '%s'", value)
        return None


def _range_key(text: str) -> str:
    """Lowercase, drop separators and a leading 'last'/'past'."""
    key = text.lower().replace("-", "").replace("_", "")
    for prefix in ("last", "past"):
        if key.startswith(prefix):
            key = key[len(prefix):]
            break
    key = key.strip()
    # "3 days" -> "3days" for the table; "2 weeks" stays matchable by _RELATIVE_RE
    compact = key.replace(" ", "")
    if compact in NAMED_RANGES:
        return compact
    return key


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
