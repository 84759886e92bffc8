"""HTML fallback extraction: JSON-LD job postings, job links, next-page links.

Design rules:
  - Every selector lookup uses a fallback tuple.
  - Malformed JSON-LD blocks and unparseable URLs are skipped one by one.
  - URLs are resolved against the page URL and stripped of fragments.
"""

import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl, urldefrag, urlencode, urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup, Tag

from musejobs.core.config import parse_int
from musejobs.pipeline.strategies import first_match
from musejobs.platforms.themuse.selectors import (
    IGNORED_HREF_PREFIXES,
    JOB_PATH_RE,
    JOB_TYPE_MARKER,
    JSONLD_SCRIPT_SELECTOR,
    NEXT_CANDIDATE_TAGS,
    NEXT_HREF_ATTRS,
    NEXT_MARKER,
    NEXT_WORD_RE,
    NEXT_REL_SELECTORS,
    PAGE_PARAM,
    TITLE_SELECTORS,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobLink:
    """A lower-confidence job candidate found as an anchor."""

    title: str
    url: str


def parse_document(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def canonical_url(url: str) -> str:
    """Absolute URL without fragment; used as the identity of HTML jobs."""
    return urldefrag(url.strip())[0]


def resolve_url(href: str, page_url: str) -> str | None:
    """Resolve ``href`` against ``page_url``; None for unusable hrefs."""
    href = (href or "").strip()
    if not href or href.lower().startswith(IGNORED_HREF_PREFIXES):
        return None
    try:
        absolute = canonical_url(urljoin(page_url, href))
        parsed = urlparse(absolute)
    except ValueError:
        logger.debug("Skipping unparseable href '%s'", href)
        return None
    if parsed.scheme not in ("http", "https"):
        return None
    return absolute


# ---------------------------------------------------------------------------
# Pass (a): JSON-LD
# ---------------------------------------------------------------------------


def is_job_item(item: Any) -> bool:
    """True if the item's @type mentions "job" (case-insensitive)."""
    if not isinstance(item, dict):
        return False
    item_type = item.get("@type", "")
    types = item_type if isinstance(item_type, list) else [item_type]
    return any(JOB_TYPE_MARKER in str(t).lower() for t in types)


def extract_jsonld_jobs(soup: BeautifulSoup) -> list[dict[str, Any]]:
    """Return every job-typed object from the page's JSON-LD blocks."""
    jobs: list[dict[str, Any]] = []
    for script in soup.select(JSONLD_SCRIPT_SELECTOR):
        text = script.string if script.string is not None else script.get_text()
        if not text or not text.strip():
            continue
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, TypeError) as e:
            logger.debug("Skipping malformed JSON-LD block: %s", e)
            continue
        jobs.extend(item for item in _flatten_jsonld(data) if is_job_item(item))
    return jobs


def _flatten_jsonld(data: Any, depth: int = 0) -> Iterator[dict[str, Any]]:
    """Yield objects from arrays, @graph and itemListElement containers."""
    if depth > 5:
        return
    if isinstance(data, list):
        for item in data:
            yield from _flatten_jsonld(item, depth + 1)
        return
    if not isinstance(data, dict):
        return
    yield data
    for key in ("@graph", "itemListElement"):
        if key in data:
            yield from _flatten_jsonld(data[key], depth + 1)
    if isinstance(data.get("item"), dict):
        yield from _flatten_jsonld(data["item"], depth + 1)


# ---------------------------------------------------------------------------
# Pass (b): anchors
# ---------------------------------------------------------------------------


def extract_job_links(soup: BeautifulSoup, page_url: str) -> list[JobLink]:
    """Anchors whose href matches the job-path pattern, unique by URL."""
    links: dict[str, JobLink] = {}
    for anchor in soup.find_all("a", href=True):
        href = anchor.get("href", "")
        if not JOB_PATH_RE.search(href):
            continue
        url = resolve_url(href, page_url)
        if url is None or url == canonical_url(page_url) or url in links:
            continue
        title = anchor.get_text(" ", strip=True) or anchor.get("title") or anchor.get("aria-label") or ""
        links[url] = JobLink(title=" ".join(str(title).split()), url=url)
    return list(links.values())


def page_title(soup: BeautifulSoup) -> str:
    """First non-empty title from the fallback selectors."""
    for selector in TITLE_SELECTORS:
        el = soup.select_one(selector)
        if el is None:
            continue
        text = el.get("content") if el.name == "meta" else el.get_text(" ", strip=True)
        if text and str(text).strip():
            return " ".join(str(text).split())
    return ""


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


def find_next_page(
    soup: BeautifulSoup, page_url: str, *, allow_increment: bool = True,
) -> str | None:
    """Next listing page: rel=next, then a "next" link/button, then page+1."""
    current = canonical_url(page_url)

    def _not_current(url: str | None) -> str | None:
        return url if url and url != current else None

    strategies = [
        ("rel_next", lambda: _not_current(_rel_next(soup, page_url))),
        ("next_text", lambda: _not_current(_next_by_text(soup, page_url))),
    ]
    if allow_increment:
        strategies.append(("page_increment", lambda: _not_current(increment_page(page_url))))
    return first_match(strategies)


def increment_page(url: str) -> str | None:
    """Same URL with its ``page`` query parameter increased by one."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    pairs = parse_qsl(parsed.query, keep_blank_values=True)
    page = 1
    rest: list[tuple[str, str]] = []
    for key, value in pairs:
        if key == PAGE_PARAM:
            page = max(parse_int(value, 1), 1)
        else:
            rest.append((key, value))
    rest.append((PAGE_PARAM, str(page + 1)))
    return urlunparse(parsed._replace(query=urlencode(rest), fragment=""))


def _rel_next(soup: BeautifulSoup, page_url: str) -> str | None:
    for selector in NEXT_REL_SELECTORS:
        el = soup.select_one(selector)
        if el is not None:
            url = resolve_url(str(el.get("href", "")), page_url)
            if url:
                return url
    return None


def _next_by_text(soup: BeautifulSoup, page_url: str) -> str | None:
    for el in soup.find_all(list(NEXT_CANDIDATE_TAGS)):
        if not _mentions_next(el):
            continue
        for attr in NEXT_HREF_ATTRS:
            url = resolve_url(str(el.get(attr) or ""), page_url)
            if url:
                return url
    return None


def _mentions_next(el: Tag) -> bool:
    # whole word in visible text ("Nextdoor" is a company), substring in attributes
    if NEXT_WORD_RE.search(el.get_text(" ", strip=True)):
        return True
    for name, value in el.attrs.items():
        if name in NEXT_HREF_ATTRS:
            continue
        text = " ".join(value) if isinstance(value, list) else str(value)
        if NEXT_MARKER in text.lower():
            return True
    return False
