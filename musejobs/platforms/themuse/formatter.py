"""Canonicalization of raw job objects into CanonicalJobRecord.

One function per source variant:
  - format_api_job     - TheMuse API summary (+ optional detail record)
  - format_jsonld_job  - schema.org JobPosting from an HTML page
  - format_anchor_job  - a bare job link found on a listing page

Missing optional fields become "" or [] (never crash).
"""

import logging
import re
from collections.abc import Mapping
from typing import Any
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from musejobs.core.schemas import CanonicalJobRecord, JobSource
from musejobs.platforms.themuse.searcher import build_detail_url

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")


def as_list(value: Any) -> list[Any]:
    """Normalize an upstream field: None -> [], scalar -> [scalar]."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    return [value]


def names(value: Any) -> list[str]:
    """Map names out of ``{name}``-wrapped objects (or plain strings)."""
    result: list[str] = []
    for item in as_list(value):
        if isinstance(item, Mapping):
            name = item.get("name") or item.get("short_name")
        else:
            name = item
        if name is None:
            continue
        text = str(name).strip()
        if text:
            result.append(text)
    return result


def html_to_text(html: str | None) -> str:
    """Whitespace-collapsed plain text from an HTML fragment.

    Falls back to a tag-stripping regex if parsing fails.
    """
    if not html:
        return ""
    try:
        text = BeautifulSoup(html, "html.parser").get_text(" ")
    except Exception:
        logger.debug("HTML parse failed, stripping tags with regex", exc_info=True)
        text = _TAG_RE.sub(" ", html)
    return " ".join(text.split())


def pick_api_source(
    summary: Mapping[str, Any], detail: Mapping[str, Any] | None,
) -> Mapping[str, Any]:
    """Detail wins whenever it is non-empty and carries an id.

    The detail record then supplies every field, even ones it leaves blank,
    so summary-only data (e.g. categories) can be lost.
    """
    if detail and detail.get("id") is not None:
        return detail
    return summary


def format_api_job(
    summary: Mapping[str, Any], detail: Mapping[str, Any] | None = None,
) -> CanonicalJobRecord:
    """Canonicalize a TheMuse API job, merging the detail record over the summary."""
    job = pick_api_source(summary, detail)
    job_id = job.get("id")
    company = job.get("company")
    company_name = ""
    company_id = None
    if isinstance(company, Mapping):
        company_name = str(company.get("name") or "").strip()
        if company.get("id") is not None:
            company_id = str(company["id"])
    elif company:
        company_name = str(company).strip()

    refs = job.get("refs") if isinstance(job.get("refs"), Mapping) else {}
    contents = job.get("contents") or ""

    return CanonicalJobRecord(
        source=JobSource.API,
        job_id=str(job_id) if job_id is not None else None,
        slug=str(job.get("short_name") or ""),
        title=str(job.get("name") or "").strip(),
        company=company_name,
        company_id=company_id,
        locations=names(job.get("locations")),
        categories=names(job.get("categories")),
        levels=names(job.get("levels")),
        tags=names(job.get("tags")),
        job_type=str(job.get("type") or ""),
        publication_date=str(job.get("publication_date") or ""),
        url=str(refs.get("landing_page") or ""),
        api_url=build_detail_url(job_id) if job_id is not None else "",
        description_html=str(contents),
        description_text=html_to_text(str(contents)),
        raw=dict(job),
    )


def format_jsonld_job(obj: Mapping[str, Any], page_url: str) -> CanonicalJobRecord:
    """Canonicalize a schema.org JobPosting object found on ``page_url``."""
    description = str(obj.get("description") or "")

    identifier = obj.get("identifier")
    if isinstance(identifier, Mapping):
        identifier = identifier.get("value") or identifier.get("name")

    # postings without their own URL are told apart by identifier
    url = obj.get("url")
    if url:
        absolute_url = urljoin(page_url, str(url))
    elif identifier not in (None, ""):
        absolute_url = f"{page_url}#{identifier}"
    else:
        absolute_url = page_url

    org = obj.get("hiringOrganization")
    if isinstance(org, Mapping):
        company = str(org.get("name") or org.get("legalName") or "").strip()
    else:
        company = str(org or "").strip()

    return CanonicalJobRecord(
        source=JobSource.JSON_LD,
        job_id=str(identifier) if identifier not in (None, "") else None,
        title=str(obj.get("title") or obj.get("name") or "").strip(),
        company=company,
        locations=_jsonld_locations(obj.get("jobLocation")),
        categories=[str(c) for c in as_list(obj.get("occupationalCategory")) if c],
        tags=[str(s) for s in as_list(obj.get("skills")) if s],
        job_type=", ".join(str(t) for t in as_list(obj.get("employmentType")) if t),
        publication_date=str(obj.get("datePosted") or ""),
        url=absolute_url,
        description_html=description,
        description_text=html_to_text(description),
        raw=dict(obj),
    )


def format_anchor_job(title: str, url: str) -> CanonicalJobRecord:
    """Minimal record for a job link: title and URL only."""
    return CanonicalJobRecord(
        source=JobSource.HTML_ANCHOR,
        title=" ".join(title.split()),
        url=url,
        raw={"title": title, "url": url},
    )


def _jsonld_locations(value: Any) -> list[str]:
    locations: list[str] = []
    for loc in as_list(value):
        if isinstance(loc, str):
            if loc.strip():
                locations.append(loc.strip())
            continue
        if not isinstance(loc, Mapping):
            continue
        address = loc.get("address")
        if isinstance(address, Mapping):
            parts = [
                address.get("addressLocality"),
                address.get("addressRegion"),
                _country_name(address.get("addressCountry")),
            ]
            text = ", ".join(str(p).strip() for p in parts if p and str(p).strip())
        elif address:
            text = str(address).strip()
        else:
            text = str(loc.get("name") or "").strip()
        if text:
            locations.append(text)
    return locations


def _country_name(value: Any) -> Any:
    if isinstance(value, Mapping):
        return value.get("name")
    return value
