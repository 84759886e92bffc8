"""TheMuse URL builder and URL-to-parameter translation.

Pure functions - zero network dependency.
"""

import logging
import re
from enum import Enum
from urllib.parse import parse_qsl, quote, quote_plus, unquote_plus, urlencode, urlparse

from musejobs.core.config import CrawlConfig, parse_bool, parse_int

logger = logging.getLogger(__name__)

SITE_BASE = "https://www.themuse.com"
API_PATH_PREFIX = "/api/public/jobs"
API_BASE_URL = f"{SITE_BASE}{API_PATH_PREFIX}"
SEARCH_MARKER = "search"

# --- Mapping dicts (URL concern) ---

# Human search-URL path keys -> API query keys. Unlisted keys pass through.
PATH_KEY_MAP: dict[str, str] = {
    "keyword": "q",
    "query": "q",
    "q": "q",
    "category": "category",
    "location": "location",
    "company": "company",
    "level": "level",
    "jobtype": "job_type",
    "job_type": "job_type",
    "tag": "tags",
    "tags": "tags",
    "remote": "remote",
}

# API query keys -> human search-URL path keys, in path order.
HTML_PATH_KEYS: dict[str, str] = {
    "q": "keyword",
    "category": "category",
    "location": "location",
    "company": "company",
    "level": "level",
}

DEFAULT_DESCENDING = "true"


class UrlKind(str, Enum):
    API = "api"
    HTML = "html"


def classify_url(url: str) -> UrlKind:
    """API-shaped when the path starts with the public jobs API prefix."""
    try:
        path = urlparse(url).path
    except ValueError:
        return UrlKind.HTML
    if path.rstrip("/").startswith(API_PATH_PREFIX):
        return UrlKind.API
    return UrlKind.HTML


def html_url_to_api_params(url: str) -> dict[str, str] | None:
    """Translate ``/search/<key>/<value>/...`` into API query parameters.

    Returns None when the URL does not parse, has no ``search`` marker,
    or carries no key/value pairs after it.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        logger.debug("Unparseable URL '%s'", url)
        return None

    segments = [s for s in parsed.path.split("/") if s]
    lowered = [s.lower() for s in segments]
    if SEARCH_MARKER not in lowered:
        return None
    rest = segments[lowered.index(SEARCH_MARKER) + 1:]

    params: dict[str, str] = {}
    for i in range(0, len(rest) - 1, 2):
        key = unquote_plus(rest[i]).strip().lower()
        value = _decode_path_value(rest[i + 1])
        if not key or not value:
            continue
        api_key = PATH_KEY_MAP.get(key, key)
        params[api_key] = _translate_value(api_key, value)

    if len(rest) % 2 == 1:
        logger.debug("Dropping trailing key '%s' without value in %s", rest[-1], url)
    return params or None


def extract_api_params(url: str) -> tuple[dict[str, str], int]:
    """Split an API URL's query string into (params, starting_page).

    ``page`` is removed from params; missing or invalid pages start at 1.
    Repeated keys keep their last value.
    """
    params: dict[str, str] = {}
    starting_page = 1
    for key, value in parse_qsl(urlparse(url).query):
        if key == "page":
            starting_page = max(parse_int(value, 1), 1)
            continue
        params[key] = value
    return params, starting_page


def ensure_core_params(params: dict[str, str], per_page: int) -> dict[str, str]:
    """Return a copy with ``per_page`` and ``descending`` injected if absent."""
    result = dict(params)
    result.setdefault("per_page", str(per_page))
    result.setdefault("descending", DEFAULT_DESCENDING)
    return result


def build_params(config: CrawlConfig, *, category: str | None = None) -> dict[str, str]:
    """Parameter set for the configured filters.

    ``category`` overrides the configured category (resolved value or variant).
    """
    params: dict[str, str] = {}
    if config.query:
        params["q"] = config.query
    chosen = config.category if category is None else category
    if chosen:
        params["category"] = chosen
    if config.location:
        params["location"] = config.location
    if config.company:
        params["company"] = config.company
    if config.level:
        params["level"] = config.level
    return ensure_core_params(params, config.per_page)


def build_listing_url(params: dict[str, str], page: int) -> str:
    """Build a listing API URL; ``page`` always overrides any page in params."""
    query = {k: v for k, v in params.items() if k != "page"}
    query["page"] = str(page)
    return f"{API_BASE_URL}?{urlencode(query, quote_via=quote_plus)}"


def build_detail_url(job_id: str | int) -> str:
    """Build the detail API URL for a job id."""
    return f"{API_BASE_URL}/{quote(str(job_id), safe='')}"


def build_html_search_url(params: dict[str, str], page: int = 1) -> str | None:
    """Build the human search page for a parameter set, or None without filters."""
    parts: list[str] = []
    for api_key, path_key in HTML_PATH_KEYS.items():
        value = params.get(api_key, "").strip()
        if value:
            parts.extend([path_key, quote("_".join(value.split()), safe="")])
    if not parts:
        return None
    return f"{SITE_BASE}/{SEARCH_MARKER}/{'/'.join(parts)}?page={page}"


def _decode_path_value(segment: str) -> str:
    value = unquote_plus(segment).replace("_", " ").replace("-", " ")
    return " ".join(value.split())


def _translate_value(api_key: str, value: str) -> str:
    if api_key == "tags":
        return ",".join(t.strip() for t in value.split(",") if t.strip())
    if api_key == "remote":
        flag = parse_bool(value, None)
        return value if flag is None else str(flag).lower()
    return value


def category_variants(value: str) -> list[str]:
    """Case/separator variants of a filter value, in probe order, deduplicated.

    verbatim, underscores as spaces, Title Case, lower_snake, Capitalized.
    """
    text = (value or "").strip()
    if not text:
        return []
    words = [w for w in re.split(r"[_\s]+", text) if w]
    variants = [
        text,
        text.replace("_", " "),
        " ".join(w[:1].upper() + w[1:].lower() for w in words),
        "_".join(text.lower().split()),
        text[:1].upper() + text[1:],
    ]
    return list(dict.fromkeys(variants))
