"""Crawl configuration: pydantic model plus the three-source input normalizer.

Precedence per field: environment variable > CLI flag > input file > default.
Blank values count as "not provided". Numbers and booleans are parsed
permissively and fall back to the field default when they cannot be parsed.
"""

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from musejobs.core.date_filter import DateFilter, normalize_date_filter

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Software Engineering"
DEFAULT_OUTPUT = "storage/datasets/jobs.jsonl"
PER_PAGE_MIN = 1
PER_PAGE_MAX = 50
REQUEST_TIMEOUT_MIN_MS = 1000
CONCURRENCY_MIN = 1

TRUE_TOKENS = frozenset({"true", "1", "yes", "y", "on"})
FALSE_TOKENS = frozenset({"false", "0", "no", "n", "off"})

_PROXY_SCHEMES = ("http", "https", "socks5", "socks5h")


class ConfigError(ValueError):
    """Configuration could not be loaded or is invalid."""


class ProxyConfig(BaseModel):
    """Outbound proxy settings. Only the first URL is used per run."""

    model_config = ConfigDict(frozen=True)

    proxy_urls: list[str] = Field(default_factory=list)

    @field_validator("proxy_urls")
    @classmethod
    def urls_well_formed(cls, v: list[str]) -> list[str]:
        for url in v:
            parsed = urlparse(url)
            if parsed.scheme.lower() not in _PROXY_SCHEMES or not parsed.hostname:
                msg = f"invalid proxy URL: {url!r}"
                raise ValueError(msg)
        return v

    @property
    def url(self) -> str | None:
        return self.proxy_urls[0] if self.proxy_urls else None


class CrawlConfig(BaseModel):
    """Immutable configuration for one crawl run."""

    model_config = ConfigDict(frozen=True)

    query: str = ""
    category: str = ""
    location: str = ""
    company: str = ""
    level: str = ""
    date_posted: str = ""
    date_filter: DateFilter = Field(default_factory=DateFilter)
    max_items: int = Field(default=200, ge=0)
    max_pages: int = Field(default=0, ge=0)
    per_page: int = Field(default=20, ge=PER_PAGE_MIN, le=PER_PAGE_MAX)
    collect_details: bool = False
    dedupe: bool = True
    html_fallback: bool = False
    start_urls: list[str] = Field(default_factory=list)
    cookie_header: str = ""
    user_agent: str = ""
    proxy: ProxyConfig | None = None
    min_delay_ms: int = Field(default=300, ge=0)
    max_delay_ms: int = Field(default=700, ge=0)
    request_retries: int = Field(default=3, ge=0)
    detail_retries: int = Field(default=2, ge=0)
    request_timeout_ms: int = Field(default=30000, ge=REQUEST_TIMEOUT_MIN_MS)
    # accepted for input compatibility; requests are always issued one at a time
    concurrency: int = Field(default=2, ge=CONCURRENCY_MIN)
    output: str = DEFAULT_OUTPUT

    @model_validator(mode="before")
    @classmethod
    def _normalize_bounds(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "per_page" in data:
            data["per_page"] = min(max(int(data["per_page"]), PER_PAGE_MIN), PER_PAGE_MAX)
        if "request_timeout_ms" in data:
            data["request_timeout_ms"] = max(int(data["request_timeout_ms"]), REQUEST_TIMEOUT_MIN_MS)
        if "concurrency" in data:
            data["concurrency"] = max(int(data["concurrency"]), CONCURRENCY_MIN)
        min_delay = data.get("min_delay_ms", cls.model_fields["min_delay_ms"].default)
        max_delay = data.get("max_delay_ms", cls.model_fields["max_delay_ms"].default)
        if max_delay < min_delay:
            data["max_delay_ms"] = min_delay
        return data

    @property
    def has_filters(self) -> bool:
        """True if any API filter besides category is configured."""
        return any((self.query, self.location, self.company, self.level))


# ---------------------------------------------------------------------------
# Permissive parsers
# ---------------------------------------------------------------------------


def parse_int(value: Any, default: int) -> int:
    """Parse an int from a number or numeric string; negatives and junk -> default."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = int(float(str(value).strip()))
    except (TypeError, ValueError, OverflowError):
        return default
    return number if number >= 0 else default


def parse_bool(value: Any, default: bool | None) -> bool | None:
    """Parse a boolean from the closed token set; anything else -> default."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        token = value.strip().lower()
        if token in TRUE_TOKENS:
            return True
        if token in FALSE_TOKENS:
            return False
    return default


def parse_start_urls(value: Any) -> list[str]:
    """Normalize every accepted start-URL form to an ordered, deduplicated list."""
    if value is None:
        return []
    items: list[Any]
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        if text.startswith("["):
            try:
                decoded = json.loads(text)
            except json.JSONDecodeError:
                logger.warning("startUrls looks like JSON but does not parse - splitting on commas")
                decoded = None
            items = decoded if isinstance(decoded, list) else text.strip("[]").split(",")
        else:
            items = text.split(",")
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        items = [value]

    urls: list[str] = []
    for item in items:
        if isinstance(item, Mapping):
            item = item.get("url")
        if not isinstance(item, str):
            continue
        url = item.strip().strip('"').strip()
        if url:
            urls.append(url)
    return list(dict.fromkeys(urls))


def build_cookie_header(cookies: Any, cookies_json: Any) -> str:
    """Return a Cookie header: raw header string wins over JSON cookies."""
    if isinstance(cookies, str) and cookies.strip():
        return cookies.strip()

    data = cookies_json
    if isinstance(data, str):
        if not data.strip():
            return ""
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            logger.warning("Ignoring malformed cookiesJson: %s", e)
            return ""

    pairs: list[str] = []
    if isinstance(data, Mapping):
        pairs = [f"{name}={value}" for name, value in data.items()]
    elif isinstance(data, list):
        for cookie in data:
            if isinstance(cookie, Mapping) and cookie.get("name"):
                pairs.append(f"{cookie['name']}={cookie.get('value', '')}")
    return "; ".join(pairs)


def parse_proxy(value: Any) -> ProxyConfig | None:
    """Build a ProxyConfig from a URL, a list of URLs or a proxyConfiguration object.

    Raises ConfigError for malformed proxy URLs.
    """
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.startswith("{") or text.startswith("["):
            try:
                value = json.loads(text)
            except json.JSONDecodeError as e:
                msg = f"proxyConfiguration is not valid JSON: {e}"
                raise ConfigError(msg) from e
        else:
            value = [u.strip() for u in text.split(",") if u.strip()]

    if isinstance(value, Mapping):
        urls = value.get("proxyUrls") or value.get("proxy_urls") or []
        if not urls and value.get("useApifyProxy"):
            logger.warning("useApifyProxy is not supported - running without a proxy")
        value = urls
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        msg = f"proxyConfiguration must be a URL, list or object, got {type(value).__name__}"
        raise ConfigError(msg)

    urls = [str(u).strip() for u in value if str(u).strip()]
    if not urls:
        return None
    try:
        return ProxyConfig(proxy_urls=urls)
    except ValidationError as e:
        raise ConfigError(str(e)) from e


# ---------------------------------------------------------------------------
# Three-source merge
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConfigField:
    """One configuration key: model field, input/CLI key, env var, value kind."""

    name: str
    key: str
    env: str
    kind: str = "str"


CONFIG_FIELDS: tuple[ConfigField, ...] = (
    ConfigField("query", "query", "QUERY"),
    ConfigField("category", "category", "CATEGORY"),
    ConfigField("location", "location", "LOCATION"),
    ConfigField("company", "company", "COMPANY"),
    ConfigField("level", "level", "LEVEL"),
    ConfigField("date_posted", "datePosted", "DATE_POSTED"),
    ConfigField("max_items", "maxItems", "MAX_ITEMS", "int"),
    ConfigField("max_pages", "maxPages", "MAX_PAGES", "int"),
    ConfigField("per_page", "perPage", "PER_PAGE", "int"),
    ConfigField("collect_details", "collectDetails", "COLLECT_DETAILS", "bool"),
    ConfigField("dedupe", "dedupe", "DEDUPE", "bool"),
    ConfigField("html_fallback", "htmlFallback", "HTML_FALLBACK", "bool"),
    ConfigField("start_urls", "startUrls", "START_URLS", "raw"),
    ConfigField("cookies", "cookies", "COOKIES", "raw"),
    ConfigField("cookies_json", "cookiesJson", "COOKIES_JSON", "raw"),
    ConfigField("user_agent", "userAgent", "USER_AGENT"),
    ConfigField("proxy", "proxyConfiguration", "PROXY_URL", "raw"),
    ConfigField("min_delay_ms", "minDelayMs", "MIN_DELAY_MS", "int"),
    ConfigField("max_delay_ms", "maxDelayMs", "MAX_DELAY_MS", "int"),
    ConfigField("request_retries", "requestRetries", "REQUEST_RETRIES", "int"),
    ConfigField("detail_retries", "detailRetries", "DETAIL_RETRIES", "int"),
    ConfigField("request_timeout_ms", "requestTimeoutMs", "REQUEST_TIMEOUT_MS", "int"),
    ConfigField("concurrency", "concurrency", "CONCURRENCY", "int"),
    ConfigField("output", "output", "OUTPUT_PATH"),
)


def load_input_file(path: str | Path) -> dict[str, Any]:
    """Load the structured input object from a JSON or YAML file."""
    path = Path(path)
    if not path.exists():
        msg = f"Input file not found: {path}"
        raise ConfigError(msg)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        msg = f"Input file {path} is not valid JSON/YAML: {e}"
        raise ConfigError(msg) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Input file {path} must contain an object, got {type(data).__name__}"
        raise ConfigError(msg)
    return data


def resolve_config(
    input_obj: Mapping[str, Any] | None = None,
    cli: Mapping[str, Any] | None = None,
    env: Mapping[str, str] | None = None,
) -> CrawlConfig:
    """Merge env vars, CLI flags and the input object into one CrawlConfig."""
    input_obj = input_obj or {}
    cli = cli or {}
    env = os.environ if env is None else env

    raw: dict[str, Any] = {}
    for f in CONFIG_FIELDS:
        value = _first_provided(env.get(f.env), cli.get(f.key), input_obj.get(f.key))
        if value is not None:
            raw[f.name] = value

    values: dict[str, Any] = {}
    for f in CONFIG_FIELDS:
        if f.name not in raw or f.kind == "raw":
            continue
        value = raw[f.name]
        if f.kind == "int":
            values[f.name] = parse_int(value, _default(f.name))
        elif f.kind == "bool":
            values[f.name] = parse_bool(value, _default(f.name))
        else:
            values[f.name] = str(value).strip()

    values["start_urls"] = parse_start_urls(raw.get("start_urls"))
    values["cookie_header"] = build_cookie_header(raw.get("cookies"), raw.get("cookies_json"))
    values["proxy"] = parse_proxy(raw.get("proxy"))
    values["date_filter"] = normalize_date_filter(raw.get("date_posted"))

    has_other_filters = any(values.get(k) for k in ("query", "location", "company", "level"))
    if not values.get("category") and not has_other_filters and not values["start_urls"]:
        values["category"] = DEFAULT_CATEGORY

    try:
        return CrawlConfig(**values)
    except ValidationError as e:
        raise ConfigError(str(e)) from e


def _first_provided(*candidates: Any) -> Any:
    for value in candidates:
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _default(name: str) -> Any:
    return CrawlConfig.model_fields[name].default
