"""HTTP session: the fetch capability used by every crawl component.

Hard rules:
  - One httpx.AsyncClient per run, one outstanding request at a time
  - Never raise on HTTP status; callers inspect ``status_code``
  - Request failures raise httpx.RequestError (handled by the retry loop)
"""

import json
import logging
import random
import re
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Protocol, runtime_checkable

import httpx

from musejobs.core.config import CrawlConfig

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENTS: tuple[str, ...] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 13_0) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/16.0 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
)

JSON_ACCEPT = "application/json, text/javascript, */*; q=0.01"
HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


@dataclass(frozen=True)
class FetchResult:
    """Status code plus body: parsed JSON (or None) for API calls, text otherwise."""

    status_code: int
    body: Any


@runtime_checkable
class Fetcher(Protocol):
    """Minimal fetch interface so tests can swap in a fake."""

    async def fetch(
        self,
        url: str,
        *,
        expect_json: bool = False,
        headers: dict[str, str] | None = None,
    ) -> FetchResult: ...


def pick_user_agent(provided: str = "") -> str:
    """Return the configured user agent, or a random built-in one."""
    if provided:
        return provided
    return random.choice(DEFAULT_USER_AGENTS)


def client_hints(user_agent: str) -> dict[str, str]:
    """Build sec-ch-ua headers consistent with the user agent."""
    hints = {
        "sec-ch-ua": '"Chromium";v="120", "Google Chrome";v="120", ";Not A Brand";v="99"',
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"Windows"',
    }
    if re.search(r"Macintosh|Mac OS X", user_agent, re.IGNORECASE):
        hints["sec-ch-ua-platform"] = '"macOS"'
        hints["sec-ch-ua"] = '"Not A(Brand)";v="99", "Safari";v="16"'
    elif re.search(r"Android|Mobile", user_agent, re.IGNORECASE):
        hints["sec-ch-ua-mobile"] = "?1"
    elif re.search(r"Linux", user_agent, re.IGNORECASE):
        hints["sec-ch-ua-platform"] = '"Linux"'
    return hints


def build_default_headers(user_agent: str, cookie_header: str = "") -> dict[str, str]:
    headers = {
        "User-Agent": user_agent,
        "Accept-Language": "en-US,en;q=0.9",
        **client_hints(user_agent),
    }
    if cookie_header:
        headers["Cookie"] = cookie_header
    return headers


class HttpSession:
    """Async context manager that owns one httpx client for the run.

    Usage::

        async with HttpSession(config) as session:
            result = await session.fetch(url, expect_json=True)
    """

    def __init__(self, config: CrawlConfig) -> None:
        self._config = config
        self.user_agent = pick_user_agent(config.user_agent)
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """The underlying client. Raises if not entered."""
        if self._client is None:
            msg = "HttpSession not entered - use 'async with'"
            raise RuntimeError(msg)
        return self._client

    async def __aenter__(self) -> "HttpSession":
        proxy = self._config.proxy.url if self._config.proxy else None
        self._client = httpx.AsyncClient(
            headers=build_default_headers(self.user_agent, self._config.cookie_header),
            timeout=httpx.Timeout(self._config.request_timeout_ms / 1000.0),
            follow_redirects=True,
            proxy=proxy,
        )
        if proxy:
            logger.info("Routing requests through proxy %s", redact_url(proxy))
        if self._config.cookie_header:
            logger.info("Sending configured cookie header")
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(
        self,
        url: str,
        *,
        expect_json: bool = False,
        headers: dict[str, str] | None = None,
    ) -> FetchResult:
        request_headers = {"Accept": JSON_ACCEPT if expect_json else HTML_ACCEPT}
        if headers:
            request_headers.update(headers)
        response = await self.client.get(url, headers=request_headers)
        logger.debug("GET %s -> %d", url, response.status_code)
        if not expect_json:
            return FetchResult(response.status_code, response.text)
        return FetchResult(response.status_code, _decode_json(response))


def _decode_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.debug("Response from %s is not JSON", response.url)
        return None


def redact_url(proxy_url: str) -> str:
    """Hide credentials in a proxy URL for logging and display."""
    return re.sub(r"//[^@/]+@", "//***@", proxy_url)
