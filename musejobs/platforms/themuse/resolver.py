"""Filter resolver: map a loosely-typed filter value onto the API's taxonomy.

The API's category/level/location values are inconsistently cased and
delimited, so a requested value is resolved by a fallback chain:
  1. variant probe      - first case/separator variant with >=1 result
  2. normalized match   - sampled value equal after alphanumeric folding
  3. substring match    - sampled value containing the requested text
None means nothing matched; callers then probe every raw variant.
"""

import logging
import re
from collections.abc import Callable
from typing import Any

from musejobs.http.retry import RetriesExhausted, fetch_with_retry
from musejobs.http.session import Fetcher
from musejobs.pipeline.strategies import first_success
from musejobs.platforms.themuse.adapter import TheMuseAdapter
from musejobs.platforms.themuse.formatter import names
from musejobs.platforms.themuse.searcher import category_variants, ensure_core_params

logger = logging.getLogger(__name__)

# Filter parameter -> record attribute holding its values
FIELD_ATTRIBUTES: dict[str, str] = {
    "category": "categories",
    "level": "levels",
    "location": "locations",
    "company": "company",
}

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def normalize_token(value: str) -> str:
    """Lowercase alphanumerics only: "Software_Engineering" -> "softwareengineering"."""
    return _NON_ALNUM_RE.sub("", value.lower())


class FilterResolver:
    """Resolves one filter field against live API data.

    Usage::

        resolver = FilterResolver(adapter, fetcher, per_page=20, retries=3)
        category = await resolver.resolve("software_engineering")
    """

    def __init__(
        self,
        adapter: TheMuseAdapter,
        fetcher: Fetcher,
        *,
        per_page: int = 20,
        retries: int = 3,
        field: str = "category",
        on_attempt: Callable[[], None] | None = None,
    ) -> None:
        if field not in FIELD_ATTRIBUTES:
            msg = f"Unsupported filter field: {field!r}"
            raise ValueError(msg)
        self._adapter = adapter
        self._fetcher = fetcher
        self._per_page = per_page
        self._retries = retries
        self._on_attempt = on_attempt
        self.field = field
        self._sample: list[str] | None = None

    async def resolve(self, requested: str) -> str | None:
        """Return the API value to filter on, or None if nothing matched."""
        requested = (requested or "").strip()
        if not requested:
            return None

        resolved = await first_success([
            ("variant_probe", lambda: self._probe_variants(requested)),
            ("normalized_match", lambda: self._normalized_match(requested)),
            ("substring_match", lambda: self._substring_match(requested)),
        ])
        if resolved is None:
            logger.warning("Could not resolve %s '%s' - probing raw variants", self.field, requested)
        else:
            logger.info("Resolved %s '%s' -> '%s'", self.field, requested, resolved)
        return resolved

    # -- strategies --------------------------------------------------------

    async def _probe_variants(self, requested: str) -> str | None:
        for variant in category_variants(requested):
            results = await self._fetch_results({self.field: variant})
            if results:
                return variant
        return None

    async def _normalized_match(self, requested: str) -> str | None:
        target = normalize_token(requested)
        for value in await self._sampled_values():
            if normalize_token(value) == target:
                return value
        return None

    async def _substring_match(self, requested: str) -> str | None:
        needle = requested.lower()
        for value in await self._sampled_values():
            if needle in value.lower():
                return value
        return None

    # -- helpers -----------------------------------------------------------

    async def _sampled_values(self) -> list[str]:
        """Distinct field values from one unfiltered page, fetched once."""
        if self._sample is None:
            attribute = FIELD_ATTRIBUTES[self.field]
            values: list[str] = []
            for job in await self._fetch_results({}) or []:
                values.extend(names(job.get(attribute)))
            self._sample = list(dict.fromkeys(values))
            logger.debug("Sampled %d distinct %s values", len(self._sample), self.field)
        return self._sample

    async def _fetch_results(self, params: dict[str, str]) -> list[dict[str, Any]] | None:
        url = self._adapter.listing_url(ensure_core_params(params, self._per_page), 1)
        try:
            result = await fetch_with_retry(
                self._fetcher,
                url,
                retries=self._retries,
                expect_json=True,
                on_attempt=self._on_attempt,
            )
        except RetriesExhausted as e:
            logger.warning("Resolver probe failed: %s", e)
            return None
        if result.status_code != 200:
            logger.debug("Resolver probe %s -> HTTP %d", url, result.status_code)
            return None
        page = self._adapter.parse_listing(result.body)
        return page.results if page is not None else None
