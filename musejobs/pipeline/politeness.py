"""Politeness delays and retry backoff.

Design rules:
  - Inter-page delay is a uniform random integer in [min_ms, max_ms].
  - Retry waits grow linearly: base * (attempt_index + 1).
  - Politeness waits go through polite_sleep(); retry waits are computed by
    backoff_ms() and slept by the tenacity loop in http/retry.py.
"""

import asyncio
import logging
import random
from enum import Enum

logger = logging.getLogger(__name__)


class BackoffKind(str, Enum):
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    NETWORK = "network"
    DETAIL_NETWORK = "detail_network"


BASE_WAIT_MS: dict[BackoffKind, int] = {
    BackoffKind.RATE_LIMIT: 1000,
    BackoffKind.SERVER_ERROR: 800,
    BackoffKind.NETWORK: 600,
    BackoffKind.DETAIL_NETWORK: 500,
}


def jitter_delay_ms(min_ms: int, max_ms: int) -> int:
    """Uniform random integer delay in [min_ms, max_ms], inclusive.

    A negative min is clamped to 0; a max below min is raised to min.
    """
    floor = max(int(min_ms), 0)
    ceiling = max(int(max_ms), floor)
    return random.randint(floor, ceiling)


def backoff_ms(kind: BackoffKind, attempt_index: int) -> int:
    """Linear backoff for the given failure kind and zero-based attempt."""
    return BASE_WAIT_MS[kind] * (max(attempt_index, 0) + 1)


async def polite_sleep(min_ms: int, max_ms: int) -> int:
    """Sleep a jittered politeness delay. Returns the delay in ms."""
    delay = jitter_delay_ms(min_ms, max_ms)
    logger.debug("Politeness delay %d ms", delay)
    await asyncio.sleep(delay / 1000.0)
    return delay
