"""Fallback chains: try strategies in order, first non-None result wins.

Used for category resolution (variant probe -> sampled exact match ->
substring match) and HTML next-page discovery (rel=next -> "next" link ->
page increment).
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# A strategy is (name, callable); the callable returns None on failure.
Strategy = tuple[str, Callable[[], T | None]]
AsyncStrategy = tuple[str, Callable[[], Awaitable[T | None]]]


def first_match(strategies: Sequence[Strategy[T]]) -> T | None:
    """Run sync strategies in order, returning the first non-None result."""
    for name, strategy in strategies:
        result = strategy()
        if result is not None:
            logger.debug("Strategy '%s' matched", name)
            return result
        logger.debug("Strategy '%s' found nothing", name)
    return None


async def first_success(strategies: Sequence[AsyncStrategy[T]]) -> T | None:
    """Run async strategies in order, returning the first non-None result."""
    for name, strategy in strategies:
        result = await strategy()
        if result is not None:
            logger.debug("Strategy '%s' matched", name)
            return result
        logger.debug("Strategy '%s' found nothing", name)
    return None
