import asyncio
from unittest.mock import AsyncMock, patch

import pytest


@pytest.fixture()
def no_sleep():  # type: ignore[no-untyped-def]
    """Patch asyncio.sleep so politeness delays and backoff return instantly."""
    with patch.object(asyncio, "sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep
