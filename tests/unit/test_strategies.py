"""Tests for the ordered fallback chains."""

from unittest.mock import AsyncMock, MagicMock

from musejobs.pipeline.strategies import first_match, first_success


class TestFirstMatch:
    def test_first_non_none_wins(self) -> None:
        later = MagicMock(return_value="late")
        assert first_match([("a", lambda: None), ("b", lambda: "hit"), ("c", later)]) == "hit"
        later.assert_not_called()

    def test_falsy_non_none_counts(self) -> None:
        assert first_match([("zero", lambda: 0), ("one", lambda: 1)]) == 0

    def test_all_fail(self) -> None:
        assert first_match([("a", lambda: None)]) is None
        assert first_match([]) is None


class TestFirstSuccess:
    async def test_stops_at_first_success(self) -> None:
        miss = AsyncMock(return_value=None)
        hit = AsyncMock(return_value="Design")
        never = AsyncMock(return_value="other")
        result = await first_success([("miss", miss), ("hit", hit), ("never", never)])
        assert result == "Design"
        miss.assert_awaited_once()
        never.assert_not_awaited()

    async def test_all_fail(self) -> None:
        assert await first_success([("a", AsyncMock(return_value=None))]) is None
