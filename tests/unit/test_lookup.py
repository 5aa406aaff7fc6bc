"""Unit tests for the LookupFacade cache / remote / offline orchestration."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from icdlookup.cache import ResultCache
from icdlookup.errors import ErrorCode, IcdLookupError
from icdlookup.lookup import LookupFacade
from icdlookup.models.search import SearchQuery, SearchResult

REMOTE_RESULTS = [
    SearchResult(
        external_id="http://id.who.int/icd/release/11/2024-01/mms/1712535455",
        code="6B00",
        title="Trastorno de ansiedad generalizada",
        chapter_hint="06",
        relevance_score=0.97,
    ),
]

OFFLINE_RESULTS = [
    SearchResult(
        external_id=f"http://id.who.int/icd/entity/{i}",
        code=f"6B0{i}",
        title=f"Trastorno {i}",
        chapter_hint="06",
    )
    for i in range(5)
]


def _error(code: ErrorCode) -> IcdLookupError:
    return IcdLookupError(code=code, message=f"{code} happened", suggestion="", recoverable=True)


def _make_facade(
    *,
    remote_results: list[SearchResult] | None = None,
    remote_error: IcdLookupError | None = None,
    offline_results: list[SearchResult] | None = None,
) -> tuple[LookupFacade, MagicMock, MagicMock]:
    remote = MagicMock()
    if remote_error is not None:
        remote.search = AsyncMock(side_effect=remote_error)
    else:
        remote.search = AsyncMock(return_value=remote_results or [])
    offline = MagicMock()
    offline.search_offline = AsyncMock(return_value=offline_results or [])
    return LookupFacade(ResultCache(), remote, offline), remote, offline


# ---------------------------------------------------------------------------
# Cache and remote
# ---------------------------------------------------------------------------


class TestLookupRemote:
    async def test_remote_results_are_returned_and_cached(self) -> None:
        facade, remote, offline = _make_facade(remote_results=REMOTE_RESULTS)

        outcome = await facade.lookup("ansiedad")

        assert outcome.source == "remote"
        assert outcome.degraded is False
        assert outcome.remote_error is None
        assert outcome.results == REMOTE_RESULTS
        remote.search.assert_awaited_once_with("ansiedad", 0, 25, "es")
        offline.search_offline.assert_not_awaited()

    async def test_repeat_lookup_is_served_from_cache(self) -> None:
        facade, remote, _ = _make_facade(remote_results=REMOTE_RESULTS)

        await facade.lookup("ansiedad")
        outcome = await facade.lookup("  ANSIEDAD ")

        assert outcome.source == "cache"
        assert outcome.results == REMOTE_RESULTS
        assert remote.search.await_count == 1

    async def test_empty_remote_result_is_cached(self) -> None:
        facade, remote, _ = _make_facade(remote_results=[])

        first = await facade.lookup("zzzzz")
        second = await facade.lookup("zzzzz")

        assert first.results == [] and first.source == "remote"
        assert second.source == "cache"
        assert remote.search.await_count == 1

    async def test_different_page_is_a_cache_miss(self) -> None:
        facade, remote, _ = _make_facade(remote_results=REMOTE_RESULTS)

        await facade.lookup("ansiedad")
        await facade.lookup("ansiedad", offset=25)

        assert remote.search.await_count == 2
        remote.search.assert_awaited_with("ansiedad", 25, 25, "es")

    async def test_clear_cache_forces_a_new_remote_call(self) -> None:
        facade, remote, _ = _make_facade(remote_results=REMOTE_RESULTS)

        await facade.lookup("ansiedad")
        assert facade.clear_cache() == 1
        outcome = await facade.lookup("ansiedad")

        assert outcome.source == "remote"
        assert remote.search.await_count == 2

    @pytest.mark.parametrize("text", ["", "  ", "de", " ab "])
    async def test_short_query_returns_empty_without_calls(self, text: str) -> None:
        facade, remote, offline = _make_facade(remote_results=REMOTE_RESULTS)

        outcome = await facade.lookup(text)

        assert outcome.results == []
        assert outcome.source == "none"
        assert outcome.degraded is False
        remote.search.assert_not_awaited()
        offline.search_offline.assert_not_awaited()


# ---------------------------------------------------------------------------
# Offline fallback
# ---------------------------------------------------------------------------


class TestLookupFallback:
    @pytest.mark.parametrize(
        "code",
        [
            ErrorCode.NETWORK_ERROR,
            ErrorCode.AUTH_FAILED,
            ErrorCode.PARSE_FAILED,
            ErrorCode.CONFIG_MISSING,
        ],
    )
    async def test_remote_failure_falls_back_to_offline(self, code: ErrorCode) -> None:
        error = _error(code)
        facade, _, offline = _make_facade(remote_error=error, offline_results=OFFLINE_RESULTS)

        outcome = await facade.lookup("trastorno", limit=5)

        assert outcome.source == "offline"
        assert outcome.degraded is True
        assert outcome.remote_error is error
        assert outcome.results == OFFLINE_RESULTS
        offline.search_offline.assert_awaited_once_with("trastorno", 5)

    async def test_offline_results_are_not_cached(self) -> None:
        facade, remote, _ = _make_facade(
            remote_error=_error(ErrorCode.NETWORK_ERROR), offline_results=OFFLINE_RESULTS
        )

        await facade.lookup("trastorno")
        outcome = await facade.lookup("trastorno")

        assert outcome.degraded is True
        assert remote.search.await_count == 2

    async def test_offline_fallback_honours_offset(self) -> None:
        facade, _, offline = _make_facade(
            remote_error=_error(ErrorCode.NETWORK_ERROR), offline_results=OFFLINE_RESULTS
        )

        outcome = await facade.lookup("trastorno", offset=3, limit=2)

        offline.search_offline.assert_awaited_once_with("trastorno", 5)
        assert [r.code for r in outcome.results] == ["6B03", "6B04"]

    async def test_empty_offline_result_raises_original_error(self) -> None:
        error = _error(ErrorCode.NETWORK_ERROR)
        facade, _, offline = _make_facade(remote_error=error, offline_results=[])

        with pytest.raises(IcdLookupError) as exc_info:
            await facade.lookup("ansiedad")

        assert exc_info.value is error
        offline.search_offline.assert_awaited_once()

    async def test_unclassified_error_is_not_absorbed(self) -> None:
        error = _error(ErrorCode.INVALID_INPUT)
        facade, _, offline = _make_facade(remote_error=error, offline_results=OFFLINE_RESULTS)

        with pytest.raises(IcdLookupError) as exc_info:
            await facade.lookup("ansiedad")

        assert exc_info.value is error
        offline.search_offline.assert_not_awaited()


# ---------------------------------------------------------------------------
# Overlapping lookups
# ---------------------------------------------------------------------------


class TestOverlappingLookups:
    async def test_concurrent_lookups_return_complete_lists(self) -> None:
        size = 40

        async def slow_search(
            text: str, offset: int, limit: int, language: str
        ) -> list[SearchResult]:
            results: list[SearchResult] = []
            for i in range(size):
                results.append(
                    SearchResult(external_id=f"{text}/{i}", code=f"{text}-{i}", title=text)
                )
                if i % 10 == 0:
                    await asyncio.sleep(0)
            return results

        remote = MagicMock()
        remote.search = AsyncMock(side_effect=slow_search)
        offline = MagicMock()
        offline.search_offline = AsyncMock(return_value=[])
        cache = ResultCache()
        facade = LookupFacade(cache, remote, offline)

        async def clear_repeatedly() -> None:
            for _ in range(20):
                facade.clear_cache()
                await asyncio.sleep(0)

        queries = ["ansiedad", "depresion", "asma"] * 10
        outcomes = await asyncio.gather(
            *(facade.lookup(query) for query in queries), clear_repeatedly()
        )

        for query, outcome in zip(queries, outcomes[:-1], strict=True):
            assert len(outcome.results) == size
            assert {result.title for result in outcome.results} == {query}
        for query in set(queries):
            cached = cache.get(SearchQuery.normalise(query))
            assert cached is None or len(cached) == size
