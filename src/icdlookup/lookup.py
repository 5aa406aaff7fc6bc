"""Lookup orchestration: session cache, then registry, then offline catalog.

Per query::

    CACHE_CHECK --hit--> DONE
    CACHE_CHECK --miss--> REMOTE --ok--> DONE (cache populated)
    REMOTE --classified failure--> OFFLINE --rows--> DONE (degraded)
    OFFLINE --no rows--> FAILED (original remote error re-raised)

This is the only entry point the host application uses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

import structlog

from icdlookup.errors import FALLBACK_CODES, IcdLookupError
from icdlookup.models.search import SearchQuery

if TYPE_CHECKING:
    from icdlookup.cache import ResultCache
    from icdlookup.models.search import SearchResult
    from icdlookup.protocols import OfflineSearchProtocol, RemoteSearchProtocol

log = structlog.get_logger()

LookupSource = Literal["cache", "remote", "offline", "none"]


@dataclass(frozen=True)
class LookupOutcome:
    """Results of one lookup plus where they came from.

    ``degraded`` is True when the registry failed and the results come from
    the offline catalog; ``remote_error`` then holds the registry failure.
    """

    query: str
    results: list[SearchResult] = field(default_factory=list)
    source: LookupSource = "none"
    degraded: bool = False
    remote_error: IcdLookupError | None = None


class LookupFacade:
    def __init__(
        self,
        cache: ResultCache,
        remote: RemoteSearchProtocol,
        offline: OfflineSearchProtocol,
        *,
        default_limit: int = 25,
        default_language: str = "es",
        min_query_length: int = 3,
    ) -> None:
        self._cache = cache
        self._remote = remote
        self._offline = offline
        self._default_limit = default_limit
        self._default_language = default_language
        self._min_query_length = min_query_length

    async def lookup(
        self,
        text: str,
        *,
        offset: int = 0,
        limit: int | None = None,
        language: str | None = None,
    ) -> LookupOutcome:
        """Find diagnoses matching ``text``.

        Raises the registry's IcdLookupError only when the offline catalog has
        no match either, so the caller can tell the user why nothing was found.
        """
        trimmed = text.strip()
        if len(trimmed) < self._min_query_length:
            return LookupOutcome(query=trimmed)

        limit = limit or self._default_limit
        language = language or self._default_language
        query = SearchQuery.normalise(trimmed, offset, limit, language)

        cached = self._cache.get(query)
        if cached is not None:
            log.debug("lookup_cache_hit", query=query.text, result_count=len(cached))
            return LookupOutcome(query=trimmed, results=cached, source="cache")

        try:
            results = await self._remote.search(trimmed, offset, limit, language)
        except IcdLookupError as exc:
            if exc.code not in FALLBACK_CODES:
                raise
            return await self._offline_fallback(trimmed, offset, limit, exc)

        self._cache.put(query, results)
        return LookupOutcome(query=trimmed, results=results, source="remote")

    def clear_cache(self) -> int:
        """Forget cached registry results, e.g. when the user session ends."""
        return self._cache.clear()

    async def _offline_fallback(
        self,
        text: str,
        offset: int,
        limit: int,
        remote_error: IcdLookupError,
    ) -> LookupOutcome:
        # The catalog has no paging; fetch through the requested window and slice
        results = (await self._offline.search_offline(text, offset + limit))[offset:]
        if not results:
            log.warning(
                "lookup_failed",
                query=text,
                remote_error=remote_error.code,
                message=remote_error.message,
            )
            raise remote_error

        log.warning(
            "lookup_degraded",
            query=text,
            remote_error=remote_error.code,
            result_count=len(results),
        )
        return LookupOutcome(
            query=text,
            results=results,
            source="offline",
            degraded=True,
            remote_error=remote_error,
        )
