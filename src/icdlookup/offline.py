"""Offline fallback search over the seeded catalog.

Substring containment only: matching is case- and accent-insensitive, and
results keep the catalog's stable ``code, uri`` order. Relevance ranking is
left to the remote registry.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from icdlookup.models.catalog import ClassKind
from icdlookup.models.search import SearchResult

if TYPE_CHECKING:
    from collections.abc import Iterable

    from icdlookup.models.catalog import CatalogEntry
    from icdlookup.protocols import CatalogStoreProtocol

log = structlog.get_logger()

ASSIGNABLE_KINDS: frozenset[ClassKind] = frozenset({ClassKind.CATEGORY})


class OfflineSearchIndex:
    """Searches assignable catalog entries by title."""

    def __init__(
        self,
        store: CatalogStoreProtocol,
        *,
        assignable_kinds: Iterable[ClassKind | str] = ASSIGNABLE_KINDS,
        min_query_length: int = 3,
    ) -> None:
        self._store = store
        self._kinds = frozenset(ClassKind(kind) for kind in assignable_kinds)
        self._min_query_length = min_query_length

    async def search_offline(self, text: str, limit: int = 25) -> list[SearchResult]:
        trimmed = text.strip()
        if len(trimmed) < self._min_query_length:
            return []

        entries = await self._store.search_titles(trimmed, class_kinds=self._kinds, limit=limit)
        log.info("offline_search_complete", query=trimmed, result_count=len(entries))
        return [_to_result(entry) for entry in entries]


def _to_result(entry: CatalogEntry) -> SearchResult:
    return SearchResult(
        external_id=entry.uri,
        code=entry.code or None,
        title=entry.title,
        chapter_hint=entry.chapter_code or None,
    )
