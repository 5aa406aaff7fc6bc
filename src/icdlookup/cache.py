"""Session-lifetime cache of registry search results.

Level 1 of the lookup cache hierarchy; level 2 is the offline catalog.
Entries have no TTL: the host clears the cache on logical session
boundaries (or the process exits). Values are stored as tuples inside
frozen CacheEntry models, so a reader never sees a list that another
search is still writing.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from icdlookup.models.cache import CacheEntry

if TYPE_CHECKING:
    from collections.abc import Iterable

    from icdlookup.models.search import SearchQuery, SearchResult

log = structlog.get_logger()


class ResultCache:
    """In-memory mapping of normalised queries to search results."""

    def __init__(self) -> None:
        self._entries: dict[SearchQuery, CacheEntry] = {}
        # Hosts may call clear() from a UI thread while searches run on the loop
        self._lock = threading.Lock()

    def get(self, query: SearchQuery) -> list[SearchResult] | None:
        """Return a copy of the cached results, or ``None`` on a miss."""
        with self._lock:
            entry = self._entries.get(query)
        if entry is None:
            return None
        return list(entry.value)

    def put(self, query: SearchQuery, results: Iterable[SearchResult]) -> None:
        entry = CacheEntry(key=query, value=tuple(results), created_at=datetime.now(UTC))
        with self._lock:
            self._entries[query] = entry

    def clear(self) -> int:
        """Evict every entry. Returns the number of entries removed."""
        with self._lock:
            removed = len(self._entries)
            self._entries = {}
        log.info("result_cache_cleared", removed=removed)
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
