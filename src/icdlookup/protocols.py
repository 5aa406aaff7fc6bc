"""Protocol interfaces for swappable components.

The seeder, the offline index and the lookup facade reference these
protocols, not the concrete implementations. This allows:
- Tests to use lightweight in-memory implementations
- The host application to back the catalog with its own persistent store
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from icdlookup.models.catalog import CatalogEntry, ClassKind
    from icdlookup.models.search import SearchResult


class CatalogStoreProtocol(Protocol):
    """Persistent store holding the offline catalog."""

    async def count(self) -> int: ...

    async def insert_batch(self, entries: Sequence[CatalogEntry]) -> int: ...

    async def search_titles(
        self,
        needle: str,
        *,
        class_kinds: Iterable[ClassKind | str],
        limit: int,
    ) -> list[CatalogEntry]: ...

    async def get_metadata(self, key: str) -> str | None: ...

    async def set_metadata(self, key: str, value: str) -> None: ...


class RemoteSearchProtocol(Protocol):
    """Interface for the registry search client."""

    async def search(
        self,
        text: str,
        offset: int = 0,
        limit: int = 25,
        language: str | None = None,
    ) -> list[SearchResult]: ...


class OfflineSearchProtocol(Protocol):
    """Interface for the offline fallback search."""

    async def search_offline(self, text: str, limit: int = 25) -> list[SearchResult]: ...
