"""Application state container.

AppState is created once at server startup (inside the FastMCP lifespan context
manager) and injected into every tool handler via the MCP Context object.
Only ``settings`` is mandatory so tests can wire the subset they exercise.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from icdlookup.cache import ResultCache
    from icdlookup.config import Settings
    from icdlookup.debounce import DebouncedSearch
    from icdlookup.lookup import LookupFacade
    from icdlookup.protocols import CatalogStoreProtocol
    from icdlookup.seeder import CatalogSeeder
    from icdlookup.tokens import TokenManager


@dataclass
class AppState:
    """Holds all shared runtime state. Passed to every tool handler."""

    settings: Settings

    # Registry access
    http_client: httpx.AsyncClient | None = None
    tokens: TokenManager | None = None

    # Lookup
    cache: ResultCache | None = None
    facade: LookupFacade | None = None
    debounced: DebouncedSearch | None = None

    # Offline catalog
    store: CatalogStoreProtocol | None = None
    seeder: CatalogSeeder | None = None
