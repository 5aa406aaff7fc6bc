from __future__ import annotations

from icdlookup.models.cache import CacheEntry
from icdlookup.models.catalog import CatalogEntry, ClassKind, SeedRow
from icdlookup.models.search import SearchQuery, SearchResult, TokenResponse
from icdlookup.models.tools import (
    ClearSearchCacheOutput,
    SearchDiagnosesInput,
    SearchDiagnosesOutput,
)

__all__ = [
    # search
    "SearchQuery",
    "SearchResult",
    "TokenResponse",
    # catalog
    "CatalogEntry",
    "ClassKind",
    "SeedRow",
    # cache
    "CacheEntry",
    # tools
    "SearchDiagnosesInput",
    "SearchDiagnosesOutput",
    "ClearSearchCacheOutput",
]
