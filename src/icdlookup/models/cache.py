from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from icdlookup.models.search import SearchQuery, SearchResult


class CacheEntry(BaseModel):
    """Search results held for the lifetime of the interactive session."""

    model_config = ConfigDict(frozen=True)

    key: SearchQuery
    value: tuple[SearchResult, ...]  # Tuple so readers can never mutate a shared entry
    created_at: datetime
