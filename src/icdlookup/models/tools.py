from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from icdlookup.errors import ErrorCode
from icdlookup.models.search import SearchResult


class SearchDiagnosesInput(BaseModel):
    query: str = Field(min_length=1, max_length=500)
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=25, ge=1, le=100)


class SearchDiagnosesOutput(BaseModel):
    query: str
    results: list[SearchResult]
    source: Literal["cache", "remote", "offline", "none"]
    degraded: bool  # True when results come from the offline catalog
    remote_error: ErrorCode | None = None


class ClearSearchCacheOutput(BaseModel):
    cleared: int
