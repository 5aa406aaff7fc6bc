from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class TokenResponse(BaseModel):
    """Body of a successful OAuth2 client-credentials token response."""

    access_token: str = Field(min_length=1)
    expires_in: int = Field(gt=0)  # Declared lifetime in seconds
    token_type: str = "Bearer"


class SearchQuery(BaseModel):
    """Normalised search parameters, used as the session cache key.

    Build with ``SearchQuery.normalise()`` so that queries differing only in
    casing or surrounding whitespace map to the same key.
    """

    model_config = ConfigDict(frozen=True)

    text: str
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=25, ge=1)
    language: str = "es"

    @classmethod
    def normalise(
        cls, text: str, offset: int = 0, limit: int = 25, language: str = "es"
    ) -> SearchQuery:
        return cls(
            text=text.strip().lower(),
            offset=offset,
            limit=limit,
            language=language.strip().lower(),
        )


class SearchResult(BaseModel):
    """Single diagnosis returned by the registry or the offline catalog."""

    model_config = ConfigDict(frozen=True)

    external_id: str  # Canonical WHO URI, e.g. "http://id.who.int/icd/entity/578635574"
    code: str | None = None  # MMS code, e.g. "6A70"; None for intermediate nodes
    title: str  # Plain text, highlight markup already removed
    chapter_hint: str | None = None
    relevance_score: float | None = None  # Only the remote registry ranks results
