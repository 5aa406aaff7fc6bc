from __future__ import annotations

from enum import StrEnum
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class ClassKind(StrEnum):
    """Entity kind in the MMS hierarchy."""

    CHAPTER = "chapter"
    BLOCK = "block"
    CATEGORY = "category"
    WINDOW = "window"


class SeedRow(BaseModel):
    """Single element of the bundled catalog dataset."""

    model_config = ConfigDict(populate_by_name=True)

    code: str = ""
    title: str = Field(min_length=1)
    uri: str = Field(min_length=1)
    class_kind: ClassKind = Field(alias="classKind")
    chapter_code: str = Field(default="", alias="chapterCode")


class CatalogEntry(BaseModel):
    """Offline catalog row. Written once during seeding, read-only afterwards."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    code: str = ""
    title: str
    uri: str
    class_kind: ClassKind
    chapter_code: str = ""

    @classmethod
    def from_seed_row(cls, row: SeedRow) -> CatalogEntry:
        return cls(
            code=row.code,
            title=row.title,
            uri=row.uri,
            class_kind=row.class_kind,
            chapter_code=row.chapter_code,
        )
