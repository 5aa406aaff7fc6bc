"""Shared test fixtures for the icdlookup test suite."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import aiosqlite
import pytest

from icdlookup.catalog import OfflineCatalogStore
from icdlookup.credentials import CredentialStore
from icdlookup.models.catalog import CatalogEntry, ClassKind

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

TOKEN_URL = "https://auth.icd.test/connect/token"
SEARCH_URL = "https://id.icd.test/icd/release/11/2024-01/mms/search"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def credentials_file(tmp_path: Path) -> Path:
    path = tmp_path / "icd11-credentials.yaml"
    path.write_text('clientId: "client-123"\nclientSecret: "s3cret"\n', encoding="utf-8")
    return path


@pytest.fixture()
def credential_store(credentials_file: Path) -> CredentialStore:
    return CredentialStore(credentials_file)


@pytest.fixture()
async def store() -> AsyncGenerator[OfflineCatalogStore, None]:
    """Offline catalog store on an in-memory database."""
    async with aiosqlite.connect(":memory:") as db:
        catalog = OfflineCatalogStore(db)
        await catalog.init_db()
        yield catalog


@pytest.fixture()
def sample_entries() -> list[CatalogEntry]:
    """A chapter, a block and three categories from chapter 06."""
    return [
        CatalogEntry(
            code="06",
            title="Trastornos mentales, del comportamiento o del neurodesarrollo",
            uri="http://id.who.int/icd/entity/334423054",
            class_kind=ClassKind.CHAPTER,
            chapter_code="06",
        ),
        CatalogEntry(
            code="BlockL1-6B0",
            title="Trastornos de ansiedad o relacionados con el miedo",
            uri="http://id.who.int/icd/entity/1336943699",
            class_kind=ClassKind.BLOCK,
            chapter_code="06",
        ),
        CatalogEntry(
            code="6B00",
            title="Trastorno de ansiedad generalizada",
            uri="http://id.who.int/icd/entity/1712535455",
            class_kind=ClassKind.CATEGORY,
            chapter_code="06",
        ),
        CatalogEntry(
            code="6A70",
            title="Trastorno depresivo de episodio único",
            uri="http://id.who.int/icd/entity/578635574",
            class_kind=ClassKind.CATEGORY,
            chapter_code="06",
        ),
        CatalogEntry(
            code="6B01",
            title="Trastorno de pánico",
            uri="http://id.who.int/icd/entity/1616616016",
            class_kind=ClassKind.CATEGORY,
            chapter_code="06",
        ),
    ]


@pytest.fixture()
async def seeded_store(
    store: OfflineCatalogStore, sample_entries: list[CatalogEntry]
) -> OfflineCatalogStore:
    await store.insert_batch(sample_entries)
    return store
