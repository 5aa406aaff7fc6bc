"""SQLite offline catalog of ICD-11 MMS entries.

Rows are written once by the CatalogSeeder and only read afterwards.
Read operations catch ``aiosqlite.Error`` and degrade gracefully (empty
results, logged with ``exc_info=True``) because the offline catalog is a
fallback and must never turn a failed remote search into a crash. Write
operations raise so the seeder can report an incomplete import.
"""

from __future__ import annotations

import unicodedata
from typing import TYPE_CHECKING
from uuid import UUID

import aiosqlite
import structlog

from icdlookup.models.catalog import CatalogEntry, ClassKind

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

log = structlog.get_logger()

_CREATE_ENTRY_TABLE = """
CREATE TABLE IF NOT EXISTS catalog_entry (
    id           TEXT PRIMARY KEY,
    code         TEXT NOT NULL DEFAULT '',
    title        TEXT NOT NULL,
    title_folded TEXT NOT NULL,
    uri          TEXT NOT NULL UNIQUE,
    class_kind   TEXT NOT NULL,
    chapter_code TEXT NOT NULL DEFAULT ''
)
"""

_CREATE_KIND_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_catalog_entry_kind ON catalog_entry(class_kind)"
)

_CREATE_METADATA_TABLE = """
CREATE TABLE IF NOT EXISTS catalog_metadata (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""

_INSERT_ENTRY = (
    "INSERT OR IGNORE INTO catalog_entry "
    "(id, code, title, title_folded, uri, class_kind, chapter_code) "
    "VALUES (?, ?, ?, ?, ?, ?, ?)"
)


def fold_text(text: str) -> str:
    """Case- and accent-insensitive form of ``text``: ``'Depresión'`` → ``'depresion'``."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class OfflineCatalogStore:
    """aiosqlite-backed catalog store implementing CatalogStoreProtocol."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_ENTRY_TABLE)
        await self._db.execute(_CREATE_KIND_INDEX)
        await self._db.execute(_CREATE_METADATA_TABLE)
        await self._db.commit()

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def count(self) -> int:
        """Number of catalog rows. Returns 0 on read failure."""
        try:
            cursor = await self._db.execute("SELECT COUNT(*) FROM catalog_entry")
            row = await cursor.fetchone()
            return int(row[0]) if row is not None else 0
        except aiosqlite.Error:
            log.warning("catalog_read_error", operation="count", exc_info=True)
            return 0

    async def insert_batch(self, entries: Sequence[CatalogEntry]) -> int:
        """Insert entries in one transaction and return how many were new.

        Rows whose ``uri`` is already stored are ignored. Raises
        ``aiosqlite.Error`` on failure; the batch is rolled back.
        """
        if not entries:
            return 0
        try:
            cursor = await self._db.executemany(
                _INSERT_ENTRY,
                [
                    (
                        str(entry.id),
                        entry.code,
                        entry.title,
                        fold_text(entry.title),
                        entry.uri,
                        entry.class_kind.value,
                        entry.chapter_code,
                    )
                    for entry in entries
                ],
            )
            inserted = cursor.rowcount
            await self._db.commit()
        except aiosqlite.Error:
            await self._db.rollback()
            raise
        return max(inserted, 0)

    async def search_titles(
        self,
        needle: str,
        *,
        class_kinds: Iterable[ClassKind | str],
        limit: int,
    ) -> list[CatalogEntry]:
        """Entries of the given kinds whose folded title contains ``needle``.

        Ordered by code then uri so repeated queries return the same order.
        Returns an empty list on read failure.
        """
        kinds = sorted({str(kind) for kind in class_kinds})
        folded = fold_text(needle.strip())
        if not kinds or not folded or limit < 1:
            return []

        placeholders = ", ".join("?" for _ in kinds)
        try:
            cursor = await self._db.execute(
                "SELECT id, code, title, uri, class_kind, chapter_code FROM catalog_entry "
                f"WHERE class_kind IN ({placeholders}) "
                "AND title_folded LIKE ? ESCAPE '\\' "
                "ORDER BY code, uri LIMIT ?",
                (*kinds, f"%{_escape_like(folded)}%", limit),
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error:
            log.warning("catalog_read_error", operation="search_titles", exc_info=True)
            return []

        return [
            CatalogEntry(
                id=UUID(row[0]),
                code=row[1],
                title=row[2],
                uri=row[3],
                class_kind=ClassKind(row[4]),
                chapter_code=row[5],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def get_metadata(self, key: str) -> str | None:
        """Read a metadata value. Returns ``None`` when missing or unreadable."""
        try:
            cursor = await self._db.execute(
                "SELECT value FROM catalog_metadata WHERE key = ?", (key,)
            )
            row = await cursor.fetchone()
        except aiosqlite.Error:
            log.warning("catalog_metadata_read_error", key=key, exc_info=True)
            return None
        return row[0] if row is not None else None

    async def set_metadata(self, key: str, value: str) -> None:
        """Write a metadata value. Raises ``aiosqlite.Error`` on failure."""
        await self._db.execute(
            "INSERT OR REPLACE INTO catalog_metadata (key, value) VALUES (?, ?)",
            (key, value),
        )
        await self._db.commit()
