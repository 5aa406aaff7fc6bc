"""One-time bulk import of the bundled ICD-11 catalog dataset.

The dataset is a JSON array of ``{code, title, uri, classKind, chapterCode}``
objects with tens of thousands of elements. It is streamed element by
element and committed in fixed-size batches, so peak memory is one read
chunk plus one batch, and a crash mid-import loses at most the batch in
flight.

Completion is tracked with an explicit ``seed_completed_at`` marker rather
than inferred from the row count. A store that has rows but no marker holds
a partial import; the next run resumes it, relying on ``uri`` uniqueness to
skip rows committed before the interruption.
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog
from pydantic import ValidationError

from icdlookup.errors import ErrorCode, IcdLookupError
from icdlookup.models.catalog import CatalogEntry, SeedRow

if TYPE_CHECKING:
    from collections.abc import Iterator
    from typing import TextIO

    from icdlookup.protocols import CatalogStoreProtocol

log = structlog.get_logger()

SEED_COMPLETED_KEY = "seed_completed_at"
SEED_ROW_COUNT_KEY = "seed_row_count"
DEFAULT_BATCH_SIZE = 1000
DEFAULT_CHUNK_CHARS = 64 * 1024

_JSON_WHITESPACE = " \t\n\r"
_NUMBER_CHARS = frozenset("0123456789+-.eE")
# Characters a literal or number can end on when cut mid-token
_PARTIAL_TOKEN_CHARS = _NUMBER_CHARS | frozenset("truefalsn") | frozenset(_JSON_WHITESPACE)
_CONTINUABLE_ERRORS = ("Unterminated string", "Invalid \\uXXXX escape")
DEFAULT_MAX_VALUE_CHARS = 1024 * 1024


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


class _JsonArrayReader:
    """Incremental reader for a top-level JSON array.

    Keeps only the undecoded tail of the stream in memory. A single element
    larger than ``max_value_chars`` is rejected instead of buffered whole.
    """

    def __init__(
        self,
        stream: TextIO,
        chunk_chars: int,
        max_value_chars: int = DEFAULT_MAX_VALUE_CHARS,
    ) -> None:
        self._stream = stream
        self._chunk_chars = chunk_chars
        self._max_value_chars = max(max_value_chars, chunk_chars)
        self._decoder = json.JSONDecoder()
        self._buffer = ""
        self._pos = 0
        self._eof = False

    def __iter__(self) -> Iterator[object]:
        if self._peek() != "[":
            raise ValueError("Seed dataset must be a JSON array")
        self._pos += 1

        if self._peek() == "]":
            self._pos += 1
            return

        while True:
            if self._peek() is None:
                raise ValueError("Seed dataset ended inside the array")
            yield self._decode_value()

            separator = self._peek()
            if separator == ",":
                self._pos += 1
                continue
            if separator == "]":
                self._pos += 1
                return
            raise ValueError(f"Expected ',' or ']' in seed dataset, found {separator!r}")

    def _fill(self) -> bool:
        if self._eof:
            return False
        data = self._stream.read(self._chunk_chars)
        if not data:
            self._eof = True
            return False
        self._buffer = self._buffer[self._pos :] + data
        self._pos = 0
        return True

    def _peek(self) -> str | None:
        """Skip whitespace and return the next character without consuming it."""
        while True:
            while self._pos < len(self._buffer) and self._buffer[self._pos] in _JSON_WHITESPACE:
                self._pos += 1
            if self._pos < len(self._buffer):
                return self._buffer[self._pos]
            if not self._fill():
                return None

    def _decode_value(self) -> object:
        while True:
            try:
                value, end = self._decoder.raw_decode(self._buffer, self._pos)
            except json.JSONDecodeError as exc:
                if self._may_be_truncated(exc) and self._fill():
                    continue
                raise
            # A value ending at the buffer edge may continue in the next chunk,
            # and so may a number cut right after its "." or exponent marker.
            tail = self._buffer[end:]
            if _is_number(value) and all(ch in _NUMBER_CHARS for ch in tail) and self._fill():
                continue
            if end == len(self._buffer) and self._fill():
                continue
            self._pos = end
            return value

    def _may_be_truncated(self, exc: json.JSONDecodeError) -> bool:
        """True when more input could turn the failed decode into a valid value."""
        if len(self._buffer) - self._pos >= self._max_value_chars:
            return False
        if exc.msg.startswith(_CONTINUABLE_ERRORS):
            # Reported at the opening quote or escape, not at the buffer edge
            return True
        return all(ch in _PARTIAL_TOKEN_CHARS for ch in self._buffer[exc.pos :])


def iter_json_array(
    path: Path,
    *,
    chunk_chars: int = DEFAULT_CHUNK_CHARS,
    max_value_chars: int = DEFAULT_MAX_VALUE_CHARS,
) -> Iterator[object]:
    """Yield the elements of the JSON array stored at ``path`` one at a time.

    Raises ValueError (including json.JSONDecodeError) on malformed input and
    OSError when the file cannot be read.
    """
    with path.open(encoding="utf-8-sig") as stream:
        yield from _JsonArrayReader(stream, chunk_chars, max_value_chars)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CatalogSeeder:
    """Populates the offline catalog from the bundled dataset, once."""

    def __init__(
        self,
        store: CatalogStoreProtocol,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        chunk_chars: int = DEFAULT_CHUNK_CHARS,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._store = store
        self._batch_size = batch_size
        self._chunk_chars = chunk_chars
        self._lock = asyncio.Lock()

    async def seed_if_needed(self, source: Path | str | None) -> int:
        """Import ``source`` unless the catalog is already seeded.

        Returns the number of rows inserted (0 when already seeded or when
        the dataset is absent). Raises IcdLookupError(SEED_FAILED) when the
        dataset cannot be read or decoded, or the store rejects a batch;
        batches committed before the failure are kept.
        """
        async with self._lock:
            completed_at = await self._store.get_metadata(SEED_COMPLETED_KEY)
            if completed_at is not None:
                log.debug("catalog_seed_skipped", reason="already_seeded", seeded_at=completed_at)
                return 0

            if source is None:
                log.info("catalog_seed_skipped", reason="no_dataset_configured")
                return 0

            path = Path(source).expanduser()
            if not path.is_file():
                # Not fatal: offline search simply stays empty
                log.info("catalog_seed_skipped", reason="dataset_missing", path=str(path))
                return 0

            existing = await self._store.count()
            if existing:
                log.warning("catalog_seed_resuming", existing_rows=existing, path=str(path))

            return await self._import(path)

    async def _import(self, path: Path) -> int:
        log.info("catalog_seed_started", path=str(path), batch_size=self._batch_size)
        inserted = 0
        invalid = 0
        batches = 0
        batch: list[CatalogEntry] = []

        try:
            for raw in iter_json_array(path, chunk_chars=self._chunk_chars):
                try:
                    row = SeedRow.model_validate(raw)
                except ValidationError:
                    invalid += 1
                    continue
                batch.append(CatalogEntry.from_seed_row(row))

                if len(batch) >= self._batch_size:
                    inserted += await self._commit(batch, batch_number=batches + 1)
                    batches += 1
                    batch = []

            if batch:
                inserted += await self._commit(batch, batch_number=batches + 1)
                batches += 1

            await self._store.set_metadata(SEED_ROW_COUNT_KEY, str(await self._store.count()))
            await self._store.set_metadata(SEED_COMPLETED_KEY, _utcnow().isoformat())
        except (OSError, ValueError) as exc:
            log.warning(
                "catalog_seed_failed",
                reason="unreadable_dataset",
                path=str(path),
                committed_batches=batches,
                inserted=inserted,
                exc_info=True,
            )
            raise _seed_error(f"Seed dataset could not be decoded: {exc}") from exc
        except aiosqlite.Error as exc:
            log.warning(
                "catalog_seed_failed",
                reason="store_error",
                committed_batches=batches,
                inserted=inserted,
                exc_info=True,
            )
            raise _seed_error(f"Offline catalog rejected a seed batch: {exc}") from exc

        log.info(
            "catalog_seed_complete",
            inserted=inserted,
            invalid_rows=invalid,
            batches=batches,
        )
        return inserted

    async def _commit(self, batch: list[CatalogEntry], *, batch_number: int) -> int:
        inserted = await self._store.insert_batch(batch)
        log.debug(
            "catalog_seed_batch_committed",
            batch=batch_number,
            rows=len(batch),
            inserted=inserted,
        )
        return inserted


def _seed_error(message: str) -> IcdLookupError:
    return IcdLookupError(
        code=ErrorCode.SEED_FAILED,
        message=message,
        suggestion=(
            "Offline search will only cover the rows imported so far. "
            "Replace the dataset file and restart to resume the import."
        ),
        recoverable=True,
    )
