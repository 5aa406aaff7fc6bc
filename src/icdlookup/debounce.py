"""Debounced, last-intent-wins search for a single input field.

Every keystroke calls ``DebouncedSearch.search``. A call waits for the input
to stay stable for the debounce window before reaching the facade. A newer
call cancels the older call's pending timer, and if the older call is
already in flight its outcome is discarded when it resolves. Superseded
calls return ``None``.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from icdlookup.errors import IcdLookupError
from icdlookup.lookup import LookupOutcome

if TYPE_CHECKING:
    from icdlookup.lookup import LookupFacade

log = structlog.get_logger()

DEFAULT_DEBOUNCE_SECONDS = 0.4


class DebouncedSearch:
    def __init__(
        self,
        facade: LookupFacade,
        *,
        delay_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        min_query_length: int = 3,
    ) -> None:
        self._facade = facade
        self._delay = delay_seconds
        self._min_query_length = min_query_length
        self._generation = 0
        self._timer: asyncio.Task[None] | None = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def delay_seconds(self) -> float:
        return self._delay

    @property
    def min_query_length(self) -> int:
        return self._min_query_length

    async def search(self, text: str) -> LookupOutcome | None:
        """Run a lookup for ``text`` unless a newer call supersedes it."""
        generation = self._supersede()

        trimmed = text.strip()
        if len(trimmed) < self._min_query_length:
            return LookupOutcome(query=trimmed)

        timer = asyncio.create_task(asyncio.sleep(self._delay))
        self._timer = timer
        try:
            await timer
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise  # The caller itself was cancelled
            log.debug("search_superseded", stage="debounce", query=trimmed)
            return None
        finally:
            if self._timer is timer:
                self._timer = None

        try:
            outcome = await self._facade.lookup(trimmed)
        except IcdLookupError:
            if generation != self._generation:
                log.debug("search_superseded", stage="in_flight", query=trimmed)
                return None
            raise

        if generation != self._generation:
            log.debug("search_superseded", stage="in_flight", query=trimmed)
            return None
        return outcome

    def cancel(self) -> None:
        """Supersede any pending search without starting a new one."""
        self._supersede()

    def _supersede(self) -> int:
        self._generation += 1
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        return self._generation
