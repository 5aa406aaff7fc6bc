"""Background startup coroutines."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from icdlookup.errors import IcdLookupError

if TYPE_CHECKING:
    from icdlookup.state import AppState

log = structlog.get_logger()


async def run_catalog_seed(state: AppState) -> int:
    """Seed the offline catalog once. Never raises.

    Runs as a background task so the first interactive search is not blocked;
    offline searches during the import see the batches committed so far.
    """
    if state.seeder is None:
        return 0

    try:
        return await state.seeder.seed_if_needed(state.settings.catalog.seed_path)
    except IcdLookupError as exc:
        log.warning("catalog_seed_failed", code=exc.code, message=exc.message)
    except Exception:
        log.error("catalog_seed_unexpected_error", exc_info=True)
    return 0
