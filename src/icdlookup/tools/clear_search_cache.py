"""Tool handler for clear_search_cache."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from icdlookup.models.tools import ClearSearchCacheOutput

if TYPE_CHECKING:
    from icdlookup.state import AppState


async def handle(state: AppState) -> dict:
    """Handle a clear_search_cache tool call."""
    log = structlog.get_logger().bind(tool="clear_search_cache")
    log.info("handler_called")

    if state.facade is None:
        raise RuntimeError("Lookup facade not initialized")

    cleared = state.facade.clear_cache()
    return ClearSearchCacheOutput(cleared=cleared).model_dump(mode="json")
