"""Tool handler for search_diagnoses.

Receives AppState, delegates to the LookupFacade, and returns a structured
dict. No MCP or FastMCP imports; server.py handles the MCP wiring.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from icdlookup.errors import ErrorCode, IcdLookupError
from icdlookup.models.tools import SearchDiagnosesInput, SearchDiagnosesOutput

if TYPE_CHECKING:
    from icdlookup.state import AppState


async def handle(query: str, offset: int, limit: int, state: AppState) -> dict:
    """Handle a search_diagnoses tool call."""
    log = structlog.get_logger().bind(tool="search_diagnoses", query=query)
    log.info("handler_called")

    try:
        validated = SearchDiagnosesInput(query=query, offset=offset, limit=limit)
    except ValidationError as exc:
        raise IcdLookupError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion=(
                "Provide a diagnosis term of at most 500 characters, "
                "offset >= 0 and 1 <= limit <= 100."
            ),
            recoverable=False,
        ) from exc

    if state.facade is None:
        raise RuntimeError("Lookup facade not initialized")

    outcome = await state.facade.lookup(
        validated.query,
        offset=validated.offset,
        limit=validated.limit,
    )
    log.info(
        "search_diagnoses_complete",
        source=outcome.source,
        degraded=outcome.degraded,
        result_count=len(outcome.results),
    )

    output = SearchDiagnosesOutput(
        query=outcome.query,
        results=outcome.results,
        source=outcome.source,
        degraded=outcome.degraded,
        remote_error=outcome.remote_error.code if outcome.remote_error else None,
    )
    return output.model_dump(mode="json")
