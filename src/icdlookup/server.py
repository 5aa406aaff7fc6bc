"""MCP server entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState via the FastMCP lifespan context manager
- Start the offline catalog seed in the background
- Register tools and run the stdio transport
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog
from mcp.server.fastmcp import Context, FastMCP
from mcp.types import CallToolResult, TextContent

import icdlookup.tools.clear_search_cache as t_clear_cache
import icdlookup.tools.search_diagnoses as t_search
from icdlookup import __version__
from icdlookup.cache import ResultCache
from icdlookup.catalog import OfflineCatalogStore
from icdlookup.client import RemoteSearchClient, build_http_client
from icdlookup.config import Settings
from icdlookup.credentials import CredentialStore
from icdlookup.debounce import DebouncedSearch
from icdlookup.errors import IcdLookupError
from icdlookup.lookup import LookupFacade
from icdlookup.offline import OfflineSearchIndex
from icdlookup.schedulers import run_catalog_seed
from icdlookup.seeder import CatalogSeeder
from icdlookup.state import AppState
from icdlookup.tokens import TokenManager

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # Logs go to stderr; stdout is reserved for the MCP JSON-RPC stream
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


async def build_state(settings: Settings, db: aiosqlite.Connection) -> AppState:
    """Wire every lookup component around an open catalog connection."""
    store = OfflineCatalogStore(db)
    await store.init_db()

    http_client = build_http_client(settings.registry)

    tokens = TokenManager(
        http_client,
        CredentialStore(settings.credentials.path),
        token_url=settings.registry.token_url,
        scope=settings.registry.scope,
        safety_margin_seconds=settings.registry.token_safety_margin_seconds,
    )
    remote = RemoteSearchClient(
        http_client,
        tokens,
        search_url=settings.registry.search_url,
        api_version=settings.registry.api_version,
        default_language=settings.registry.language,
        min_query_length=settings.search.min_query_length,
    )

    offline = OfflineSearchIndex(
        store,
        assignable_kinds=settings.search.assignable_kinds,
        min_query_length=settings.search.min_query_length,
    )

    cache = ResultCache()
    facade = LookupFacade(
        cache,
        remote,
        offline,
        default_limit=settings.search.default_limit,
        default_language=settings.registry.language,
        min_query_length=settings.search.min_query_length,
    )
    # Used by interactive hosts; MCP tool calls go to the facade directly
    debounced = DebouncedSearch(
        facade,
        delay_seconds=settings.search.debounce_seconds,
        min_query_length=settings.search.min_query_length,
    )
    seeder = CatalogSeeder(
        store,
        batch_size=settings.catalog.batch_size,
        chunk_chars=settings.catalog.read_chunk_chars,
    )

    return AppState(
        settings=settings,
        http_client=http_client,
        tokens=tokens,
        cache=cache,
        facade=facade,
        debounced=debounced,
        store=store,
        seeder=seeder,
    )


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources for the server's lifetime."""
    settings = Settings()
    setup_logging(settings)

    log.info("server_starting", version=__version__, release=settings.registry.release)

    db_path = Path(settings.catalog.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(db_path))

    try:
        state = await build_state(settings, db)
    except BaseException:
        await db.close()
        raise

    # Seeding runs beside query traffic; it must not delay the first search
    seed_task = asyncio.create_task(run_catalog_seed(state))

    log.info("server_started", version=__version__)

    try:
        yield state
    finally:
        seed_task.cancel()
        with suppress(asyncio.CancelledError):
            await seed_task
        if state.http_client is not None:
            await state.http_client.aclose()
        await db.close()
        log.info("server_stopping")


# ---------------------------------------------------------------------------
# FastMCP instance and tool registration
# ---------------------------------------------------------------------------

mcp = FastMCP("icdlookup", lifespan=lifespan)
# FastMCP has no version kwarg; set it on the underlying Server (mcp pinned <2)
# so the MCP initialize handshake reports our version, not the SDK's.
mcp._mcp_server.version = __version__  # pyright: ignore[reportPrivateUsage]


def _serialise_tool_error(error: IcdLookupError) -> CallToolResult:
    """Convert an IcdLookupError to the MCP tool error result envelope."""
    return CallToolResult(
        content=[TextContent(type="text", text=json.dumps(error.to_dict()))],
        isError=True,
    )


@mcp.tool()
async def search_diagnoses(
    query: str, ctx: Context, offset: int = 0, limit: int = 25
) -> object:
    """Search ICD-11 MMS diagnoses by free text.

    Results come from the WHO ICD-API when it is reachable. When it is not,
    they come from the local offline catalog and ``degraded`` is true.
    """
    state: AppState = ctx.request_context.lifespan_context
    try:
        return await t_search.handle(query, offset, limit, state)
    except IcdLookupError as exc:
        log.warning(
            "tool_error",
            tool="search_diagnoses",
            code=exc.code,
            message=exc.message,
            recoverable=exc.recoverable,
        )
        return _serialise_tool_error(exc)
    except Exception:
        log.error("tool_unexpected_error", tool="search_diagnoses", exc_info=True)
        raise


@mcp.tool()
async def clear_search_cache(ctx: Context) -> object:
    """Forget cached search results, e.g. at the end of a clinical session."""
    state: AppState = ctx.request_context.lifespan_context
    try:
        return await t_clear_cache.handle(state)
    except Exception:
        log.error("tool_unexpected_error", tool="clear_search_cache", exc_info=True)
        raise


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
