"""Builds the bundled catalog dataset by walking the MMS tree on the ICD-API.

Run once per release, outside the server:

    icdlookup-generate-seed --output icd11_mms_es.json
    icdlookup-generate-seed --base-url http://localhost --requests-per-second 0

The second form targets a local ``whoicd/icd-api`` container, which needs no
throttling. Rows are appended to the output as entities are fetched, so memory
stays flat across the tens of thousands of entities in a release. The file is
written under a temporary name and moved into place only when the walk ends.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import re
import time
from contextlib import suppress
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
import structlog
from pydantic import ValidationError

from icdlookup.client import build_http_client
from icdlookup.config import Settings
from icdlookup.credentials import CredentialStore
from icdlookup.errors import ErrorCode, IcdLookupError
from icdlookup.models.catalog import SeedRow
from icdlookup.parser import strip_highlight_markup
from icdlookup.server import setup_logging
from icdlookup.tokens import TokenManager

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence
    from typing import TextIO

    from icdlookup.tokens import Credential

log = structlog.get_logger()

PROGRESS_EVERY = 500

# Entity links in API responses always name the public host
_WHO_ID_PREFIX = re.compile(r"^https?://id\.who\.int")


class RequestThrottle:
    """Spaces requests at least ``1 / requests_per_second`` apart; 0 disables it."""

    def __init__(
        self,
        requests_per_second: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if requests_per_second < 0:
            raise ValueError("requests_per_second must not be negative")
        self._interval = 1.0 / requests_per_second if requests_per_second else 0.0
        self._clock = clock
        self._sleep = sleep
        self._next_slot = float("-inf")
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        if not self._interval:
            return
        async with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot)
            if slot > now:
                await self._sleep(slot - now)
            self._next_slot = slot + self._interval


@dataclass
class GeneratorStats:
    requests: int = 0
    rows_written: int = 0
    skipped: int = 0  # Entities without a usable title or kind
    errors: int = 0  # Entities that could not be fetched or decoded


def _child_uris(entity: dict) -> list[str]:
    children = entity.get("child")
    if not isinstance(children, list):
        return []
    return [child for child in children if isinstance(child, str) and child]


def _entity_title(entity: dict) -> str:
    # Either a plain string or a language-tagged {"@language", "@value"} object
    title = entity.get("title")
    if isinstance(title, dict):
        title = title.get("@value")
    if not isinstance(title, str):
        return ""
    return strip_highlight_markup(title)


def _entity_code(entity: dict) -> str:
    for key in ("code", "codeRange", "blockId"):
        value = entity.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


class CatalogGenerator:
    """Walks the MMS linearization depth first and writes one row per entity."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        tokens: TokenManager,
        *,
        base_url: str,
        release: str,
        api_version: str = "v2",
        language: str = "es",
        throttle: RequestThrottle | None = None,
    ) -> None:
        self._client = client
        self._tokens = tokens
        self._base_url = base_url.rstrip("/")
        self._root_url = f"{self._base_url}/icd/release/11/{release}/mms"
        self._api_version = api_version
        self._language = language
        self._throttle = throttle or RequestThrottle(0)

    async def generate(self, output: Path) -> GeneratorStats:
        """Write the whole MMS tree to ``output`` as a JSON array.

        Entities that fail to load are logged, counted and skipped along with
        their subtree. Raises IcdLookupError when the MMS root cannot be read,
        and lets AUTH_FAILED or CONFIG_MISSING from the token manager
        propagate. On failure ``output`` is left untouched.
        """
        stats = GeneratorStats()
        root = await self._fetch(self._root_url, stats)
        if root is None:
            raise IcdLookupError(
                code=ErrorCode.NETWORK_ERROR,
                message=f"Could not fetch the MMS root at {self._root_url}",
                suggestion="Check the base URL and release, and that the registry is reachable.",
                recoverable=True,
            )
        chapters = _child_uris(root)
        if not chapters:
            raise IcdLookupError(
                code=ErrorCode.PARSE_FAILED,
                message="MMS root response lists no chapters",
                suggestion="Check that the release exists on this registry.",
            )
        log.info("seed_generation_started", root_url=self._root_url, chapter_count=len(chapters))

        output.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = output.with_suffix(output.suffix + ".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as stream:
                stream.write("[")
                await self._walk(chapters, stream, stats)
                stream.write("\n]\n")
            os.replace(tmp_path, output)
        finally:
            with suppress(OSError):
                tmp_path.unlink(missing_ok=True)

        log.info("seed_generation_complete", output=str(output), **asdict(stats))
        return stats

    async def _walk(self, chapters: list[str], stream: TextIO, stats: GeneratorStats) -> None:
        visited: set[str] = set()
        # (uri, chapter code inherited from the parent); reversed to keep document order
        stack = [(uri, "") for uri in reversed(chapters)]
        while stack:
            uri, chapter_code = stack.pop()
            if uri in visited:
                continue
            visited.add(uri)

            entity = await self._fetch(uri, stats)
            if entity is None:
                continue

            code = _entity_code(entity)
            if entity.get("classKind") == "chapter":
                chapter_code = code

            row = self._row(entity, uri, code, chapter_code)
            if row is None:
                stats.skipped += 1
            else:
                separator = "\n" if stats.rows_written == 0 else ",\n"
                stream.write(separator + json.dumps(row, ensure_ascii=False, sort_keys=True))
                stats.rows_written += 1
                if stats.rows_written % PROGRESS_EVERY == 0:
                    log.info(
                        "seed_generation_progress",
                        rows_written=stats.rows_written,
                        requests=stats.requests,
                        errors=stats.errors,
                    )

            stack.extend((child, chapter_code) for child in reversed(_child_uris(entity)))

    def _row(self, entity: dict, uri: str, code: str, chapter_code: str) -> dict | None:
        title = _entity_title(entity)
        if not title:
            return None
        entity_uri = entity.get("@id")
        try:
            row = SeedRow(
                code=code,
                title=title,
                uri=entity_uri if isinstance(entity_uri, str) and entity_uri else uri,
                class_kind=entity.get("classKind"),
                chapter_code=chapter_code,
            )
        except ValidationError:
            log.warning("seed_entity_skipped", uri=uri, class_kind=entity.get("classKind"))
            return None
        return row.model_dump(mode="json", by_alias=True)

    async def _fetch(self, uri: str, stats: GeneratorStats) -> dict | None:
        url = _WHO_ID_PREFIX.sub(lambda _: self._base_url, uri)

        credential = await self._tokens.get_valid_credential()
        response = await self._get(url, credential, stats)
        if response is not None and response.status_code == 401:
            log.info("seed_auth_retry", url=url)
            self._tokens.invalidate(credential)
            credential = await self._tokens.get_valid_credential()
            response = await self._get(url, credential, stats)

        if response is None:
            stats.errors += 1
            return None
        if not response.is_success:
            log.warning("seed_http_error", url=url, status_code=response.status_code)
            stats.errors += 1
            return None
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            log.warning("seed_parse_error", url=url)
            stats.errors += 1
            return None
        return payload

    async def _get(
        self, url: str, credential: Credential, stats: GeneratorStats
    ) -> httpx.Response | None:
        await self._throttle.wait()
        stats.requests += 1
        try:
            return await self._client.get(
                url,
                headers={
                    "Authorization": f"Bearer {credential.bearer_token}",
                    "Accept": "application/json",
                    "API-Version": self._api_version,
                    "Accept-Language": self._language,
                },
            )
        except httpx.HTTPError as exc:
            log.warning("seed_network_error", url=url, error=str(exc))
            return None


async def generate_catalog(settings: Settings, output: Path) -> GeneratorStats:
    """Generate the dataset with the registry, credentials and throttle from ``settings``."""
    registry = settings.registry
    async with build_http_client(registry) as client:
        tokens = TokenManager(
            client,
            CredentialStore(settings.credentials.path),
            token_url=registry.token_url,
            scope=registry.scope,
            safety_margin_seconds=registry.token_safety_margin_seconds,
        )
        generator = CatalogGenerator(
            client,
            tokens,
            base_url=registry.base_url,
            release=registry.release,
            api_version=registry.api_version,
            language=registry.language,
            throttle=RequestThrottle(settings.generator.requests_per_second),
        )
        return await generator.generate(output)


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    registry_updates = {
        key: value
        for key, value in (
            ("base_url", args.base_url),
            ("release", args.release),
            ("language", args.language),
        )
        if value is not None
    }
    updates: dict[str, object] = {
        "registry": settings.registry.model_copy(update=registry_updates),
    }
    if args.requests_per_second is not None:
        updates["generator"] = settings.generator.model_copy(
            update={"requests_per_second": args.requests_per_second}
        )
    return settings.model_copy(update=updates)


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="icdlookup-generate-seed",
        description="Build the offline ICD-11 catalog dataset by walking the MMS tree.",
    )
    parser.add_argument(
        "--output",
        type=Path,
        help="Where to write the JSON array (default: catalog.seed_path)",
    )
    parser.add_argument(
        "--base-url",
        help="Registry base URL, e.g. http://localhost for a local ICD-API container",
    )
    parser.add_argument("--release", help="MMS release, e.g. 2024-01")
    parser.add_argument("--language", help="Title language, e.g. es")
    parser.add_argument(
        "--requests-per-second",
        type=float,
        help="Request rate limit; 0 disables throttling",
    )
    args = parser.parse_args(argv)
    if args.requests_per_second is not None and args.requests_per_second < 0:
        parser.error("--requests-per-second must not be negative")

    settings = _apply_overrides(Settings(), args)
    setup_logging(settings)

    output = args.output
    if output is None and settings.catalog.seed_path:
        output = Path(settings.catalog.seed_path)
    if output is None:
        parser.error("--output is required when catalog.seed_path is not set")

    try:
        stats = asyncio.run(generate_catalog(settings, output.expanduser()))
    except IcdLookupError as exc:
        log.error("seed_generation_failed", code=exc.code, message=exc.message)
        return 1
    return 0 if stats.rows_written else 1


if __name__ == "__main__":
    raise SystemExit(main())
