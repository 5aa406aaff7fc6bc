"""Authenticated search client for the WHO ICD-API.

All registry traffic goes through one httpx.AsyncClient shared by the
TokenManager and the RemoteSearchClient. The lifespan owns the client
lifecycle; both components receive it via constructor injection.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import structlog

from icdlookup import __version__
from icdlookup.errors import ErrorCode, IcdLookupError
from icdlookup.parser import parse_search_payload

if TYPE_CHECKING:
    from icdlookup.config import RegistrySettings
    from icdlookup.models.search import SearchResult
    from icdlookup.tokens import Credential, TokenManager

log = structlog.get_logger()

MIN_QUERY_LENGTH = 3
_TRANSIENT_STATUS_CODES = frozenset({408, 429})


def build_http_client(settings: RegistrySettings | None = None) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    timeout = settings.timeout_seconds if settings is not None else 10.0
    return httpx.AsyncClient(
        follow_redirects=False,
        timeout=httpx.Timeout(timeout),
        headers={"User-Agent": f"icdlookup/{__version__}"},
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


class RemoteSearchClient:
    """Searches the MMS linearization, retrying once on a rejected token."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        tokens: TokenManager,
        *,
        search_url: str,
        api_version: str = "v2",
        default_language: str = "es",
        min_query_length: int = MIN_QUERY_LENGTH,
    ) -> None:
        self._client = client
        self._tokens = tokens
        self._search_url = search_url
        self._api_version = api_version
        self._default_language = default_language
        self._min_query_length = min_query_length

    async def search(
        self,
        text: str,
        offset: int = 0,
        limit: int = 25,
        language: str | None = None,
    ) -> list[SearchResult]:
        """Search the registry.

        Queries shorter than the minimum length return an empty list without
        touching the network. Raises IcdLookupError with NETWORK_ERROR,
        AUTH_FAILED, PARSE_FAILED or CONFIG_MISSING.
        """
        trimmed = text.strip()
        if len(trimmed) < self._min_query_length:
            log.debug("search_skipped", reason="query_too_short", length=len(trimmed))
            return []

        language = language or self._default_language
        params = {
            "q": trimmed,
            "flatResults": "true",
            "offset": str(offset),
            "limit": str(limit),
        }

        credential = await self._tokens.get_valid_credential()
        response = await self._get(params, credential, language)

        if response.status_code == 401:
            # Token expired or revoked mid-session: refresh and retry exactly once
            log.info("search_auth_retry", query=trimmed)
            self._tokens.invalidate(credential)
            credential = await self._tokens.get_valid_credential()
            response = await self._get(params, credential, language)
            if not response.is_success:
                log.warning("search_auth_failed", status_code=response.status_code)
                raise IcdLookupError(
                    code=ErrorCode.AUTH_FAILED,
                    message=(
                        f"ICD-API rejected the request after a token refresh "
                        f"(HTTP {response.status_code})"
                    ),
                    suggestion="Check that the ICD-API client credentials are still valid.",
                    recoverable=False,
                )

        if not response.is_success:
            status = response.status_code
            log.warning("search_http_error", status_code=status)
            raise IcdLookupError(
                code=ErrorCode.NETWORK_ERROR,
                message=f"HTTP {status} from ICD-API search",
                suggestion="The ICD-API may be temporarily unavailable.",
                recoverable=status >= 500 or status in _TRANSIENT_STATUS_CODES,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            log.warning("search_parse_error", reason="invalid_json")
            raise IcdLookupError(
                code=ErrorCode.PARSE_FAILED,
                message="ICD-API search response is not valid JSON",
                suggestion="The ICD-API returned an unexpected response.",
                recoverable=False,
            ) from exc

        results = parse_search_payload(payload)
        log.info("search_complete", query=trimmed, result_count=len(results))
        return results

    async def _get(
        self,
        params: dict[str, str],
        credential: Credential,
        language: str,
    ) -> httpx.Response:
        try:
            return await self._client.get(
                self._search_url,
                params=params,
                headers={
                    "Authorization": f"Bearer {credential.bearer_token}",
                    "Accept": "application/json",
                    "API-Version": self._api_version,
                    "Accept-Language": language,
                },
            )
        except httpx.HTTPError as exc:
            log.warning("search_network_error", error=str(exc))
            raise IcdLookupError(
                code=ErrorCode.NETWORK_ERROR,
                message=f"Network error contacting ICD-API: {exc}",
                suggestion="Check the network connection; results are served offline.",
                recoverable=True,
            ) from exc
