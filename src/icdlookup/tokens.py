"""OAuth2 bearer token lifecycle for the WHO ICD-API.

TokenManager is the only owner of the cached credential. Refreshes are
single-flight: while a token request is in progress, every caller awaits
the same task instead of issuing its own request.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import httpx
import structlog

from icdlookup.errors import ErrorCode, IcdLookupError
from icdlookup.models.search import TokenResponse

if TYPE_CHECKING:
    from collections.abc import Callable

    from icdlookup.credentials import CredentialStore

log = structlog.get_logger()

DEFAULT_SAFETY_MARGIN_SECONDS = 60


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Credential:
    bearer_token: str
    expires_at: datetime  # Declared expiry minus the safety margin

    def __repr__(self) -> str:
        return f"Credential(bearer_token='***', expires_at={self.expires_at.isoformat()})"


class TokenManager:
    """Caches one bearer credential and refreshes it before it expires."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        credentials: CredentialStore,
        *,
        token_url: str,
        scope: str = "icdapi_access",
        safety_margin_seconds: int = DEFAULT_SAFETY_MARGIN_SECONDS,
        timeout: float | httpx.Timeout = 10.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self._credentials = credentials
        self._token_url = token_url
        self._scope = scope
        self._safety_margin = timedelta(seconds=safety_margin_seconds)
        self._timeout = timeout
        self._clock = clock
        self._credential: Credential | None = None
        self._refresh_task: asyncio.Task[Credential] | None = None

    async def get_valid_credential(self) -> Credential:
        """Return a credential that is not within the safety margin of expiry.

        Raises IcdLookupError with AUTH_FAILED when the token request fails and
        CONFIG_MISSING when no client credentials are configured.
        """
        credential = self._credential
        if credential is not None and credential.expires_at > self._clock():
            return credential

        task = self._refresh_task
        if task is None:
            task = asyncio.create_task(self._refresh())
            task.add_done_callback(self._on_refresh_done)
            self._refresh_task = task
        else:
            log.debug("token_refresh_joined")

        # Shielded so a cancelled caller does not abort the refresh for the others
        return await asyncio.shield(task)

    def invalidate(self, rejected: Credential | None = None) -> None:
        """Drop the cached credential so the next call refreshes it.

        When ``rejected`` is given, the cache is only cleared if it still holds
        that credential; a newer one obtained by a concurrent caller is kept.
        """
        if rejected is not None and self._credential is not rejected:
            return
        if self._credential is not None:
            log.info("token_invalidated")
        self._credential = None

    def _on_refresh_done(self, task: asyncio.Task[Credential]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if not task.cancelled():
            # Mark the exception retrieved when every waiter has gone away
            task.exception()

    async def _refresh(self) -> Credential:
        client_credentials = self._credentials.load()
        log.info("token_refresh_started", url=self._token_url)

        try:
            response = await self._client.post(
                self._token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": client_credentials.client_id,
                    "client_secret": client_credentials.client_secret,
                    "scope": self._scope,
                },
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            log.warning("token_refresh_failed", reason="network_error", error=str(exc))
            raise _auth_error(
                f"Network error requesting access token: {exc}", recoverable=True
            ) from exc

        if not response.is_success:
            log.warning(
                "token_refresh_failed", reason="http_status", status_code=response.status_code
            )
            raise _auth_error(
                f"HTTP {response.status_code} from token endpoint",
                recoverable=response.status_code >= 500,
            )

        try:
            token = TokenResponse.model_validate(response.json())
        except ValueError as exc:
            log.warning("token_refresh_failed", reason="invalid_body", exc_info=True)
            raise _auth_error("Token endpoint returned an unexpected response body") from exc

        lifetime = timedelta(seconds=token.expires_in)
        if lifetime <= self._safety_margin:
            log.warning(
                "token_refresh_failed",
                reason="lifetime_below_margin",
                expires_in=token.expires_in,
            )
            raise _auth_error(
                f"Access token lifetime ({token.expires_in}s) is shorter than the safety margin"
            )

        credential = Credential(
            bearer_token=token.access_token,
            expires_at=self._clock() + lifetime - self._safety_margin,
        )
        self._credential = credential
        log.info("token_refresh_complete", expires_at=credential.expires_at.isoformat())
        return credential


def _auth_error(message: str, *, recoverable: bool = False) -> IcdLookupError:
    return IcdLookupError(
        code=ErrorCode.AUTH_FAILED,
        message=message,
        suggestion="Check the ICD-API client credentials and network connectivity.",
        recoverable=recoverable,
    )
