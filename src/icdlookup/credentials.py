"""Client credentials for the WHO ICD-API.

The credentials file is kept out of version control. It is a YAML (or JSON)
mapping with two keys::

    clientId: "..."
    clientSecret: "..."

The file is re-read on every token refresh so that it can be dropped in
place without restarting the host application.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import structlog
import yaml

from icdlookup.errors import ErrorCode, IcdLookupError

log = structlog.get_logger()


@dataclass(frozen=True)
class ClientCredentials:
    client_id: str
    client_secret: str

    def __repr__(self) -> str:
        return f"ClientCredentials(client_id={self.client_id!r}, client_secret='***')"


class CredentialStore:
    """Reads client credentials from the local credentials file."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> ClientCredentials:
        """Return the configured credentials. Raises IcdLookupError(CONFIG_MISSING)."""
        if not self._path.is_file():
            log.warning("credentials_missing", path=str(self._path))
            raise _config_error(f"Credentials file not found: {self._path}")

        try:
            data = yaml.safe_load(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
            log.warning("credentials_unreadable", path=str(self._path), exc_info=True)
            raise _config_error(f"Credentials file could not be read: {self._path}") from exc

        if not isinstance(data, dict):
            raise _config_error(f"Credentials file must contain a mapping: {self._path}")

        client_id = data.get("clientId")
        client_secret = data.get("clientSecret")
        if not isinstance(client_id, str) or not client_id.strip():
            raise _config_error("Credentials file has no 'clientId' string.")
        if not isinstance(client_secret, str) or not client_secret.strip():
            raise _config_error("Credentials file has no 'clientSecret' string.")

        return ClientCredentials(client_id=client_id.strip(), client_secret=client_secret.strip())


def _config_error(message: str) -> IcdLookupError:
    return IcdLookupError(
        code=ErrorCode.CONFIG_MISSING,
        message=message,
        suggestion=(
            "Create the credentials file with 'clientId' and 'clientSecret' keys "
            "from your WHO ICD-API account, or set ICDLOOKUP__CREDENTIALS__PATH."
        ),
        recoverable=False,
    )
