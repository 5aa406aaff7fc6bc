from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    INVALID_INPUT = "INVALID_INPUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    AUTH_FAILED = "AUTH_FAILED"
    PARSE_FAILED = "PARSE_FAILED"
    CONFIG_MISSING = "CONFIG_MISSING"
    SEED_FAILED = "SEED_FAILED"


# Remote failures that send a lookup to the offline catalog instead of the caller.
FALLBACK_CODES: frozenset[ErrorCode] = frozenset(
    {
        ErrorCode.NETWORK_ERROR,
        ErrorCode.AUTH_FAILED,
        ErrorCode.PARSE_FAILED,
        ErrorCode.CONFIG_MISSING,
    }
)


class IcdLookupError(Exception):
    """Raised for all expected failure conditions of the lookup subsystem.

    The facade absorbs remote failures into the offline fallback and only
    re-raises them when the offline catalog has nothing to offer. Tool
    handlers let it propagate to server.py, which serialises it into the
    MCP error response.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }
