"""Error taxonomy shared by provider adapters and the organiser."""

from __future__ import annotations

from enum import Enum

_HTTP_CLIENT_ERROR = 400
_HTTP_SERVER_ERROR = 500


class ErrorCode(str, Enum):
    """Kinds of failure a provider call or config lookup can produce."""

    AUTH_ERROR = "AUTH_ERROR"
    ENDPOINT_NOT_FOUND = "ENDPOINT_NOT_FOUND"
    RATE_LIMIT = "RATE_LIMIT"
    NETWORK_ERROR = "NETWORK_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    CONFIG_NOT_FOUND = "CONFIG_NOT_FOUND"
    CANCELLED = "CANCELLED"


class CuratorError(RuntimeError):
    """Base class for every error raised by bookmark curator."""


class ProviderError(CuratorError):
    """Structured failure surfaced by a provider adapter."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        provider: str | None = None,
        status: int | None = None,
        raw: object = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.provider = provider
        self.status = status
        self.raw = raw

    def __str__(self) -> str:
        prefix = f"[{self.provider}] " if self.provider else ""
        return f"{prefix}{self.code.value}: {self.message}"


class ConfigNotFoundError(CuratorError):
    """Raised when no AI configuration or group can be resolved."""

    code = ErrorCode.CONFIG_NOT_FOUND


class OperationCancelledError(CuratorError):
    """Raised by the transport when the shared cancellation token fires."""

    code = ErrorCode.CANCELLED


class ConfigValidationError(CuratorError):
    """Raised when a settings change would break a config-store invariant."""


class OrganiserStateError(CuratorError):
    """Raised on an illegal organiser state transition."""


def classify_status(status: int) -> ErrorCode:
    """Map a non-2xx HTTP status onto the error taxonomy."""
    if status in {401, 403}:
        return ErrorCode.AUTH_ERROR
    if status == 404:  # noqa: PLR2004
        return ErrorCode.ENDPOINT_NOT_FOUND
    if status == 429:  # noqa: PLR2004
        return ErrorCode.RATE_LIMIT
    if status >= _HTTP_SERVER_ERROR:
        return ErrorCode.NETWORK_ERROR
    return ErrorCode.PROVIDER_ERROR


def is_client_error(status: int) -> bool:
    """Return True for 4xx statuses."""
    return _HTTP_CLIENT_ERROR <= status < _HTTP_SERVER_ERROR
