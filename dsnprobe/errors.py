"""Exception types and the classified error record shared by every adapter."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DsnProbeError(RuntimeError):
    """Base error for dsnprobe failures that reach the caller."""


class InvalidURIError(DsnProbeError, ValueError):
    """Raised when the input string is not a well-formed connection URI."""


class NoMatchingAdapterError(DsnProbeError):
    """Raised by strict dispatch when no registered adapter claims a URI."""


class RegistryFrozenError(DsnProbeError):
    """Raised when registering adapters after the registry has been frozen."""


class ProbeTimeout(DsnProbeError):
    """Raised when a bounded scan runs past its wall-clock cap."""

    def __init__(self, message: str, *, partial: int = 0) -> None:
        super().__init__(message)
        self.partial = partial


class ErrorCategory(str, Enum):
    """Semantic connection error categories shared across backends."""

    AUTHENTICATION_FAILURE = "access denied (auth failure)"
    UNKNOWN_DATABASE = "unknown database"
    CONNECTION_LIMIT_EXCEEDED = "max_user_connections exceeded"
    NETWORK_UNREACHABLE = "server unavailable or network error"
    UNKNOWN_HOST = "unknown host"
    SERVER_RESTARTING = "server restarting"
    CONNECTION_LOST = "connection lost"
    PERMISSION_DENIED = "permission denied"
    GENERAL_ERROR = "general error"

    @property
    def retriable(self) -> bool:
        return self in _RETRIABLE

    @property
    def label(self) -> str:
        return self.value


_RETRIABLE = frozenset(
    {
        ErrorCategory.NETWORK_UNREACHABLE,
        ErrorCategory.SERVER_RESTARTING,
        ErrorCategory.CONNECTION_LOST,
    }
)


@dataclass(frozen=True, slots=True)
class ErrorRecord:
    """Classified outcome of a failed backend operation."""

    message: str
    category: ErrorCategory
    code: int | str | None = None

    @property
    def retriable(self) -> bool:
        return self.category.retriable

    def describe(self) -> str:
        code = f" [{self.code}]" if self.code not in (None, 0, "") else ""
        return f"{self.category.label}{code}: {self.message}"


__all__ = [
    "DsnProbeError",
    "ErrorCategory",
    "ErrorRecord",
    "InvalidURIError",
    "NoMatchingAdapterError",
    "ProbeTimeout",
    "RegistryFrozenError",
]
