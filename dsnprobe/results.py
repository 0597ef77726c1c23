"""Result wrapper distinguishing success, degraded success and absence."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from .errors import ErrorRecord

T = TypeVar("T")


class Outcome(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    ABSENT = "absent"


@dataclass(frozen=True, slots=True)
class ProbeResult(Generic[T]):
    """Value returned by every adapter accessor."""

    outcome: Outcome
    value: T | None = None
    error: ErrorRecord | None = None
    note: str | None = None

    @classmethod
    def ok(cls, value: T) -> ProbeResult[T]:
        return cls(Outcome.OK, value)

    @classmethod
    def degraded(cls, value: T, *, error: ErrorRecord | None = None, note: str | None = None) -> ProbeResult[T]:
        return cls(Outcome.DEGRADED, value, error=error, note=note)

    @classmethod
    def absent(cls, error: ErrorRecord | None = None, *, note: str | None = None) -> ProbeResult[T]:
        return cls(Outcome.ABSENT, None, error=error, note=note)

    @property
    def is_ok(self) -> bool:
        return self.outcome is Outcome.OK

    @property
    def is_degraded(self) -> bool:
        return self.outcome is Outcome.DEGRADED

    @property
    def is_absent(self) -> bool:
        return self.outcome is Outcome.ABSENT

    def unwrap_or(self, default: T) -> T:
        """Return the value, or ``default`` when nothing could be determined."""

        if self.outcome is Outcome.ABSENT:
            return default
        return self.value  # type: ignore[return-value]


__all__ = ["Outcome", "ProbeResult"]
