"""Wall-clock bounded counting over incremental cursors."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Iterable, Sized

from .errors import ProbeTimeout


@dataclass(frozen=True, slots=True)
class ScanCount:
    count: int
    complete: bool
    elapsed: float


class Deadline:
    """Tracks a fixed time budget against a monotonic clock."""

    def __init__(self, seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._seconds = seconds
        self._started = clock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started

    def check(self, partial: int = 0) -> None:
        if self.elapsed >= self._seconds:
            raise ProbeTimeout(f"scan stopped after {self._seconds:g}s", partial=partial)


def bounded_count(
    pages: Iterable[Sized],
    *,
    timeout: float,
    clock: Callable[[], float] = time.monotonic,
) -> ScanCount:
    """Sum page sizes until the pages run out or ``timeout`` seconds pass.

    The deadline is checked after every page, empty ones included, so a
    cursor walk that matches nothing is still cut off. On timeout the count
    gathered so far is returned with ``complete=False``.
    """

    deadline = Deadline(timeout, clock=clock)
    count = 0
    try:
        for page in pages:
            count += len(page)
            deadline.check(count)
    except ProbeTimeout as exc:
        return ScanCount(count=exc.partial, complete=False, elapsed=deadline.elapsed)
    return ScanCount(count=count, complete=True, elapsed=deadline.elapsed)


__all__ = ["Deadline", "ScanCount", "bounded_count"]
