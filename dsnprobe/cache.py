"""Per-adapter memoization of expensive introspection calls."""

from __future__ import annotations

import functools
import inspect
import logging
from typing import Any, Callable, Hashable, Iterator, TypeVar

from .results import Outcome, ProbeResult

LOG = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., ProbeResult[Any]])


class MetadataCache:
    """Stores the first successful or degraded result for each key.

    Absent results are never stored so that a transient failure can be retried
    on the next call, while a degraded answer is treated as stable.
    """

    def __init__(self) -> None:
        self._entries: dict[Hashable, ProbeResult[Any]] = {}

    def fetch(self, key: Hashable, compute: Callable[[], ProbeResult[Any]]) -> ProbeResult[Any]:
        if key in self._entries:
            return self._entries[key]
        result = compute()
        if result.outcome is not Outcome.ABSENT:
            self._entries[key] = result
        else:
            LOG.debug("Not caching absent result", extra={"cache_key": key})
        return result

    def peek(self, key: Hashable) -> ProbeResult[Any] | None:
        return self._entries.get(key)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Hashable]:
        return iter(tuple(self._entries))


def cached(name: str, *, scoped: bool = False) -> Callable[[F], F]:
    """Memoize an adapter accessor in the instance's ``_cache``.

    Scoped accessors add their bound call arguments to the key, defaults
    included, so ``tables("a")`` and ``tables("b")`` are cached separately while
    ``tables("a")`` and ``tables(database="a")`` share an entry.
    """

    def decorator(method: F) -> F:
        signature = inspect.signature(method)

        @functools.wraps(method)
        def wrapper(self: Any, *args: Any, **kwargs: Any) -> ProbeResult[Any]:
            key: Hashable = name
            if scoped:
                bound = signature.bind(self, *args, **kwargs)
                bound.apply_defaults()
                key = (name, *list(bound.arguments.values())[1:])
            return self._cache.fetch(key, lambda: method(self, *args, **kwargs))

        return wrapper  # type: ignore[return-value]

    return decorator


__all__ = ["MetadataCache", "cached"]
