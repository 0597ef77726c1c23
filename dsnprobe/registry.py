"""Scheme-based dispatch from a URI to the adapter that understands it."""

from __future__ import annotations

import importlib.metadata as metadata
import inspect
import logging
from typing import Iterable, Iterator

from .adapters import BUILTIN_ADAPTERS, Adapter
from .config import ProbeSettings
from .errors import NoMatchingAdapterError, RegistryFrozenError
from .models import Endpoint

LOG = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "dsnprobe.adapters"


class AdapterRegistry:
    """Ordered collection of adapter types; first match wins."""

    def __init__(self, adapters: Iterable[type[Adapter]] = ()) -> None:
        self._adapters: list[type[Adapter]] = []
        self._frozen = False
        self.register_many(adapters)

    def register(self, adapter: type[Adapter]) -> None:
        """Append an adapter type to the dispatch order."""

        if self._frozen:
            raise RegistryFrozenError(f"Cannot register {adapter!r}: registry is frozen")
        if not (inspect.isclass(adapter) and issubclass(adapter, Adapter)):
            raise TypeError(f"{adapter!r} is not an Adapter subclass")
        if adapter not in self._adapters:
            self._adapters.append(adapter)

    def register_many(self, adapters: Iterable[type[Adapter]]) -> None:
        for adapter in adapters:
            self.register(adapter)

    def discover(self, group: str = ENTRY_POINT_GROUP) -> list[type[Adapter]]:
        """Register third-party adapters exposed through entry points."""

        found: list[type[Adapter]] = []
        group_eps = metadata.entry_points().select(group=group)
        for entry_point in sorted(group_eps, key=lambda ep: ep.name):
            try:
                adapter = entry_point.load()
                self.register(adapter)
            except RegistryFrozenError:
                raise
            except Exception:
                LOG.exception("Skipping adapter that failed to load", extra={"entry_point": entry_point.name})
                continue
            LOG.debug("Registered adapter from entry point", extra={"entry_point": entry_point.name})
            found.append(adapter)
        return found

    def freeze(self) -> AdapterRegistry:
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __iter__(self) -> Iterator[type[Adapter]]:
        return iter(tuple(self._adapters))

    def __len__(self) -> int:
        return len(self._adapters)

    def detect(self, uri: str | Endpoint, *, settings: ProbeSettings | None = None) -> Adapter | None:
        """Return an adapter for ``uri``, or ``None`` when no type claims it.

        Malformed input raises ``InvalidURIError`` before any adapter is built.
        """

        endpoint = uri if isinstance(uri, Endpoint) else Endpoint.parse(uri)
        for adapter_cls in self._adapters:
            if not adapter_cls.handles(endpoint):
                continue
            adapter = adapter_cls(endpoint, settings=settings)
            if adapter.is_valid():
                LOG.debug("Dispatched URI", extra={"adapter": adapter_cls.__name__, "scheme": endpoint.scheme})
                return adapter
        LOG.debug("No adapter claims URI", extra={"scheme": endpoint.scheme})
        return None

    def require(self, uri: str | Endpoint, *, settings: ProbeSettings | None = None) -> Adapter:
        adapter = self.detect(uri, settings=settings)
        if adapter is None:
            raise NoMatchingAdapterError(f"No adapter handles {uri if isinstance(uri, str) else uri.raw!r}")
        return adapter


def default_registry(*, discover: bool = True) -> AdapterRegistry:
    """Built-in adapters in dispatch order, then entry-point adapters, frozen."""

    registry = AdapterRegistry(BUILTIN_ADAPTERS)
    if discover:
        registry.discover()
    return registry.freeze()


__all__ = ["AdapterRegistry", "ENTRY_POINT_GROUP", "default_registry"]
