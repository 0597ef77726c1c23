"""Inspect a connection URI and report what sits behind it."""

from __future__ import annotations

import functools

from .adapters import Adapter
from .config import ProbeSettings
from .errors import InvalidURIError, NoMatchingAdapterError
from .models import AccessLevel
from .registry import AdapterRegistry, default_registry
from .results import Outcome, ProbeResult

__version__ = "0.1.0"


@functools.lru_cache(maxsize=1)
def get_registry() -> AdapterRegistry:
    """The process-wide default registry, built and frozen on first use."""

    return default_registry()


def detect(uri: str, *, settings: ProbeSettings | None = None) -> Adapter | None:
    return get_registry().detect(uri, settings=settings)


__all__ = [
    "AccessLevel",
    "Adapter",
    "AdapterRegistry",
    "InvalidURIError",
    "NoMatchingAdapterError",
    "Outcome",
    "ProbeResult",
    "ProbeSettings",
    "__version__",
    "detect",
    "get_registry",
]
