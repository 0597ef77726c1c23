"""Shared dataclasses describing endpoints and the metadata probed from them."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Sequence, TypeVar
from urllib.parse import SplitResult, unquote, urlsplit

from .errors import InvalidURIError

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*:")


@dataclass(frozen=True, slots=True)
class Endpoint:
    """Immutable view of a parsed connection URI."""

    scheme: str
    host: str
    port: int | None
    user: str | None
    password: str | None
    path: str
    raw: str

    @classmethod
    def parse(cls, uri: str) -> Endpoint:
        """Parse a URI string, raising ``InvalidURIError`` when it is malformed.

        Any ``scheme:rest`` form is accepted; URIs without an authority (such
        as ``mailto:`` or ``urn:``) parse with an empty ``host``.
        """

        if not isinstance(uri, str) or not uri or uri != uri.strip() or any(ch.isspace() for ch in uri):
            raise InvalidURIError(f"Not a URI: {uri!r}")
        if not _SCHEME_RE.match(uri):
            raise InvalidURIError(f"URI is missing a scheme: {uri!r}")
        try:
            parts: SplitResult = urlsplit(uri)
            port = parts.port
        except ValueError as exc:
            raise InvalidURIError(f"Unparseable URI {uri!r}: {exc}") from exc
        return cls(
            scheme=parts.scheme.lower(),
            host=parts.hostname or "",
            port=port,
            user=unquote(parts.username) if parts.username else None,
            password=unquote(parts.password) if parts.password is not None else None,
            path=parts.path,
            raw=uri,
        )

    @property
    def database(self) -> str | None:
        """Path component without its leading slash, ``None`` when empty."""

        name = unquote(self.path.lstrip("/"))
        return name or None

    def with_port(self, default: int) -> int:
        return self.port if self.port is not None else default


@dataclass(frozen=True, slots=True)
class Capabilities:
    """Static declaration of what a backend family can report."""

    kind: str | None
    sql: bool = False
    kv: bool = False
    databases: bool = False
    tables: bool = False


@dataclass(frozen=True, slots=True)
class Identity:
    """Self-description of an endpoint."""

    product: str
    version: str
    database: str | None = None
    user: str | None = None
    build: str | None = None

    @property
    def label(self) -> str:
        text = f"{self.product} {self.version}"
        if self.database:
            text += f" on {self.database}"
        if self.user:
            text += f" ({self.user})"
        return text


@dataclass(frozen=True, slots=True)
class DatabaseSummary:
    name: str
    size: str
    raw_size: int
    count: int
    expires: int | None = None


@dataclass(frozen=True, slots=True)
class TableSummary:
    name: str
    size: str
    raw_size: int
    row_count: int


@dataclass(frozen=True, slots=True)
class ConnectionStats:
    """Connection counts and limits for the principal and the whole server."""

    user_count: int | str
    global_count: int | str
    user_limit: int | str
    global_limit: int | str
    error: str | None = None

    @property
    def usage_percentage(self) -> float | None:
        count, limit = self.global_count, self.global_limit
        if not isinstance(count, int) or not isinstance(limit, int) or limit == 0:
            return None
        return count / limit * 100

    @classmethod
    def failed(cls, error: str) -> ConnectionStats:
        return cls(user_count="ERROR", global_count="ERROR", user_limit="ERROR", global_limit="ERROR", error=error)


class AccessLevel(IntEnum):
    """Ordered access levels; higher values mean broader privileges."""

    LIMITED = 0
    READ_ONLY = 1
    WRITE = 2
    POWER_USER = 3
    ADMINISTRATOR = 4


@dataclass(frozen=True, slots=True)
class AccessReport:
    """An access level together with the backend's own wording for it."""

    level: AccessLevel
    label: str

    def with_suffix(self, suffix: str) -> AccessReport:
        return AccessReport(level=self.level, label=f"{self.label} {suffix}")


SummaryT = TypeVar("SummaryT", DatabaseSummary, TableSummary)


def by_size_desc(items: Sequence[SummaryT]) -> list[SummaryT]:
    """Return summaries ordered largest first."""

    return sorted(items, key=lambda item: item.raw_size, reverse=True)


def format_megabytes(raw_size: int) -> str:
    return f"{raw_size / 1024 / 1024:,.2f} MB"


__all__ = [
    "AccessLevel",
    "AccessReport",
    "Capabilities",
    "ConnectionStats",
    "DatabaseSummary",
    "Endpoint",
    "Identity",
    "TableSummary",
    "by_size_desc",
    "format_megabytes",
]
