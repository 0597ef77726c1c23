"""Adapter contract shared by every backend family."""

from __future__ import annotations

import logging
import socket
import time
from typing import Any, Callable, ClassVar, Generic, TypeVar

from ..cache import MetadataCache, cached
from ..classify import ErrorClassifier
from ..config import ProbeSettings
from ..errors import ErrorCategory, ErrorRecord
from ..lifecycle import ConnectionDriver, ConnectionManager
from ..models import (
    AccessReport,
    Capabilities,
    ConnectionStats,
    DatabaseSummary,
    Endpoint,
    Identity,
    TableSummary,
    by_size_desc,
)
from ..privilege import PrivilegeProber
from ..results import ProbeResult

LOG = logging.getLogger(__name__)

HandleT = TypeVar("HandleT")
T = TypeVar("T")

UNSUPPORTED = "not supported by this backend"


class Adapter(Generic[HandleT]):
    """Uniform probing surface over one backend endpoint.

    Subclasses declare their schemes and capabilities, build a driver, and
    implement the ``_``-prefixed hooks they support. Public accessors add
    caching, connection handling and degraded fallbacks on top.
    """

    kind: ClassVar[str | None] = None
    product: ClassVar[str] = "Unknown"
    schemes: ClassVar[tuple[str, ...]] = ()
    capabilities: ClassVar[Capabilities] = Capabilities(kind=None)
    classifier: ClassVar[ErrorClassifier] = ErrorClassifier()
    cli_name: ClassVar[str | None] = None
    default_port: ClassVar[int | None] = None

    def __init__(
        self,
        uri: str | Endpoint,
        *,
        settings: ProbeSettings | None = None,
        driver: ConnectionDriver[HandleT] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.endpoint = uri if isinstance(uri, Endpoint) else Endpoint.parse(uri)
        self.settings = settings or ProbeSettings()
        self._driver = driver if driver is not None else self.create_driver()
        self._cache = MetadataCache()
        self._manager: ConnectionManager[HandleT] = ConnectionManager(
            self._driver,
            self.classifier,
            self.settings,
            sleep=sleep,
            name=self.summary(),
        )

    @classmethod
    def handles(cls, endpoint: Endpoint) -> bool:
        """Scheme predicate used by the registry; case-insensitive.

        Every built-in backend needs a host, so authority-less URIs never match.
        """

        return bool(endpoint.host) and endpoint.scheme.lower() in cls.schemes

    def create_driver(self) -> ConnectionDriver[HandleT]:
        raise NotImplementedError

    def __enter__(self) -> Adapter[HandleT]:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.summary()}>"

    # -- static facts -----------------------------------------------------

    def is_valid(self) -> bool:
        return bool(self.capabilities.kind) and bool(self.endpoint.host)

    @property
    def host(self) -> str | None:
        return self.endpoint.host if self.is_valid() else None

    @property
    def port(self) -> int | None:
        if not self.is_valid():
            return None
        if self.endpoint.port is not None:
            return self.endpoint.port
        return self.default_port

    def summary(self) -> str:
        if not self.is_valid():
            return "Invalid URI"
        return f"{self.capabilities.kind} in {self.endpoint.host}"

    def resolve_ip(self) -> str | None:
        try:
            return socket.gethostbyname(self.endpoint.host)
        except OSError:
            return None

    def reachable(self) -> bool:
        """Plain TCP connect test, independent of the backend protocol."""

        port = self.port
        if port is None:
            return False
        try:
            with socket.create_connection((self.endpoint.host, port), timeout=self.settings.connect_timeout):
                return True
        except OSError:
            return False

    # -- connection ------------------------------------------------------

    def connection(self) -> HandleT | None:
        return self._manager.acquire()

    @property
    def connection_error(self) -> ErrorRecord | None:
        return self._manager.last_error

    @property
    def connection_state(self) -> str:
        return self._manager.state.value

    def close(self) -> None:
        self._manager.close()

    # -- accessors -------------------------------------------------------

    @cached("identity")
    def identity(self) -> ProbeResult[Identity]:
        return self._probe(self._identity, fallback=self._degraded_identity)

    def version(self) -> ProbeResult[str]:
        result = self.identity()
        if result.value is None:
            return ProbeResult.absent(result.error, note=result.note)
        return ProbeResult(result.outcome, self._version_label(result.value), error=result.error, note=result.note)

    @cached("usage")
    def usage(self) -> ProbeResult[str]:
        if not self._implements("_usage"):
            return ProbeResult.absent(note=UNSUPPORTED)
        return self._probe(self._usage)

    @cached("databases")
    def databases(self) -> ProbeResult[list[DatabaseSummary]]:
        if not self.capabilities.databases or not self._implements("_databases"):
            return ProbeResult.ok([])
        return self._probe(lambda handle: by_size_desc(self._databases(handle)))

    @cached("tables", scoped=True)
    def tables(self, database: str) -> ProbeResult[list[TableSummary]]:
        if not self.capabilities.tables or not self._implements("_tables"):
            return ProbeResult.ok([])
        return self._probe(lambda handle: by_size_desc(self._tables(handle, database)))

    @cached("database_count")
    def database_count(self) -> ProbeResult[int]:
        known = self._cache.peek("databases")
        if known is not None and known.value is not None:
            return ProbeResult(known.outcome, len(known.value), error=known.error)
        if not self.capabilities.databases or not self._implements("_database_count"):
            return ProbeResult.absent(note=UNSUPPORTED)
        return self._probe(self._database_count, fallback=self._degraded_database_count)

    def table_count(self, database: str | None = None) -> ProbeResult[int]:
        """Tables in one database, or summed over every listed database."""

        if not self.capabilities.tables:
            return ProbeResult.absent(note=UNSUPPORTED)
        if database is not None:
            tables = self.tables(database)
            if tables.value is None:
                return ProbeResult.absent(tables.error)
            return ProbeResult(tables.outcome, len(tables.value), error=tables.error)
        databases = self.databases()
        if databases.value is None:
            return ProbeResult.absent(databases.error)
        total = 0
        for summary in databases.value:
            total += len(self.tables(summary.name).unwrap_or([]))
        if total == 0:
            return ProbeResult.absent(note="no tables found")
        return ProbeResult.ok(total)

    @cached("connection_info")
    def connection_accounting(self) -> ProbeResult[ConnectionStats]:
        if not self._implements("_connection_stats"):
            return ProbeResult.absent(note=UNSUPPORTED)
        return self._probe(self._connection_stats, fallback=self._degraded_connection_stats)

    def connection_usage_percentage(self) -> float | None:
        stats = self.connection_accounting().value
        return stats.usage_percentage if stats is not None else None

    @cached("row_count_estimate", scoped=True)
    def row_count_estimate(self, table: str, database: str | None = None) -> ProbeResult[int]:
        if not self._implements("_row_count_estimate"):
            return ProbeResult.absent(note=UNSUPPORTED)
        return self._probe(lambda handle: self._row_count_estimate(handle, table, database))

    @cached("replication")
    def replication_topology(self) -> ProbeResult[bool]:
        """``True``/``False``; absent means unknown."""

        if not self._implements("_replication"):
            return ProbeResult.absent(note=UNSUPPORTED)
        return self._probe(self._replication)

    @cached("access_level")
    def access_level(self) -> ProbeResult[AccessReport]:
        return self._probe(lambda handle: self._prober(handle).run())

    # -- hooks -----------------------------------------------------------

    def _identity(self, handle: HandleT) -> Identity:
        raise NotImplementedError

    def _version_label(self, identity: Identity) -> str:
        return identity.label

    def _usage(self, handle: HandleT) -> str | None:
        raise NotImplementedError

    def _databases(self, handle: HandleT) -> list[DatabaseSummary]:
        raise NotImplementedError

    def _tables(self, handle: HandleT, database: str) -> list[TableSummary]:
        raise NotImplementedError

    def _database_count(self, handle: HandleT) -> int | None:
        raise NotImplementedError

    def _connection_stats(self, handle: HandleT) -> ConnectionStats | ProbeResult[ConnectionStats]:
        raise NotImplementedError

    def _row_count_estimate(
        self, handle: HandleT, table: str, database: str | None
    ) -> int | ProbeResult[int] | None:
        raise NotImplementedError

    def _replication(self, handle: HandleT) -> bool:
        raise NotImplementedError

    def _prober(self, handle: HandleT) -> PrivilegeProber:
        raise NotImplementedError

    # -- plumbing --------------------------------------------------------

    def _implements(self, hook: str) -> bool:
        return getattr(type(self), hook) is not getattr(Adapter, hook)

    def _probe(
        self,
        fetch: Callable[[HandleT], Any],
        *,
        fallback: Callable[[ErrorRecord | None], ProbeResult[Any]] | None = None,
    ) -> ProbeResult[Any]:
        handle = self.connection()
        if handle is None:
            record = self.connection_error
            return fallback(record) if fallback else ProbeResult.absent(record)
        try:
            value = fetch(handle)
        except Exception as exc:
            record = self._manager.report_failure(exc)
            return fallback(record) if fallback else ProbeResult.absent(record)
        if isinstance(value, ProbeResult):
            return value
        if value is None:
            return ProbeResult.absent()
        return ProbeResult.ok(value)

    def _degraded_identity(self, record: ErrorRecord | None) -> ProbeResult[Identity]:
        database, user = self.endpoint.database, self.endpoint.user
        if not (database and user):
            return ProbeResult.absent(record)
        reason = record.category.label if record else "connection issue"
        identity = Identity(
            product=self.product,
            version=f"Unknown ({reason})",
            database=database,
            user=f"{user}@remote",
        )
        return ProbeResult.degraded(identity, error=record, note="endpoint unreachable")

    def _degraded_connection_stats(self, record: ErrorRecord | None) -> ProbeResult[ConnectionStats]:
        if record is not None and record.category is ErrorCategory.CONNECTION_LIMIT_EXCEEDED:
            stats = ConnectionStats(
                user_count="LIMIT EXCEEDED",
                global_count="N/A",
                user_limit="EXCEEDED",
                global_limit="N/A",
                error="Error: User has exceeded max_user_connections limit",
            )
            return ProbeResult.degraded(stats, error=record)
        reason = record.category.label if record else "unknown error"
        return ProbeResult.degraded(ConnectionStats.failed(f"Connection error: {reason}"), error=record)

    def _degraded_database_count(self, record: ErrorRecord | None) -> ProbeResult[int]:
        if self.endpoint.database:
            return ProbeResult.degraded(1, error=record, note="inferred from URI")
        return ProbeResult.absent(record)


__all__ = ["Adapter", "UNSUPPORTED"]
