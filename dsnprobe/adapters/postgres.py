"""PostgreSQL adapter backed by asyncpg running on a private event loop."""

from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import contextmanager
from typing import Any, Coroutine, Iterator, Mapping, TypeVar

import asyncpg

from ..classify import PostgresErrorClassifier
from ..config import ProbeSettings
from ..models import (
    AccessLevel,
    AccessReport,
    Capabilities,
    ConnectionStats,
    DatabaseSummary,
    Endpoint,
    Identity,
    TableSummary,
)
from ..privilege import PrivilegeProber, WriteProbe, probe_name
from .base import Adapter

LOG = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PORT = 5432


class _LoopThread:
    """Event loop running forever on a daemon thread."""

    def __init__(self, name: str) -> None:
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, name=name, daemon=True)
        self._thread.start()

    def run(self, coro: Coroutine[Any, Any, T]) -> T:
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    def shutdown(self) -> None:
        if not self._loop.is_running():
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=1)


class PgSession:
    """Blocking facade over a single asyncpg connection."""

    def __init__(self, conn: Any, loop: _LoopThread) -> None:
        self._conn = conn
        self._loop = loop

    def fetch(self, query: str, *args: Any) -> list[Mapping[str, Any]]:
        rows = self._loop.run(self._conn.fetch(query, *args))
        return [dict(row) for row in rows]

    def fetchrow(self, query: str, *args: Any) -> Mapping[str, Any] | None:
        row = self._loop.run(self._conn.fetchrow(query, *args))
        return dict(row) if row is not None else None

    def fetchval(self, query: str, *args: Any) -> Any:
        return self._loop.run(self._conn.fetchval(query, *args))

    def execute(self, query: str, *args: Any) -> str:
        return self._loop.run(self._conn.execute(query, *args))

    def close(self) -> None:
        self._loop.run(self._conn.close())


class AsyncpgDriver:
    """Opens ``PgSession`` objects; the loop thread starts on first use."""

    def __init__(self, endpoint: Endpoint, settings: ProbeSettings) -> None:
        self._endpoint = endpoint
        self._settings = settings
        self._loop: _LoopThread | None = None

    def open(self, database: str | None = None) -> PgSession:
        if self._loop is None:
            self._loop = _LoopThread(f"dsnprobe-asyncpg-{self._endpoint.host}")
        conn = self._loop.run(asyncpg.connect(**self._connect_kwargs(database)))
        return PgSession(conn, self._loop)

    def ping(self, session: PgSession) -> None:
        session.fetchval("SELECT 1")

    def validate(self, session: PgSession) -> None:
        session.fetchval("SELECT 1")

    def close(self, session: PgSession) -> None:
        session.close()

    def shutdown(self) -> None:
        if self._loop is not None:
            self._loop.shutdown()
            self._loop = None

    def _connect_kwargs(self, database: str | None) -> dict[str, object]:
        endpoint = self._endpoint
        kwargs: dict[str, object] = {
            "host": endpoint.host,
            "port": endpoint.with_port(DEFAULT_PORT),
            "timeout": self._settings.connect_timeout,
            "command_timeout": self._settings.read_timeout,
        }
        if endpoint.user:
            kwargs["user"] = endpoint.user
        if endpoint.password is not None:
            kwargs["password"] = endpoint.password
        name = database or endpoint.database
        if name:
            kwargs["database"] = name
        return kwargs


class PostgresAdapter(Adapter[PgSession]):
    kind = "PostgreSQL"
    product = "PostgreSQL"
    schemes = ("postgres", "postgresql")
    capabilities = Capabilities(kind="PostgreSQL", sql=True, databases=True, tables=True)
    classifier = PostgresErrorClassifier()
    cli_name = "psql"
    default_port = DEFAULT_PORT

    _IDENTITY_QUERY = """
        SELECT version() AS build,
               current_setting('server_version') AS version,
               current_database() AS database,
               current_user AS "user"
    """

    _DATABASES_QUERY = """
        SELECT datname AS name,
               pg_size_pretty(pg_database_size(datname)) AS size,
               pg_database_size(datname) AS raw_size
        FROM pg_database
        WHERE datistemplate = false AND datname <> 'postgres'
        ORDER BY raw_size DESC
    """

    _TABLES_QUERY = """
        SELECT t.table_name AS name,
               pg_size_pretty(pg_total_relation_size(c.oid)) AS size,
               pg_total_relation_size(c.oid) AS raw_size,
               GREATEST(c.reltuples, 0)::bigint AS row_count
        FROM information_schema.tables t
        JOIN pg_namespace n ON n.nspname = t.table_schema
        JOIN pg_class c ON c.relnamespace = n.oid AND c.relname = t.table_name
        WHERE t.table_schema = 'public'
        ORDER BY raw_size DESC
    """

    _TABLE_COUNT_QUERY = "SELECT count(*) FROM information_schema.tables WHERE table_schema = 'public'"

    _ROLE_QUERY = "SELECT rolsuper, rolreplication, rolcreatedb FROM pg_roles WHERE rolname = current_user"

    _MEMBERSHIP_QUERY = """
        SELECT r.rolname
        FROM pg_auth_members m
        JOIN pg_roles r ON r.oid = m.roleid
        JOIN pg_roles u ON u.oid = m.member
        WHERE u.rolname = current_user
    """

    @classmethod
    def handles(cls, endpoint: Endpoint) -> bool:
        return bool(endpoint.host) and "postgres" in endpoint.scheme.lower()

    def create_driver(self) -> AsyncpgDriver:
        return AsyncpgDriver(self.endpoint, self.settings)

    def close(self) -> None:
        super().close()
        shutdown = getattr(self._driver, "shutdown", None)
        if callable(shutdown):
            shutdown()

    def _identity(self, session: PgSession) -> Identity:
        row = session.fetchrow(self._IDENTITY_QUERY)
        return Identity(
            product=self.product,
            version=str(row["version"]),
            database=row["database"],
            user=row["user"],
            build=row["build"],
        )

    def _usage(self, session: PgSession) -> str | None:
        return session.fetchval("SELECT pg_size_pretty(pg_database_size(current_database()))")

    def _databases(self, session: PgSession) -> list[DatabaseSummary]:
        current = session.fetchval("SELECT current_database()")
        summaries = []
        for row in session.fetch(self._DATABASES_QUERY):
            name = row["name"]
            summaries.append(
                DatabaseSummary(
                    name=name,
                    size=row["size"],
                    raw_size=int(row["raw_size"]),
                    count=self._count_tables(session, name, current),
                )
            )
        return summaries

    def _count_tables(self, session: PgSession, database: str, current: str) -> int:
        try:
            with self._session_for(session, database, current) as scoped:
                return int(scoped.fetchval(self._TABLE_COUNT_QUERY) or 0)
        except Exception as exc:
            LOG.debug("Could not count tables", extra={"database": database, "error": str(exc)})
            return 0

    def _tables(self, session: PgSession, database: str) -> list[TableSummary]:
        current = session.fetchval("SELECT current_database()")
        with self._session_for(session, database, current) as scoped:
            rows = scoped.fetch(self._TABLES_QUERY)
        return [
            TableSummary(
                name=row["name"],
                size=row["size"],
                raw_size=int(row["raw_size"]),
                row_count=int(row["row_count"]),
            )
            for row in rows
        ]

    def _database_count(self, session: PgSession) -> int | None:
        return session.fetchval("SELECT count(*) FROM pg_database WHERE datistemplate = false")

    def _connection_stats(self, session: PgSession) -> ConnectionStats:
        global_limit = int(session.fetchval("SELECT current_setting('max_connections')::int"))
        global_count = int(session.fetchval("SELECT count(*) FROM pg_stat_activity"))
        user_limit = session.fetchval("SELECT rolconnlimit FROM pg_roles WHERE rolname = current_user")
        user_count = int(session.fetchval("SELECT count(*) FROM pg_stat_activity WHERE usename = current_user"))
        # rolconnlimit is -1 when the role has no limit of its own.
        if user_limit is None or int(user_limit) < 0:
            user_limit = global_limit
        return ConnectionStats(
            user_count=user_count,
            global_count=global_count,
            user_limit=int(user_limit),
            global_limit=global_limit,
        )

    def _row_count_estimate(self, session: PgSession, table: str, database: str | None) -> int | None:
        current = session.fetchval("SELECT current_database()")
        with self._session_for(session, database or current, current) as scoped:
            estimate = scoped.fetchval("SELECT reltuples::bigint FROM pg_class WHERE relname = $1", table)
        if estimate is None or estimate < 0:
            return None
        return int(estimate)

    def _replication(self, session: PgSession) -> bool:
        if session.fetchval("SELECT pg_is_in_recovery()"):
            return True
        if int(session.fetchval("SELECT count(*) FROM pg_stat_replication") or 0) > 0:
            return True
        return bool(session.fetch("SELECT rolname FROM pg_roles WHERE rolreplication"))

    def _prober(self, session: PgSession) -> PrivilegeProber:
        table = probe_name()

        def introspect() -> AccessReport | None:
            role = session.fetchrow(self._ROLE_QUERY)
            if role is None:
                return None
            if role["rolsuper"]:
                return AccessReport(AccessLevel.ADMINISTRATOR, "Superuser (full access)")
            if role["rolreplication"]:
                return AccessReport(AccessLevel.POWER_USER, "Replication user (system-level replication access)")
            if role["rolcreatedb"]:
                return AccessReport(AccessLevel.POWER_USER, "Database creator (can create new databases)")
            memberships = {row["rolname"] for row in session.fetch(self._MEMBERSHIP_QUERY)}
            if "rds_superuser" in memberships:
                return AccessReport(AccessLevel.POWER_USER, "RDS Superuser (limited admin privileges)")
            return None

        return PrivilegeProber(
            introspect=introspect,
            admin_probe=lambda: session.fetchval("SELECT count(*) FROM pg_shadow"),
            admin_level=AccessLevel.POWER_USER,
            write_probe=WriteProbe(
                create=lambda: session.execute(f'CREATE TABLE "{table}" (id integer)'),
                teardown=lambda: session.execute(f'DROP TABLE IF EXISTS "{table}"'),
            ),
            read_probe=lambda: session.fetchval("SELECT current_database()"),
            labels={
                AccessLevel.POWER_USER: "Power user (access to system catalogs)",
                AccessLevel.WRITE: "Regular user (table management)",
                AccessLevel.READ_ONLY: "Read-only user",
                AccessLevel.LIMITED: "Limited access",
            },
            allow_write_probe=self.settings.allow_write_probe,
            name=self.summary(),
        )

    @contextmanager
    def _session_for(self, session: PgSession, database: str, current: str) -> Iterator[PgSession]:
        """Yield ``session`` or a short-lived session bound to another database."""

        if database == current:
            yield session
            return
        scoped = self._driver.open(database)
        try:
            yield scoped
        finally:
            try:
                self._driver.close(scoped)
            except Exception as exc:
                LOG.debug("Ignoring error while closing scoped session", extra={"database": database, "error": str(exc)})


__all__ = ["AsyncpgDriver", "PgSession", "PostgresAdapter"]
