"""MySQL adapter backed by mysql-connector-python."""

from __future__ import annotations

import logging
import re
from typing import Any, ClassVar, Mapping, Sequence

import mysql.connector

from ..classify import MySQLErrorClassifier
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
    format_megabytes,
)
from ..privilege import PrivilegeProber, WriteProbe, probe_name
from .base import Adapter

LOG = logging.getLogger(__name__)

DEFAULT_PORT = 3306

SYSTEM_SCHEMAS = ("information_schema", "mysql", "performance_schema", "sys")

_GLOBAL_ALL = re.compile(r"GRANT ALL PRIVILEGES ON \*\.\* TO", re.I)
_GLOBAL_LINE = re.compile(r"^GRANT (?P<privs>.+?) ON \*\.\* TO", re.I)
_DB_ALL = re.compile(r"GRANT ALL PRIVILEGES ON `?(?P<db>[^`.\s]+)`?\.\* TO", re.I)
_WRITE_PRIVS = re.compile(r"\b(INSERT|UPDATE|DELETE|CREATE|ALTER|DROP)\b", re.I)
_READ_PRIVS = re.compile(r"\bSELECT\b", re.I)
_POWER_PRIVS = ("CREATE USER", "SUPER")
_MONITOR_PRIVS = ("PROCESS", "RELOAD", "SHUTDOWN", "REPLICATION CLIENT", "REPLICATION SLAVE")


class MySQLSession:
    """Dictionary-cursor helpers over one ``mysql.connector`` connection."""

    def __init__(self, conn: Any) -> None:
        self.conn = conn

    def fetch(self, query: str, params: Sequence[Any] | None = None) -> list[Mapping[str, Any]]:
        cursor = self.conn.cursor(dictionary=True)
        try:
            cursor.execute(query, params or ())
            return list(cursor.fetchall()) if cursor.with_rows else []
        finally:
            cursor.close()

    def fetchrow(self, query: str, params: Sequence[Any] | None = None) -> Mapping[str, Any] | None:
        rows = self.fetch(query, params)
        return rows[0] if rows else None

    def fetchval(self, query: str, params: Sequence[Any] | None = None) -> Any:
        row = self.fetchrow(query, params)
        if row is None:
            return None
        return next(iter(row.values()), None)

    def execute(self, query: str, params: Sequence[Any] | None = None) -> None:
        self.fetch(query, params)


class MySQLDriver:
    """Opens MySQL-protocol sessions with bounded connect and read timeouts."""

    def __init__(self, endpoint: Endpoint, settings: ProbeSettings, *, session_init: Sequence[str] = ()) -> None:
        self._endpoint = endpoint
        self._settings = settings
        self._session_init = tuple(session_init)

    def open(self, database: str | None = None) -> MySQLSession:
        endpoint = self._endpoint
        kwargs: dict[str, object] = {
            "host": endpoint.host,
            "port": endpoint.with_port(DEFAULT_PORT),
            "connection_timeout": max(1, int(self._settings.connect_timeout)),
        }
        if endpoint.user:
            kwargs["user"] = endpoint.user
        if endpoint.password is not None:
            kwargs["password"] = endpoint.password
        name = database or endpoint.database
        if name:
            kwargs["database"] = name
        session = MySQLSession(mysql.connector.connect(**kwargs))
        read_timeout = max(1, int(self._settings.read_timeout))
        for statement in self._session_init:
            session.execute(statement.format(read_timeout=read_timeout))
        return session

    def ping(self, session: MySQLSession) -> None:
        session.conn.ping(reconnect=False)

    def validate(self, session: MySQLSession) -> None:
        session.fetchval("SELECT 1")

    def close(self, session: MySQLSession) -> None:
        session.conn.close()


def classify_grants(grants: Sequence[str]) -> AccessReport:
    """Map ``SHOW GRANTS`` output onto an access report."""

    text = "\n".join(grants)
    if _GLOBAL_ALL.search(text):
        return AccessReport(AccessLevel.ADMINISTRATOR, "Administrator (all privileges)")
    global_privs: list[str] = []
    for line in grants:
        match = _GLOBAL_LINE.match(line.strip())
        if match is None:
            continue
        privs = match.group("privs").upper()
        global_privs.extend(priv for priv in (*_POWER_PRIVS, *_MONITOR_PRIVS) if priv in privs)
    if any(priv in global_privs for priv in _POWER_PRIVS):
        return AccessReport(AccessLevel.POWER_USER, f"Power user ({', '.join(global_privs)})")
    if global_privs:
        return AccessReport(AccessLevel.POWER_USER, f"System monitor ({', '.join(global_privs)})")
    db_all = _DB_ALL.search(text)
    if db_all:
        return AccessReport(AccessLevel.POWER_USER, f"Database admin (full access to: {db_all.group('db')})")
    if _WRITE_PRIVS.search(text):
        return AccessReport(AccessLevel.WRITE, "Write access")
    if _READ_PRIVS.search(text):
        return AccessReport(AccessLevel.READ_ONLY, "Read-only access")
    return AccessReport(AccessLevel.LIMITED, "Limited access")


class MySQLAdapter(Adapter[MySQLSession]):
    kind = "MySQL"
    product = "MySQL"
    schemes = ("mysql",)
    capabilities = Capabilities(kind="MySQL", sql=True, databases=True, tables=True)
    classifier = MySQLErrorClassifier()
    cli_name = "mysql"
    default_port = DEFAULT_PORT

    SESSION_INIT: ClassVar[tuple[str, ...]] = (
        "SET SESSION wait_timeout = 900, interactive_timeout = 900",
        "SET SESSION net_read_timeout = {read_timeout}, net_write_timeout = {read_timeout}",
    )

    _SYSTEM_FILTER = "NOT IN ({})".format(", ".join(f"'{name}'" for name in SYSTEM_SCHEMAS))

    _DATABASES_QUERY = f"""
        SELECT s.schema_name AS name,
               IFNULL(SUM(t.data_length + t.index_length), 0) AS raw_size,
               COUNT(t.table_name) AS table_count
        FROM information_schema.schemata s
        LEFT JOIN information_schema.tables t ON t.table_schema = s.schema_name
        WHERE s.schema_name {_SYSTEM_FILTER}
        GROUP BY s.schema_name
        ORDER BY raw_size DESC
    """

    _TABLES_QUERY = """
        SELECT table_name AS name,
               IFNULL(data_length + index_length, 0) AS raw_size,
               IFNULL(table_rows, 0) AS row_count
        FROM information_schema.tables
        WHERE table_schema = %s
        ORDER BY raw_size DESC
    """

    def create_driver(self) -> MySQLDriver:
        return MySQLDriver(self.endpoint, self.settings, session_init=self.SESSION_INIT)

    def _identity(self, session: MySQLSession) -> Identity:
        row = session.fetchrow("SELECT VERSION() AS version, DATABASE() AS `database`, USER() AS user")
        return Identity(
            product=self.product,
            version=str(row["version"]),
            database=row["database"],
            user=row["user"],
        )

    def _current_database(self, session: MySQLSession) -> str | None:
        return session.fetchval("SELECT DATABASE()") or self.endpoint.database

    def _usage(self, session: MySQLSession) -> str | None:
        database = self._current_database(session)
        if not database:
            return None
        raw = session.fetchval(
            "SELECT IFNULL(SUM(data_length + index_length), 0) FROM information_schema.tables WHERE table_schema = %s",
            (database,),
        )
        return format_megabytes(int(raw or 0))

    def _databases(self, session: MySQLSession) -> list[DatabaseSummary]:
        summaries = []
        for row in session.fetch(self._DATABASES_QUERY):
            raw_size = int(row["raw_size"] or 0)
            summaries.append(
                DatabaseSummary(
                    name=row["name"],
                    size=format_megabytes(raw_size),
                    raw_size=raw_size,
                    count=int(row["table_count"] or 0),
                )
            )
        return summaries

    def _tables(self, session: MySQLSession, database: str) -> list[TableSummary]:
        tables = []
        for row in session.fetch(self._TABLES_QUERY, (database,)):
            raw_size = int(row["raw_size"] or 0)
            tables.append(
                TableSummary(
                    name=row["name"],
                    size=format_megabytes(raw_size),
                    raw_size=raw_size,
                    row_count=int(row["row_count"] or 0),
                )
            )
        return tables

    def _database_count(self, session: MySQLSession) -> int | None:
        return session.fetchval(
            f"SELECT COUNT(*) FROM information_schema.schemata WHERE schema_name {self._SYSTEM_FILTER}"
        )

    def _connection_stats(self, session: MySQLSession) -> ConnectionStats:
        user_count = session.fetchval(
            "SELECT COUNT(*) FROM information_schema.processlist WHERE user = SUBSTRING_INDEX(USER(), '@', 1)"
        )
        global_count = session.fetchval("SELECT COUNT(*) FROM information_schema.processlist")
        global_limit = int(session.fetchval("SELECT @@max_connections"))
        user_limit = int(session.fetchval("SELECT @@max_user_connections") or 0)
        # 0 means the principal is only bounded by the server-wide limit.
        return ConnectionStats(
            user_count=int(user_count),
            global_count=int(global_count),
            user_limit=user_limit or global_limit,
            global_limit=global_limit,
        )

    def _row_count_estimate(self, session: MySQLSession, table: str, database: str | None) -> int | None:
        schema = database or self._current_database(session)
        if not schema:
            return None
        estimate = session.fetchval(
            "SELECT table_rows FROM information_schema.tables WHERE table_schema = %s AND table_name = %s",
            (schema, table),
        )
        return int(estimate) if estimate is not None else None

    def _replication(self, session: MySQLSession) -> bool:
        if self._first_rows(session, "SHOW MASTER STATUS", "SHOW BINARY LOG STATUS"):
            return True
        if self._first_rows(session, "SHOW SLAVE STATUS", "SHOW REPLICA STATUS"):
            return True
        try:
            if session.fetch("SELECT user FROM mysql.user WHERE Repl_slave_priv = 'Y'"):
                return True
        except mysql.connector.Error as exc:
            LOG.debug("Replication users not readable", extra={"error": str(exc)})
        row = session.fetchrow("SHOW VARIABLES LIKE 'log_bin'")
        return bool(row) and str(row.get("Value", "")).upper() == "ON"

    def _first_rows(self, session: MySQLSession, query: str, fallback: str) -> list[Mapping[str, Any]]:
        try:
            return session.fetch(query)
        except mysql.connector.Error:
            return session.fetch(fallback)

    def _grants(self, session: MySQLSession) -> list[str]:
        return [str(next(iter(row.values()))) for row in session.fetch("SHOW GRANTS FOR CURRENT_USER()")]

    def _introspect_grants(self, session: MySQLSession) -> AccessReport | None:
        return classify_grants(self._grants(session))

    def _prober(self, session: MySQLSession) -> PrivilegeProber:
        table = probe_name()
        return PrivilegeProber(
            introspect=lambda: self._introspect_grants(session),
            admin_probe=lambda: session.fetchval("SELECT COUNT(*) FROM mysql.user"),
            admin_level=AccessLevel.POWER_USER,
            write_probe=WriteProbe(
                create=lambda: session.execute(f"CREATE TABLE `{table}` (id INT)"),
                teardown=lambda: session.execute(f"DROP TABLE IF EXISTS `{table}`"),
            ),
            read_probe=lambda: session.fetchval("SELECT 1"),
            labels={AccessLevel.POWER_USER: "Power user (access to mysql.user)"},
            allow_write_probe=self.settings.allow_write_probe,
            name=self.summary(),
        )


__all__ = ["MySQLAdapter", "MySQLDriver", "MySQLSession", "classify_grants"]
