"""Redis adapter backed by redis-py."""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Iterator, Mapping

import redis

from ..classify import RedisErrorClassifier
from ..config import ProbeSettings
from ..lifecycle import ConnectionDriver
from ..models import AccessLevel, AccessReport, Capabilities, ConnectionStats, DatabaseSummary, Endpoint, Identity
from ..privilege import PrivilegeProber, WriteProbe, probe_name
from ..results import ProbeResult
from ..scan import bounded_count
from .base import Adapter

LOG = logging.getLogger(__name__)

DEFAULT_PORT = 6379

_KEYSPACE = re.compile(r"^db(\d+)$")


class RedisDriver:
    """Builds clients from the endpoint URI; redis-py connects lazily."""

    def __init__(self, endpoint: Endpoint, settings: ProbeSettings) -> None:
        self._endpoint = endpoint
        self._settings = settings

    def open(self, db: int | None = None) -> redis.Redis:
        kwargs: dict[str, Any] = {
            "socket_connect_timeout": self._settings.connect_timeout,
            "socket_timeout": self._settings.read_timeout,
            "decode_responses": True,
        }
        if self._endpoint.scheme == "rediss":
            kwargs["ssl_cert_reqs"] = "none"
        if db is not None:
            kwargs["db"] = db
        return redis.Redis.from_url(self._endpoint.raw, **kwargs)

    def ping(self, client: redis.Redis) -> None:
        client.ping()

    def validate(self, client: redis.Redis) -> None:
        client.ping()

    def close(self, client: redis.Redis) -> None:
        client.close()


def _keyspace_entry(value: Any) -> Mapping[str, Any]:
    """INFO keyspace values arrive parsed as dicts, or raw as ``keys=1,...``."""

    if isinstance(value, Mapping):
        return value
    entry: dict[str, Any] = {}
    for pair in str(value).split(","):
        key, _, raw = pair.partition("=")
        entry[key.strip()] = raw.strip()
    return entry


def _scan_pages(client: redis.Redis, match: str, batch: int) -> Iterator[list[Any]]:
    """Yield one page per SCAN round-trip until the cursor wraps to 0.

    Pages may be empty when nothing in a batch matches.
    """

    cursor = 0
    while True:
        cursor, keys = client.scan(cursor=cursor, match=match, count=batch)
        yield keys
        if int(cursor) == 0:
            return


def _acl_text(value: Any) -> str:
    if isinstance(value, (list, tuple, set)):
        return " ".join(str(item) for item in value)
    return str(value or "")


def classify_acl(rules: Mapping[str, Any]) -> AccessReport | None:
    """Classify an ``ACL GETUSER`` reply; ``None`` when it is inconclusive."""

    commands = _acl_text(rules.get("commands"))
    if "+@all" in commands and "-@" not in commands:
        return AccessReport(AccessLevel.ADMINISTRATOR, "Administrator (all commands allowed)")
    if "+@admin" in commands or "+@dangerous" in commands:
        return AccessReport(AccessLevel.POWER_USER, "Power user (admin commands allowed)")
    if "+@write" in commands or "+@all" in commands:
        return AccessReport(AccessLevel.WRITE, "Write access")
    if "+@read" in commands:
        return AccessReport(AccessLevel.READ_ONLY, "Read-only access")
    return None


class RedisAdapter(Adapter[redis.Redis]):
    kind = "Redis"
    product = "Redis"
    schemes = ("redis", "rediss")
    capabilities = Capabilities(kind="Redis", kv=True, databases=True)
    classifier = RedisErrorClassifier()
    cli_name = "redis-cli"
    default_port = DEFAULT_PORT

    def __init__(
        self,
        uri: str | Endpoint,
        *,
        settings: ProbeSettings | None = None,
        driver: ConnectionDriver[redis.Redis] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(uri, settings=settings, driver=driver, sleep=sleep)
        self._clock = clock

    def create_driver(self) -> RedisDriver:
        return RedisDriver(self.endpoint, self.settings)

    @property
    def db_index(self) -> int:
        database = self.endpoint.database
        return int(database) if database and database.isdigit() else 0

    def _server_info(self, client: redis.Redis) -> Mapping[str, Any]:
        result = self._cache.fetch("info", lambda: ProbeResult.ok(client.info()))
        return result.value

    def _identity(self, client: redis.Redis) -> Identity:
        info = self._server_info(client)
        build = f"{info.get('os', 'unknown OS')} {info.get('arch_bits', '?')}-bit"
        if info.get("gcc_version"):
            build += f", compiled by {info['gcc_version']}"
        return Identity(
            product=self.product,
            version=str(info.get("redis_version", "unknown")),
            database=f"db{self.db_index}",
            user=self.endpoint.user,
            build=build,
        )

    def _version_label(self, identity: Identity) -> str:
        return f"{identity.product} {identity.version} on {identity.build}"

    def _usage(self, client: redis.Redis) -> str | None:
        info = self._server_info(client)
        used = info.get("used_memory_human")
        if used is None:
            return None
        limit = int(info.get("maxmemory", 0) or 0)
        if limit <= 0:
            return f"{used} used (no memory limit)"
        percentage = int(info.get("used_memory", 0)) / limit * 100
        return f"{used} of {info.get('maxmemory_human', limit)} used ({percentage:.2f}%)"

    def _databases(self, client: redis.Redis) -> list[DatabaseSummary]:
        summaries = []
        for key, value in self._server_info(client).items():
            if not _KEYSPACE.match(str(key)):
                continue
            entry = _keyspace_entry(value)
            keys = int(entry.get("keys", 0))
            summaries.append(
                DatabaseSummary(
                    name=str(key),
                    size=f"{keys} keys",
                    raw_size=keys,
                    count=keys,
                    expires=int(entry.get("expires", 0)),
                )
            )
        return summaries

    def _database_count(self, client: redis.Redis) -> int | None:
        return len(self._databases(client))

    def _connection_stats(self, client: redis.Redis) -> ConnectionStats:
        info = self._server_info(client)
        connected = int(info.get("connected_clients", 0))
        limit = info.get("maxclients")
        if limit is None:
            limit = client.config_get("maxclients").get("maxclients", 0)
        limit = int(limit)
        return ConnectionStats(user_count=connected, global_count=connected, user_limit=limit, global_limit=limit)

    def _row_count_estimate(self, client: redis.Redis, table: str, database: str | None) -> ProbeResult[int]:
        """Count keys matching ``table`` as a glob, bounded by the scan timeout."""

        target = client
        scoped = database is not None and int(database.removeprefix("db")) != self.db_index
        if scoped:
            target = self._driver.open(int(database.removeprefix("db")))
        try:
            scan = bounded_count(
                _scan_pages(target, table or "*", self.settings.scan_batch),
                timeout=self.settings.scan_timeout,
                clock=self._clock,
            )
        finally:
            if scoped:
                self._driver.close(target)
        if scan.complete:
            return ProbeResult.ok(scan.count)
        LOG.debug("Key scan hit its time limit", extra={"pattern": table, "partial": scan.count})
        return ProbeResult.degraded(scan.count, note=f"partial count after {scan.elapsed:.1f}s")

    def _replication(self, client: redis.Redis) -> bool:
        info = self._server_info(client)
        if info.get("role") == "master":
            return True
        if int(info.get("connected_slaves", 0) or 0) > 0:
            return True
        return str(info.get("slave_read_only", "1")) == "0"

    def _prober(self, client: redis.Redis) -> PrivilegeProber:
        key = probe_name("__dsnprobe:access_check")

        def introspect() -> AccessReport | None:
            return classify_acl(client.acl_getuser(client.acl_whoami()) or {})

        def create() -> None:
            if not client.set(key, "1", nx=True, ex=60):
                raise redis.exceptions.ResponseError(f"could not create probe key {key}")

        return PrivilegeProber(
            introspect=introspect,
            admin_probe=lambda: client.config_get("maxmemory"),
            write_probe=WriteProbe(create=create, teardown=lambda: client.delete(key)),
            read_probe=client.dbsize,
            labels={
                AccessLevel.ADMINISTRATOR: "Administrator (CONFIG allowed)",
                AccessLevel.WRITE: "Write access (SET/DEL allowed)",
            },
            allow_write_probe=self.settings.allow_write_probe,
            name=self.summary(),
        )


__all__ = ["RedisAdapter", "RedisDriver", "classify_acl"]
