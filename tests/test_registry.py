"""Tests for URI dispatch and adapter discovery."""

from __future__ import annotations

import importlib.metadata as metadata
import smtplib

import asyncpg
import mysql.connector
import pytest
import redis

import dsnprobe
from dsnprobe.adapters import (
    Adapter,
    MariaDBAdapter,
    MySQLAdapter,
    PostgresAdapter,
    RedisAdapter,
    SMTPAdapter,
)
from dsnprobe.errors import InvalidURIError, NoMatchingAdapterError, RegistryFrozenError
from dsnprobe.models import Capabilities
from dsnprobe.registry import ENTRY_POINT_GROUP, AdapterRegistry, default_registry


class MemcachedAdapter(Adapter[object]):
    kind = "Memcached"
    product = "Memcached"
    schemes = ("memcached",)
    capabilities = Capabilities(kind="Memcached", kv=True)

    def create_driver(self) -> object:
        return object()


class _ShadowRedisAdapter(RedisAdapter):
    pass


class _UnconfiguredAdapter(Adapter[object]):
    schemes = ("redis",)

    def create_driver(self) -> object:
        return object()


def _entry_point(name: str, value: str) -> metadata.EntryPoint:
    return metadata.EntryPoint(name=name, value=value, group=ENTRY_POINT_GROUP)


@pytest.fixture(autouse=True)
def no_installed_adapters(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(metadata, "entry_points", lambda: metadata.EntryPoints(()))


@pytest.fixture
def no_network(monkeypatch: pytest.MonkeyPatch) -> None:
    """Fail loudly if dispatch ever tries to reach a server."""

    def _refuse(*args: object, **kwargs: object) -> None:
        raise AssertionError("dispatch must not connect")

    monkeypatch.setattr(asyncpg, "connect", _refuse)
    monkeypatch.setattr(mysql.connector, "connect", _refuse)
    monkeypatch.setattr(redis.Redis, "from_url", _refuse)
    monkeypatch.setattr(smtplib, "SMTP", _refuse)
    monkeypatch.setattr(smtplib, "SMTP_SSL", _refuse)


def test_builtin_dispatch_order() -> None:
    registry = default_registry(discover=False)

    assert list(registry) == [PostgresAdapter, RedisAdapter, MySQLAdapter, MariaDBAdapter, SMTPAdapter]
    assert registry.frozen


@pytest.mark.parametrize(
    ("uri", "expected"),
    [
        ("postgres://u:p@db.internal/app", PostgresAdapter),
        ("postgresql://db.internal:6543/app", PostgresAdapter),
        ("REDIS://cache.internal:6379/2", RedisAdapter),
        ("rediss://cache.internal", RedisAdapter),
        ("mysql://root@127.0.0.1:3306/shop", MySQLAdapter),
        ("mariadb://root@127.0.0.1/shop", MariaDBAdapter),
        ("smtp://relay.internal:587", SMTPAdapter),
        ("smtps://relay.internal", SMTPAdapter),
    ],
)
def test_detect_builds_adapter_without_connecting(no_network: None, uri: str, expected: type[Adapter]) -> None:
    adapter = default_registry(discover=False).detect(uri)

    assert type(adapter) is expected
    assert adapter.is_valid()
    assert adapter.connection_state == "unconnected"


@pytest.mark.parametrize("uri", ["", "not a uri", "no-scheme-here", " redis://host", "redis://host:port"])
def test_malformed_uri_is_rejected(uri: str) -> None:
    with pytest.raises(InvalidURIError):
        default_registry(discover=False).detect(uri)


def test_unknown_scheme_has_no_adapter(no_network: None) -> None:
    registry = default_registry(discover=False)

    assert registry.detect("ftp://files.internal") is None
    with pytest.raises(NoMatchingAdapterError):
        registry.require("ftp://files.internal")


@pytest.mark.parametrize(
    "uri",
    [
        "mailto:ops@example.com",
        "file:///etc/hosts",
        "urn:isbn:0451450523",
        "redis://",
        "postgres:///only-path",
        "smtp:relay.internal",
    ],
)
def test_well_formed_uri_without_matching_backend_has_no_adapter(no_network: None, uri: str) -> None:
    assert default_registry(discover=False).detect(uri) is None


def test_frozen_registry_rejects_registration() -> None:
    registry = default_registry(discover=False)

    with pytest.raises(RegistryFrozenError):
        registry.register(MemcachedAdapter)


def test_register_rejects_non_adapters_and_ignores_duplicates() -> None:
    registry = AdapterRegistry()

    with pytest.raises(TypeError):
        registry.register(object)  # type: ignore[arg-type]
    registry.register_many([MemcachedAdapter, MemcachedAdapter])

    assert list(registry) == [MemcachedAdapter]


def test_first_matching_adapter_wins(no_network: None) -> None:
    registry = AdapterRegistry([_ShadowRedisAdapter, RedisAdapter])

    assert type(registry.detect("redis://cache.internal")) is _ShadowRedisAdapter


def test_adapter_without_kind_is_skipped(no_network: None) -> None:
    registry = AdapterRegistry([_UnconfiguredAdapter, RedisAdapter])

    assert type(registry.detect("redis://cache.internal")) is RedisAdapter
    assert AdapterRegistry([_UnconfiguredAdapter]).detect("redis://cache.internal") is None


def test_entry_point_adapters_are_appended(monkeypatch: pytest.MonkeyPatch) -> None:
    entry_points = metadata.EntryPoints(
        (
            _entry_point("memcached", f"{__name__}:MemcachedAdapter"),
            _entry_point("broken", "dsnprobe_missing_module:Adapter"),
            metadata.EntryPoint(name="other", value=f"{__name__}:MemcachedAdapter", group="unrelated.group"),
        )
    )
    monkeypatch.setattr(metadata, "entry_points", lambda: entry_points)

    registry = default_registry()

    assert list(registry)[-1] is MemcachedAdapter
    assert len(registry) == 6
    assert type(registry.detect("memcached://cache.internal")) is MemcachedAdapter


def test_package_level_detect_uses_shared_registry(no_network: None) -> None:
    dsnprobe.get_registry.cache_clear()
    try:
        adapter = dsnprobe.detect("redis://cache.internal")
        assert isinstance(adapter, RedisAdapter)
        assert dsnprobe.get_registry() is dsnprobe.get_registry()
    finally:
        dsnprobe.get_registry.cache_clear()
