"""Built-in backend adapters, in dispatch order."""

from __future__ import annotations

from .base import Adapter
from .mariadb import MariaDBAdapter
from .mysql import MySQLAdapter
from .postgres import PostgresAdapter
from .redis import RedisAdapter
from .smtp import SMTPAdapter

BUILTIN_ADAPTERS: tuple[type[Adapter], ...] = (
    PostgresAdapter,
    RedisAdapter,
    MySQLAdapter,
    MariaDBAdapter,
    SMTPAdapter,
)

__all__ = [
    "Adapter",
    "BUILTIN_ADAPTERS",
    "MariaDBAdapter",
    "MySQLAdapter",
    "PostgresAdapter",
    "RedisAdapter",
    "SMTPAdapter",
]
