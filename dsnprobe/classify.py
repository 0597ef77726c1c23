"""Backend-specific tables mapping raw errors onto shared error categories."""

from __future__ import annotations

import errno as errno_codes
import re
import smtplib
import socket
from typing import ClassVar, Mapping, Pattern, Sequence

from redis import exceptions as redis_exceptions

from .errors import ErrorCategory, ErrorRecord

C = ErrorCategory


class ErrorClassifier:
    """Classifies exceptions into ``ErrorRecord`` values.

    Lookup order is: backend code table, backend message patterns, backend
    exception types, then generic socket errors. Anything left over is a
    non-retriable ``GENERAL_ERROR``.
    """

    backend: ClassVar[str] = "generic"
    CODES: ClassVar[Mapping[int | str, ErrorCategory]] = {}
    PATTERNS: ClassVar[Sequence[tuple[Pattern[str], ErrorCategory]]] = ()
    TYPES: ClassVar[Sequence[tuple[type[BaseException], ErrorCategory]]] = ()

    def classify(self, exc: BaseException) -> ErrorRecord:
        message = str(exc) or type(exc).__name__
        code = self.code_for(exc)
        if code is not None and code in self.CODES:
            return ErrorRecord(message=message, category=self.CODES[code], code=code)
        for pattern, category in self.PATTERNS:
            if pattern.search(message):
                return ErrorRecord(message=message, category=category, code=code)
        for exc_type, category in self.TYPES:
            if isinstance(exc, exc_type):
                return ErrorRecord(message=message, category=category, code=code)
        return ErrorRecord(message=message, category=_socket_category(exc), code=code)

    def code_for(self, exc: BaseException) -> int | str | None:
        return None


def _socket_category(exc: BaseException) -> ErrorCategory:
    if isinstance(exc, socket.gaierror):
        return C.UNKNOWN_HOST
    if isinstance(exc, (ConnectionResetError, ConnectionAbortedError, BrokenPipeError)):
        return C.CONNECTION_LOST
    if isinstance(exc, (ConnectionRefusedError, TimeoutError)):
        return C.NETWORK_UNREACHABLE
    if isinstance(exc, OSError) and exc.errno in (errno_codes.ENETUNREACH, errno_codes.EHOSTUNREACH):
        return C.NETWORK_UNREACHABLE
    return C.GENERAL_ERROR


class MySQLErrorClassifier(ErrorClassifier):
    """Classifies ``mysql.connector`` errors by their server/client errno."""

    backend = "mysql"
    CODES = {
        1040: C.CONNECTION_LIMIT_EXCEEDED,
        1226: C.CONNECTION_LIMIT_EXCEEDED,
        1045: C.AUTHENTICATION_FAILURE,
        1044: C.PERMISSION_DENIED,
        1142: C.PERMISSION_DENIED,
        1227: C.PERMISSION_DENIED,
        1049: C.UNKNOWN_DATABASE,
        1053: C.SERVER_RESTARTING,
        2003: C.NETWORK_UNREACHABLE,
        2005: C.UNKNOWN_HOST,
        2006: C.CONNECTION_LOST,
        2013: C.CONNECTION_LOST,
    }

    def code_for(self, exc: BaseException) -> int | None:
        value = getattr(exc, "errno", None)
        if isinstance(value, int) and value > 0:
            return value
        return None


class PostgresErrorClassifier(ErrorClassifier):
    """Classifies asyncpg errors by SQLSTATE."""

    backend = "postgres"
    CODES = {
        "28P01": C.AUTHENTICATION_FAILURE,
        "28000": C.AUTHENTICATION_FAILURE,
        "3D000": C.UNKNOWN_DATABASE,
        "53300": C.CONNECTION_LIMIT_EXCEEDED,
        "57P03": C.SERVER_RESTARTING,
        "57P01": C.CONNECTION_LOST,
        "57P02": C.CONNECTION_LOST,
        "08001": C.NETWORK_UNREACHABLE,
        "08006": C.NETWORK_UNREACHABLE,
        "08003": C.CONNECTION_LOST,
        "42501": C.PERMISSION_DENIED,
    }
    PATTERNS = (
        (re.compile(r"connection (is|was) closed", re.I), C.CONNECTION_LOST),
        (re.compile(r"too many connections", re.I), C.CONNECTION_LIMIT_EXCEEDED),
    )

    def code_for(self, exc: BaseException) -> str | None:
        value = getattr(exc, "sqlstate", None)
        return value if isinstance(value, str) else None


class RedisErrorClassifier(ErrorClassifier):
    """Classifies redis-py errors by type and server reply text."""

    backend = "redis"
    PATTERNS = (
        (re.compile(r"max number of clients reached", re.I), C.CONNECTION_LIMIT_EXCEEDED),
        (re.compile(r"invalid DB index|DB index is out of range", re.I), C.UNKNOWN_DATABASE),
        (
            re.compile(r"Name or service not known|nodename nor servname|getaddrinfo failed|name resolution", re.I),
            C.UNKNOWN_HOST,
        ),
        (re.compile(r"^(NOAUTH|WRONGPASS)|invalid password|Authentication required", re.I), C.AUTHENTICATION_FAILURE),
        (re.compile(r"^NOPERM", re.I), C.PERMISSION_DENIED),
        (re.compile(r"^LOADING", re.I), C.SERVER_RESTARTING),
        (re.compile(r"Connection (reset|closed) by", re.I), C.CONNECTION_LOST),
    )
    TYPES = (
        (redis_exceptions.AuthenticationWrongNumberOfArgsError, C.AUTHENTICATION_FAILURE),
        (redis_exceptions.AuthenticationError, C.AUTHENTICATION_FAILURE),
        (redis_exceptions.NoPermissionError, C.PERMISSION_DENIED),
        (redis_exceptions.BusyLoadingError, C.SERVER_RESTARTING),
        (redis_exceptions.TimeoutError, C.NETWORK_UNREACHABLE),
        (redis_exceptions.ConnectionError, C.NETWORK_UNREACHABLE),
    )


class SMTPErrorClassifier(ErrorClassifier):
    """Classifies smtplib errors by SMTP reply code."""

    backend = "smtp"
    CODES = {
        421: C.SERVER_RESTARTING,
        530: C.AUTHENTICATION_FAILURE,
        534: C.AUTHENTICATION_FAILURE,
        535: C.AUTHENTICATION_FAILURE,
        550: C.PERMISSION_DENIED,
        553: C.PERMISSION_DENIED,
        554: C.PERMISSION_DENIED,
    }
    TYPES = (
        (smtplib.SMTPServerDisconnected, C.CONNECTION_LOST),
        (smtplib.SMTPConnectError, C.NETWORK_UNREACHABLE),
        (smtplib.SMTPNotSupportedError, C.AUTHENTICATION_FAILURE),
    )

    def code_for(self, exc: BaseException) -> int | None:
        value = getattr(exc, "smtp_code", None)
        return value if isinstance(value, int) else None


__all__ = [
    "ErrorClassifier",
    "MySQLErrorClassifier",
    "PostgresErrorClassifier",
    "RedisErrorClassifier",
    "SMTPErrorClassifier",
]
