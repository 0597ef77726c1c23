"""Tests for backend error classification."""

from __future__ import annotations

import smtplib
import socket

import mysql.connector
import pytest
from redis import exceptions as redis_exceptions

from dsnprobe.classify import (
    ErrorClassifier,
    MySQLErrorClassifier,
    PostgresErrorClassifier,
    RedisErrorClassifier,
    SMTPErrorClassifier,
)
from dsnprobe.errors import ErrorCategory


class _SqlStateError(Exception):
    def __init__(self, message: str, sqlstate: str) -> None:
        super().__init__(message)
        self.sqlstate = sqlstate


@pytest.mark.parametrize(
    ("errno", "category"),
    [
        (1226, ErrorCategory.CONNECTION_LIMIT_EXCEEDED),
        (1040, ErrorCategory.CONNECTION_LIMIT_EXCEEDED),
        (1045, ErrorCategory.AUTHENTICATION_FAILURE),
        (1044, ErrorCategory.PERMISSION_DENIED),
        (1049, ErrorCategory.UNKNOWN_DATABASE),
        (1053, ErrorCategory.SERVER_RESTARTING),
        (2003, ErrorCategory.NETWORK_UNREACHABLE),
        (2005, ErrorCategory.UNKNOWN_HOST),
        (2006, ErrorCategory.CONNECTION_LOST),
        (2013, ErrorCategory.CONNECTION_LOST),
        (9999, ErrorCategory.GENERAL_ERROR),
    ],
)
def test_mysql_errno_table(errno: int, category: ErrorCategory) -> None:
    record = MySQLErrorClassifier().classify(mysql.connector.Error(msg="boom", errno=errno))

    assert record.category is category
    if category is not ErrorCategory.GENERAL_ERROR:
        assert record.code == errno


def test_retriable_flag_follows_category() -> None:
    classifier = MySQLErrorClassifier()

    assert classifier.classify(mysql.connector.Error(msg="gone", errno=2013)).retriable
    assert not classifier.classify(mysql.connector.Error(msg="denied", errno=1045)).retriable
    assert not classifier.classify(mysql.connector.Error(msg="too many", errno=1226)).retriable


@pytest.mark.parametrize(
    ("sqlstate", "category"),
    [
        ("28P01", ErrorCategory.AUTHENTICATION_FAILURE),
        ("3D000", ErrorCategory.UNKNOWN_DATABASE),
        ("53300", ErrorCategory.CONNECTION_LIMIT_EXCEEDED),
        ("57P03", ErrorCategory.SERVER_RESTARTING),
        ("57P01", ErrorCategory.CONNECTION_LOST),
        ("08006", ErrorCategory.NETWORK_UNREACHABLE),
        ("42501", ErrorCategory.PERMISSION_DENIED),
    ],
)
def test_postgres_sqlstate_table(sqlstate: str, category: ErrorCategory) -> None:
    record = PostgresErrorClassifier().classify(_SqlStateError("failed", sqlstate))

    assert record.category is category
    assert record.code == sqlstate


def test_postgres_closed_connection_message() -> None:
    record = PostgresErrorClassifier().classify(RuntimeError("connection was closed in the middle of operation"))

    assert record.category is ErrorCategory.CONNECTION_LOST
    assert record.retriable


@pytest.mark.parametrize(
    ("exc", "category"),
    [
        (redis_exceptions.AuthenticationError("invalid password"), ErrorCategory.AUTHENTICATION_FAILURE),
        (redis_exceptions.ResponseError("WRONGPASS invalid username-password pair"), ErrorCategory.AUTHENTICATION_FAILURE),
        (redis_exceptions.NoPermissionError("NOPERM this user has no permissions"), ErrorCategory.PERMISSION_DENIED),
        (redis_exceptions.BusyLoadingError("LOADING Redis is loading the dataset"), ErrorCategory.SERVER_RESTARTING),
        (redis_exceptions.ConnectionError("max number of clients reached"), ErrorCategory.CONNECTION_LIMIT_EXCEEDED),
        (redis_exceptions.ResponseError("ERR DB index is out of range"), ErrorCategory.UNKNOWN_DATABASE),
        (
            redis_exceptions.ConnectionError("Error -2 connecting to nowhere:6379. Name or service not known."),
            ErrorCategory.UNKNOWN_HOST,
        ),
        (redis_exceptions.TimeoutError("Timeout connecting to server"), ErrorCategory.NETWORK_UNREACHABLE),
        (redis_exceptions.ConnectionError("Error 111 connecting. Connection refused."), ErrorCategory.NETWORK_UNREACHABLE),
        (redis_exceptions.ConnectionError("Connection closed by server."), ErrorCategory.CONNECTION_LOST),
    ],
)
def test_redis_classification(exc: Exception, category: ErrorCategory) -> None:
    assert RedisErrorClassifier().classify(exc).category is category


@pytest.mark.parametrize(
    ("exc", "category"),
    [
        (smtplib.SMTPAuthenticationError(535, b"5.7.8 bad credentials"), ErrorCategory.AUTHENTICATION_FAILURE),
        (smtplib.SMTPResponseException(421, b"service not available"), ErrorCategory.SERVER_RESTARTING),
        (smtplib.SMTPSenderRefused(553, b"not allowed", "a@b"), ErrorCategory.PERMISSION_DENIED),
        (smtplib.SMTPServerDisconnected("Connection unexpectedly closed"), ErrorCategory.CONNECTION_LOST),
        (smtplib.SMTPConnectError(554, b"go away"), ErrorCategory.PERMISSION_DENIED),
    ],
)
def test_smtp_classification(exc: Exception, category: ErrorCategory) -> None:
    assert SMTPErrorClassifier().classify(exc).category is category


@pytest.mark.parametrize(
    ("exc", "category"),
    [
        (socket.gaierror(-2, "Name or service not known"), ErrorCategory.UNKNOWN_HOST),
        (ConnectionRefusedError(111, "Connection refused"), ErrorCategory.NETWORK_UNREACHABLE),
        (TimeoutError("timed out"), ErrorCategory.NETWORK_UNREACHABLE),
        (ConnectionResetError(104, "Connection reset by peer"), ErrorCategory.CONNECTION_LOST),
        (BrokenPipeError(32, "Broken pipe"), ErrorCategory.CONNECTION_LOST),
        (ValueError("something else"), ErrorCategory.GENERAL_ERROR),
    ],
)
def test_generic_socket_errors(exc: Exception, category: ErrorCategory) -> None:
    record = ErrorClassifier().classify(exc)

    assert record.category is category


def test_record_describe_includes_code() -> None:
    record = MySQLErrorClassifier().classify(mysql.connector.Error(msg="Access denied", errno=1045))

    description = record.describe()
    assert description.startswith("access denied (auth failure) [1045]: ")
    assert "Access denied" in description


def test_unknown_host_is_not_retriable() -> None:
    assert not ErrorClassifier().classify(socket.gaierror(-2, "nope")).retriable
