"""Tests for connection acquisition, retry and release."""

from __future__ import annotations

import socket

import pytest

from dsnprobe.classify import ErrorClassifier
from dsnprobe.config import ProbeSettings
from dsnprobe.errors import ErrorCategory
from dsnprobe.lifecycle import ConnectionManager, ConnectionState


class _FakeDriver:
    def __init__(self, outcomes: list[object] | None = None) -> None:
        self.outcomes = list(outcomes or [])
        self.opened = 0
        self.pings = 0
        self.validated: list[object] = []
        self.closed: list[object] = []
        self.ping_error: Exception | None = None
        self.validate_error: Exception | None = None
        self.close_error: Exception | None = None

    def open(self) -> object:
        self.opened += 1
        outcome = self.outcomes.pop(0) if self.outcomes else f"handle-{self.opened}"
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def ping(self, handle: object) -> None:
        self.pings += 1
        if self.ping_error is not None:
            raise self.ping_error

    def validate(self, handle: object) -> None:
        self.validated.append(handle)
        if self.validate_error is not None:
            raise self.validate_error

    def close(self, handle: object) -> None:
        self.closed.append(handle)
        if self.close_error is not None:
            raise self.close_error


def _manager(driver: _FakeDriver, **overrides: object) -> tuple[ConnectionManager[object], list[float]]:
    sleeps: list[float] = []
    settings = ProbeSettings().with_overrides(**overrides)
    return ConnectionManager(driver, ErrorClassifier(), settings, sleep=sleeps.append, name="test"), sleeps


def _refused() -> ConnectionRefusedError:
    return ConnectionRefusedError(111, "Connection refused")


def test_retries_with_exponential_backoff_then_gives_up() -> None:
    driver = _FakeDriver([_refused(), _refused(), _refused()])
    manager, sleeps = _manager(driver)

    assert manager.acquire() is None

    assert driver.opened == 3
    assert sleeps == [0.5, 1.0]
    assert manager.total_wait == pytest.approx(1.5)
    assert manager.state is ConnectionState.FAILED
    assert manager.last_error is not None
    assert manager.last_error.category is ErrorCategory.NETWORK_UNREACHABLE


def test_succeeds_after_transient_failure() -> None:
    driver = _FakeDriver([_refused(), "conn"])
    manager, sleeps = _manager(driver)

    assert manager.acquire() == "conn"

    assert sleeps == [0.5]
    assert manager.state is ConnectionState.CONNECTED
    assert manager.last_error is None
    assert driver.validated == ["conn"]


def test_non_retriable_failure_is_not_retried() -> None:
    driver = _FakeDriver([socket.gaierror(-2, "Name or service not known")])
    manager, sleeps = _manager(driver)

    assert manager.acquire() is None
    assert manager.acquire() is None

    assert driver.opened == 1
    assert sleeps == []
    assert manager.last_error is not None
    assert manager.last_error.category is ErrorCategory.UNKNOWN_HOST


def test_retriable_failure_does_not_poison_later_calls() -> None:
    driver = _FakeDriver([_refused(), "later"])
    manager, _ = _manager(driver, max_attempts=1)

    assert manager.acquire() is None
    assert manager.acquire() == "later"
    assert driver.opened == 2


def test_backoff_base_is_configurable() -> None:
    driver = _FakeDriver([_refused(), _refused(), _refused(), _refused()])
    manager, sleeps = _manager(driver, retry_base=0.1, max_attempts=4)

    manager.acquire()

    assert sleeps == pytest.approx([0.1, 0.2, 0.4])


def test_live_handle_is_reused_after_ping() -> None:
    driver = _FakeDriver()
    manager, _ = _manager(driver)

    first = manager.acquire()
    second = manager.acquire()

    assert first == second == "handle-1"
    assert driver.opened == 1
    assert driver.pings == 1


def test_failed_ping_reconnects() -> None:
    driver = _FakeDriver()
    manager, _ = _manager(driver)
    manager.acquire()
    driver.ping_error = ConnectionResetError(104, "Connection reset by peer")

    handle = manager.acquire()

    assert handle == "handle-2"
    assert driver.closed == ["handle-1"]


def test_validation_failure_counts_as_connection_failure() -> None:
    driver = _FakeDriver()
    driver.validate_error = PermissionError("validation query denied")
    manager, sleeps = _manager(driver)

    assert manager.acquire() is None

    assert driver.closed == ["handle-1"]
    assert sleeps == []
    assert manager.last_error is not None
    assert manager.last_error.category is ErrorCategory.GENERAL_ERROR


def test_close_swallows_errors_and_is_terminal() -> None:
    driver = _FakeDriver()
    driver.close_error = RuntimeError("already gone")
    manager, _ = _manager(driver)
    manager.acquire()

    manager.close()

    assert manager.state is ConnectionState.CLOSED
    assert manager.acquire() is None
    assert driver.opened == 1


def test_report_failure_drops_lost_session() -> None:
    driver = _FakeDriver()
    manager, _ = _manager(driver)
    manager.acquire()

    record = manager.report_failure(ConnectionResetError(104, "Connection reset by peer"))

    assert record.category is ErrorCategory.CONNECTION_LOST
    assert not manager.connected
    assert manager.state is ConnectionState.UNCONNECTED
    assert manager.acquire() == "handle-2"


def test_report_failure_keeps_session_for_query_errors() -> None:
    driver = _FakeDriver()
    manager, _ = _manager(driver)
    manager.acquire()

    record = manager.report_failure(ValueError("syntax error"))

    assert record.category is ErrorCategory.GENERAL_ERROR
    assert manager.connected
    assert manager.last_error is None
