"""Connection lifecycle: acquire, reuse, retry with backoff, release."""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Generic, Protocol, TypeVar

from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from .classify import ErrorClassifier
from .config import ProbeSettings
from .errors import ErrorCategory, ErrorRecord

LOG = logging.getLogger(__name__)

HandleT = TypeVar("HandleT")

# Query-time failures in these categories mean the session itself is gone.
SESSION_LOSS = frozenset(
    {
        ErrorCategory.CONNECTION_LOST,
        ErrorCategory.NETWORK_UNREACHABLE,
        ErrorCategory.SERVER_RESTARTING,
    }
)


class ConnectionDriver(Protocol[HandleT]):
    """Backend hooks used by the lifecycle manager."""

    def open(self) -> HandleT:
        """Open a new session using the connect timeout."""

    def ping(self, handle: HandleT) -> None:
        """Cheap liveness check; raise when the session is unusable."""

    def validate(self, handle: HandleT) -> None:
        """Run one validation query right after opening."""

    def close(self, handle: HandleT) -> None:
        """Shut the session down."""


class ConnectionState(str, Enum):
    UNCONNECTED = "unconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"
    CLOSED = "closed"


class _AttemptFailed(Exception):
    def __init__(self, record: ErrorRecord) -> None:
        super().__init__(record.message)
        self.record = record


def _is_retriable(exc: BaseException) -> bool:
    return isinstance(exc, _AttemptFailed) and exc.record.retriable


class ConnectionManager(Generic[HandleT]):
    """Owns the single primary session of one adapter instance.

    Not thread-safe: one caller per adapter instance.
    """

    def __init__(
        self,
        driver: ConnectionDriver[HandleT],
        classifier: ErrorClassifier,
        settings: ProbeSettings,
        *,
        sleep: Callable[[float], None] = time.sleep,
        name: str = "",
    ) -> None:
        self._driver = driver
        self._classifier = classifier
        self._settings = settings
        self._sleep = sleep
        self._name = name
        self._handle: HandleT | None = None
        self._state = ConnectionState.UNCONNECTED
        self._last_error: ErrorRecord | None = None
        self.attempts = 0
        self.total_wait = 0.0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def last_error(self) -> ErrorRecord | None:
        """Why the most recent connection attempt failed, if it did."""

        return self._last_error

    @property
    def connected(self) -> bool:
        return self._handle is not None

    def acquire(self) -> HandleT | None:
        """Return a live session, or ``None`` when none can be established."""

        if self._state is ConnectionState.CLOSED:
            return None
        if self._handle is not None:
            try:
                self._driver.ping(self._handle)
                return self._handle
            except Exception as exc:
                self._record(exc, stage="ping")
                self._discard()
        if self._state is ConnectionState.FAILED and self._last_error and not self._last_error.retriable:
            return None

        self._state = ConnectionState.CONNECTING
        retrying = Retrying(
            stop=stop_after_attempt(self._settings.max_attempts),
            wait=wait_exponential(multiplier=self._settings.retry_base),
            retry=retry_if_exception(_is_retriable),
            sleep=self._backoff,
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            handle = retrying(self._open_once)
        except _AttemptFailed as exc:
            self._state = ConnectionState.FAILED
            LOG.debug(
                "Giving up on connection",
                extra={"endpoint": self._name, "attempts": self.attempts, "category": exc.record.category.name},
            )
            return None
        self._handle = handle
        self._state = ConnectionState.CONNECTED
        self._last_error = None
        return handle

    def report_failure(self, exc: BaseException) -> ErrorRecord:
        """Classify a query-time failure, dropping the session if it was lost.

        Sockets torn down by an external deadline land here as ordinary
        connection losses.
        """

        record = self._classifier.classify(exc)
        LOG.debug(
            "Query failed",
            extra={"endpoint": self._name, "category": record.category.name, "code": record.code},
        )
        if record.category in SESSION_LOSS and self._handle is not None:
            self._last_error = record
            self._discard()
            self._state = ConnectionState.UNCONNECTED
        return record

    def close(self) -> None:
        """Release the session; errors during shutdown are logged and dropped."""

        self._discard()
        self._state = ConnectionState.CLOSED

    def _open_once(self) -> HandleT:
        self.attempts += 1
        handle: HandleT | None = None
        try:
            handle = self._driver.open()
            self._driver.validate(handle)
        except Exception as exc:
            if handle is not None:
                self._quiet_close(handle)
            raise _AttemptFailed(self._record(exc, stage="connect")) from exc
        return handle

    def _record(self, exc: BaseException, *, stage: str) -> ErrorRecord:
        record = self._classifier.classify(exc)
        self._last_error = record
        LOG.debug(
            "Connection error classified",
            extra={
                "endpoint": self._name,
                "stage": stage,
                "attempt": self.attempts,
                "category": record.category.name,
                "retriable": record.retriable,
                "code": record.code,
                "error": record.message,
            },
        )
        return record

    def _backoff(self, seconds: float) -> None:
        self.total_wait += seconds
        self._sleep(seconds)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        LOG.debug(
            "Retrying connection",
            extra={"endpoint": self._name, "attempt": retry_state.attempt_number, "delay": delay},
        )

    def _discard(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            self._quiet_close(handle)

    def _quiet_close(self, handle: HandleT) -> None:
        try:
            self._driver.close(handle)
        except Exception as exc:
            LOG.debug("Ignoring error while closing session", extra={"endpoint": self._name, "error": str(exc)})


__all__ = ["ConnectionDriver", "ConnectionManager", "ConnectionState", "SESSION_LOSS"]
