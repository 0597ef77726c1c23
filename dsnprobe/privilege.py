"""Progressive probing of the effective access level of a session."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Mapping

from .models import AccessLevel, AccessReport

LOG = logging.getLogger(__name__)

Introspection = Callable[[], "AccessReport | None"]
Operation = Callable[[], object]


@dataclass(frozen=True, slots=True)
class WriteProbe:
    """A create/teardown pair; teardown runs only after a successful create."""

    create: Operation
    teardown: Operation


DEFAULT_LABELS: Mapping[AccessLevel, str] = {
    AccessLevel.ADMINISTRATOR: "Administrator",
    AccessLevel.POWER_USER: "Power user",
    AccessLevel.WRITE: "Write access",
    AccessLevel.READ_ONLY: "Read-only access",
    AccessLevel.LIMITED: "Limited access",
}


def probe_name(prefix: str = "__dsnprobe_access_check") -> str:
    """Name for a disposable probe object that cannot collide with real data."""

    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class PrivilegeProber:
    """Runs capability tests in decreasing order of required privilege.

    1. ``introspect`` reads grants/roles/ACLs and classifies them directly;
       returning ``None`` means the read was inconclusive.
    2. ``admin_probe`` tries an administrator-only operation.
    3. ``write_probe`` creates a disposable object and removes it again.
    4. ``read_probe`` tries the cheapest read.

    A failing step is expected and only logged; the report is always one of
    the ordered levels.
    """

    def __init__(
        self,
        *,
        introspect: Introspection | None = None,
        admin_probe: Operation | None = None,
        admin_level: AccessLevel = AccessLevel.ADMINISTRATOR,
        write_probe: WriteProbe | None = None,
        read_probe: Operation | None = None,
        labels: Mapping[AccessLevel, str] | None = None,
        allow_write_probe: bool = True,
        name: str = "",
    ) -> None:
        self._introspect = introspect
        self._admin_probe = admin_probe
        self._admin_level = admin_level
        self._write_probe = write_probe
        self._read_probe = read_probe
        self._labels = {**DEFAULT_LABELS, **(labels or {})}
        self._allow_write_probe = allow_write_probe
        self._name = name

    def run(self) -> AccessReport:
        if self._introspect is not None:
            report = self._attempt("introspect", self._introspect)
            if isinstance(report, AccessReport):
                return report
        if self._admin_probe is not None and self._succeeds("admin", self._admin_probe):
            return self._report(self._admin_level)
        if self._write_probe is not None and self._allow_write_probe and self._write_succeeds(self._write_probe):
            return self._report(AccessLevel.WRITE)
        if self._read_probe is not None and self._succeeds("read", self._read_probe):
            return self._report(AccessLevel.READ_ONLY)
        return self._report(AccessLevel.LIMITED)

    def _report(self, level: AccessLevel) -> AccessReport:
        return AccessReport(level=level, label=self._labels[level])

    def _write_succeeds(self, probe: WriteProbe) -> bool:
        if not self._succeeds("write", probe.create):
            return False
        if not self._succeeds("teardown", probe.teardown):
            LOG.warning("Privilege probe could not remove its probe object", extra={"endpoint": self._name})
        return True

    def _succeeds(self, step: str, operation: Operation) -> bool:
        try:
            operation()
        except Exception as exc:
            LOG.debug("Privilege step denied", extra={"endpoint": self._name, "step": step, "error": str(exc)})
            return False
        return True

    def _attempt(self, step: str, operation: Introspection) -> AccessReport | None:
        try:
            return operation()
        except Exception as exc:
            LOG.debug("Privilege step denied", extra={"endpoint": self._name, "step": step, "error": str(exc)})
            return None


__all__ = ["DEFAULT_LABELS", "PrivilegeProber", "WriteProbe", "probe_name"]
