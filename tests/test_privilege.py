"""Tests for the progressive privilege prober."""

from __future__ import annotations

from dsnprobe.models import AccessLevel, AccessReport
from dsnprobe.privilege import PrivilegeProber, WriteProbe, probe_name


def _deny() -> None:
    raise PermissionError("denied")


def test_introspection_result_short_circuits() -> None:
    calls: list[str] = []
    prober = PrivilegeProber(
        introspect=lambda: AccessReport(AccessLevel.ADMINISTRATOR, "Superuser (full access)"),
        admin_probe=lambda: calls.append("admin"),
        read_probe=lambda: calls.append("read"),
    )

    report = prober.run()

    assert report.level is AccessLevel.ADMINISTRATOR
    assert report.label == "Superuser (full access)"
    assert calls == []


def test_inconclusive_introspection_falls_through_to_admin_probe() -> None:
    prober = PrivilegeProber(introspect=lambda: None, admin_probe=lambda: "rows")

    assert prober.run().level is AccessLevel.ADMINISTRATOR


def test_failing_introspection_is_swallowed() -> None:
    prober = PrivilegeProber(introspect=_deny, read_probe=lambda: 1)

    assert prober.run().level is AccessLevel.READ_ONLY


def test_write_probe_tears_down_after_successful_create() -> None:
    calls: list[str] = []
    prober = PrivilegeProber(
        admin_probe=_deny,
        write_probe=WriteProbe(create=lambda: calls.append("create"), teardown=lambda: calls.append("drop")),
    )

    report = prober.run()

    assert report.level is AccessLevel.WRITE
    assert calls == ["create", "drop"]


def test_teardown_is_skipped_when_create_fails() -> None:
    calls: list[str] = []
    prober = PrivilegeProber(
        write_probe=WriteProbe(create=_deny, teardown=lambda: calls.append("drop")),
        read_probe=lambda: calls.append("read"),
    )

    report = prober.run()

    assert report.level is AccessLevel.READ_ONLY
    assert calls == ["read"]


def test_failed_teardown_still_reports_write_access() -> None:
    prober = PrivilegeProber(write_probe=WriteProbe(create=lambda: None, teardown=_deny))

    assert prober.run().level is AccessLevel.WRITE


def test_write_probe_can_be_disabled() -> None:
    calls: list[str] = []
    prober = PrivilegeProber(
        write_probe=WriteProbe(create=lambda: calls.append("create"), teardown=lambda: calls.append("drop")),
        read_probe=lambda: None,
        allow_write_probe=False,
    )

    assert prober.run().level is AccessLevel.READ_ONLY
    assert calls == []


def test_everything_denied_is_limited_access() -> None:
    prober = PrivilegeProber(
        introspect=_deny,
        admin_probe=_deny,
        write_probe=WriteProbe(create=_deny, teardown=_deny),
        read_probe=_deny,
    )

    report = prober.run()

    assert report.level is AccessLevel.LIMITED
    assert report.label == "Limited access"


def test_custom_labels_and_admin_level() -> None:
    prober = PrivilegeProber(
        admin_probe=lambda: None,
        admin_level=AccessLevel.POWER_USER,
        labels={AccessLevel.POWER_USER: "Power user (access to system catalogs)"},
    )

    report = prober.run()

    assert report.level is AccessLevel.POWER_USER
    assert report.label == "Power user (access to system catalogs)"


def test_probe_names_are_unique() -> None:
    first, second = probe_name(), probe_name()

    assert first != second
    assert first.startswith("__dsnprobe_access_check_")
