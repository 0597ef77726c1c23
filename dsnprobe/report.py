"""Render an adapter's accessors as labelled rows for display."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from .adapters import Adapter
from .results import Outcome, ProbeResult

UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class ReportRow:
    label: str
    value: str
    outcome: Outcome = Outcome.OK


def _row(label: str, result: ProbeResult[Any], render: Callable[[Any], str] = str) -> ReportRow:
    if result.value is None:
        text = UNKNOWN
        if result.error is not None:
            text += f" ({result.error.category.label})"
        elif result.note:
            text += f" ({result.note})"
        return ReportRow(label, text, result.outcome)
    text = render(result.value)
    if result.is_degraded and result.note:
        text += f" [{result.note}]"
    return ReportRow(label, text, result.outcome)


def _render_databases(items: list[Any]) -> str:
    if not items:
        return "none"
    shown = ", ".join(f"{item.name} ({item.size})" for item in items[:5])
    if len(items) > 5:
        shown += f", +{len(items) - 5} more"
    return shown


def _render_connections(stats: Any) -> str:
    text = f"{stats.global_count}/{stats.global_limit} (user {stats.user_count}/{stats.user_limit})"
    if stats.usage_percentage is not None:
        text += f", {stats.usage_percentage:.1f}% used"
    if stats.error:
        text += f" - {stats.error}"
    return text


def build_report(adapter: Adapter) -> list[ReportRow]:
    """Query every accessor once and return display rows in a fixed order."""

    rows = [
        ReportRow("Type", adapter.summary()),
        ReportRow("Endpoint", f"{adapter.host}:{adapter.port}"),
        ReportRow("Client", adapter.cli_name or UNKNOWN),
        _row("Version", adapter.version()),
    ]
    if adapter.capabilities.sql or adapter.capabilities.kv:
        rows.append(_row("Usage", adapter.usage()))
    if adapter.capabilities.databases:
        rows.append(_row("Databases", adapter.databases(), _render_databases))
        rows.append(_row("Database count", adapter.database_count()))
    if adapter.capabilities.tables:
        rows.append(_row("Table count", adapter.table_count()))
    if adapter.capabilities.sql or adapter.capabilities.kv:
        rows.append(_row("Connections", adapter.connection_accounting(), _render_connections))
        rows.append(_row("Replication", adapter.replication_topology(), lambda value: "yes" if value else "no"))
    rows.append(_row("Access", adapter.access_level(), lambda report: report.label))
    error = adapter.connection_error
    if error is not None:
        rows.append(ReportRow("Last error", error.describe(), Outcome.ABSENT))
    return rows


def format_report(rows: list[ReportRow]) -> str:
    width = max((len(row.label) for row in rows), default=0)
    return "\n".join(f"{row.label.ljust(width)}  {row.value}" for row in rows)


__all__ = ["ReportRow", "build_report", "format_report"]
