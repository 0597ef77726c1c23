"""Probe settings loading helpers."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import tomllib

from pydantic import BaseModel, Field, ValidationError

CONFIG_FILE = Path.home() / ".config" / "dsnprobe" / "config.toml"
CONFIG_ENV = "DSNPROBE_CONFIG"
DEBUG_ENV = "DSNPROBE_DEBUG"

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class ProbeSettings(BaseModel):
    """Tunables shared by every adapter instance."""

    model_config = {"frozen": True}

    connect_timeout: float = Field(default=5.0, gt=0)
    read_timeout: float = Field(default=10.0, gt=0)
    retry_base: float = Field(default=0.5, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    scan_timeout: float = Field(default=5.0, gt=0)
    scan_batch: int = Field(default=1000, ge=1)
    allow_write_probe: bool = True
    debug: bool = False

    def backoff_delays(self) -> tuple[float, ...]:
        """Sleeps taken between attempts when every attempt fails."""

        return tuple(self.retry_base * 2**attempt for attempt in range(self.max_attempts - 1))

    def with_overrides(self, **updates: object) -> ProbeSettings:
        return self.model_copy(update=updates)


def config_path() -> Path:
    override = os.environ.get(CONFIG_ENV)
    return Path(override) if override else CONFIG_FILE


def load_settings() -> ProbeSettings:
    """Load settings from disk and environment; fall back to defaults."""

    try:
        data = _read_config_file(config_path())
    except FileNotFoundError:
        data = {}
    except (tomllib.TOMLDecodeError, OSError):
        data = {}
    if debug_enabled():
        data["debug"] = True
    try:
        return ProbeSettings(**data)
    except ValidationError:
        return ProbeSettings(debug=bool(data.get("debug", False)))


def debug_enabled() -> bool:
    value = os.environ.get(DEBUG_ENV, "")
    return value.strip().lower() not in ("", "0", "false", "no", "off")


def configure_logging(debug: bool) -> logging.Logger:
    """Attach a stderr handler to the package logger.

    Debug mode surfaces classified errors and retry attempts; otherwise only
    warnings are shown. Functional behaviour is the same either way.
    """

    logger = logging.getLogger("dsnprobe")
    logger.setLevel(logging.DEBUG if debug else logging.WARNING)
    if not any(getattr(handler, "_dsnprobe", False) for handler in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._dsnprobe = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    return logger


def _read_config_file(path: Path) -> dict[str, object]:
    with path.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    probe = raw.get("probe") if isinstance(raw, dict) else None
    if not isinstance(probe, dict):
        return data
    for key in ("connect_timeout", "read_timeout", "retry_base", "scan_timeout"):
        value = probe.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            data[key] = float(value)
    for key in ("max_attempts", "scan_batch"):
        value = probe.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            data[key] = value
    for key in ("allow_write_probe", "debug"):
        value = probe.get(key)
        if isinstance(value, bool):
            data[key] = value
    return data


__all__ = [
    "CONFIG_FILE",
    "ProbeSettings",
    "configure_logging",
    "debug_enabled",
    "load_settings",
]
