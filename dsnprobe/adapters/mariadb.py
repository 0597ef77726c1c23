"""MariaDB adapter; MySQL wire protocol with its own version and role handling."""

from __future__ import annotations

import logging

import mysql.connector

from ..config import ProbeSettings
from ..models import AccessReport, Capabilities, Identity
from .mysql import MySQLAdapter, MySQLDriver, MySQLSession, classify_grants

LOG = logging.getLogger(__name__)

_CONNECT_TIMEOUT = 15.0
_READ_TIMEOUT = 30.0


class MariaDBAdapter(MySQLAdapter):
    kind = "MariaDB"
    product = "MariaDB"
    schemes = ("mariadb",)
    capabilities = Capabilities(kind="MariaDB", sql=True, databases=True, tables=True)
    cli_name = "mariadb"

    # Only single-statement settings; wait_timeout is left to the server.
    SESSION_INIT = ("SET SESSION net_read_timeout = {read_timeout}, net_write_timeout = {read_timeout}",)

    def create_driver(self) -> MySQLDriver:
        settings: ProbeSettings = self.settings
        if "connect_timeout" not in settings.model_fields_set:
            settings = settings.with_overrides(connect_timeout=_CONNECT_TIMEOUT)
        if "read_timeout" not in settings.model_fields_set:
            settings = settings.with_overrides(read_timeout=_READ_TIMEOUT)
        return MySQLDriver(self.endpoint, settings, session_init=self.SESSION_INIT)

    def _identity(self, session: MySQLSession) -> Identity:
        identity = super()._identity(session)
        version = identity.version
        if version.lower().startswith(self.product.lower()):
            version = version[len(self.product) :].lstrip(" -")
        return Identity(
            product=identity.product,
            version=version,
            database=identity.database,
            user=identity.user,
        )

    def _current_role(self, session: MySQLSession) -> str | None:
        try:
            plugin = session.fetchval(
                "SELECT PLUGIN_STATUS FROM information_schema.plugins WHERE PLUGIN_NAME = 'ROLES'"
            )
            if plugin is not None and str(plugin).upper() != "ACTIVE":
                return None
            role = session.fetchval("SELECT CURRENT_ROLE()")
        except mysql.connector.Error as exc:
            LOG.debug("Role lookup failed", extra={"error": str(exc)})
            return None
        if not role or str(role).upper() == "NONE":
            return None
        return str(role)

    def _introspect_grants(self, session: MySQLSession) -> AccessReport | None:
        report = classify_grants(self._grants(session))
        role = self._current_role(session)
        return report.with_suffix(f"[Role: {role}]") if role else report


__all__ = ["MariaDBAdapter"]
