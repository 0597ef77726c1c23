"""SMTP adapter built on ``smtplib``; identity and access only."""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass

from ..classify import SMTPErrorClassifier
from ..config import ProbeSettings
from ..models import AccessLevel, Capabilities, Endpoint, Identity
from ..privilege import PrivilegeProber, WriteProbe
from .base import Adapter

LOG = logging.getLogger(__name__)

DEFAULT_PORT = 25
DEFAULT_SSL_PORT = 465
LOCAL_HOSTNAME = "dsnprobe.local"


@dataclass(slots=True)
class SMTPSession:
    client: smtplib.SMTP
    banner: str


def _expect(reply: tuple[int, bytes], *codes: int) -> None:
    code, message = reply
    if code not in codes:
        raise smtplib.SMTPResponseException(code, message)


class SMTPDriver:
    """Connects, greets and optionally authenticates an SMTP session."""

    def __init__(self, endpoint: Endpoint, settings: ProbeSettings) -> None:
        self._endpoint = endpoint
        self._settings = settings

    def open(self) -> SMTPSession:
        endpoint = self._endpoint
        secure = endpoint.scheme == "smtps"
        factory = smtplib.SMTP_SSL if secure else smtplib.SMTP
        client = factory(local_hostname=LOCAL_HOSTNAME, timeout=self._settings.connect_timeout)
        try:
            code, banner = client.connect(endpoint.host, endpoint.with_port(DEFAULT_SSL_PORT if secure else DEFAULT_PORT))
            if code != 220:
                raise smtplib.SMTPConnectError(code, banner)
            if client.sock is not None:
                client.sock.settimeout(self._settings.read_timeout)
            client.ehlo_or_helo_if_needed()
            if endpoint.user and endpoint.password is not None:
                if not secure and client.has_extn("starttls"):
                    client.starttls()
                    client.ehlo()
                client.login(endpoint.user, endpoint.password)
        except Exception:
            client.close()
            raise
        return SMTPSession(client=client, banner=banner.decode("utf-8", "replace").strip())

    def ping(self, session: SMTPSession) -> None:
        _expect(session.client.noop(), 250)

    def validate(self, session: SMTPSession) -> None:
        _expect(session.client.noop(), 250)

    def close(self, session: SMTPSession) -> None:
        try:
            session.client.quit()
        finally:
            session.client.close()


class SMTPAdapter(Adapter[SMTPSession]):
    kind = "SMTP"
    product = "SMTP"
    schemes = ("smtp", "smtps")
    capabilities = Capabilities(kind="SMTP")
    classifier = SMTPErrorClassifier()
    cli_name = "telnet"
    default_port = DEFAULT_PORT

    @property
    def port(self) -> int | None:
        if self.endpoint.port is None and self.endpoint.scheme == "smtps":
            return DEFAULT_SSL_PORT
        return super().port

    def create_driver(self) -> SMTPDriver:
        return SMTPDriver(self.endpoint, self.settings)

    def _identity(self, session: SMTPSession) -> Identity:
        return Identity(
            product=self.product,
            version=session.banner or "server",
            user=self.endpoint.user,
            build=f"{self.endpoint.host}:{self.port}",
        )

    def _version_label(self, identity: Identity) -> str:
        label = f"SMTP server at {identity.build}"
        if identity.version != "server":
            label += f" ({identity.version})"
        return label

    def _sender(self) -> str:
        user = self.endpoint.user or "dsnprobe"
        return user if "@" in user else f"{user}@{self.endpoint.host}"

    def _prober(self, session: SMTPSession) -> PrivilegeProber:
        client = session.client
        return PrivilegeProber(
            admin_probe=lambda: _expect(client.verify("postmaster"), 250, 251),
            write_probe=WriteProbe(
                create=lambda: _expect(client.mail(self._sender()), 250),
                teardown=lambda: _expect(client.rset(), 250),
            ),
            read_probe=lambda: _expect(client.noop(), 250),
            labels={
                AccessLevel.ADMINISTRATOR: "Administrator (VRFY command allowed)",
                AccessLevel.WRITE: "Authenticated user (send mail)",
                AccessLevel.READ_ONLY: "Connected (no send permission)",
            },
            allow_write_probe=self.settings.allow_write_probe,
            name=self.summary(),
        )


__all__ = ["SMTPAdapter", "SMTPDriver", "SMTPSession"]
