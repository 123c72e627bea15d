"""Mail transport: hands composed messages to an outbound channel."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from pathlib import Path
from typing import Protocol, runtime_checkable

from applydispatch.exceptions import TransportError
from applydispatch.models import SentStatus, utc_now
from applydispatch.settings import AppSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Envelope:
    mail_id: str
    from_email: str
    to_email: str
    subject: str
    body: str
    attachments: tuple[str, ...] = ()
    reply_to: str = ""


@dataclass(frozen=True)
class TransportReceipt:
    """Acknowledgement that the transport accepted the message (not delivery)."""

    mail_id: str
    accepted_at: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class DeliveryEvent:
    """Asynchronous status report for a previously accepted message."""

    mail_id: str
    status: SentStatus
    timestamp: str = field(default_factory=utc_now)


@runtime_checkable
class MailTransport(Protocol):
    async def send(self, envelope: Envelope) -> TransportReceipt:
        """Accept *envelope* for delivery or raise :class:`TransportError`."""
        ...


def build_message(envelope: Envelope, attachments_dir: str | Path = ".") -> EmailMessage:
    """Render *envelope* as a MIME message, attaching files that exist."""
    msg = EmailMessage()
    msg["From"] = envelope.from_email
    msg["To"] = envelope.to_email
    msg["Subject"] = envelope.subject
    domain = envelope.from_email.rpartition("@")[2] or "localhost"
    msg["Message-ID"] = f"<{envelope.mail_id}@{domain}>"
    msg["X-Mail-Id"] = envelope.mail_id
    if envelope.reply_to:
        msg["Reply-To"] = envelope.reply_to
    msg.set_content(envelope.body)

    base = Path(attachments_dir)
    for ref in envelope.attachments:
        path = base / ref
        if not path.is_file():
            logger.warning("Attachment %s not found under %s; sending without it.", ref, base)
            continue
        ctype, _ = mimetypes.guess_type(path.name)
        maintype, subtype = (ctype or "application/octet-stream").split("/", 1)
        msg.add_attachment(
            path.read_bytes(), maintype=maintype, subtype=subtype, filename=path.name
        )
    return msg


class SMTPMailTransport:
    """SMTP submission run in a worker thread so the event loop keeps going."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        starttls: bool = True,
        attachments_dir: str | Path = ".",
        simulation: bool = False,
        timeout: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._starttls = starttls
        self._attachments_dir = attachments_dir
        self._simulation = simulation
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "SMTPMailTransport":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            starttls=settings.smtp_starttls,
            attachments_dir=settings.attachments_dir,
            simulation=settings.simulation_mode,
        )

    async def send(self, envelope: Envelope) -> TransportReceipt:
        try:
            msg = build_message(envelope, self._attachments_dir)
        except (ValueError, OSError) as exc:
            raise TransportError(f"Cannot build message {envelope.mail_id}: {exc}") from exc
        if self._simulation:
            logger.info(
                "[SIMULATION] Would send %s to %s: %s",
                envelope.mail_id,
                envelope.to_email,
                envelope.subject,
            )
            return TransportReceipt(mail_id=envelope.mail_id)
        if not self._host:
            raise TransportError("SMTP host is not configured.")
        try:
            await asyncio.to_thread(self._submit, msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise TransportError(f"SMTP send failed for {envelope.mail_id}: {exc}") from exc
        logger.info("Sent %s to %s.", envelope.mail_id, envelope.to_email)
        return TransportReceipt(mail_id=envelope.mail_id)

    def _submit(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
            if self._starttls:
                server.starttls()
            if self._username:
                server.login(self._username, self._password)
            server.send_message(msg)
