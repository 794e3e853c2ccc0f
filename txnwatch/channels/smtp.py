"""SMTP delivery channel."""

from __future__ import annotations

import asyncio
import smtplib
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Optional, Sequence

import structlog

from txnwatch.channels.base import (
    DeliveryError,
    DeliveryReceipt,
    NotificationChannel,
    NotificationPayload,
)

logger = structlog.get_logger(__name__)


class SmtpChannel(NotificationChannel):
    """Sends each notification as a multipart (text + HTML) email.

    smtplib is blocking, so the conversation runs in a worker thread.
    """

    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        recipients: Sequence[str],
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: float = 30.0,
    ):
        if not recipients:
            raise ValueError("SMTP channel needs at least one recipient")
        self.host = host
        self.port = port
        self.sender = sender
        self.recipients = list(recipients)
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def build_message(self, payload: NotificationPayload) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = ", ".join(self.recipients)
        msg["Subject"] = payload.subject
        msg["Message-ID"] = make_msgid(idstring=payload.identity[:16])
        msg.set_content(payload.text)
        msg.add_alternative(payload.html, subtype="html")
        return msg

    def _send_blocking(self, msg: EmailMessage) -> None:
        if self.port == 465:
            smtp: smtplib.SMTP = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        else:
            smtp = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        with smtp:
            if self.use_tls and self.port != 465:
                smtp.starttls()
            if self.username and self.password:
                smtp.login(self.username, self.password)
            smtp.send_message(msg)

    async def send(self, payload: NotificationPayload) -> DeliveryReceipt:
        msg = self.build_message(payload)
        try:
            await asyncio.to_thread(self._send_blocking, msg)
        except smtplib.SMTPAuthenticationError as e:
            raise DeliveryError(f"SMTP authentication failed: {e}", kind="AUTH") from e
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"SMTP send failed: {e}", kind="SMTP") from e

        logger.debug("smtp.sent", identity=payload.identity, message_id=msg["Message-ID"])
        return DeliveryReceipt(
            channel=self.name,
            message_id=msg["Message-ID"],
            metadata={"recipients": self.recipients},
        )
