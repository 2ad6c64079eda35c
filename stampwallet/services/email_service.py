# Overview: Outgoing email; SMTP over SSL, or a log line when no SMTP host is configured.

from __future__ import annotations

import logging
import smtplib
from collections import deque
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText


logger = logging.getLogger(__name__)


class EmailService:
    """Thin wrapper over smtplib. Bodies are HTML."""

    def __init__(self, host=None, port=465, username=None, password=None, sender="noreply@stampwallet.local"):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        # Unsent messages, newest last; filled only when no SMTP host is set
        self.outbox: deque = deque(maxlen=100)

    @classmethod
    def from_config(cls, config) -> "EmailService":
        return cls(
            host=config.get("SMTP_HOST"),
            port=int(config.get("SMTP_PORT") or 465),
            username=config.get("SMTP_USERNAME"),
            password=config.get("SMTP_PASSWORD"),
            sender=config.get("SMTP_SENDER") or "noreply@stampwallet.local",
        )

    def send(self, to_email: str, subject: str, body: str) -> None:
        if not self.host:
            self.outbox.append({"to": to_email, "subject": subject, "body": body})
            logger.info("SMTP not configured, email to %s not sent: %s", to_email, subject)
            return

        msg = MIMEMultipart()
        msg["From"] = self.sender
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "html", "utf-8"))

        with smtplib.SMTP_SSL(self.host, self.port) as server:
            if self.username:
                server.login(self.username, self.password or "")
            server.send_message(msg)
        logger.info("Email sent to %s: %s", to_email, subject)
