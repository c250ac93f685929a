from __future__ import annotations

import logging
import mimetypes
import smtplib
import ssl
from email.message import EmailMessage
from pathlib import Path
from typing import Iterable

from .config import MailConfig
from .report import Report


logger = logging.getLogger(__name__)


class Mailer:
    """
    Outbound notifications over SMTP-SSL (Gmail app password by default).
    Missing sender/recipient/password disables sending instead of failing the run.
    """

    def __init__(self, cfg: MailConfig, *, timeout_seconds: int = 30) -> None:
        self.cfg = cfg
        self.timeout_seconds = timeout_seconds

    @property
    def enabled(self) -> bool:
        return self.cfg.enabled

    def build_message(self, subject: str, body: str, attachments: Iterable[str] = ()) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.cfg.sender
        msg["To"] = self.cfg.recipient
        msg["Subject"] = subject
        msg.set_content(body)

        for raw in attachments:
            p = Path(raw)
            try:
                data = p.read_bytes()
            except OSError:
                logger.warning("Skipping unreadable attachment: %s", p)
                continue
            ctype, _ = mimetypes.guess_type(p.name)
            maintype, subtype = (ctype or "application/octet-stream").split("/", 1)
            msg.add_attachment(data, maintype=maintype, subtype=subtype, filename=p.name)
        return msg

    def send(self, subject: str, body: str, attachments: Iterable[str] = ()) -> bool:
        if not self.enabled:
            logger.info("Mail not configured (MAIL_FROM/MAIL_TO/GMAIL_APP_PWD); skipping notification.")
            return False

        msg = self.build_message(subject, body, attachments)
        context = ssl.create_default_context()
        with smtplib.SMTP_SSL(
            self.cfg.smtp_host, self.cfg.smtp_port, timeout=self.timeout_seconds, context=context
        ) as server:
            server.login(self.cfg.sender, self.cfg.app_password)
            server.send_message(msg)
        logger.info("Notification sent to %s (subject=%r)", self.cfg.recipient, subject)
        return True

    def send_report(self, report: Report) -> bool:
        return self.send(report.subject, report.body, report.attachments)
