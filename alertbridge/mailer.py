"""SMTP delivery for email and pager notifications."""

from __future__ import annotations

import smtplib
from email.message import EmailMessage
from email.utils import formataddr, formatdate

import structlog

from .config import SMTPConfig

logger = structlog.get_logger(__name__)


class SmtpMailer:
    """Sends one message per call through the configured relay.

    Failures are logged and reported through the return value; nothing is
    retried.
    """

    def __init__(self, config: SMTPConfig):
        self.config = config

    def build_message(self, to_name: str, to_address: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = formataddr((self.config.from_name, self.config.from_address))
        message["To"] = formataddr((to_name, to_address))
        message["Date"] = formatdate(localtime=True)
        message["Subject"] = subject
        message.set_content(body)
        return message

    def send(self, to_name: str, to_address: str, subject: str, body: str) -> bool:
        message = self.build_message(to_name, to_address, subject, body)
        try:
            with smtplib.SMTP(self.config.relay, self.config.port, timeout=self.config.timeout) as conn:
                conn.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send mail", to=to_address, relay=self.config.relay, error=str(e))
            return False
        logger.info("Sent notification via SMTP", to=to_address)
        return True
