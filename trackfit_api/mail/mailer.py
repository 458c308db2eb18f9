"""SMTP mail sender.

Environment Variables:
- SMTP_HOST / SMTP_PORT: SMTP server (STARTTLS on the submission port)
- SMTP_USER / SMTP_PASSWORD: login credentials (optional)
- MAIL_FROM: sender address (defaults to SMTP_USER)
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from starlette.concurrency import run_in_threadpool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from trackfit_api.config.env import get_smtp_settings
from trackfit_api.errors import PaymentServiceUnavailable

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


class SMTPMailer:
    """Send HTML mail through an SMTP relay."""

    def __init__(self, settings: Optional[dict] = None):
        settings = settings or get_smtp_settings()
        self.host = settings["host"]
        self.port = settings["port"]
        self.user = settings.get("user")
        self.password = settings.get("password")
        self.sender = settings["sender"]

    def _build_message(self, to: str, subject: str, html: str, text: Optional[str]) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        if text:
            message.attach(MIMEText(text, "plain"))
        message.attach(MIMEText(html, "html"))
        return message

    @retry(
        retry=retry_if_exception_type((smtplib.SMTPException, OSError)),
        stop=stop_after_attempt(MAX_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        reraise=True,
    )
    def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> None:
        """Send one message (blocking).

        Raises:
            smtplib.SMTPException / OSError: after MAX_ATTEMPTS failed attempts
        """
        message = self._build_message(to, subject, html, text)
        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            server.starttls()
            if self.user and self.password:
                server.login(self.user, self.password)
            server.send_message(message)

        logger.info(
            "Mail sent",
            extra={"event": "mail.sent", "subject": subject},
        )

    async def send_async(self, to: str, subject: str, html: str, text: Optional[str] = None) -> None:
        """Send from async code without blocking the event loop."""
        await run_in_threadpool(self.send, to, subject, html, text)


def get_mailer() -> SMTPMailer:
    """FastAPI dependency: mailer built from environment.

    Raises:
        PaymentServiceUnavailable: If SMTP is not configured
    """
    try:
        return SMTPMailer()
    except ValueError:
        logger.error("Mailer is not configured", extra={"event": "mail.misconfigured"})
        raise PaymentServiceUnavailable("Mail service is not configured")
