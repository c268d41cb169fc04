"""
auth/mailer.py -- Outbound mail for the password reset workflow.

Mailer is a Protocol: anything with `async send(to_address, subject, body)`
that raises DeliveryError on failure will do. Two implementations ship here:

  SmtpMailer -- stdlib smtplib + EmailMessage. smtplib blocks, so delivery runs
      in a worker thread (asyncio.to_thread) and the whole exchange is bounded
      by asyncio.wait_for(mail_timeout_seconds). A timeout is a failure, never
      a success. The socket-level timeout is set to the same value so the
      worker thread does not outlive the request by much.

  LogMailer -- development only. Logs the message instead of sending it.
      build_mailer() picks it when DEBUG is on and SMTP_HOST is empty;
      production without SMTP_HOST refuses to start.

Retries are the caller's business. send() is safe to retry (the message is
rebuilt each time) but nothing here retries on its own.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("todoauth.mailer")


class DeliveryError(Exception):
    """The message was not handed off to the mail transport."""


class Mailer(Protocol):
    async def send(self, to_address: str, subject: str, body: str) -> None: ...


class SmtpMailer:
    """Deliver plain-text mail over SMTP with STARTTLS and optional login."""

    def __init__(
        self,
        host: str,
        port: int,
        from_address: str,
        from_name: str = "",
        username: str = "",
        password: str = "",
        starttls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.from_address = from_address
        self.from_name = from_name
        self.username = username
        self.password = password
        self.starttls = starttls
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> SmtpMailer:
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            from_address=settings.smtp_from or settings.smtp_username,
            from_name=settings.smtp_from_name,
            username=settings.smtp_username,
            password=settings.smtp_password,
            starttls=settings.smtp_starttls,
            timeout=settings.mail_timeout_seconds,
        )

    def build_message(self, to_address: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = formataddr((self.from_name, self.from_address)) if self.from_name else self.from_address
        message["To"] = to_address
        message["Subject"] = subject
        message.set_content(body)
        return message

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.starttls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(message)

    async def send(self, to_address: str, subject: str, body: str) -> None:
        message = self.build_message(to_address, subject, body)
        try:
            await asyncio.wait_for(asyncio.to_thread(self._deliver, message), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise DeliveryError(f"SMTP delivery timed out after {self.timeout}s") from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryError(f"SMTP delivery failed: {type(exc).__name__}") from exc


class LogMailer:
    """Write outgoing mail to the log. For local development only."""

    async def send(self, to_address: str, subject: str, body: str) -> None:
        logger.warning("DEV MAIL (not sent) to=%s subject=%r\n%s", to_address, subject, body)


def build_mailer(settings: Settings) -> Mailer:
    """Return the mailer the settings ask for.

    Raises ValueError when no SMTP host is configured outside debug mode --
    a reset workflow that silently drops mail would look like it works.
    """
    if settings.smtp_host:
        return SmtpMailer.from_settings(settings)
    if settings.debug:
        logger.warning("WARNING: SMTP_HOST not set. Password reset mail will be logged, not sent.")
        return LogMailer()
    raise ValueError("SMTP_HOST is required in production mode.")


def build_reset_email(reset_link: str, ttl_minutes: int, app_name: str) -> tuple[str, str]:
    """Return (subject, body) for a password reset message."""
    subject = f"Reset your {app_name} password"
    body = (
        "You requested a password reset.\n\n"
        f"Open this link to choose a new password: {reset_link}\n\n"
        f"The link expires in {ttl_minutes} minutes. "
        "If you did not ask for this, you can ignore this email."
    )
    return subject, body
