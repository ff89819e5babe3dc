"""
Outbound email.

send(to, subject, html) never raises for delivery problems; callers get a
SendResult and decide whether a failure matters.
"""
import logging
import smtplib
import ssl
import uuid
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid

from aiborn.core.config import Settings
from aiborn.core.errors import ConfigurationError
from aiborn.core.logging import mask_email

logger = logging.getLogger("aiborn.mailer")


@dataclass
class SendResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


class Mailer:
    def send(self, to: str, subject: str, html: str) -> SendResult:
        raise NotImplementedError


class SmtpMailer(Mailer):
    def __init__(
        self,
        host: str,
        port: int,
        user: str | None,
        password: str | None,
        sender: str,
        timeout: float = 20.0,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.timeout = timeout

    def _build(self, to: str, subject: str, html: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        domain = self.sender.rsplit("@", 1)[-1].strip(" >") or None
        msg["Message-ID"] = make_msgid(domain=domain)
        msg.set_content("This message requires an HTML-capable email client.")
        msg.add_alternative(html, subtype="html")
        return msg

    def send(self, to: str, subject: str, html: str) -> SendResult:
        msg = self._build(to, subject, html)
        context = ssl.create_default_context()
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.ehlo()
                server.starttls(context=context)
                server.ehlo()
                if self.user:
                    server.login(self.user, self.password or "")
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP send to %s failed: %s", mask_email(to), e)
            return SendResult(success=False, error=str(e))

        logger.info("Email sent to %s subject=%r", mask_email(to), subject)
        return SendResult(success=True, message_id=msg["Message-ID"])


class LogMailer(Mailer):
    """Development mailer: logs instead of sending."""

    def __init__(self):
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to: str, subject: str, html: str) -> SendResult:
        self.sent.append((to, subject, html))
        logger.warning("SMTP not configured; email to %s NOT sent: %r", mask_email(to), subject)
        return SendResult(success=True, message_id=f"<dev-{uuid.uuid4().hex}@localhost>")


def build_mailer(settings: Settings) -> Mailer:
    if settings.SMTP_HOST:
        return SmtpMailer(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            user=settings.SMTP_USER,
            password=settings.SMTP_PASSWORD,
            sender=settings.MAIL_FROM,
        )
    if settings.is_prod:
        raise ConfigurationError("SMTP_HOST is not configured", code="MAIL_NOT_CONFIGURED")
    return LogMailer()
