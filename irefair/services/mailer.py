"""
SMTP mailer.

send_mail builds a multipart (text + optional html) message and hands it to
deliver_message, which talks to the SMTP server. Port 465 uses implicit TLS,
anything else upgrades with STARTTLS.
"""

import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import Iterable, Optional, Union

from irefair.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class MailerConfigError(RuntimeError):
    """SMTP settings are incomplete."""


# Everything send_mail can raise
MAIL_ERRORS = (MailerConfigError, smtplib.SMTPException, OSError)


def _as_list(value: Union[str, Iterable[str], None]) -> list:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [item for item in value if item]


def build_message(
    to: str,
    subject: str,
    text: str,
    html: Optional[str] = None,
    cc: Union[str, Iterable[str], None] = None,
    reply_to: Optional[str] = None,
) -> EmailMessage:
    from_email = settings.smtp_from_email or settings.smtp_user or "info@irefair.com"
    msg = EmailMessage()
    msg["From"] = formataddr((settings.smtp_from_name or "iRefair", from_email))
    msg["To"] = to
    cc_list = _as_list(cc)
    if cc_list:
        msg["Cc"] = ", ".join(cc_list)
    if reply_to:
        msg["Reply-To"] = reply_to
    msg["Subject"] = subject
    msg.set_content(text)
    if html:
        msg.add_alternative(html, subtype="html")
    return msg


def deliver_message(msg: EmailMessage) -> None:
    """Send through the configured SMTP server."""
    if not (settings.smtp_host and settings.smtp_port and settings.smtp_user and settings.smtp_password):
        raise MailerConfigError(
            "SMTP configuration is missing. Please set SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD."
        )

    if settings.smtp_port == 465:
        with smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout_seconds) as server:
            server.login(settings.smtp_user, settings.smtp_password)
            server.send_message(msg)
        return

    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout_seconds) as server:
        server.starttls()
        server.login(settings.smtp_user, settings.smtp_password)
        server.send_message(msg)


def send_mail(
    to: str,
    subject: str,
    text: str,
    html: Optional[str] = None,
    cc: Union[str, Iterable[str], None] = None,
    reply_to: Optional[str] = None,
) -> None:
    """Send one email. Raises on configuration or SMTP errors."""
    msg = build_message(to, subject, text, html=html, cc=cc, reply_to=reply_to)
    try:
        deliver_message(msg)
    except MAIL_ERRORS as e:
        logger.error("Error sending mail to %s (%s): %s", to, subject, e)
        raise
    logger.info("Sent mail to %s: %s", to, subject)


def try_send_mail(*args, **kwargs) -> bool:
    """send_mail for non-critical notifications: failures are logged, not raised."""
    try:
        send_mail(*args, **kwargs)
        return True
    except MAIL_ERRORS:
        return False
