"""
core/mailer.py -- Outbound e-mail for OTP delivery.

Uses smtplib with an EmailMessage body. SMTP settings come from
core.config.get_settings(); when SMTP_HOST / SMTP_SENDER are unset, delivery
is disabled and send_otp_email() returns False instead of raising, so local
development works without a mail server.

Layer rule: core/ may not import from api/, web/, auth/ or market/.
"""

import logging
import smtplib
from email.message import EmailMessage

from core.config import Settings, get_settings

logger = logging.getLogger("autozonex.mailer")


class MailDeliveryError(Exception):
    """Raised when the SMTP server rejects or fails to deliver a message."""


def build_otp_message(sender: str, to_email: str, code: str, purpose: str, expire_minutes: int) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = f"Your OTP for {purpose}"
    msg["From"] = sender
    msg["To"] = to_email
    msg.set_content(f"Your OTP is {code}. It expires in {expire_minutes} minutes.")
    return msg


def send_otp_email(to_email: str, code: str, purpose: str, settings: Settings | None = None) -> bool:
    """Send the plaintext OTP to to_email.

    Returns True when the message was handed to the SMTP server, False when
    SMTP is not configured. Raises MailDeliveryError on SMTP or socket errors.

    In debug mode an undeliverable code is written to the log so developers
    can complete the flow locally. Never enable DEBUG in production.
    """
    settings = settings or get_settings()
    if not settings.smtp_configured:
        logger.warning("SMTP not configured; OTP e-mail to %s not sent", to_email)
        if settings.debug:
            logger.warning("DEBUG OTP for %s (%s): %s", to_email, purpose, code)
        return False

    msg = build_otp_message(
        settings.smtp_sender,
        to_email,
        code,
        purpose,
        max(1, settings.otp_expire_seconds // 60),
    )
    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10) as server:
            if settings.smtp_use_tls:
                server.starttls()
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("OTP e-mail to %s failed: %s", to_email, exc)
        raise MailDeliveryError(str(exc)) from exc

    logger.info("OTP e-mail sent to %s (%s)", to_email, purpose)
    return True
