"""Outbound email for players whose payment has been verified."""
from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Optional, Protocol

from .config import SmtpConfig
from .errors import NotifierFailure
from .models import Registration

logger = logging.getLogger("rpl.notifier")

SENDER_NAME = "RPL Management"
VERIFIED_SUBJECT = "RPL Registration Verified"

_VERIFIED_BODY = """Hi {name},

Payment confirmed
Player details verified
You are officially selected for the tournament

Selected team will contact you shortly with match schedules and further updates.

Play well and all the best!

Regards,
RPL Management Team
"""


class Notifier(Protocol):
    def send_verification(self, registration: Registration) -> None:
        """Tell the player their registration was verified.

        Implementations raise :class:`NotifierFailure` when delivery fails.
        """


def build_verification_message(registration: Registration, sender: str) -> EmailMessage:
    message = EmailMessage()
    message["Subject"] = VERIFIED_SUBJECT
    message["From"] = f'"{SENDER_NAME}" <{sender}>'
    message["To"] = registration.player_email
    message.set_content(_VERIFIED_BODY.format(name=registration.player_name))
    return message


class SmtpNotifier:
    """Send notifications through an SMTP relay."""

    def __init__(self, config: SmtpConfig) -> None:
        self._config = config

    @property
    def sender(self) -> str:
        return self._config.username

    def send_verification(self, registration: Registration) -> None:
        config = self._config
        try:
            message = build_verification_message(registration, self.sender)
            if config.use_ssl:
                with smtplib.SMTP_SSL(config.host, config.port, timeout=config.timeout) as server:
                    server.login(config.username, config.password)
                    server.send_message(message)
            else:
                with smtplib.SMTP(config.host, config.port, timeout=config.timeout) as server:
                    server.starttls()
                    server.login(config.username, config.password)
                    server.send_message(message)
        except (smtplib.SMTPException, OSError, ValueError) as exc:
            # ValueError: the address cannot be used as a header value.
            raise NotifierFailure(str(exc) or exc.__class__.__name__) from exc
        logger.info("Verification email sent to %s", registration.player_email)


def build_notifier(config: Optional[SmtpConfig]) -> Optional[SmtpNotifier]:
    if config is None:
        logger.info("Mailer not configured; verification emails will be skipped")
        return None
    logger.info("Mailer configured as %s", config.username)
    return SmtpNotifier(config)


__all__ = ["Notifier", "SmtpNotifier", "build_notifier", "build_verification_message"]
