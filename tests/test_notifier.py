from __future__ import annotations

import smtplib
from dataclasses import replace
from unittest import mock

import pytest

from rpl.config import SmtpConfig
from rpl.errors import NotifierFailure
from rpl.models import PaymentStatus, Registration
from rpl.notifier import SmtpNotifier, build_notifier, build_verification_message


def _registration() -> Registration:
    return Registration(
        id=7,
        player_name="A. Kumar",
        player_mobile="9999999999",
        player_email="a@x.com",
        player_role="batsman",
        passport_photo="/uploads/passport_photo-1-1.jpg",
        payment_screenshot="/uploads/payment_screenshot-1-2.png",
        payment_status=PaymentStatus.VERIFIED,
        created_at=None,
    )


def _config(**overrides) -> SmtpConfig:
    values = dict(host="smtp.example.com", port=587, username="desk@example.com", password="app-pass")
    values.update(overrides)
    return SmtpConfig(**values)


def test_message_is_addressed_to_the_player() -> None:
    message = build_verification_message(_registration(), "desk@example.com")

    assert message["To"] == "a@x.com"
    assert message["Subject"] == "RPL Registration Verified"
    assert "desk@example.com" in message["From"]
    assert "Hi A. Kumar" in message.get_content()


def test_send_uses_starttls_by_default() -> None:
    with mock.patch("rpl.notifier.smtplib.SMTP") as smtp_cls:
        SmtpNotifier(_config()).send_verification(_registration())

    smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=15.0)
    server = smtp_cls.return_value.__enter__.return_value
    server.starttls.assert_called_once_with()
    server.login.assert_called_once_with("desk@example.com", "app-pass")
    sent = server.send_message.call_args[0][0]
    assert sent["To"] == "a@x.com"


def test_send_over_implicit_tls() -> None:
    with mock.patch("rpl.notifier.smtplib.SMTP_SSL") as smtp_cls:
        SmtpNotifier(_config(port=465, use_ssl=True)).send_verification(_registration())

    server = smtp_cls.return_value.__enter__.return_value
    server.starttls.assert_not_called()
    server.send_message.assert_called_once()


def test_delivery_errors_become_notifier_failures() -> None:
    with mock.patch("rpl.notifier.smtplib.SMTP") as smtp_cls:
        server = smtp_cls.return_value.__enter__.return_value
        server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")
        with pytest.raises(NotifierFailure):
            SmtpNotifier(_config()).send_verification(_registration())

    with mock.patch("rpl.notifier.smtplib.SMTP", side_effect=OSError("connection refused")):
        with pytest.raises(NotifierFailure, match="connection refused"):
            SmtpNotifier(_config()).send_verification(_registration())


def test_build_notifier_requires_config() -> None:
    assert build_notifier(None) is None
    assert isinstance(build_notifier(_config()), SmtpNotifier)


def test_header_injection_in_address_is_a_notifier_failure() -> None:
    registration = replace(_registration(), player_email="a@x.com\nBcc: evil@x.com")

    with mock.patch("rpl.notifier.smtplib.SMTP") as smtp_cls:
        with pytest.raises(NotifierFailure):
            SmtpNotifier(_config()).send_verification(registration)

    smtp_cls.assert_not_called()
