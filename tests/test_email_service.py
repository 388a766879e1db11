import logging
import smtplib

from qodari_iam.services import email_service as email_service_module
from qodari_iam.services.email_service import EmailService


class FakeSMTP:
    sent = []

    def __init__(self, host, port, timeout=None):
        self.host = host

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self, context=None):
        pass

    def login(self, user, password):
        pass

    def sendmail(self, sender, to, message):
        FakeSMTP.sent.append((sender, to, message))


def test_unconfigured_service_only_logs():
    service = EmailService()
    assert service.is_configured is False
    assert service.send_mfa_code("jane@acme.io", "123456", "Portal") is True


def test_mfa_code_goes_out_over_smtp(monkeypatch):
    FakeSMTP.sent = []
    monkeypatch.setattr(email_service_module.smtplib, "SMTP", FakeSMTP)
    service = EmailService(smtp_host="smtp.acme.io", from_email="no-reply@acme.io")

    assert service.send_mfa_code("jane@acme.io", "123456", "Portal") is True

    (sender, to, message), = FakeSMTP.sent
    assert sender == "no-reply@acme.io"
    assert to == "jane@acme.io"
    assert "Your Portal verification code" in message


def test_smtp_failure_returns_false(monkeypatch):
    def refuse(*args, **kwargs):
        raise smtplib.SMTPConnectError(421, "busy")

    monkeypatch.setattr(email_service_module.smtplib, "SMTP", refuse)
    service = EmailService(smtp_host="smtp.acme.io", from_email="no-reply@acme.io")

    assert service.send_password_reset("jane@acme.io", "https://app.acme.io/acme/reset-password?token=t") is False


def test_bodies_stay_out_of_logs_by_default(caplog):
    caplog.set_level(logging.DEBUG, logger=email_service_module.__name__)

    assert email_service_module.email_service.log_bodies is False
    EmailService().send_mfa_code("jane@acme.io", "482913", "Portal")

    assert "482913" not in caplog.text


def test_bodies_logged_when_enabled(caplog):
    caplog.set_level(logging.DEBUG, logger=email_service_module.__name__)

    EmailService(log_bodies=True).send_mfa_code("jane@acme.io", "482913", "Portal")

    assert "482913" in caplog.text
