"""Outbound transactional email (MFA codes, password reset links)."""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from qodari_iam.config import settings

logger = logging.getLogger(__name__)


class EmailService:
    """SMTP delivery with a log-only fallback when SMTP is not configured."""

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "Qodari IAM",
        log_bodies: bool = False,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.log_bodies = log_bodies

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    @staticmethod
    def _redact_email(email: str) -> str:
        if "@" not in email:
            return "redacted"
        local, domain = email.split("@", 1)
        return f"{local[:2]}***@{domain}"

    def _send_email(self, to_email: str, subject: str, html_body: str, text_body: str) -> bool:
        """Returns True if the message was handed to SMTP (or logged in dev mode)."""
        if not self.is_configured:
            logger.info("SMTP not configured; email not sent to=%s subject=%s", self._redact_email(to_email), subject)
            if self.log_bodies:
                logger.debug("Email body: %s", text_body)
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=30) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email delivery failed to=%s subject=%s error=%s", self._redact_email(to_email), subject, e)
            return False

        logger.info("Email sent to=%s subject=%s", self._redact_email(to_email), subject)
        return True

    def send_mfa_code(self, to_email: str, code: str, application_name: str) -> bool:
        minutes = max(settings.MFA_CODE_TTL_SECONDS // 60, 1)
        subject = f"Your {application_name} verification code"
        text_body = (
            f"Your verification code is {code}.\n\n"
            f"It expires in {minutes} minutes. If you did not try to sign in, ignore this email."
        )
        html_body = (
            f"<p>Your verification code is <strong>{code}</strong>.</p>"
            f"<p>It expires in {minutes} minutes. If you did not try to sign in, ignore this email.</p>"
        )
        return self._send_email(to_email, subject, html_body, text_body)

    def send_password_reset(self, to_email: str, reset_url: str) -> bool:
        subject = "Reset your password"
        text_body = (
            f"Use the link below to choose a new password:\n\n{reset_url}\n\n"
            "The link expires in one hour. If you did not request a reset, ignore this email."
        )
        html_body = (
            f'<p>Use the link below to choose a new password:</p><p><a href="{reset_url}">{reset_url}</a></p>'
            "<p>The link expires in one hour. If you did not request a reset, ignore this email.</p>"
        )
        return self._send_email(to_email, subject, html_body, text_body)


email_service = EmailService(
    smtp_host=settings.SMTP_HOST or None,
    smtp_port=settings.SMTP_PORT,
    smtp_user=settings.SMTP_USER or None,
    smtp_password=settings.SMTP_PASSWORD or None,
    smtp_use_tls=settings.SMTP_USE_TLS,
    from_email=settings.MAIL_FROM or None,
    from_name=settings.MAIL_FROM_NAME,
    log_bodies=settings.MAIL_LOG_BODIES,
)
