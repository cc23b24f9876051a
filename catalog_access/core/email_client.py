# catalog_access/core/email_client.py
from __future__ import annotations

"""
Email delivery for access links and verification codes.

Responsibilities:
  - Read SMTP configuration from Settings (SMTP_* env vars).
  - Provide EmailSender.send(...) -> bool for services to use; the bool
    tells the caller whether to show a success state.
  - Support both TLS (STARTTLS) and SSL connections, with a bounded
    timeout so a slow mail server cannot hang a request.

Typical .env configuration (Gmail example with App Password):

    SMTP_HOST=smtp.gmail.com
    SMTP_PORT=465
    SMTP_USERNAME=catalog@example.com
    SMTP_PASSWORD=<app password>
    SMTP_FROM_EMAIL=catalog@example.com
    SMTP_FROM_NAME=Catalog Access
    SMTP_USE_TLS=false
    SMTP_USE_SSL=true
"""

import logging
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage

from catalog_access.core.config import Settings

logger = logging.getLogger(__name__)


class EmailSender(ABC):
    """
    Contract for the mail collaborator: send(...) returns True on success.

    Subclasses only implement ``send``; the message builders live here.
    """

    @abstractmethod
    def send(
        self,
        to_email: str,
        subject: str,
        text_body: str,
        html_body: str | None = None,
    ) -> bool:
        """Deliver one message; False means the caller must report failure."""

    def send_access_link(self, to_email: str, access_url: str) -> bool:
        subject = "Your personal catalog access link"
        text_body = (
            "Open the link below to access the product catalog:\n\n"
            f"{access_url}\n\n"
            "This link gets bound to the device and network it is first "
            "opened on. Open it on the device you will use to browse the "
            "catalog.\n\n"
            "If you didn't request this link, please ignore this email."
        )
        html_body = (
            "<p>Open the link below to access the product catalog:</p>"
            f'<p><a href="{access_url}">Access the catalog</a></p>'
            "<p>This link gets bound to the device and network it is first "
            "opened on. Open it on the device you will use to browse the "
            "catalog.</p>"
            "<p style=\"color:#999\">If you didn't request this link, "
            "please ignore this email.</p>"
        )
        return self.send(to_email, subject, text_body, html_body)

    def send_otp(self, to_email: str, code: str, ttl_minutes: int) -> bool:
        subject = "Your catalog verification code"
        text_body = (
            f"Your verification code is {code}.\n\n"
            f"It expires in {ttl_minutes} minutes and can only be used once."
        )
        html_body = (
            f"<p>Your verification code is <b>{code}</b>.</p>"
            f"<p>It expires in {ttl_minutes} minutes and can only be used once.</p>"
        )
        return self.send(to_email, subject, text_body, html_body)


class SmtpEmailSender(EmailSender):
    """
    SMTP implementation.

    When SMTP is not configured outside production, messages are logged
    instead of sent (development mode) and reported as delivered. In
    production a missing configuration is a delivery failure.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def is_configured(self) -> bool:
        s = self.settings
        return bool(s.SMTP_HOST and s.SMTP_USERNAME and s.SMTP_PASSWORD)

    def _create_smtp_client(self) -> smtplib.SMTP:
        """
        Create and return an SMTP client configured for TLS or SSL.

        Priority:
          - If SMTP_USE_SSL is True -> use smtplib.SMTP_SSL (e.g., Gmail on 465).
          - Else -> use smtplib.SMTP + optional STARTTLS if SMTP_USE_TLS is True.
        """
        s = self.settings
        if s.SMTP_USE_SSL:
            server: smtplib.SMTP = smtplib.SMTP_SSL(
                s.SMTP_HOST, s.SMTP_PORT, timeout=s.SMTP_TIMEOUT_SECONDS
            )
        else:
            server = smtplib.SMTP(s.SMTP_HOST, s.SMTP_PORT, timeout=s.SMTP_TIMEOUT_SECONDS)
            if s.SMTP_USE_TLS:
                try:
                    server.starttls()
                except (smtplib.SMTPException, OSError):
                    server.close()
                    raise
        return server

    def _build_message(
        self, to_email: str, subject: str, text_body: str, html_body: str | None
    ) -> EmailMessage:
        s = self.settings
        from_email = s.SMTP_FROM_EMAIL or s.SMTP_USERNAME
        msg = EmailMessage()
        msg["From"] = f"{s.SMTP_FROM_NAME} <{from_email}>"
        msg["To"] = to_email
        msg["Subject"] = subject

        # Always add a plain-text part
        msg.set_content(text_body)
        if html_body:
            msg.add_alternative(html_body, subtype="html")
        return msg

    def send(
        self,
        to_email: str,
        subject: str,
        text_body: str,
        html_body: str | None = None,
    ) -> bool:
        if not self.is_configured:
            if self.settings.is_production:
                logger.error("SMTP is not configured; cannot send '%s' to %s", subject, to_email)
                return False
            logger.warning(
                "SMTP not configured, logging email instead.\nTo: %s\nSubject: %s\n%s",
                to_email,
                subject,
                text_body,
            )
            return True

        msg = self._build_message(to_email, subject, text_body, html_body)
        try:
            server = self._create_smtp_client()
        except (smtplib.SMTPException, OSError):
            logger.exception("Could not connect to SMTP server %s", self.settings.SMTP_HOST)
            return False

        try:
            server.login(self.settings.SMTP_USERNAME, self.settings.SMTP_PASSWORD)
            server.send_message(msg)
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send '%s' to %s", subject, to_email)
            return False
        finally:
            try:
                server.quit()
            except (smtplib.SMTPException, OSError):
                # Connection is being torn down anyway.
                pass

        logger.info("Sent '%s' to %s", subject, to_email)
        return True
