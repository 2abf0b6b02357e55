"""
SMTP transport for outbound email. Messages are composed in ``emails`` and
handed to Celery by ``mailer``; the worker ends up here.
"""
from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from .config import settings

logger = logging.getLogger(__name__)


class EmailService:
    """Email service for sending transactional emails"""

    def __init__(self):
        self.smtp_host = settings.SMTP_HOST
        self.smtp_port = settings.SMTP_PORT
        self.smtp_user = settings.SMTP_USER
        self.smtp_pass = settings.SMTP_PASS
        self.from_email = settings.EMAIL_FROM

    def _get_smtp_connection(self) -> smtplib.SMTP:
        """Get SMTP connection"""
        server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30)
        server.starttls()
        if self.smtp_user and self.smtp_pass:
            server.login(self.smtp_user, self.smtp_pass)
        return server

    def send(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: str | None = None,
    ) -> None:
        """Send email using SMTP. Raises on transport failure."""
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to_email

        if text_content:
            msg.attach(MIMEText(text_content, "plain"))
        msg.attach(MIMEText(html_content, "html"))

        if not (self.smtp_user and self.smtp_pass):
            # In development, just log the email
            logger.info(f"DEV MODE - Would send email to {to_email}")
            logger.info(f"Subject: {subject}")
            logger.debug(f"Content: {html_content[:200]}...")
            return

        server = self._get_smtp_connection()
        try:
            server.send_message(msg)
        finally:
            server.quit()
        logger.info(f"Email sent successfully to {to_email}")


email_service = EmailService()
