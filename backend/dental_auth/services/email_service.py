"""Email notifications for verification, password reset and welcome messages.

Delivery goes through an SMTP relay. When ``EMAIL_ENABLED`` is false the
service only logs what it would have sent. ``smtplib`` blocks, so sends run
in a worker thread.
"""

import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from dental_auth.config.config import Settings
from dental_auth.core.config_helper import render_template
from dental_auth.core.logging import logger


class EmailService:
    """Sends transactional emails via SMTP."""

    def __init__(self, settings: Settings) -> None:
        self.enabled = settings.EMAIL_ENABLED
        self.host = settings.EMAIL_HOST
        self.port = settings.EMAIL_PORT
        self.use_tls = settings.EMAIL_USE_TLS
        self.username = settings.EMAIL_USER
        self.password = settings.EMAIL_PASSWORD
        self.sender = settings.EMAIL_FROM
        self.app_url = settings.APP_URL.rstrip("/")
        self.verification_hours = settings.EMAIL_VERIFICATION_EXPIRE_HOURS
        self.reset_minutes = settings.PASSWORD_RESET_EXPIRE_MINUTES

    def _deliver(self, to_email: str, subject: str, text: str, html: str) -> None:
        message = MIMEMultipart("alternative")
        message["From"] = self.sender
        message["To"] = to_email
        message["Subject"] = subject
        message.attach(MIMEText(text, "plain"))
        message.attach(MIMEText(html, "html"))

        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            if self.use_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password)
            server.send_message(message)

    async def send_email(self, to_email: str, subject: str, template: str, **context) -> None:
        """Render ``template`` (``.txt`` and ``.html``) and send it.

        Raises:
            smtplib.SMTPException: If the relay rejects the message.
            OSError: If the relay cannot be reached.
        """
        if not self.enabled:
            logger.warning("Email not sent (service disabled) subject={!r}", subject)
            return

        text = render_template(f"email/{template}.txt", **context)
        html = render_template(f"email/{template}.html", **context)
        try:
            await asyncio.to_thread(self._deliver, to_email, subject, text, html)
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send email subject={!r}", subject)
            raise
        logger.info("Email sent subject={!r}", subject)

    async def send_verification_email(self, to_email: str, token: str, name: str | None = None) -> None:
        await self.send_email(
            to_email,
            "Verify Your Email - Dental App",
            "verify_email",
            url=f"{self.app_url}/api/auth/verify-email/{token}",
            name=name,
            expires_hours=self.verification_hours,
        )

    async def send_password_reset_email(self, to_email: str, token: str) -> None:
        await self.send_email(
            to_email,
            "Reset Your Password - Dental App",
            "password_reset",
            url=f"{self.app_url}/reset-password?token={token}",
            expires_minutes=self.reset_minutes,
        )

    async def send_welcome_email(self, to_email: str, name: str | None = None) -> None:
        await self.send_email(
            to_email,
            "Welcome to Dental App",
            "welcome",
            url=f"{self.app_url}/login",
            name=name,
        )
