"""
Email notification sink.

Delivers over SMTP when configured, otherwise logs a preview (development).
Delivery runs on a background task so callers never wait on the mail
server and never see its failures.

IMPORTANT: never log reset tokens, API keys or other secrets.
"""

import asyncio
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Set

from app.core.config import Settings

logger = logging.getLogger(__name__)


def mask_email(address: str) -> str:
    """First three characters of the address only."""
    return f"{(address or '')[:3]}***"


class EmailService:
    """SMTP-backed implementation of the notification sink."""

    def __init__(self, settings: Settings):
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_user = settings.smtp_user
        self.smtp_password = settings.smtp_password
        self.smtp_from_email = settings.smtp_from_email
        self.smtp_from_name = settings.smtp_from_name
        self.smtp_use_tls = settings.smtp_use_tls
        self.frontend_url = settings.frontend_url.rstrip("/")
        self.reset_expire_minutes = settings.password_reset_expire_minutes
        self.is_configured = settings.smtp_configured
        self._pending: Set[asyncio.Task] = set()

        if self.is_configured:
            logger.info(f"Email service configured with SMTP: {self.smtp_host}:{self.smtp_port}")
        else:
            logger.warning("Email service not configured - emails will be logged to console")

    async def send(self, to: str, subject: str, body: str, html_body: Optional[str] = None) -> bool:
        """Queue a message. Returns True once accepted for delivery."""
        if not self.is_configured:
            # Subject only: bodies may carry links with secrets
            logger.info(f"[EMAIL] To: {mask_email(to)}, Subject: {subject}")
            return True

        task = asyncio.get_running_loop().create_task(
            asyncio.to_thread(self._send_smtp, to, subject, body, html_body)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return True

    def _send_smtp(self, to: str, subject: str, body: str, html_body: Optional[str]) -> bool:
        """Send email via SMTP (synchronous, runs in a worker thread)."""
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.smtp_from_name} <{self.smtp_from_email}>"
        msg["To"] = to
        msg.attach(MIMEText(body, "plain"))
        if html_body:
            msg.attach(MIMEText(html_body, "html"))

        try:
            context = ssl.create_default_context()
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                    server.starttls(context=context)
                    server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.smtp_from_email, to, msg.as_string())
            else:
                # SSL connection (port 465)
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context) as server:
                    server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.smtp_from_email, to, msg.as_string())

            logger.info(f"Email sent successfully to {mask_email(to)}")
            return True

        except smtplib.SMTPAuthenticationError:
            logger.error("SMTP authentication failed - check credentials")
            return False
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP error: {e}")
            return False

    # ─────────────────────────────────────────────────────────────
    # Message builders
    # ─────────────────────────────────────────────────────────────

    def reset_link(self, token: str) -> str:
        return f"{self.frontend_url}/reset-password?token={token}"

    async def send_password_reset(self, to: str, display_name: str, token: str) -> bool:
        link = self.reset_link(token)
        body = f"""Hello {display_name},

A password reset was requested for your NutriVault account.

To choose a new password, open the following link:
{link}

This link is valid for {self.reset_expire_minutes} minutes.

If you did not request this, you can ignore this email; your current password stays unchanged.

- The NutriVault Team
"""
        html_body = f"""<p>Hello <strong>{display_name}</strong>,</p>
<p>A password reset was requested for your NutriVault account.</p>
<p><a href="{link}">Choose a new password</a></p>
<p>This link is valid for {self.reset_expire_minutes} minutes.</p>
<p>If you did not request this, you can ignore this email.</p>"""

        logger.info(f"Sending password reset email to {mask_email(to)}")
        return await self.send(to, "NutriVault - Password reset", body, html_body)

    async def send_password_changed(self, to: str, display_name: str) -> bool:
        body = f"""Hello {display_name},

Your NutriVault password has been changed. All active sessions were signed out.

If you did not make this change, contact support immediately.

- The NutriVault Team
"""
        return await self.send(to, "NutriVault - Password changed", body)

    async def send_api_key_created(self, to: str, display_name: str, label: str, prefix: str) -> bool:
        body = f"""Hello {display_name},

A new API key "{label}" ({prefix}...) was created on your NutriVault account.

If you did not create this key, revoke it and change your password.

- The NutriVault Team
"""
        return await self.send(to, "NutriVault - New API key created", body)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
