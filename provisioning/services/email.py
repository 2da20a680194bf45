"""Transactional email.

Supports two backends:
- SMTP via aiosmtplib (production)
- Log-only (development and tests), which logs the email instead of sending

Set EMAIL_BACKEND=smtp and configure SMTP_* settings for production.
Default is EMAIL_BACKEND=log which just logs the message.
When ENABLE_EMAIL is false, sending is a silent no-op.

Bodies are rendered from Jinja2 templates under provisioning/templates/email
and wrapped in a shared HTML layout.
"""

import logging
from email.message import EmailMessage
from pathlib import Path
from typing import Protocol

import aiosmtplib
from jinja2 import Environment, FileSystemLoader, select_autoescape

from provisioning.config import settings
from provisioning.services.errors import TransportFailure

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"

templates = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=select_autoescape(["html"]),
)


class EmailSender(Protocol):
    async def send(self, to: str, subject: str, html: str, text: str) -> None: ...


class LogEmailSender:
    """Development sender: logs email content instead of sending."""

    async def send(self, to: str, subject: str, html: str, text: str) -> None:
        logger.info("EMAIL to=%s subject=%s\n%s", to, subject, text)


class SmtpEmailSender:
    """Production sender: multipart text/HTML over SMTP."""

    async def send(self, to: str, subject: str, html: str, text: str) -> None:
        msg = EmailMessage()
        msg["From"] = settings.smtp_from_address
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")

        try:
            await aiosmtplib.send(
                msg,
                hostname=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_username or None,
                password=settings.smtp_password or None,
                use_tls=settings.smtp_use_tls,
                timeout=settings.smtp_timeout_seconds,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error("SMTP delivery to %s failed: %s", to, e)
            raise TransportFailure("smtp")
        logger.info("Message sent to %s: %s", to, subject)


def get_email_sender() -> EmailSender:
    if settings.email_backend == "smtp":
        return SmtpEmailSender()
    return LogEmailSender()


def render_layout(subject: str, content_html: str) -> str:
    return templates.get_template("layout.html").render(
        subject=subject,
        content=content_html,
        instance_name=settings.instance_name,
        settings_url=f"{settings.base_url.rstrip('/')}/settings/email",
    )


async def send_email(to: str, subject: str, html: str, text: str) -> None:
    """Send one message; `html` is the inner content, wrapped in the layout here."""
    if not settings.enable_email:
        logger.debug("Email disabled, dropping message to %s", to)
        return
    sender = get_email_sender()
    await sender.send(to=to, subject=subject, html=render_layout(subject, html), text=text)


async def send_signup_confirmation(to: str, code: str) -> str:
    """Email the signup-complete link for `code`. Returns the link."""
    link = f"{settings.signup_complete_url}/{code}"
    context = {
        "link": link,
        "instance_name": settings.instance_name,
        "expires_in_minutes": settings.pending_registration_ttl_minutes,
    }
    await send_email(
        to=to,
        subject=f"Finish signing up to {settings.instance_name}",
        html=templates.get_template("signup_confirm.html").render(**context),
        text=templates.get_template("signup_confirm.txt").render(**context),
    )
    return link
