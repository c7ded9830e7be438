"""
auth/mailer.py -- Outbound transactional email for the auth flows.

Only the password-reset message lives here. Delivery goes through the Resend
HTTP API using a module-level requests.Session for connection pooling. When
RESEND_API_KEY is not configured the message is not sent. With DEBUG on, its
body is logged so the reset link can still be copied from the console.

The raw reset token is part of the link and therefore of the message body.
The body is only ever logged in debug mode.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import requests

from core.config import get_settings

logger = logging.getLogger("lalisure.mail")

RESEND_API = "https://api.resend.com/emails"

_session = requests.Session()
_session.max_redirects = 3


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str


class Mailer(Protocol):
    def send(self, message: EmailMessage) -> bool: ...


def password_reset_message(to: str, reset_url: str) -> EmailMessage:
    return EmailMessage(
        to=to,
        subject="Password Reset Request",
        html=(
            "<p>You are receiving this email because a password reset was requested for your account.</p>"
            "<p>Please click on the following link, or paste it into your browser to complete the process:</p>"
            f'<p><a href="{reset_url}">{reset_url}</a></p>'
            "<p>This link expires in 1 hour.</p>"
            "<p>If you did not request this, please ignore this email and your password will remain unchanged.</p>"
        ),
        text=(
            "A password reset was requested for your account.\n\n"
            f"Reset your password: {reset_url}\n\n"
            "This link expires in 1 hour. If you did not request this, ignore this email."
        ),
    )


class ResendMailer:
    """Send email via the Resend API, or log it when no key is configured."""

    def __init__(self, api_key: str | None = None, sender: str | None = None) -> None:
        settings = get_settings()
        self.api_key = settings.resend_api_key if api_key is None else api_key
        self.sender = sender or settings.email_from

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def send(self, message: EmailMessage) -> bool:
        """Deliver a message. Returns True on success, False on any failure."""
        if not self.is_configured:
            logger.warning("Email not configured -- would send %r to %s", message.subject, message.to)
            if get_settings().debug:
                logger.info("Email content: %s", message.text)
            return False
        try:
            resp = _session.post(
                RESEND_API,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "from": self.sender,
                    "to": [message.to],
                    "subject": message.subject,
                    "html": message.html,
                    "text": message.text,
                },
                timeout=10,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error("Email delivery failed for %s: %s", message.to, e)
            return False
        logger.info("Email %r sent to %s", message.subject, message.to)
        return True
