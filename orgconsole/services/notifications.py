"""Invitation emails sent through Resend.

Without an API key the mailer logs the message instead of sending it and
reports a mock delivery. Delivery failures are logged and reported in the
outcome; they never propagate to the caller, whose state change has already
happened.
"""

from __future__ import annotations

import asyncio
import html
from dataclasses import dataclass
from typing import Optional

import resend
import structlog

from orgconsole.core.config import get_settings
from orgconsole.core.errors import TransportError

log = structlog.get_logger()


@dataclass
class InvitationEmail:
    to: str
    inviter_name: str
    organization_name: str
    role: str
    accept_url: str


@dataclass
class DeliveryOutcome:
    ok: bool
    mock: bool = False
    message_id: Optional[str] = None
    error: Optional[str] = None


def render_invitation(email: InvitationEmail) -> tuple[str, str]:
    """Return (subject, html body) for an invitation."""
    inviter = html.escape(email.inviter_name)
    organization = html.escape(email.organization_name)
    role = html.escape(email.role)
    url = html.escape(email.accept_url, quote=True)
    subject = f"You've been invited to join {email.organization_name}"
    body = f"""
<div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
    <h1>You're invited!</h1>
    <p>Hi,</p>
    <p><strong>{inviter}</strong> has invited you to join <strong>{organization}</strong>
       as a <strong>{role}</strong>.</p>
    <div style="margin: 30px 0;">
        <a href="{url}"
           style="background: #000; color: #fff; padding: 12px 24px; text-decoration: none;
                  border-radius: 6px; display: inline-block;">
            Accept Invitation
        </a>
    </div>
    <p style="color: #666; font-size: 14px;">Or copy this link: {url}</p>
</div>
"""
    return subject, body


class InvitationMailer:
    def __init__(self, api_key: str = "", from_address: str = ""):
        self.api_key = api_key
        self.from_address = from_address

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.from_address)

    def _send_sync(self, email: InvitationEmail) -> dict:
        subject, body = render_invitation(email)
        resend.api_key = self.api_key
        return resend.Emails.send(
            {
                "from": self.from_address,
                "to": [email.to],
                "subject": subject,
                "html": body,
            }
        )

    async def send_invitation(self, email: InvitationEmail) -> DeliveryOutcome:
        if not self.configured:
            log.info(
                "email.mock_delivery",
                to=email.to,
                organization=email.organization_name,
                inviter=email.inviter_name,
                role=email.role,
                accept_url=email.accept_url,
            )
            return DeliveryOutcome(ok=False, mock=True)

        try:
            response = await asyncio.to_thread(self._send_sync, email)
        except Exception as e:
            failure = TransportError(f"Failed to send invitation email to {email.to}")
            log.error("email.delivery_failed", to=email.to, error=str(e))
            return DeliveryOutcome(ok=False, error=failure.message)

        message_id = response.get("id") if isinstance(response, dict) else None
        log.info("email.sent", to=email.to, message_id=message_id)
        return DeliveryOutcome(ok=True, message_id=message_id)


def get_mailer() -> InvitationMailer:
    """FastAPI dependency for the invitation mailer."""
    settings = get_settings()
    return InvitationMailer(settings.resend_api_key, settings.email_from)
