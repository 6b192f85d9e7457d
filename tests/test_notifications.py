"""
Tests for the invitation mailer.
"""

from __future__ import annotations

from unittest.mock import patch

from orgconsole.services.notifications import InvitationEmail, InvitationMailer, render_invitation


def invitation(**overrides) -> InvitationEmail:
    values = dict(
        to="new@x.com",
        inviter_name="Olivia <Owner>",
        organization_name="Acme Foods",
        role="manager",
        accept_url="http://localhost:3000/setup-password?token=abc",
    )
    values.update(overrides)
    return InvitationEmail(**values)


class TestRender:
    def test_subject_and_body(self):
        subject, body = render_invitation(invitation())
        assert subject == "You've been invited to join Acme Foods"
        assert "http://localhost:3000/setup-password?token=abc" in body
        assert "<strong>manager</strong>" in body

    def test_escapes_user_text(self):
        _subject, body = render_invitation(invitation())
        assert "Olivia &lt;Owner&gt;" in body
        assert "<Owner>" not in body


class TestMailer:
    async def test_unconfigured_is_mock(self):
        mailer = InvitationMailer(api_key="", from_address="team@acme.com")
        with patch("orgconsole.services.notifications.resend.Emails.send") as send:
            outcome = await mailer.send_invitation(invitation())
        assert not outcome.ok
        assert outcome.mock
        send.assert_not_called()

    async def test_sends_through_resend(self):
        mailer = InvitationMailer(api_key="re_test", from_address="team@acme.com")
        with patch(
            "orgconsole.services.notifications.resend.Emails.send", return_value={"id": "msg_1"}
        ) as send:
            outcome = await mailer.send_invitation(invitation())

        assert outcome.ok
        assert outcome.message_id == "msg_1"
        params = send.call_args.args[0]
        assert params["to"] == ["new@x.com"]
        assert params["from"] == "team@acme.com"

    async def test_transport_failure_does_not_raise(self):
        mailer = InvitationMailer(api_key="re_test", from_address="team@acme.com")
        with patch(
            "orgconsole.services.notifications.resend.Emails.send",
            side_effect=RuntimeError("smtp down"),
        ):
            outcome = await mailer.send_invitation(invitation())

        assert not outcome.ok
        assert not outcome.mock
        assert outcome.error == "Failed to send invitation email to new@x.com"
