"""SendGridInvitationMailer のユニットテスト

SendGridAPIClient をモックに差し替え、送信内容とエラー変換を検証する。
"""

import datetime
from unittest.mock import MagicMock, patch

import pytest

from wedfin.adapters.email_notifier import EmailConfig, SendGridInvitationMailer
from wedfin.domain.errors import EmailDeliveryError
from wedfin.domain.ports import InvitationEmail

_CONFIG = EmailConfig(
    api_key="SG.fake",
    template_id="d-invitation",
    from_email="noreply@planner.example.com",
    from_name="Wedding Planner",
)

_EMAIL = InvitationEmail(
    to_email="bob@example.com",
    to_name="bob",
    from_name="Alice",
    invitation_link="https://planner.example.com/invitation/accept?token=t",
    role="editor",
    message="Join us!",
    reply_to="alice@example.com",
    expires_at=datetime.datetime(2026, 3, 8, 12, 0, tzinfo=datetime.UTC),
)


@pytest.fixture
def sg_client():
    client = MagicMock()
    client.send.return_value = MagicMock(status_code=202)
    return client


@pytest.fixture
def mailer(sg_client):
    return SendGridInvitationMailer(_CONFIG, client=sg_client)


class TestSendInvitation:
    def test_sends_dynamic_template(self, mailer, sg_client):
        mailer.send_invitation(_EMAIL)

        sg_client.send.assert_called_once()
        body = sg_client.send.call_args.args[0].get()
        assert body["template_id"] == "d-invitation"
        assert body["from"] == {"email": "noreply@planner.example.com", "name": "Alice"}
        assert body["reply_to"]["email"] == "alice@example.com"
        [personalization] = body["personalizations"]
        assert personalization["to"][0]["email"] == "bob@example.com"
        data = personalization["dynamic_template_data"]
        assert data["invitation_link"] == _EMAIL.invitation_link
        assert data["role"] == "editor"
        assert data["expires_at"] == "2026-03-08"

    def test_falls_back_to_default_sender_name(self, mailer, sg_client):
        email = InvitationEmail(
            to_email="bob@example.com",
            to_name="",
            from_name="",
            invitation_link="https://planner.example.com/invitation/accept?token=t",
            role="viewer",
            message="",
            reply_to="",
        )

        mailer.send_invitation(email)

        body = sg_client.send.call_args.args[0].get()
        assert body["from"]["name"] == "Wedding Planner"
        assert "reply_to" not in body

    def test_error_status_raises(self, mailer, sg_client):
        sg_client.send.return_value = MagicMock(status_code=400)

        with pytest.raises(EmailDeliveryError, match="400"):
            mailer.send_invitation(_EMAIL)

    def test_client_exception_is_wrapped(self, mailer, sg_client):
        sg_client.send.side_effect = RuntimeError("connection reset")

        with pytest.raises(EmailDeliveryError) as exc_info:
            mailer.send_invitation(_EMAIL)
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_default_client_uses_api_key(self):
        with patch(
            "wedfin.adapters.email_notifier.sendgrid.SendGridAPIClient"
        ) as mock_client_cls:
            SendGridInvitationMailer(_CONFIG)

        mock_client_cls.assert_called_once_with(api_key="SG.fake")


class TestTemplateData:
    def test_without_expiry(self):
        email = InvitationEmail(
            to_email="bob@example.com",
            to_name="bob",
            from_name="Alice",
            invitation_link="link",
            role="viewer",
            message="hi",
            reply_to="alice@example.com",
        )

        data = SendGridInvitationMailer.template_data(email)

        assert data == {
            "to_email": "bob@example.com",
            "to_name": "bob",
            "from_name": "Alice",
            "invitation_link": "link",
            "role": "viewer",
            "message": "hi",
            "reply_to": "alice@example.com",
        }
