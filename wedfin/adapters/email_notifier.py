"""Email Notifier Adapter

SendGrid の Dynamic Template を使った招待メール送信。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import sendgrid
from sendgrid.helpers.mail import Email, Mail, ReplyTo, To

from wedfin.domain.errors import EmailDeliveryError
from wedfin.domain.ports import InvitationEmail, InvitationMailer

logger = logging.getLogger(__name__)


@dataclass
class EmailConfig:
    """メール送信の設定"""

    api_key: str
    template_id: str
    from_email: str = "noreply@wedfin.app"
    from_name: str = "Wedding Planner"


class SendGridInvitationMailer(InvitationMailer):
    """
    SendGrid を使った招待メール送信。

    本文はテンプレート側で組み立てるため、ここでは dynamic_template_data
    （to_email, to_name, from_name, invitation_link, role, message, reply_to）
    のみを渡す。
    """

    def __init__(self, config: EmailConfig, client: sendgrid.SendGridAPIClient | None = None) -> None:
        """
        Args:
            config: SendGrid API キー・テンプレートID・送信元の設定
            client: テスト用に差し替えるクライアント
        """
        self._sg = client or sendgrid.SendGridAPIClient(api_key=config.api_key)
        self._config = config

    def send_invitation(self, email: InvitationEmail) -> None:
        # 送信元は固定の検証済みアドレス、表示名は招待者名
        mail = Mail(
            from_email=Email(self._config.from_email, email.from_name or self._config.from_name),
            to_emails=To(email.to_email, email.to_name or None),
        )
        mail.template_id = self._config.template_id
        mail.dynamic_template_data = self.template_data(email)
        if email.reply_to:
            mail.reply_to = ReplyTo(email.reply_to, email.from_name or None)

        try:
            response = self._sg.send(mail)
        except Exception as e:
            logger.exception("Failed to send invitation email: to=%s", email.to_email)
            raise EmailDeliveryError(f"SendGrid request failed: {e}") from e

        if response.status_code >= 400:
            logger.error(
                "SendGrid rejected invitation email: to=%s, status=%d",
                email.to_email,
                response.status_code,
            )
            raise EmailDeliveryError(f"SendGrid returned status {response.status_code}")

        logger.info(
            "Invitation email sent: to=%s, status=%d", email.to_email, response.status_code
        )

    @staticmethod
    def template_data(email: InvitationEmail) -> dict[str, str]:
        data = {
            "to_email": email.to_email,
            "to_name": email.to_name,
            "from_name": email.from_name,
            "invitation_link": email.invitation_link,
            "role": email.role,
            "message": email.message,
            "reply_to": email.reply_to,
        }
        if email.expires_at is not None:
            data["expires_at"] = email.expires_at.strftime("%Y-%m-%d")
        return data
