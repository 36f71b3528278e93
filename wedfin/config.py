"""設定管理 - 環境変数の型安全な読み込み"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class AppConfig:
    """アプリケーション設定"""
    project_id: str
    frontend_base_url: str = "http://localhost:3000"
    sendgrid_api_key: str = ""
    email_from: str = "noreply@wedfin.app"
    email_from_name: str = "Wedding Planner"
    invitation_template_id: str = ""
    invitation_ttl_days: int = 7

    @property
    def email_enabled(self) -> bool:
        """SendGrid の設定が揃っているか"""
        return bool(self.sendgrid_api_key and self.invitation_template_id)

    @classmethod
    def from_env(cls) -> "AppConfig":
        """環境変数から設定を読み込む"""
        load_dotenv()

        project_id = os.getenv("PROJECT_ID")
        if not project_id:
            raise ValueError("PROJECT_ID is not set in environment")

        ttl_raw = os.getenv("INVITATION_TTL_DAYS", "7")
        try:
            ttl_days = int(ttl_raw)
        except ValueError as e:
            raise ValueError(f"INVITATION_TTL_DAYS must be an integer: {ttl_raw}") from e
        if ttl_days <= 0:
            raise ValueError("INVITATION_TTL_DAYS must be positive")

        return cls(
            project_id=project_id,
            frontend_base_url=os.getenv(
                "FRONTEND_BASE_URL", "http://localhost:3000"
            ).rstrip("/"),
            sendgrid_api_key=os.getenv("SENDGRID_API_KEY", ""),
            email_from=os.getenv("EMAIL_FROM", "noreply@wedfin.app"),
            email_from_name=os.getenv("EMAIL_FROM_NAME", "Wedding Planner"),
            invitation_template_id=os.getenv("SENDGRID_INVITATION_TEMPLATE_ID", ""),
            invitation_ttl_days=ttl_days,
        )
