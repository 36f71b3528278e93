"""Factory - 依存性注入の組み立て

全AdapterとServiceを組み立て、API / CLI から使うサービス群を生成する。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from google.cloud import firestore

from wedfin.adapters.email_notifier import EmailConfig, SendGridInvitationMailer
from wedfin.adapters.firestore_finance import FirestoreFinanceRepository
from wedfin.adapters.firestore_repository import (
    FirestoreInvitationRepository,
    FirestoreUserPreferenceRepository,
    FirestoreWorkspaceRepository,
)
from wedfin.adapters.xlsx_exporter import XlsxExporter
from wedfin.config import AppConfig
from wedfin.domain.ports import (
    FinanceRepository,
    InvitationEmail,
    InvitationMailer,
    InvitationRepository,
    UserPreferenceRepository,
    WorkspaceRepository,
)
from wedfin.services.invitation_service import InvitationService
from wedfin.services.migration_service import MigrationService
from wedfin.services.wedding_service import WeddingService
from wedfin.services.workspace_service import WorkspaceService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """組み立て済みのリポジトリとサービス"""

    workspace_repo: WorkspaceRepository
    invitation_repo: InvitationRepository
    preference_repo: UserPreferenceRepository
    finance_repo: FinanceRepository
    workspaces: WorkspaceService
    invitations: InvitationService
    wedding: WeddingService
    migration: MigrationService


def create_services(
    config: AppConfig | None = None,
    db: firestore.Client | None = None,
    mailer: InvitationMailer | None = None,
) -> ServiceContainer:
    """
    サービス群を生成（全依存を組み立て）。

    Args:
        config: アプリケーション設定（Noneの場合は環境変数から読み込み）
        db: Firestore クライアント（Noneの場合は新規作成）
        mailer: 招待メール送信（Noneの場合は設定から決定）

    Raises:
        ValueError: 必須設定が不足している場合
    """
    if config is None:
        config = AppConfig.from_env()
    if db is None:
        db = firestore.Client(project=config.project_id)

    logger.info("Creating services with config: project_id=%s", config.project_id)

    # SendGrid はオプショナル（未設定の場合は送信をスキップ）
    if mailer is None:
        if config.email_enabled:
            mailer = SendGridInvitationMailer(
                EmailConfig(
                    api_key=config.sendgrid_api_key,
                    template_id=config.invitation_template_id,
                    from_email=config.email_from,
                    from_name=config.email_from_name,
                )
            )
            logger.info("SendGrid invitation mailer enabled")
        else:
            mailer = _NullInvitationMailer()
            logger.warning("SendGrid not configured, invitation emails will not be sent")

    workspace_repo = FirestoreWorkspaceRepository(db)
    invitation_repo = FirestoreInvitationRepository(db)
    finance_repo = FirestoreFinanceRepository(db)

    return ServiceContainer(
        workspace_repo=workspace_repo,
        invitation_repo=invitation_repo,
        preference_repo=FirestoreUserPreferenceRepository(db),
        finance_repo=finance_repo,
        workspaces=WorkspaceService(workspace_repo),
        invitations=InvitationService(
            workspace_repo,
            invitation_repo,
            mailer,
            frontend_base_url=config.frontend_base_url,
            ttl_days=config.invitation_ttl_days,
            from_name=config.email_from_name,
        ),
        wedding=WeddingService(finance_repo, renderer=XlsxExporter()),
        migration=MigrationService(db),
    )


# Null Object Pattern（SendGrid が無効な場合の代替）


class _NullInvitationMailer(InvitationMailer):
    """InvitationMailerのNull Object（何もしない）"""

    def send_invitation(self, email: InvitationEmail) -> None:
        logger.debug(
            "NullInvitationMailer: email skipped (SendGrid not configured): link=%s",
            email.invitation_link,
        )
