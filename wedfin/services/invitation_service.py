"""招待サービス

招待の送信・承諾・辞退・取消を担当する。

状態遷移: pending → accepted | declined | expired（いずれも終端）

- 同じワークスペース・同じメールアドレスへの再招待は既存の pending 招待を
  再利用し、トークンと有効期限だけを更新する（古いトークンは無効になる）
- 期限切れの招待を承諾しようとすると expired に遷移させた上で
  InvitationExpiredError を送出する（メンバーは追加しない）
- 招待メールはコミット後に送る。送信失敗は招待の状態に影響しない
"""

from __future__ import annotations

import datetime
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import urlencode

from wedfin.domain.errors import (
    AlreadyMemberError,
    EmailDeliveryError,
    InvitationExpiredError,
    InvitationNotFoundError,
    PermissionDeniedError,
    ValidationError,
    WorkspaceNotFoundError,
)
from wedfin.domain.models import (
    Invitation,
    InvitationStatus,
    Notification,
    NotificationType,
    Role,
    UserRef,
    Workspace,
)
from wedfin.domain.ports import (
    InvitationEmail,
    InvitationMailer,
    InvitationRepository,
    WorkspaceRepository,
    WorkspaceTransaction,
)
from wedfin.services.workspace_service import apply_membership, require_owner_row

logger = logging.getLogger(__name__)

DEFAULT_TTL_DAYS = 7
DEFAULT_FROM_NAME = "Wedding Planner"
DEFAULT_MESSAGE = (
    "You've been invited to collaborate on a wedding planning workspace."
)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def _new_token() -> str:
    return secrets.token_urlsafe(32)


def normalize_email(email: str) -> str:
    normalized = email.strip().lower()
    local, _, domain = normalized.partition("@")
    if not local or "." not in domain:
        raise ValidationError(f"Invalid email address: {email!r}")
    return normalized


@dataclass(frozen=True)
class SentInvitation:
    invitation_id: str
    token: str
    invite_url: str
    expires_at: datetime.datetime
    rotated: bool  # 既存の pending 招待を再送した場合 True
    email: InvitationEmail


@dataclass(frozen=True)
class InvitationOutcome:
    workspace_id: str
    role: Role
    member_id: str | None = None


class InvitationService:
    """ワークスペース招待のライフサイクル管理"""

    def __init__(
        self,
        repo: WorkspaceRepository,
        invitations: InvitationRepository,
        mailer: InvitationMailer,
        frontend_base_url: str,
        ttl_days: int = DEFAULT_TTL_DAYS,
        from_name: str = DEFAULT_FROM_NAME,
        clock: Callable[[], datetime.datetime] = _utcnow,
        token_factory: Callable[[], str] = _new_token,
    ) -> None:
        """
        Args:
            repo: トランザクションを提供するワークスペースリポジトリ
            invitations: 招待の参照用リポジトリ
            mailer: 招待メール送信
            frontend_base_url: 承諾URLのオリジン（例: https://app.example.com）
            clock: 現在時刻（テスト用に差し替え可能）
            token_factory: トークン生成（テスト用に差し替え可能）
        """
        self._repo = repo
        self._invitations = invitations
        self._mailer = mailer
        self._base_url = frontend_base_url.rstrip("/")
        self._ttl = datetime.timedelta(days=ttl_days)
        self._from_name = from_name
        self._clock = clock
        self._token_factory = token_factory

    def build_invite_url(self, token: str, email: str | None = None) -> str:
        params = {"token": token}
        if email:
            params["email"] = email
        return f"{self._base_url}/invitation/accept?{urlencode(params)}"

    # ── 送信 ──────────────────────────────────────────────────────────────────

    def send_invitation(
        self,
        workspace_id: str,
        inviter: UserRef,
        email: str,
        role: Role,
        message: str = "",
    ) -> SentInvitation:
        """
        招待を作成（または再送）する。メール送信は行わない。

        Returns:
            SentInvitation（email に送信用パラメータを含む。deliver_email() に渡す）

        Raises:
            ValidationError: メールアドレス不正、または role に owner を指定した場合
            PermissionDeniedError: 招待者がオーナーでない場合
            AlreadyMemberError: 招待先が既にメンバーの場合
        """
        if role is Role.OWNER:
            raise ValidationError("Invitations cannot grant the owner role")
        normalized = normalize_email(email)
        token = self._token_factory()
        expires_at = self._clock() + self._ttl

        def _send(tx: WorkspaceTransaction) -> tuple[str, bool, Workspace, str]:
            workspace = tx.get_workspace(workspace_id)
            if workspace is None:
                raise WorkspaceNotFoundError(workspace_id)
            inviter_row = require_owner_row(tx, workspace_id, inviter.user_id)
            if any(m.email.lower() == normalized for m in tx.list_members(workspace_id)):
                raise AlreadyMemberError(f"{normalized} is already a member")
            existing = tx.find_pending_invitation(workspace_id, normalized)
            inviter_name = inviter.display_name or inviter_row.display_name

            if existing is not None:
                tx.update_invitation(
                    existing.id,
                    {
                        "token": token,
                        "expires_at": expires_at,
                        "role": role,
                        "message": message,
                    },
                )
                return existing.id, True, workspace, inviter_name

            invitation_id = self._repo.new_id()
            tx.create_invitation(
                Invitation(
                    id=invitation_id,
                    workspace_id=workspace_id,
                    email=normalized,
                    role=role,
                    status=InvitationStatus.PENDING,
                    token=token,
                    invited_by=inviter.user_id,
                    expires_at=expires_at,
                    invited_by_name=inviter_name,
                    invited_by_email=inviter.email or inviter_row.email,
                    message=message,
                )
            )
            tx.adjust_counter(workspace_id, "pending_invitations_count", 1)
            return invitation_id, False, workspace, inviter_name

        invitation_id, rotated, workspace, inviter_name = self._repo.run_transaction(
            _send
        )
        invite_url = self.build_invite_url(token, normalized)
        logger.info(
            "%s invitation: workspace_id=%s, invitation_id=%s, role=%s",
            "Rotated" if rotated else "Created",
            workspace_id,
            invitation_id,
            role.value,
        )
        return SentInvitation(
            invitation_id=invitation_id,
            token=token,
            invite_url=invite_url,
            expires_at=expires_at,
            rotated=rotated,
            email=InvitationEmail(
                to_email=normalized,
                to_name=normalized.split("@")[0],
                from_name=inviter_name or self._from_name,
                invitation_link=invite_url,
                role=role.value,
                message=message or DEFAULT_MESSAGE,
                reply_to=inviter.email,
                expires_at=expires_at,
            ),
        )

    def deliver_email(self, email: InvitationEmail) -> bool:
        """
        招待メールを送信する。BackgroundTasks から呼ばれる想定で、失敗しても例外を送出しない。

        Returns:
            送信できた場合 True
        """
        try:
            self._mailer.send_invitation(email)
        except EmailDeliveryError:
            logger.exception("Invitation email not delivered: to=%s", email.to_email)
            return False
        return True

    # ── 承諾・辞退 ────────────────────────────────────────────────────────────

    def accept_invitation(self, token: str, user: UserRef) -> InvitationOutcome:
        """
        招待を承諾してメンバーに追加する。既にメンバーの場合も承諾済みとして扱う。

        Raises:
            InvitationNotFoundError: トークンが不明・使用済みの場合
            InvitationExpiredError: 有効期限切れ（expired に遷移済み）
            WorkspaceNotFoundError: ワークスペースが削除済み（expired に遷移済み）
        """
        now = self._clock()

        def _accept(tx: WorkspaceTransaction) -> tuple[str, Invitation, str | None]:
            invitation = tx.find_invitation_by_token(token)
            if invitation is None:
                raise InvitationNotFoundError("Invitation not found or already used")
            workspace = tx.get_workspace(invitation.workspace_id)
            if invitation.is_expired(now):
                self._expire(tx, invitation, workspace, now)
                return "expired", invitation, None
            if workspace is None:
                tx.update_invitation(
                    invitation.id,
                    {"status": InvitationStatus.EXPIRED, "expired_at": now},
                )
                return "missing", invitation, None
            existing = tx.get_member(workspace.id, user.user_id)

            member_id = apply_membership(
                tx, workspace.id, existing, user, invitation.role, invitation.id
            )
            tx.update_invitation(
                invitation.id,
                {
                    "status": InvitationStatus.ACCEPTED,
                    "accepted_by": user,
                    "accepted_at": now,
                    "workspace_member_id": member_id,
                },
            )
            if workspace.pending_invitations_count > 0:
                tx.adjust_counter(workspace.id, "pending_invitations_count", -1)
            tx.add_notification(
                Notification(
                    user_id=invitation.invited_by,
                    type=NotificationType.INVITATION_ACCEPTED,
                    title="Invitation accepted",
                    message=(
                        f"{user.display_name or user.email or user.user_id} accepted "
                        f'your invitation to "{workspace.display_name}".'
                    ),
                    workspace_id=workspace.id,
                    related_user_id=user.user_id,
                )
            )
            return "accepted", invitation, member_id

        outcome, invitation, member_id = self._repo.run_transaction(_accept)
        self._raise_for_outcome(outcome, invitation)
        logger.info(
            "Accepted invitation: invitation_id=%s, workspace_id=%s, uid=%s",
            invitation.id,
            invitation.workspace_id,
            user.user_id,
        )
        return InvitationOutcome(
            workspace_id=invitation.workspace_id,
            role=invitation.role,
            member_id=member_id,
        )

    def decline_invitation(self, token: str, user: UserRef) -> InvitationOutcome:
        """招待を辞退する。例外は accept_invitation() と同じ"""
        now = self._clock()

        def _decline(tx: WorkspaceTransaction) -> tuple[str, Invitation, None]:
            invitation = tx.find_invitation_by_token(token)
            if invitation is None:
                raise InvitationNotFoundError("Invitation not found or already used")
            workspace = tx.get_workspace(invitation.workspace_id)
            if invitation.is_expired(now):
                self._expire(tx, invitation, workspace, now)
                return "expired", invitation, None
            if workspace is None:
                tx.update_invitation(
                    invitation.id,
                    {"status": InvitationStatus.EXPIRED, "expired_at": now},
                )
                return "missing", invitation, None

            tx.update_invitation(
                invitation.id,
                {
                    "status": InvitationStatus.DECLINED,
                    "declined_by": user,
                    "declined_at": now,
                },
            )
            if workspace.pending_invitations_count > 0:
                tx.adjust_counter(workspace.id, "pending_invitations_count", -1)
            tx.add_notification(
                Notification(
                    user_id=invitation.invited_by,
                    type=NotificationType.INVITATION_DECLINED,
                    title="Invitation declined",
                    message=(
                        f"{user.display_name or user.email or user.user_id} declined "
                        f'your invitation to "{workspace.display_name}".'
                    ),
                    workspace_id=workspace.id,
                    related_user_id=user.user_id,
                )
            )
            return "declined", invitation, None

        outcome, invitation, _ = self._repo.run_transaction(_decline)
        self._raise_for_outcome(outcome, invitation)
        logger.info(
            "Declined invitation: invitation_id=%s, uid=%s", invitation.id, user.user_id
        )
        return InvitationOutcome(
            workspace_id=invitation.workspace_id, role=invitation.role
        )

    def cancel_invitation(self, invitation_id: str, requester_id: str) -> None:
        """pending の招待を取り消す（オーナーのみ）。ステータスは expired になる"""
        now = self._clock()

        def _cancel(tx: WorkspaceTransaction) -> None:
            invitation = tx.get_invitation(invitation_id)
            if invitation is None:
                raise InvitationNotFoundError(invitation_id)
            require_owner_row(tx, invitation.workspace_id, requester_id)
            workspace = tx.get_workspace(invitation.workspace_id)
            if invitation.status is not InvitationStatus.PENDING:
                raise ValidationError(
                    f"Only pending invitations can be cancelled: status={invitation.status.value}"
                )
            self._expire(tx, invitation, workspace, now)

        self._repo.run_transaction(_cancel)
        logger.info("Cancelled invitation: invitation_id=%s", invitation_id)

    # ── 参照 ──────────────────────────────────────────────────────────────────

    def list_workspace_invitations(
        self, workspace_id: str, requester_id: str
    ) -> list[Invitation]:
        member = self._repo.get_member(workspace_id, requester_id)
        if member is None or member.role is not Role.OWNER:
            raise PermissionDeniedError("Owner role required")
        return self._invitations.list_for_workspace(workspace_id)

    def list_user_invitations(self, email: str) -> list[Invitation]:
        """メールアドレス宛ての有効な pending 招待"""
        if not email:
            return []
        now = self._clock()
        return [
            inv
            for inv in self._invitations.list_pending_for_email(email)
            if not inv.is_expired(now)
        ]

    # ── 内部 ──────────────────────────────────────────────────────────────────

    @staticmethod
    def _expire(
        tx: WorkspaceTransaction,
        invitation: Invitation,
        workspace: Workspace | None,
        now: datetime.datetime,
    ) -> None:
        tx.update_invitation(
            invitation.id, {"status": InvitationStatus.EXPIRED, "expired_at": now}
        )
        if workspace is not None and workspace.pending_invitations_count > 0:
            tx.adjust_counter(workspace.id, "pending_invitations_count", -1)

    @staticmethod
    def _raise_for_outcome(outcome: str, invitation: Invitation) -> None:
        if outcome == "expired":
            logger.info("Invitation expired: invitation_id=%s", invitation.id)
            raise InvitationExpiredError(f"Invitation expired: {invitation.id}")
        if outcome == "missing":
            logger.warning(
                "Invitation for deleted workspace: invitation_id=%s, workspace_id=%s",
                invitation.id,
                invitation.workspace_id,
            )
            raise WorkspaceNotFoundError(invitation.workspace_id)
