"""ワークスペース管理サービス

ワークスペースの作成・削除、メンバーの追加・削除・ロール変更を担当する。
権限チェックは全てトランザクション内で最新のメンバー行を読み直して行う。
オーナー判定はメンバー行の role == owner のみを根拠とする。

削除時の依存コレクションのパージは件数が多く1トランザクションに収まらないため、
トランザクション内で workspaceDeletions/{id} に outbox を書き、コミット後に
500件ずつのバッチで消化する。途中で失敗しても outbox が残るため
resume_pending_cleanups() で再開できる。
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from wedfin.domain.errors import (
    MemberNotFoundError,
    PermissionDeniedError,
    ValidationError,
    WorkspaceNotFoundError,
)
from wedfin.domain.models import (
    CleanupOutbox,
    Notification,
    NotificationType,
    Role,
    UserRef,
    Workspace,
    WorkspaceDetails,
    WorkspaceMember,
    member_id_for,
)
from wedfin.domain.ports import (
    Unsubscribe,
    WorkspaceRepository,
    WorkspaceTransaction,
)
from wedfin.logging_config import log_context
from wedfin.services.subscriptions import Debouncer, TimerFactory

logger = logging.getLogger(__name__)

# ワークスペース削除時にパージするコレクション（invitations のみトップレベル）
DEPENDENT_COLLECTIONS = (
    "expenses",
    "contributors",
    "gifts",
    "giftAllocations",
    "customCategories",
    "settings",
    "notes",
    "tasks",
    "vendors",
    "guestList",
    "budgetItems",
    "invitations",
)

# Firestore の WriteBatch 上限
CLEANUP_BATCH_SIZE = 500

WORKSPACE_LISTENER_DEBOUNCE_SECONDS = 0.5

_EDITABLE_FIELDS = frozenset({"name", "couple_names", "wedding_date", "location"})


def require_owner_row(
    tx: WorkspaceTransaction, workspace_id: str, user_id: str
) -> WorkspaceMember:
    """
    user_id がワークスペースのオーナーであることを確認する。

    Raises:
        PermissionDeniedError: メンバーでない、または owner ロールでない場合
    """
    member = tx.get_member(workspace_id, user_id)
    if member is None or member.role is not Role.OWNER:
        raise PermissionDeniedError(
            f"Owner role required: workspace_id={workspace_id}, uid={user_id}"
        )
    return member


def apply_membership(
    tx: WorkspaceTransaction,
    workspace_id: str,
    existing: WorkspaceMember | None,
    user: UserRef,
    role: Role,
    invitation_id: str | None = None,
) -> str:
    """
    メンバーを追加する。既にメンバーならロールだけ揃える（owner は変更しない）。

    読み取り（existing の取得）は呼び出し側で済ませておくこと。

    Returns:
        メンバーID
    """
    if existing is not None:
        if existing.role is not role and existing.role is not Role.OWNER:
            tx.update_member_role(workspace_id, user.user_id, role)
            logger.info(
                "Updated member role: workspace_id=%s, uid=%s, %s -> %s",
                workspace_id,
                user.user_id,
                existing.role.value,
                role.value,
            )
        return existing.id

    member_id = member_id_for(workspace_id, user.user_id)
    tx.put_member(
        WorkspaceMember(
            id=member_id,
            workspace_id=workspace_id,
            user_id=user.user_id,
            role=role,
            display_name=user.display_name,
            email=user.email.strip().lower(),
            invitation_id=invitation_id,
        )
    )
    tx.adjust_counter(workspace_id, "members_count", 1)
    logger.info(
        "Added member: workspace_id=%s, uid=%s, role=%s",
        workspace_id,
        user.user_id,
        role.value,
    )
    return member_id


class WorkspaceService:
    """ワークスペースとメンバーのライフサイクル管理"""

    def __init__(
        self,
        repo: WorkspaceRepository,
        debounce_seconds: float = WORKSPACE_LISTENER_DEBOUNCE_SECONDS,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self._repo = repo
        self._debounce_seconds = debounce_seconds
        self._timer_factory = timer_factory

    # ── 作成・更新 ────────────────────────────────────────────────────────────

    def create_workspace(
        self,
        owner: UserRef,
        name: str,
        couple_names: str = "",
        wedding_date: str | None = None,
        location: str = "",
    ) -> str:
        """ワークスペースとオーナーのメンバー行を1トランザクションで作成する"""
        workspace_id = self._repo.new_id()
        workspace = Workspace(
            id=workspace_id,
            name=name,
            owner_id=owner.user_id,
            owner_name=owner.display_name,
            owner_email=owner.email.strip().lower(),
            couple_names=couple_names,
            wedding_date=wedding_date,
            location=location,
            members_count=1,
        )
        owner_row = WorkspaceMember(
            id=member_id_for(workspace_id, owner.user_id),
            workspace_id=workspace_id,
            user_id=owner.user_id,
            role=Role.OWNER,
            display_name=owner.display_name,
            email=owner.email.strip().lower(),
        )

        def _create(tx: WorkspaceTransaction) -> None:
            tx.create_workspace(workspace)
            tx.put_member(owner_row)

        self._repo.run_transaction(_create)
        logger.info("Created workspace: workspace_id=%s, owner=%s", workspace_id, owner.user_id)
        return workspace_id

    def update_workspace(
        self, workspace_id: str, requester_id: str, fields: dict[str, Any]
    ) -> None:
        """オーナーのみ。name / couple_names / wedding_date / location を部分更新する"""
        unknown = set(fields) - _EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields not editable: {sorted(unknown)}")
        if not fields:
            return

        def _update(tx: WorkspaceTransaction) -> None:
            if tx.get_workspace(workspace_id) is None:
                raise WorkspaceNotFoundError(workspace_id)
            require_owner_row(tx, workspace_id, requester_id)
            tx.update_workspace(workspace_id, fields)

        self._repo.run_transaction(_update)
        logger.info("Updated workspace: workspace_id=%s, fields=%s", workspace_id, sorted(fields))

    # ── 削除 ──────────────────────────────────────────────────────────────────

    def delete_workspace(self, workspace_id: str, requester_id: str) -> bool:
        """
        ワークスペースを削除する（オーナーのみ）。

        トランザクション内でワークスペース・メンバー行を削除し、
        他メンバーへの通知とクリーンアップ outbox を書き込む。
        コミット後に依存コレクションをパージする。

        Returns:
            True（削除がコミットされた場合。パージが未完了でも True）

        Raises:
            WorkspaceNotFoundError: ワークスペースが存在しない場合
            PermissionDeniedError: 要求者がオーナーでない場合
        """

        def _delete(tx: WorkspaceTransaction) -> int:
            workspace = tx.get_workspace(workspace_id)
            if workspace is None:
                raise WorkspaceNotFoundError(workspace_id)
            require_owner_row(tx, workspace_id, requester_id)
            members = tx.list_members(workspace_id)

            for member in members:
                if member.user_id != requester_id:
                    tx.add_notification(
                        Notification(
                            user_id=member.user_id,
                            type=NotificationType.WORKSPACE_DELETED,
                            title="Workspace deleted",
                            message=(
                                f'The workspace "{workspace.display_name}" '
                                "has been deleted by its owner."
                            ),
                            workspace_id=workspace_id,
                            related_user_id=requester_id,
                        )
                    )
                tx.delete_member(workspace_id, member.user_id)
            tx.delete_workspace(workspace_id)
            tx.put_cleanup_outbox(
                CleanupOutbox(
                    workspace_id=workspace_id,
                    jobs=list(DEPENDENT_COLLECTIONS),
                    requested_by=requester_id,
                )
            )
            return len(members)

        member_count = self._repo.run_transaction(_delete)
        logger.info(
            "Deleted workspace: workspace_id=%s, members=%d", workspace_id, member_count
        )

        try:
            self.drain_cleanup(workspace_id)
        except Exception:
            # outbox が残っているので resume_pending_cleanups() で再開される
            logger.exception(
                "Workspace cleanup incomplete: workspace_id=%s", workspace_id
            )
        return True

    def drain_cleanup(self, workspace_id: str) -> int:
        """outbox に残っているパージを実行し、削除件数の合計を返す"""
        outbox = self._repo.get_cleanup(workspace_id)
        if outbox is None:
            return 0
        deleted = 0
        with log_context(workspace_id=workspace_id):
            for job in outbox.jobs:
                purged = self._repo.purge_collection(workspace_id, job, CLEANUP_BATCH_SIZE)
                self._repo.complete_cleanup_job(workspace_id, job)
                logger.debug("Purged %s: %d document(s)", job, purged)
                deleted += purged
            self._repo.delete_cleanup(workspace_id)
        logger.info(
            "Workspace cleanup finished: workspace_id=%s, deleted=%d",
            workspace_id,
            deleted,
        )
        return deleted

    def resume_pending_cleanups(self) -> list[str]:
        """未完了の outbox を全て再実行し、完了したワークスペースIDを返す"""
        completed: list[str] = []
        for outbox in self._repo.list_pending_cleanups():
            try:
                self.drain_cleanup(outbox.workspace_id)
            except Exception:
                logger.exception(
                    "Cleanup retry failed: workspace_id=%s", outbox.workspace_id
                )
                continue
            completed.append(outbox.workspace_id)
        return completed

    # ── メンバー管理 ──────────────────────────────────────────────────────────

    def add_member(
        self,
        workspace_id: str,
        requester_id: str,
        user: UserRef,
        role: Role,
        invitation_id: str | None = None,
    ) -> str:
        """
        メンバーを追加する（オーナーのみ）。既存メンバーならロールを更新して既存IDを返す。

        Raises:
            ValidationError: role に owner を指定した場合
        """
        if role is Role.OWNER:
            raise ValidationError("Owner role cannot be granted")

        def _add(tx: WorkspaceTransaction) -> str:
            if tx.get_workspace(workspace_id) is None:
                raise WorkspaceNotFoundError(workspace_id)
            require_owner_row(tx, workspace_id, requester_id)
            existing = tx.get_member(workspace_id, user.user_id)
            return apply_membership(tx, workspace_id, existing, user, role, invitation_id)

        return self._repo.run_transaction(_add)

    def remove_member(
        self, workspace_id: str, member_user_id: str, requester_id: str
    ) -> None:
        """
        メンバーを削除する。

        オーナーは誰でも削除でき、メンバーは自分自身を削除（退出）できる。
        owner ロールのメンバー行は誰であっても削除できない。

        Raises:
            PermissionDeniedError: owner の削除、または権限のない削除の場合
        """

        def _remove(tx: WorkspaceTransaction) -> None:
            workspace = tx.get_workspace(workspace_id)
            if workspace is None:
                raise WorkspaceNotFoundError(workspace_id)
            target = tx.get_member(workspace_id, member_user_id)
            if target is None:
                raise MemberNotFoundError(
                    f"workspace_id={workspace_id}, uid={member_user_id}"
                )
            if target.role is Role.OWNER:
                raise PermissionDeniedError("The workspace owner cannot be removed")

            is_self = member_user_id == requester_id
            if not is_self:
                require_owner_row(tx, workspace_id, requester_id)

            tx.delete_member(workspace_id, member_user_id)
            if workspace.members_count > 1:
                tx.adjust_counter(workspace_id, "members_count", -1)
            if is_self:
                name = target.display_name or target.email or member_user_id
                tx.add_notification(
                    Notification(
                        user_id=workspace.owner_id,
                        type=NotificationType.MEMBER_LEFT,
                        title="Member left workspace",
                        message=f'{name} has left the workspace "{workspace.display_name}".',
                        workspace_id=workspace_id,
                        related_user_id=member_user_id,
                    )
                )

        self._repo.run_transaction(_remove)
        logger.info(
            "Removed member: workspace_id=%s, uid=%s, by=%s",
            workspace_id,
            member_user_id,
            requester_id,
        )

    def update_member_role(
        self, workspace_id: str, member_user_id: str, role: Role, requester_id: str
    ) -> None:
        """メンバーのロールを変更する（オーナーのみ。オーナー行は変更不可）"""
        if role is Role.OWNER:
            raise ValidationError("Owner role cannot be granted")

        def _update(tx: WorkspaceTransaction) -> None:
            if tx.get_workspace(workspace_id) is None:
                raise WorkspaceNotFoundError(workspace_id)
            require_owner_row(tx, workspace_id, requester_id)
            target = tx.get_member(workspace_id, member_user_id)
            if target is None:
                raise MemberNotFoundError(
                    f"workspace_id={workspace_id}, uid={member_user_id}"
                )
            if target.role is Role.OWNER:
                raise PermissionDeniedError("The owner's role cannot be changed")
            if target.role is not role:
                tx.update_member_role(workspace_id, member_user_id, role)

        self._repo.run_transaction(_update)
        logger.info(
            "Changed member role: workspace_id=%s, uid=%s, role=%s",
            workspace_id,
            member_user_id,
            role.value,
        )

    # ── 参照 ──────────────────────────────────────────────────────────────────

    def get_member(self, workspace_id: str, user_id: str) -> WorkspaceMember | None:
        return self._repo.get_member(workspace_id, user_id)

    def get_workspace(self, workspace_id: str) -> Workspace:
        workspace = self._repo.get_workspace(workspace_id)
        if workspace is None:
            raise WorkspaceNotFoundError(workspace_id)
        return workspace

    def list_members(self, workspace_id: str) -> list[WorkspaceMember]:
        return sorted(
            self._repo.list_members(workspace_id),
            key=lambda m: (m.role is not Role.OWNER, m.display_name or m.email),
        )

    def get_user_workspaces(self, user_id: str) -> list[WorkspaceDetails]:
        """
        ユーザーが所属する全ワークスペースを、自分のロールと他メンバー付きで返す。

        メンバー行 → ワークスペース一括取得 → 他メンバーの in クエリの順に読む。
        """
        memberships = self._repo.list_memberships(user_id)
        roles = {m.workspace_id: m.role for m in memberships}
        workspaces = self._repo.get_workspaces(list(roles))

        others: dict[str, list[WorkspaceMember]] = defaultdict(list)
        for member in self._repo.list_members_of([w.id for w in workspaces]):
            if member.user_id != user_id:
                others[member.workspace_id].append(member)

        details = [
            WorkspaceDetails(workspace=w, role=roles[w.id], members=others.get(w.id, []))
            for w in workspaces
        ]
        return sorted(details, key=lambda d: d.workspace.display_name.lower())

    def setup_workspace_listeners(
        self,
        user_id: str,
        callback: Callable[[list[WorkspaceDetails]], None],
    ) -> Unsubscribe:
        """
        オーナーのワークスペースと自分のメンバー行を監視し、変更のたびに
        一覧を再取得して callback に渡す（500ms でデバウンス）。

        Returns:
            監視を解除する関数
        """
        debouncer = Debouncer(
            self._debounce_seconds,
            lambda: callback(self.get_user_workspaces(user_id)),
            self._timer_factory,
        )
        unsubscribe_owned = self._repo.watch_owned_workspaces(user_id, debouncer.trigger)
        unsubscribe_members = self._repo.watch_memberships(user_id, debouncer.trigger)

        def _unsubscribe() -> None:
            debouncer.cancel()
            unsubscribe_owned()
            unsubscribe_members()

        return _unsubscribe
