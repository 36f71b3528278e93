"""Ports - サービスのインターフェース定義（ABC）

各Port（抽象基底クラス）は外部サービスとの契約を定義します。
実装クラス（Adapter）はこれらのABCを継承し、全ての抽象メソッドを実装する必要があります。

トランザクションが必要な操作は WorkspaceRepository.run_transaction() に
関数を渡し、関数内では WorkspaceTransaction のメソッドだけを使う。
Firestore の制約上、読み取りは全て書き込みより先に行うこと。
"""

from __future__ import annotations

import datetime
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from wedfin.domain.models import (
    CleanupOutbox,
    Contributor,
    CustomCategory,
    Expense,
    Gift,
    GiftAllocation,
    Invitation,
    Notification,
    PaymentAllocation,
    Role,
    Settings,
    WeddingLedger,
    Workspace,
    WorkspaceMember,
)

T = TypeVar("T")

Unsubscribe = Callable[[], None]


class WorkspaceTransaction(ABC):
    """1トランザクション内で使える読み書き操作"""

    # ── 読み取り ──

    @abstractmethod
    def get_workspace(self, workspace_id: str) -> Workspace | None:
        pass

    @abstractmethod
    def get_member(self, workspace_id: str, user_id: str) -> WorkspaceMember | None:
        pass

    @abstractmethod
    def list_members(self, workspace_id: str) -> list[WorkspaceMember]:
        pass

    @abstractmethod
    def get_invitation(self, invitation_id: str) -> Invitation | None:
        pass

    @abstractmethod
    def find_invitation_by_token(self, token: str) -> Invitation | None:
        """pending の招待をトークンで検索する"""
        pass

    @abstractmethod
    def find_pending_invitation(
        self, workspace_id: str, email: str
    ) -> Invitation | None:
        pass

    # ── 書き込み ──

    @abstractmethod
    def create_workspace(self, workspace: Workspace) -> None:
        pass

    @abstractmethod
    def update_workspace(self, workspace_id: str, fields: dict[str, Any]) -> None:
        """fields のキーは Workspace の属性名"""
        pass

    @abstractmethod
    def delete_workspace(self, workspace_id: str) -> None:
        pass

    @abstractmethod
    def adjust_counter(self, workspace_id: str, counter: str, delta: int) -> None:
        """members_count / pending_invitations_count を増減する"""
        pass

    @abstractmethod
    def put_member(self, member: WorkspaceMember) -> None:
        pass

    @abstractmethod
    def update_member_role(self, workspace_id: str, user_id: str, role: Role) -> None:
        pass

    @abstractmethod
    def delete_member(self, workspace_id: str, user_id: str) -> None:
        pass

    @abstractmethod
    def create_invitation(self, invitation: Invitation) -> None:
        pass

    @abstractmethod
    def update_invitation(self, invitation_id: str, fields: dict[str, Any]) -> None:
        """fields のキーは Invitation の属性名（accepted_at 等の時刻キーも可）"""
        pass

    @abstractmethod
    def add_notification(self, notification: Notification) -> None:
        pass

    @abstractmethod
    def put_cleanup_outbox(self, outbox: CleanupOutbox) -> None:
        pass


class WorkspaceRepository(ABC):
    """ワークスペース・メンバー・招待の永続化（Firestore等）"""

    @abstractmethod
    def new_id(self) -> str:
        """新規ドキュメントIDを払い出す"""
        pass

    @abstractmethod
    def run_transaction(self, fn: Callable[[WorkspaceTransaction], T]) -> T:
        """fn をトランザクション内で実行する（競合時は fn ごと再実行される）"""
        pass

    @abstractmethod
    def get_workspace(self, workspace_id: str) -> Workspace | None:
        pass

    @abstractmethod
    def get_workspaces(self, workspace_ids: list[str]) -> list[Workspace]:
        """複数ワークスペースを一括取得する（存在しないIDは無視）"""
        pass

    @abstractmethod
    def list_owned_workspaces(self, user_id: str) -> list[Workspace]:
        pass

    @abstractmethod
    def get_member(self, workspace_id: str, user_id: str) -> WorkspaceMember | None:
        pass

    @abstractmethod
    def list_members(self, workspace_id: str) -> list[WorkspaceMember]:
        pass

    @abstractmethod
    def list_memberships(self, user_id: str) -> list[WorkspaceMember]:
        """ユーザーが所属する全ワークスペースのメンバー行"""
        pass

    @abstractmethod
    def list_members_of(self, workspace_ids: list[str]) -> list[WorkspaceMember]:
        """複数ワークスペースのメンバーをまとめて取得する"""
        pass

    @abstractmethod
    def watch_owned_workspaces(
        self, user_id: str, on_change: Callable[[], None]
    ) -> Unsubscribe:
        pass

    @abstractmethod
    def watch_memberships(
        self, user_id: str, on_change: Callable[[], None]
    ) -> Unsubscribe:
        pass

    # ── 削除クリーンアップ（outbox） ──

    @abstractmethod
    def list_pending_cleanups(self) -> list[CleanupOutbox]:
        pass

    @abstractmethod
    def get_cleanup(self, workspace_id: str) -> CleanupOutbox | None:
        pass

    @abstractmethod
    def purge_collection(self, workspace_id: str, job: str, batch_size: int) -> int:
        """job が示すコレクションを batch_size ごとに削除し、削除件数を返す"""
        pass

    @abstractmethod
    def complete_cleanup_job(self, workspace_id: str, job: str) -> None:
        pass

    @abstractmethod
    def delete_cleanup(self, workspace_id: str) -> None:
        pass


class InvitationRepository(ABC):
    """招待の参照系"""

    @abstractmethod
    def get(self, invitation_id: str) -> Invitation | None:
        pass

    @abstractmethod
    def list_for_workspace(self, workspace_id: str) -> list[Invitation]:
        pass

    @abstractmethod
    def list_pending_for_email(self, email: str) -> list[Invitation]:
        pass


class UserPreferenceRepository(ABC):
    @abstractmethod
    def get_current_workspace(self, user_id: str) -> str | None:
        pass

    @abstractmethod
    def set_current_workspace(self, user_id: str, workspace_id: str | None) -> None:
        pass


class FinanceRepository(ABC):
    """ワークスペース配下の家計データ（workspaces/{id}/...）"""

    # ── 支出 ──

    @abstractmethod
    def list_expenses(self, workspace_id: str) -> list[Expense]:
        """直接支払いのみを含む支出一覧（贈与由来の支払いは含まない）"""
        pass

    @abstractmethod
    def get_expense(self, workspace_id: str, expense_id: str) -> Expense | None:
        pass

    @abstractmethod
    def create_expense(self, workspace_id: str, expense: Expense) -> str:
        pass

    @abstractmethod
    def update_expense(
        self, workspace_id: str, expense_id: str, fields: dict[str, Any]
    ) -> None:
        pass

    @abstractmethod
    def set_direct_payments(
        self, workspace_id: str, expense_id: str, payments: list[PaymentAllocation]
    ) -> None:
        pass

    @abstractmethod
    def delete_expense(self, workspace_id: str, expense_id: str) -> None:
        """支出と、それを指す贈与割当を1バッチで削除する"""
        pass

    # ── 提供者 ──

    @abstractmethod
    def list_contributors(self, workspace_id: str) -> list[Contributor]:
        pass

    @abstractmethod
    def get_contributor(
        self, workspace_id: str, contributor_id: str
    ) -> Contributor | None:
        pass

    @abstractmethod
    def create_contributor(self, workspace_id: str, contributor: Contributor) -> str:
        pass

    @abstractmethod
    def update_contributor(
        self, workspace_id: str, contributor_id: str, fields: dict[str, Any]
    ) -> None:
        pass

    @abstractmethod
    def delete_contributor(self, workspace_id: str, contributor_id: str) -> None:
        """提供者を削除し、紐づく贈与は from_person に名前を残して切り離す"""
        pass

    # ── 贈与・割当 ──

    @abstractmethod
    def list_gifts(self, workspace_id: str) -> list[Gift]:
        pass

    @abstractmethod
    def get_gift(self, workspace_id: str, gift_id: str) -> Gift | None:
        pass

    @abstractmethod
    def create_gift(
        self, workspace_id: str, gift: Gift, allocations: list[GiftAllocation]
    ) -> str:
        """贈与と割当を1バッチで書き込み、贈与IDを返す"""
        pass

    @abstractmethod
    def update_gift(
        self, workspace_id: str, gift_id: str, fields: dict[str, Any]
    ) -> None:
        pass

    @abstractmethod
    def delete_gift(self, workspace_id: str, gift_id: str) -> None:
        """贈与とその割当を1バッチで削除する"""
        pass

    @abstractmethod
    def list_allocations(self, workspace_id: str) -> list[GiftAllocation]:
        pass

    @abstractmethod
    def create_allocation(self, workspace_id: str, allocation: GiftAllocation) -> str:
        pass

    @abstractmethod
    def delete_allocation(self, workspace_id: str, allocation_id: str) -> bool:
        pass

    # ── カテゴリ・設定 ──

    @abstractmethod
    def list_categories(self, workspace_id: str) -> list[CustomCategory]:
        pass

    @abstractmethod
    def create_category(self, workspace_id: str, name: str) -> str:
        pass

    @abstractmethod
    def delete_category(self, workspace_id: str, category_id: str) -> bool:
        """存在しなければ False"""
        pass

    @abstractmethod
    def get_settings(self, workspace_id: str) -> Settings:
        """未作成の場合はデフォルト値を返す"""
        pass

    @abstractmethod
    def update_settings(self, workspace_id: str, fields: dict[str, Any]) -> None:
        pass

    # ── 変更監視 ──

    @abstractmethod
    def watch_collection(
        self, workspace_id: str, collection: str, on_change: Callable[[], None]
    ) -> Unsubscribe:
        pass


@dataclass(frozen=True)
class InvitationEmail:
    """招待メールのテンプレートパラメータ"""

    to_email: str
    to_name: str
    from_name: str
    invitation_link: str
    role: str
    message: str
    reply_to: str
    expires_at: datetime.datetime | None = None


class InvitationMailer(ABC):
    """招待メールの送信（SendGrid等）"""

    @abstractmethod
    def send_invitation(self, email: InvitationEmail) -> None:
        """送信に失敗した場合は EmailDeliveryError を送出する"""
        pass


class SpreadsheetRenderer(ABC):
    """家計データのスプレッドシート出力"""

    @abstractmethod
    def render(self, ledger: WeddingLedger, today: datetime.date) -> bytes:
        pass
