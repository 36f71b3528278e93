"""ドメインモデル - 外部依存なしのデータ構造"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum


class Role(Enum):
    """ワークスペース内のロール"""

    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"

    @property
    def can_edit(self) -> bool:
        return self in (Role.OWNER, Role.EDITOR)


class InvitationStatus(Enum):
    """招待ステータス（pending 以外は終端）"""

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class NotificationType(Enum):
    WORKSPACE_DELETED = "workspace_deleted"
    MEMBER_LEFT = "member_left"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_DECLINED = "invitation_declined"


class PaymentStatus(Enum):
    UNPAID = "Unpaid"
    PARTIALLY_PAID = "Partially Paid"
    PAID = "Paid"


# ── ワークスペース ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class UserRef:
    """操作ユーザーの表示用スナップショット（acceptedBy 等に記録する）"""

    user_id: str
    display_name: str = ""
    email: str = ""


@dataclass(frozen=True)
class Workspace:
    """共同編集の単位。全ての家計データはワークスペース配下に置かれる"""

    id: str
    name: str
    owner_id: str
    owner_name: str = ""
    owner_email: str = ""
    couple_names: str = ""
    wedding_date: str | None = None  # YYYY-MM-DD
    location: str = ""
    members_count: int = 1
    pending_invitations_count: int = 0
    original_wedding_id: str | None = None  # 旧 weddings から移行した場合のみ
    created_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.couple_names or "Unnamed Workspace"


@dataclass(frozen=True)
class WorkspaceMember:
    """ワークスペースメンバー（(workspace_id, user_id) ごとに1件）"""

    id: str
    workspace_id: str
    user_id: str
    role: Role
    display_name: str = ""
    email: str = ""
    joined_at: datetime.datetime | None = None
    invitation_id: str | None = None


@dataclass(frozen=True)
class WorkspaceDetails:
    """ユーザー視点のワークスペース一覧の1行"""

    workspace: Workspace
    role: Role  # 閲覧ユーザー自身のロール
    members: list[WorkspaceMember] = field(default_factory=list)  # 自分以外

    @property
    def is_owner(self) -> bool:
        return self.role is Role.OWNER


@dataclass(frozen=True)
class Invitation:
    """ワークスペース招待"""

    id: str
    workspace_id: str
    email: str  # 小文字に正規化済み
    role: Role  # EDITOR | VIEWER
    status: InvitationStatus
    token: str  # 推測不能なトークン（URL に埋め込む）
    invited_by: str
    expires_at: datetime.datetime
    invited_by_name: str = ""
    invited_by_email: str = ""
    message: str = ""
    created_at: datetime.datetime | None = None
    accepted_by: UserRef | None = None
    declined_by: UserRef | None = None

    def is_expired(self, now: datetime.datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class Notification:
    user_id: str
    type: NotificationType
    title: str
    message: str
    workspace_id: str | None = None
    related_user_id: str | None = None


# ── 家計データ ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PaymentAllocation:
    """支出への支払い。gift_id が付くものは贈与割当から導出されたビュー"""

    id: str
    contributor_id: str
    amount: float
    date: str  # YYYY-MM-DD
    notes: str = ""
    gift_id: str | None = None
    allocation_id: str | None = None

    @property
    def is_gift_funded(self) -> bool:
        return self.gift_id is not None


@dataclass(frozen=True)
class Expense:
    id: str
    title: str
    category: str
    total_amount: float
    due_date: str | None = None  # YYYY-MM-DD
    provider: str = ""
    notes: str = ""
    payment_allocations: list[PaymentAllocation] = field(default_factory=list)
    created_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None

    @property
    def direct_payments(self) -> list[PaymentAllocation]:
        """永続化対象の直接支払い（贈与由来を除く）"""
        return [p for p in self.payment_allocations if not p.is_gift_funded]


@dataclass(frozen=True)
class Contributor:
    """資金提供者（親族など）"""

    id: str
    name: str
    notes: str = ""


@dataclass(frozen=True)
class Gift:
    """贈与。contributor_id があれば提供者に紐づく、なければ from_person の自由記述"""

    id: str
    amount: float
    date: str  # YYYY-MM-DD
    notes: str = ""
    contributor_id: str | None = None
    from_person: str = ""


@dataclass(frozen=True)
class GiftAllocation:
    """贈与の一部を支出に充当した記録（唯一の永続コピー）"""

    id: str
    gift_id: str
    expense_id: str
    amount: float


@dataclass(frozen=True)
class AllocationRequest:
    """贈与作成時の割当指定"""

    expense_id: str
    amount: float


@dataclass(frozen=True)
class CustomCategory:
    id: str
    name: str
    created_at: datetime.datetime | None = None


@dataclass(frozen=True)
class Settings:
    currency: str = "USD"
    wedding_date: str | None = None
    total_budget: float | None = None


# ── 導出ビュー ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class GiftView:
    gift: Gift
    allocations: list[GiftAllocation] = field(default_factory=list)

    @property
    def allocated_amount(self) -> float:
        return sum(a.amount for a in self.allocations)

    @property
    def unallocated_amount(self) -> float:
        return self.gift.amount - self.allocated_amount


@dataclass(frozen=True)
class ContributorSummary:
    contributor: Contributor
    gifts: list[GiftView] = field(default_factory=list)
    total_paid: float = 0.0  # 全支出にわたる当該提供者の支払い合計

    @property
    def total_gift_amount(self) -> float:
        return sum(g.gift.amount for g in self.gifts)

    @property
    def available_balance(self) -> float:
        return self.total_gift_amount - self.total_paid


@dataclass(frozen=True)
class DashboardStats:
    total_expenses: float
    total_paid: float
    total_remaining: float
    total_contributions: float
    upcoming_payments: list[Expense] = field(default_factory=list)
    expenses_by_category: dict[str, float] = field(default_factory=dict)
    contributor_payments: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class WeddingLedger:
    """ワークスペースの家計データ一式（導出ビュー適用済み）"""

    workspace_id: str
    expenses: list[Expense] = field(default_factory=list)
    contributors: list[ContributorSummary] = field(default_factory=list)
    gifts: list[GiftView] = field(default_factory=list)
    categories: list[CustomCategory] = field(default_factory=list)
    settings: Settings = field(default_factory=Settings)


@dataclass(frozen=True)
class CleanupOutbox:
    """削除済みワークスペースの未完了クリーンアップ（workspaceDeletions/{id}）"""

    workspace_id: str
    jobs: list[str] = field(default_factory=list)  # 未パージのコレクション名
    requested_by: str = ""
    created_at: datetime.datetime | None = None


@dataclass(frozen=True)
class MigrationResult:
    """旧データ移行の結果"""

    user_id: str
    workspace_ids: list[str] = field(default_factory=list)
    copied_documents: int = 0
    skipped_documents: int = 0
    already_migrated: bool = False


def member_id_for(workspace_id: str, user_id: str) -> str:
    """メンバーIDは (workspace_id, user_id) から一意に決まる"""
    return f"{workspace_id}_{user_id}"
