"""クライアント側の状態管理

- WorkspaceDirectory: 所属ワークスペース一覧と選択中ワークスペース
- LedgerCache: 選択中ワークスペースの家計データのキャッシュ

選択中ワークスペースは userPreferences に保存するが、読み出すたびに
メンバー行で検証する（保存値やクライアントの指定は信用しない）。
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from wedfin.adapters.firestore_finance import FINANCE_COLLECTIONS
from wedfin.domain.errors import PermissionDeniedError
from wedfin.domain.models import WeddingLedger, WorkspaceDetails
from wedfin.domain.ports import FinanceRepository, Unsubscribe, UserPreferenceRepository
from wedfin.services.subscriptions import (
    DEFAULT_DEBOUNCE_SECONDS,
    BackoffPolicy,
    SubscriptionState,
    SupervisedSubscription,
    TimerFactory,
)
from wedfin.services.wedding_service import WeddingService
from wedfin.services.workspace_service import WorkspaceService

logger = logging.getLogger(__name__)


class WorkspaceDirectory:
    """1ユーザーのワークスペース一覧と選択状態"""

    def __init__(
        self,
        user_id: str,
        workspaces: WorkspaceService,
        preferences: UserPreferenceRepository,
        on_change: Callable[[list[WorkspaceDetails]], None] | None = None,
    ) -> None:
        self._user_id = user_id
        self._workspaces = workspaces
        self._preferences = preferences
        self._on_change = on_change
        self._items: list[WorkspaceDetails] = []
        self._current_id: str | None = None
        self._unsubscribe: Unsubscribe | None = None
        self._lock = threading.Lock()

    @property
    def workspaces(self) -> list[WorkspaceDetails]:
        return list(self._items)

    @property
    def current_workspace_id(self) -> str | None:
        return self._current_id

    @property
    def current(self) -> WorkspaceDetails | None:
        for details in self._items:
            if details.workspace.id == self._current_id:
                return details
        return None

    def refresh(self) -> list[WorkspaceDetails]:
        """一覧を再取得し、選択中ワークスペースを検証し直す"""
        self._apply(self._workspaces.get_user_workspaces(self._user_id))
        return self.workspaces

    def resolve_current(self) -> str | None:
        """
        保存済みの選択を検証して返す。

        メンバーでなくなっている場合は一覧の先頭に切り替え、その結果を保存する。
        所属ワークスペースがなければ None。
        """
        stored = self._preferences.get_current_workspace(self._user_id)
        if stored and self._workspaces.get_member(stored, self._user_id):
            resolved: str | None = stored
        else:
            if not self._items:
                self._items = self._workspaces.get_user_workspaces(self._user_id)
            resolved = self._items[0].workspace.id if self._items else None
            if resolved != stored:
                logger.info(
                    "Current workspace reset: uid=%s, stored=%s, resolved=%s",
                    self._user_id,
                    stored,
                    resolved,
                )
                self._preferences.set_current_workspace(self._user_id, resolved)
        self._current_id = resolved
        return resolved

    def select(self, workspace_id: str) -> WorkspaceDetails | None:
        """
        選択中ワークスペースを切り替えて保存する。

        Raises:
            PermissionDeniedError: メンバーでないワークスペースを指定した場合
        """
        if self._workspaces.get_member(workspace_id, self._user_id) is None:
            raise PermissionDeniedError(
                f"Not a member: workspace_id={workspace_id}, uid={self._user_id}"
            )
        self._preferences.set_current_workspace(self._user_id, workspace_id)
        self._current_id = workspace_id
        logger.info("Selected workspace: uid=%s, workspace_id=%s", self._user_id, workspace_id)
        return self.current

    def start(self) -> None:
        """初回読み込みとライブ更新の購読を開始する"""
        self.refresh()
        self.resolve_current()
        self._unsubscribe = self._workspaces.setup_workspace_listeners(
            self._user_id, self._apply
        )

    def close(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()

    def _apply(self, items: list[WorkspaceDetails]) -> None:
        with self._lock:
            self._items = items
            if self._current_id and not any(
                d.workspace.id == self._current_id for d in items
            ):
                # 削除または脱退したワークスペース
                self._current_id = None
        if self._current_id is None and items:
            self.resolve_current()
        if self._on_change is not None:
            self._on_change(self.workspaces)


class LedgerCache:
    """
    1ワークスペースの家計データのキャッシュ。

    家計サブコレクションごとに SupervisedSubscription を張り、変更があれば
    全体を再読み込みする。書き込みは WeddingService に委譲し、完了後に
    スナップショットを待たず再読み込みする。
    """

    def __init__(
        self,
        workspace_id: str,
        service: WeddingService,
        repo: FinanceRepository,
        on_update: Callable[[WeddingLedger], None] | None = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        backoff: BackoffPolicy | None = None,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self._workspace_id = workspace_id
        self._service = service
        self._on_update = on_update
        self._ledger: WeddingLedger | None = None
        self._lock = threading.Lock()
        self._subscriptions = [
            SupervisedSubscription(
                name=f"{collection}:{workspace_id}",
                subscribe=lambda cb, c=collection: repo.watch_collection(
                    workspace_id, c, cb
                ),
                on_change=self.reload,
                debounce_seconds=debounce_seconds,
                backoff=backoff,
                timer_factory=timer_factory,
            )
            for collection in FINANCE_COLLECTIONS
        ]

    @property
    def workspace_id(self) -> str:
        return self._workspace_id

    @property
    def ledger(self) -> WeddingLedger:
        if self._ledger is None:
            return self.reload()
        return self._ledger

    @property
    def states(self) -> dict[str, SubscriptionState]:
        return {
            collection: sub.state
            for collection, sub in zip(FINANCE_COLLECTIONS, self._subscriptions)
        }

    def start(self) -> None:
        self.reload()
        for sub in self._subscriptions:
            sub.start()

    def close(self) -> None:
        for sub in self._subscriptions:
            sub.close()

    def reload(self) -> WeddingLedger:
        data = self._service.load_ledger(self._workspace_id)
        with self._lock:
            self._ledger = data
        if self._on_update is not None:
            self._on_update(data)
        return data

    def _mutate(self, method: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        result = method(self._workspace_id, *args, **kwargs)
        self.reload()
        return result

    # ── 委譲 ──────────────────────────────────────────────────────────────────

    def add_expense(self, *args: Any, **kwargs: Any) -> str:
        return self._mutate(self._service.add_expense, *args, **kwargs)

    def update_expense(self, *args: Any, **kwargs: Any) -> None:
        return self._mutate(self._service.update_expense, *args, **kwargs)

    def delete_expense(self, expense_id: str) -> None:
        return self._mutate(self._service.delete_expense, expense_id)

    def add_payment(self, *args: Any, **kwargs: Any):
        return self._mutate(self._service.add_payment, *args, **kwargs)

    def update_payment(self, *args: Any, **kwargs: Any):
        return self._mutate(self._service.update_payment, *args, **kwargs)

    def remove_payment(self, expense_id: str, payment_id: str) -> None:
        return self._mutate(self._service.remove_payment, expense_id, payment_id)

    def add_contributor(self, name: str, notes: str = "") -> str:
        return self._mutate(self._service.add_contributor, name, notes)

    def update_contributor(self, *args: Any, **kwargs: Any) -> None:
        return self._mutate(self._service.update_contributor, *args, **kwargs)

    def delete_contributor(self, contributor_id: str) -> None:
        return self._mutate(self._service.delete_contributor, contributor_id)

    def add_gift(self, *args: Any, **kwargs: Any) -> str:
        return self._mutate(self._service.add_gift, *args, **kwargs)

    def update_gift(self, *args: Any, **kwargs: Any) -> None:
        return self._mutate(self._service.update_gift, *args, **kwargs)

    def delete_gift(self, gift_id: str) -> None:
        return self._mutate(self._service.delete_gift, gift_id)

    def allocate_gift(self, *args: Any, **kwargs: Any) -> str:
        return self._mutate(self._service.allocate_gift, *args, **kwargs)

    def remove_allocation(self, allocation_id: str) -> None:
        return self._mutate(self._service.remove_allocation, allocation_id)

    def add_category(self, name: str) -> str:
        return self._mutate(self._service.add_category, name)

    def delete_category(self, category_id: str) -> None:
        return self._mutate(self._service.delete_category, category_id)

    def update_settings(self, fields: dict[str, Any]):
        return self._mutate(self._service.update_settings, fields)
