"""Firestore Finance Repository Adapter

FinanceRepository の Firestore 実装。

Firestore コレクション構造:
  workspaces/{workspaceId}/expenses/{expenseId}            ← 支出（直接支払いを埋め込み）
  workspaces/{workspaceId}/contributors/{contributorId}    ← 提供者
  workspaces/{workspaceId}/gifts/{giftId}                  ← 贈与
  workspaces/{workspaceId}/giftAllocations/{allocationId}  ← 贈与の支出への割当
  workspaces/{workspaceId}/customCategories/{categoryId}
  workspaces/{workspaceId}/settings/app_settings

贈与割当は giftAllocations にのみ保存する。提供者ごとの贈与一覧や
支出側の贈与由来の支払いは services.ledger が読み取り時に導出する。
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from google.cloud import firestore

from wedfin.adapters.firestore_repository import as_datetime
from wedfin.domain.models import (
    Contributor,
    CustomCategory,
    Expense,
    Gift,
    GiftAllocation,
    PaymentAllocation,
    Settings,
)
from wedfin.domain.ports import FinanceRepository, Unsubscribe

logger = logging.getLogger(__name__)

_WORKSPACES = "workspaces"
EXPENSES = "expenses"
CONTRIBUTORS = "contributors"
GIFTS = "gifts"
GIFT_ALLOCATIONS = "giftAllocations"
CUSTOM_CATEGORIES = "customCategories"
SETTINGS = "settings"
SETTINGS_DOC_ID = "app_settings"

FINANCE_COLLECTIONS = (
    EXPENSES,
    CONTRIBUTORS,
    GIFTS,
    GIFT_ALLOCATIONS,
    CUSTOM_CATEGORIES,
    SETTINGS,
)

_EXPENSE_FIELDS = {
    "title": "title",
    "category": "category",
    "total_amount": "totalAmount",
    "due_date": "dueDate",
    "provider": "provider",
    "notes": "notes",
}
_CONTRIBUTOR_FIELDS = {"name": "name", "notes": "notes"}
_GIFT_FIELDS = {
    "amount": "amount",
    "date": "date",
    "notes": "notes",
    "contributor_id": "contributorId",
    "from_person": "fromPerson",
}
_SETTINGS_FIELDS = {
    "currency": "currency",
    "wedding_date": "weddingDate",
    "total_budget": "totalBudget",
}


def _map_fields(fields: dict[str, Any], mapping: dict[str, str]) -> dict[str, Any]:
    unknown = set(fields) - set(mapping)
    if unknown:
        raise KeyError(f"Unknown fields: {sorted(unknown)}")
    return {mapping[k]: v for k, v in fields.items()}


def payment_to_dict(payment: PaymentAllocation) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": payment.id,
        "contributorId": payment.contributor_id,
        "amount": payment.amount,
        "date": payment.date,
    }
    if payment.notes:
        data["notes"] = payment.notes
    return data


def expense_from_dict(expense_id: str, data: dict[str, Any]) -> Expense:
    payments = [
        PaymentAllocation(
            id=p.get("id", ""),
            contributor_id=p.get("contributorId", ""),
            amount=float(p.get("amount", 0)),
            date=p.get("date", ""),
            notes=p.get("notes", ""),
        )
        for p in data.get("paymentAllocations") or []
        # 贈与由来の支払いは giftAllocations から導出するため保存値は使わない
        if not p.get("giftId")
    ]
    return Expense(
        id=expense_id,
        title=data.get("title", ""),
        category=data.get("category", "miscellaneous"),
        total_amount=float(data.get("totalAmount", 0)),
        due_date=data.get("dueDate") or None,
        provider=data.get("provider", ""),
        notes=data.get("notes", ""),
        payment_allocations=payments,
        created_at=as_datetime(data.get("createdAt")),
        updated_at=as_datetime(data.get("updatedAt")),
    )


def gift_from_dict(gift_id: str, data: dict[str, Any]) -> Gift:
    return Gift(
        id=gift_id,
        amount=float(data.get("amount", 0)),
        date=data.get("date", ""),
        notes=data.get("notes", ""),
        contributor_id=data.get("contributorId") or None,
        from_person=data.get("fromPerson", ""),
    )


def allocation_from_dict(allocation_id: str, data: dict[str, Any]) -> GiftAllocation:
    return GiftAllocation(
        id=allocation_id,
        gift_id=data.get("giftId", ""),
        expense_id=data.get("expenseId", ""),
        amount=float(data.get("amount", 0)),
    )


class FirestoreFinanceRepository(FinanceRepository):
    """
    Firestore を使った FinanceRepository 実装。

    複数ドキュメントにまたがる更新（贈与と割当の作成、支出削除時の割当削除など）は
    WriteBatch で1回のコミットにまとめる。
    """

    def __init__(self, db: firestore.Client) -> None:
        """
        Args:
            db: 初期化済みの Firestore クライアント
        """
        self._db = db

    def _col(self, workspace_id: str, name: str):
        return self._db.collection(_WORKSPACES).document(workspace_id).collection(name)

    def _stamp(self, workspace_id: str, data: dict[str, Any]) -> dict[str, Any]:
        return {
            **data,
            "workspaceId": workspace_id,
            "createdAt": firestore.SERVER_TIMESTAMP,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        }

    # ── 支出 ──────────────────────────────────────────────────────────────────

    def list_expenses(self, workspace_id: str) -> list[Expense]:
        snaps = self._col(workspace_id, EXPENSES).stream()
        return [expense_from_dict(snap.id, snap.to_dict()) for snap in snaps]

    def get_expense(self, workspace_id: str, expense_id: str) -> Expense | None:
        snap = self._col(workspace_id, EXPENSES).document(expense_id).get()
        if not snap.exists:
            return None
        return expense_from_dict(snap.id, snap.to_dict())

    def create_expense(self, workspace_id: str, expense: Expense) -> str:
        ref = self._col(workspace_id, EXPENSES).document(expense.id or None)
        ref.set(
            self._stamp(
                workspace_id,
                {
                    "title": expense.title,
                    "category": expense.category,
                    "totalAmount": expense.total_amount,
                    "dueDate": expense.due_date,
                    "provider": expense.provider,
                    "notes": expense.notes,
                    "paymentAllocations": [
                        payment_to_dict(p) for p in expense.direct_payments
                    ],
                },
            )
        )
        logger.info("Created expense: workspace_id=%s, expense_id=%s", workspace_id, ref.id)
        return ref.id

    def update_expense(
        self, workspace_id: str, expense_id: str, fields: dict[str, Any]
    ) -> None:
        data = _map_fields(fields, _EXPENSE_FIELDS)
        data["updatedAt"] = firestore.SERVER_TIMESTAMP
        self._col(workspace_id, EXPENSES).document(expense_id).update(data)

    def set_direct_payments(
        self, workspace_id: str, expense_id: str, payments: list[PaymentAllocation]
    ) -> None:
        self._col(workspace_id, EXPENSES).document(expense_id).update(
            {
                "paymentAllocations": [
                    payment_to_dict(p) for p in payments if not p.is_gift_funded
                ],
                "updatedAt": firestore.SERVER_TIMESTAMP,
            }
        )

    def delete_expense(self, workspace_id: str, expense_id: str) -> None:
        batch = self._db.batch()
        batch.delete(self._col(workspace_id, EXPENSES).document(expense_id))
        allocations = (
            self._col(workspace_id, GIFT_ALLOCATIONS)
            .where("expenseId", "==", expense_id)
            .stream()
        )
        removed = 0
        for snap in allocations:
            batch.delete(snap.reference)
            removed += 1
        batch.commit()
        logger.info(
            "Deleted expense: workspace_id=%s, expense_id=%s, allocations=%d",
            workspace_id,
            expense_id,
            removed,
        )

    # ── 提供者 ────────────────────────────────────────────────────────────────

    def list_contributors(self, workspace_id: str) -> list[Contributor]:
        return [
            Contributor(
                id=snap.id,
                name=snap.to_dict().get("name", ""),
                notes=snap.to_dict().get("notes", ""),
            )
            for snap in self._col(workspace_id, CONTRIBUTORS).stream()
        ]

    def get_contributor(
        self, workspace_id: str, contributor_id: str
    ) -> Contributor | None:
        snap = self._col(workspace_id, CONTRIBUTORS).document(contributor_id).get()
        if not snap.exists:
            return None
        data = snap.to_dict()
        return Contributor(
            id=snap.id, name=data.get("name", ""), notes=data.get("notes", "")
        )

    def create_contributor(self, workspace_id: str, contributor: Contributor) -> str:
        ref = self._col(workspace_id, CONTRIBUTORS).document(contributor.id or None)
        ref.set(
            self._stamp(
                workspace_id, {"name": contributor.name, "notes": contributor.notes}
            )
        )
        return ref.id

    def update_contributor(
        self, workspace_id: str, contributor_id: str, fields: dict[str, Any]
    ) -> None:
        data = _map_fields(fields, _CONTRIBUTOR_FIELDS)
        data["updatedAt"] = firestore.SERVER_TIMESTAMP
        self._col(workspace_id, CONTRIBUTORS).document(contributor_id).update(data)

    def delete_contributor(self, workspace_id: str, contributor_id: str) -> None:
        ref = self._col(workspace_id, CONTRIBUTORS).document(contributor_id)
        snap = ref.get()
        name = (snap.to_dict() or {}).get("name", "") if snap.exists else ""

        batch = self._db.batch()
        gifts = (
            self._col(workspace_id, GIFTS)
            .where("contributorId", "==", contributor_id)
            .stream()
        )
        for gift in gifts:
            batch.update(
                gift.reference,
                {
                    "contributorId": None,
                    "fromPerson": gift.to_dict().get("fromPerson") or name,
                    "updatedAt": firestore.SERVER_TIMESTAMP,
                },
            )
        batch.delete(ref)
        batch.commit()
        logger.info(
            "Deleted contributor: workspace_id=%s, contributor_id=%s",
            workspace_id,
            contributor_id,
        )

    # ── 贈与・割当 ─────────────────────────────────────────────────────────────

    def list_gifts(self, workspace_id: str) -> list[Gift]:
        return [
            gift_from_dict(snap.id, snap.to_dict())
            for snap in self._col(workspace_id, GIFTS).stream()
        ]

    def get_gift(self, workspace_id: str, gift_id: str) -> Gift | None:
        snap = self._col(workspace_id, GIFTS).document(gift_id).get()
        if not snap.exists:
            return None
        return gift_from_dict(snap.id, snap.to_dict())

    def create_gift(
        self, workspace_id: str, gift: Gift, allocations: list[GiftAllocation]
    ) -> str:
        gift_ref = self._col(workspace_id, GIFTS).document(gift.id or None)
        batch = self._db.batch()
        batch.set(
            gift_ref,
            self._stamp(
                workspace_id,
                {
                    "amount": gift.amount,
                    "date": gift.date,
                    "notes": gift.notes,
                    "contributorId": gift.contributor_id,
                    "fromPerson": gift.from_person,
                },
            ),
        )
        for allocation in allocations:
            alloc_ref = self._col(workspace_id, GIFT_ALLOCATIONS).document(
                allocation.id or None
            )
            batch.set(
                alloc_ref,
                self._stamp(
                    workspace_id,
                    {
                        "giftId": gift_ref.id,
                        "expenseId": allocation.expense_id,
                        "amount": allocation.amount,
                    },
                ),
            )
        batch.commit()
        logger.info(
            "Created gift: workspace_id=%s, gift_id=%s, allocations=%d",
            workspace_id,
            gift_ref.id,
            len(allocations),
        )
        return gift_ref.id

    def update_gift(
        self, workspace_id: str, gift_id: str, fields: dict[str, Any]
    ) -> None:
        data = _map_fields(fields, _GIFT_FIELDS)
        data["updatedAt"] = firestore.SERVER_TIMESTAMP
        self._col(workspace_id, GIFTS).document(gift_id).update(data)

    def delete_gift(self, workspace_id: str, gift_id: str) -> None:
        batch = self._db.batch()
        allocations = (
            self._col(workspace_id, GIFT_ALLOCATIONS)
            .where("giftId", "==", gift_id)
            .stream()
        )
        for snap in allocations:
            batch.delete(snap.reference)
        batch.delete(self._col(workspace_id, GIFTS).document(gift_id))
        batch.commit()
        logger.info("Deleted gift: workspace_id=%s, gift_id=%s", workspace_id, gift_id)

    def list_allocations(self, workspace_id: str) -> list[GiftAllocation]:
        return [
            allocation_from_dict(snap.id, snap.to_dict())
            for snap in self._col(workspace_id, GIFT_ALLOCATIONS).stream()
        ]

    def create_allocation(self, workspace_id: str, allocation: GiftAllocation) -> str:
        ref = self._col(workspace_id, GIFT_ALLOCATIONS).document(allocation.id or None)
        ref.set(
            self._stamp(
                workspace_id,
                {
                    "giftId": allocation.gift_id,
                    "expenseId": allocation.expense_id,
                    "amount": allocation.amount,
                },
            )
        )
        return ref.id

    def delete_allocation(self, workspace_id: str, allocation_id: str) -> bool:
        ref = self._col(workspace_id, GIFT_ALLOCATIONS).document(allocation_id)
        if not ref.get().exists:
            return False
        ref.delete()
        return True

    # ── カテゴリ・設定 ────────────────────────────────────────────────────────

    def list_categories(self, workspace_id: str) -> list[CustomCategory]:
        categories = [
            CustomCategory(
                id=snap.id,
                name=snap.to_dict().get("name", ""),
                created_at=as_datetime(snap.to_dict().get("createdAt")),
            )
            for snap in self._col(workspace_id, CUSTOM_CATEGORIES).stream()
        ]
        return sorted(categories, key=lambda c: c.name.lower())

    def create_category(self, workspace_id: str, name: str) -> str:
        ref = self._col(workspace_id, CUSTOM_CATEGORIES).document()
        ref.set(self._stamp(workspace_id, {"name": name}))
        return ref.id

    def delete_category(self, workspace_id: str, category_id: str) -> bool:
        ref = self._col(workspace_id, CUSTOM_CATEGORIES).document(category_id)
        if not ref.get().exists:
            return False
        ref.delete()
        return True

    def get_settings(self, workspace_id: str) -> Settings:
        snap = self._col(workspace_id, SETTINGS).document(SETTINGS_DOC_ID).get()
        if not snap.exists:
            return Settings()
        data = snap.to_dict() or {}
        budget = data.get("totalBudget")
        return Settings(
            currency=data.get("currency") or "USD",
            wedding_date=data.get("weddingDate") or None,
            total_budget=float(budget) if budget is not None else None,
        )

    def update_settings(self, workspace_id: str, fields: dict[str, Any]) -> None:
        data = _map_fields(fields, _SETTINGS_FIELDS)
        data["workspaceId"] = workspace_id
        data["updatedAt"] = firestore.SERVER_TIMESTAMP
        self._col(workspace_id, SETTINGS).document(SETTINGS_DOC_ID).set(
            data, merge=True
        )

    # ── 変更監視 ──────────────────────────────────────────────────────────────

    def watch_collection(
        self, workspace_id: str, collection: str, on_change: Callable[[], None]
    ) -> Unsubscribe:
        if collection not in FINANCE_COLLECTIONS:
            raise ValueError(f"Not a finance collection: {collection}")
        watch = self._col(workspace_id, collection).on_snapshot(
            lambda docs, changes, read_time: on_change()
        )
        return watch.unsubscribe
