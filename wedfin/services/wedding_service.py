"""家計データサービス

ワークスペース配下の支出・支払い・提供者・贈与・カテゴリ・設定の CRUD。
集計と導出ビューの組み立ては services.ledger に委譲する。
"""

from __future__ import annotations

import datetime
import logging
import re
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from wedfin.domain.errors import (
    CategoryNotFoundError,
    ConfirmationRequiredError,
    ContributorNotFoundError,
    ExpenseNotFoundError,
    GiftNotFoundError,
    NotFoundError,
    ValidationError,
)
from wedfin.domain.models import (
    AllocationRequest,
    Contributor,
    ContributorSummary,
    CustomCategory,
    DashboardStats,
    Expense,
    Gift,
    GiftAllocation,
    PaymentAllocation,
    Settings,
    WeddingLedger,
)
from wedfin.domain.ports import FinanceRepository, SpreadsheetRenderer
from wedfin.services import ledger

logger = logging.getLogger(__name__)

_CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")


def _today() -> datetime.date:
    return datetime.datetime.now(datetime.UTC).date()


@dataclass(frozen=True)
class PaymentResult:
    payment_id: str
    warnings: list[str] = field(default_factory=list)  # confirmed=True で受け入れた警告


class WeddingService:
    """
    ワークスペース単位の家計データ操作。

    全メソッドは権限チェック済みの workspace_id を受け取る前提
    （権限は API 層の WorkspaceContext で解決する）。
    """

    def __init__(
        self,
        repo: FinanceRepository,
        renderer: SpreadsheetRenderer | None = None,
        today: Callable[[], datetime.date] = _today,
    ) -> None:
        self._repo = repo
        self._renderer = renderer
        self._today = today

    # ── 読み取り ──────────────────────────────────────────────────────────────

    def load_ledger(self, workspace_id: str) -> WeddingLedger:
        """全コレクションを読み込み、導出ビューを適用した家計データを返す"""
        return ledger.build_ledger(
            workspace_id,
            expenses=self._repo.list_expenses(workspace_id),
            contributors=self._repo.list_contributors(workspace_id),
            gifts=self._repo.list_gifts(workspace_id),
            allocations=self._repo.list_allocations(workspace_id),
            categories=self._repo.list_categories(workspace_id),
            settings=self._repo.get_settings(workspace_id),
        )

    def dashboard(self, workspace_id: str) -> DashboardStats:
        return ledger.dashboard_stats(self.load_ledger(workspace_id), self._today())

    def export_workbook(self, workspace_id: str) -> tuple[str, bytes]:
        """
        スプレッドシートを生成する。

        Returns:
            (ファイル名, xlsx バイト列)
        """
        if self._renderer is None:
            raise RuntimeError("Spreadsheet renderer is not configured")
        today = self._today()
        content = self._renderer.render(self.load_ledger(workspace_id), today)
        filename = f"Wedding_Finance_Report_{today.isoformat()}.xlsx"
        logger.info(
            "Exported workbook: workspace_id=%s, bytes=%d", workspace_id, len(content)
        )
        return filename, content

    def get_expense_view(self, workspace_id: str, expense_id: str) -> Expense:
        for expense in self.load_ledger(workspace_id).expenses:
            if expense.id == expense_id:
                return expense
        raise ExpenseNotFoundError(expense_id)

    def get_contributor_summary(
        self, workspace_id: str, contributor_id: str
    ) -> ContributorSummary:
        for summary in self.load_ledger(workspace_id).contributors:
            if summary.contributor.id == contributor_id:
                return summary
        raise ContributorNotFoundError(contributor_id)

    # ── 支出 ──────────────────────────────────────────────────────────────────

    def add_expense(
        self,
        workspace_id: str,
        title: str,
        category: str,
        total_amount: float,
        due_date: str | None = None,
        provider: str = "",
        notes: str = "",
    ) -> str:
        if not title.strip():
            raise ValidationError("Expense title is required")
        if total_amount < 0:
            raise ValidationError("Expense amount must not be negative")
        expense_id = self._repo.create_expense(
            workspace_id,
            Expense(
                id="",
                title=title.strip(),
                category=category or "miscellaneous",
                total_amount=total_amount,
                due_date=due_date,
                provider=provider,
                notes=notes,
            ),
        )
        return expense_id

    def update_expense(
        self, workspace_id: str, expense_id: str, fields: dict[str, Any]
    ) -> None:
        if self._repo.get_expense(workspace_id, expense_id) is None:
            raise ExpenseNotFoundError(expense_id)
        if "total_amount" in fields and (
            fields["total_amount"] is None or fields["total_amount"] < 0
        ):
            raise ValidationError("Expense amount must not be negative")
        if "title" in fields and not (fields["title"] or "").strip():
            raise ValidationError("Expense title is required")
        if fields:
            self._repo.update_expense(workspace_id, expense_id, fields)

    def delete_expense(self, workspace_id: str, expense_id: str) -> None:
        if self._repo.get_expense(workspace_id, expense_id) is None:
            raise ExpenseNotFoundError(expense_id)
        self._repo.delete_expense(workspace_id, expense_id)

    # ── 直接支払い ────────────────────────────────────────────────────────────

    def add_payment(
        self,
        workspace_id: str,
        expense_id: str,
        contributor_id: str,
        amount: float,
        date: str,
        notes: str = "",
        confirmed: bool = False,
    ) -> PaymentResult:
        """
        支出に直接支払いを追加する。

        Raises:
            ConfirmationRequiredError: 残額または提供者残高を超え、confirmed=False の場合
        """
        if amount <= 0:
            raise ValidationError("Payment amount must be positive")
        data = self.load_ledger(workspace_id)
        expense = _find_expense(data, expense_id)
        summary = _find_contributor(data, contributor_id)

        warnings = ledger.payment_warnings(expense, amount, summary.available_balance)
        if warnings and not confirmed:
            raise ConfirmationRequiredError(warnings)

        payment = PaymentAllocation(
            id=uuid.uuid4().hex,
            contributor_id=contributor_id,
            amount=amount,
            date=date,
            notes=notes,
        )
        self._repo.set_direct_payments(
            workspace_id, expense_id, expense.direct_payments + [payment]
        )
        logger.info(
            "Added payment: workspace_id=%s, expense_id=%s, payment_id=%s, warnings=%s",
            workspace_id,
            expense_id,
            payment.id,
            warnings,
        )
        return PaymentResult(payment_id=payment.id, warnings=warnings)

    def update_payment(
        self,
        workspace_id: str,
        expense_id: str,
        payment_id: str,
        fields: dict[str, Any],
        confirmed: bool = False,
    ) -> PaymentResult:
        """直接支払いを更新する（贈与由来の支払いは割当側で編集する）"""
        unknown = set(fields) - {"contributor_id", "amount", "date", "notes"}
        if unknown:
            raise ValidationError(f"Unknown payment fields: {sorted(unknown)}")
        data = self.load_ledger(workspace_id)
        expense = _find_expense(data, expense_id)
        current = _find_payment(expense, payment_id)
        if current.is_gift_funded:
            raise ValidationError(
                "Gift-funded payments are managed through gift allocations"
            )

        updated = PaymentAllocation(
            id=current.id,
            contributor_id=fields.get("contributor_id", current.contributor_id),
            amount=fields.get("amount", current.amount),
            date=fields.get("date", current.date),
            notes=fields.get("notes", current.notes),
        )
        if updated.amount is None or updated.amount <= 0:
            raise ValidationError("Payment amount must be positive")
        summary = _find_contributor(data, updated.contributor_id)
        balance = summary.available_balance
        if updated.contributor_id == current.contributor_id:
            # 置き換え前の支払い分は同じ提供者の残高に戻る
            balance += current.amount
        warnings = ledger.payment_warnings(
            expense, updated.amount, balance, replaced_amount=current.amount
        )
        if warnings and not confirmed:
            raise ConfirmationRequiredError(warnings)

        payments = [updated if p.id == payment_id else p for p in expense.direct_payments]
        self._repo.set_direct_payments(workspace_id, expense_id, payments)
        return PaymentResult(payment_id=payment_id, warnings=warnings)

    def remove_payment(self, workspace_id: str, expense_id: str, payment_id: str) -> None:
        """支払いを削除する。贈与由来の支払いの場合は元の割当を削除する"""
        data = self.load_ledger(workspace_id)
        expense = _find_expense(data, expense_id)
        payment = _find_payment(expense, payment_id)
        if payment.is_gift_funded:
            self._repo.delete_allocation(workspace_id, payment.allocation_id or payment.id)
            logger.info(
                "Removed gift allocation via payment: workspace_id=%s, allocation_id=%s",
                workspace_id,
                payment.allocation_id,
            )
            return
        self._repo.set_direct_payments(
            workspace_id,
            expense_id,
            [p for p in expense.direct_payments if p.id != payment_id],
        )

    # ── 提供者 ────────────────────────────────────────────────────────────────

    def list_contributors(self, workspace_id: str) -> list[ContributorSummary]:
        return self.load_ledger(workspace_id).contributors

    def add_contributor(self, workspace_id: str, name: str, notes: str = "") -> str:
        if not name.strip():
            raise ValidationError("Contributor name is required")
        return self._repo.create_contributor(
            workspace_id, Contributor(id="", name=name.strip(), notes=notes)
        )

    def update_contributor(
        self, workspace_id: str, contributor_id: str, fields: dict[str, Any]
    ) -> None:
        if self._repo.get_contributor(workspace_id, contributor_id) is None:
            raise ContributorNotFoundError(contributor_id)
        if "name" in fields and not (fields["name"] or "").strip():
            raise ValidationError("Contributor name is required")
        if fields:
            self._repo.update_contributor(workspace_id, contributor_id, fields)

    def delete_contributor(self, workspace_id: str, contributor_id: str) -> None:
        if self._repo.get_contributor(workspace_id, contributor_id) is None:
            raise ContributorNotFoundError(contributor_id)
        self._repo.delete_contributor(workspace_id, contributor_id)

    # ── 贈与 ──────────────────────────────────────────────────────────────────

    def list_gifts(self, workspace_id: str):
        return self.load_ledger(workspace_id).gifts

    def add_gift(
        self,
        workspace_id: str,
        amount: float,
        date: str,
        notes: str = "",
        contributor_id: str | None = None,
        from_person: str = "",
        allocations: Iterable[AllocationRequest] = (),
    ) -> str:
        """
        贈与を記録し、指定があれば支出へ割り当てる。贈与と割当は1バッチで書き込む。

        Raises:
            ValidationError: 金額・割当が不正、または贈り主が未指定の場合
            ContributorNotFoundError / ExpenseNotFoundError: 参照先が存在しない場合
        """
        requests = list(allocations)
        ledger.validate_gift(amount, requests)
        if contributor_id is None and not from_person.strip():
            raise ValidationError("Either contributor_id or from_person is required")
        if contributor_id is not None and (
            self._repo.get_contributor(workspace_id, contributor_id) is None
        ):
            raise ContributorNotFoundError(contributor_id)

        if requests:
            expense_ids = {e.id for e in self._repo.list_expenses(workspace_id)}
            for request in requests:
                if request.expense_id not in expense_ids:
                    raise ExpenseNotFoundError(request.expense_id)

        gift = Gift(
            id="",
            amount=amount,
            date=date,
            notes=notes,
            contributor_id=contributor_id,
            from_person=from_person.strip(),
        )
        return self._repo.create_gift(
            workspace_id,
            gift,
            [
                GiftAllocation(id="", gift_id="", expense_id=r.expense_id, amount=r.amount)
                for r in requests
            ],
        )

    def add_gift_to_contributor(
        self,
        workspace_id: str,
        contributor_id: str,
        amount: float,
        date: str,
        notes: str = "",
        allocations: Iterable[AllocationRequest] = (),
    ) -> str:
        """提供者に贈与を記録する（割当も含めて全てか無か）"""
        return self.add_gift(
            workspace_id,
            amount=amount,
            date=date,
            notes=notes,
            contributor_id=contributor_id,
            allocations=allocations,
        )

    def pay_with_new_gift(
        self,
        workspace_id: str,
        expense_id: str,
        contributor_id: str,
        amount: float,
        date: str,
        notes: str = "",
    ) -> str:
        """提供者の新しい贈与として記録し、その全額を支出に充てる"""
        return self.add_gift_to_contributor(
            workspace_id,
            contributor_id,
            amount=amount,
            date=date,
            notes=notes,
            allocations=[AllocationRequest(expense_id=expense_id, amount=amount)],
        )

    def update_gift(
        self, workspace_id: str, gift_id: str, fields: dict[str, Any]
    ) -> None:
        gift = self._repo.get_gift(workspace_id, gift_id)
        if gift is None:
            raise GiftNotFoundError(gift_id)
        if "amount" in fields:
            allocated = sum(
                a.amount
                for a in self._repo.list_allocations(workspace_id)
                if a.gift_id == gift_id
            )
            if fields["amount"] is None or fields["amount"] <= 0:
                raise ValidationError("Gift amount must be positive")
            if fields["amount"] < allocated:
                raise ValidationError(
                    f"Gift amount cannot be less than allocated amount ({allocated:.2f})"
                )
        if "contributor_id" in fields and fields["contributor_id"] is None:
            # 提供者との紐づけを外す場合は自由記述の贈り主が必要
            from_person = fields.get("from_person", gift.from_person) or ""
            if not from_person.strip():
                raise ValidationError("Either contributor_id or from_person is required")
        contributor_id = fields.get("contributor_id")
        if contributor_id and self._repo.get_contributor(workspace_id, contributor_id) is None:
            raise ContributorNotFoundError(contributor_id)
        if fields:
            self._repo.update_gift(workspace_id, gift_id, fields)

    def delete_gift(self, workspace_id: str, gift_id: str) -> None:
        if self._repo.get_gift(workspace_id, gift_id) is None:
            raise GiftNotFoundError(gift_id)
        self._repo.delete_gift(workspace_id, gift_id)

    def allocate_gift(
        self, workspace_id: str, gift_id: str, expense_id: str, amount: float
    ) -> str:
        """既存の贈与の未割当分を支出に割り当てる"""
        gift = self._repo.get_gift(workspace_id, gift_id)
        if gift is None:
            raise GiftNotFoundError(gift_id)
        if self._repo.get_expense(workspace_id, expense_id) is None:
            raise ExpenseNotFoundError(expense_id)
        if amount <= 0:
            raise ValidationError("Allocation amount must be positive")
        allocated = sum(
            a.amount for a in self._repo.list_allocations(workspace_id) if a.gift_id == gift_id
        )
        if allocated + amount > gift.amount + 1e-9:
            raise ValidationError(
                f"Allocation exceeds unallocated gift amount ({gift.amount - allocated:.2f})"
            )
        return self._repo.create_allocation(
            workspace_id,
            GiftAllocation(id="", gift_id=gift_id, expense_id=expense_id, amount=amount),
        )

    def remove_allocation(self, workspace_id: str, allocation_id: str) -> None:
        if not self._repo.delete_allocation(workspace_id, allocation_id):
            raise NotFoundError(f"Gift allocation not found: {allocation_id}")

    # ── カテゴリ・設定 ────────────────────────────────────────────────────────

    def list_categories(self, workspace_id: str) -> list[CustomCategory]:
        return self._repo.list_categories(workspace_id)

    def add_category(self, workspace_id: str, name: str) -> str:
        name = name.strip()
        if not name:
            raise ValidationError("Category name is required")
        existing = {c.name.lower() for c in self._repo.list_categories(workspace_id)}
        if name.lower() in existing:
            raise ValidationError(f"Category already exists: {name}")
        return self._repo.create_category(workspace_id, name)

    def delete_category(self, workspace_id: str, category_id: str) -> None:
        if not self._repo.delete_category(workspace_id, category_id):
            raise CategoryNotFoundError(category_id)

    def get_settings(self, workspace_id: str) -> Settings:
        return self._repo.get_settings(workspace_id)

    def update_settings(self, workspace_id: str, fields: dict[str, Any]) -> Settings:
        if "currency" in fields:
            currency = str(fields["currency"]).upper()
            if not _CURRENCY_PATTERN.match(currency):
                raise ValidationError(f"Invalid currency code: {fields['currency']}")
            fields = {**fields, "currency": currency}
        budget = fields.get("total_budget")
        if budget is not None and budget < 0:
            raise ValidationError("Total budget must not be negative")
        if fields:
            self._repo.update_settings(workspace_id, fields)
        return self._repo.get_settings(workspace_id)


def _find_expense(data: WeddingLedger, expense_id: str) -> Expense:
    for expense in data.expenses:
        if expense.id == expense_id:
            return expense
    raise ExpenseNotFoundError(expense_id)


def _find_contributor(data: WeddingLedger, contributor_id: str) -> ContributorSummary:
    for summary in data.contributors:
        if summary.contributor.id == contributor_id:
            return summary
    raise ContributorNotFoundError(contributor_id)


def _find_payment(expense: Expense, payment_id: str) -> PaymentAllocation:
    for payment in expense.payment_allocations:
        if payment.id == payment_id:
            return payment
    raise NotFoundError(f"Payment not found: {payment_id}")
