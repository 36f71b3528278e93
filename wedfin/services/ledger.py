"""贈与・支払いの集計ロジック

I/O を持たない純粋関数のみ。リポジトリから読み込んだ支出・贈与・割当から
以下の導出ビューを組み立てる。

- 支出ごとの支払い一覧（直接支払い + 贈与割当から合成した支払い）
- 提供者ごとの贈与一覧・贈与総額・残高
- ダッシュボード集計
"""

from __future__ import annotations

import datetime
from collections import defaultdict

from wedfin.domain.errors import ValidationError
from wedfin.domain.models import (
    AllocationRequest,
    Contributor,
    ContributorSummary,
    CustomCategory,
    DashboardStats,
    Expense,
    Gift,
    GiftAllocation,
    GiftView,
    PaymentAllocation,
    PaymentStatus,
    Settings,
    WeddingLedger,
)

# 浮動小数の比較誤差
_EPSILON = 1e-9

UPCOMING_LIMIT = 5

OVERPAYMENT = "OVERPAYMENT"
BALANCE_EXCEEDED = "BALANCE_EXCEEDED"


def calculate_paid_amount(expense: Expense) -> float:
    """支出に紐づく支払い額の合計（支払いがなければ 0）"""
    return sum(p.amount for p in expense.payment_allocations)


def calculate_remaining_amount(expense: Expense) -> float:
    """残額 = 総額 - 支払い合計。過払いの場合は負値をそのまま返す"""
    return expense.total_amount - calculate_paid_amount(expense)


def payment_status(expense: Expense) -> PaymentStatus:
    paid = calculate_paid_amount(expense)
    if paid <= 0:
        return PaymentStatus.UNPAID
    if paid + _EPSILON >= expense.total_amount:
        return PaymentStatus.PAID
    return PaymentStatus.PARTIALLY_PAID


# ── 導出ビュー ────────────────────────────────────────────────────────────────


def build_gift_views(
    gifts: list[Gift], allocations: list[GiftAllocation]
) -> list[GiftView]:
    """贈与ごとに割当をまとめる（どの贈与にも属さない割当は無視）"""
    by_gift: dict[str, list[GiftAllocation]] = defaultdict(list)
    for allocation in allocations:
        by_gift[allocation.gift_id].append(allocation)
    return [GiftView(gift=g, allocations=by_gift.get(g.id, [])) for g in gifts]


def gift_funded_payments(
    gift_views: list[GiftView],
) -> dict[str, list[PaymentAllocation]]:
    """割当1件ごとに、対象支出側の支払いを合成する（expense_id → 支払い一覧）"""
    payments: dict[str, list[PaymentAllocation]] = defaultdict(list)
    for view in gift_views:
        for allocation in view.allocations:
            payments[allocation.expense_id].append(
                PaymentAllocation(
                    id=allocation.id,
                    contributor_id=view.gift.contributor_id or "",
                    amount=allocation.amount,
                    date=view.gift.date,
                    notes=view.gift.notes,
                    gift_id=view.gift.id,
                    allocation_id=allocation.id,
                )
            )
    return payments


def apply_gift_payments(
    expenses: list[Expense], gift_views: list[GiftView]
) -> list[Expense]:
    """直接支払いに贈与由来の支払いを加えた支出ビューを返す"""
    derived = gift_funded_payments(gift_views)
    return [
        Expense(
            id=e.id,
            title=e.title,
            category=e.category,
            total_amount=e.total_amount,
            due_date=e.due_date,
            provider=e.provider,
            notes=e.notes,
            payment_allocations=e.direct_payments + derived.get(e.id, []),
            created_at=e.created_at,
            updated_at=e.updated_at,
        )
        for e in expenses
    ]


def summarize_contributors(
    contributors: list[Contributor],
    gift_views: list[GiftView],
    expenses: list[Expense],
) -> list[ContributorSummary]:
    """
    提供者ごとの贈与と支払い合計をまとめる。

    Args:
        expenses: apply_gift_payments() 適用済みの支出
    """
    gifts_by_contributor: dict[str, list[GiftView]] = defaultdict(list)
    for view in gift_views:
        if view.gift.contributor_id:
            gifts_by_contributor[view.gift.contributor_id].append(view)

    paid_by_contributor: dict[str, float] = defaultdict(float)
    for expense in expenses:
        for payment in expense.payment_allocations:
            paid_by_contributor[payment.contributor_id] += payment.amount

    return [
        ContributorSummary(
            contributor=c,
            gifts=gifts_by_contributor.get(c.id, []),
            total_paid=paid_by_contributor.get(c.id, 0.0),
        )
        for c in contributors
    ]


def build_ledger(
    workspace_id: str,
    expenses: list[Expense],
    contributors: list[Contributor],
    gifts: list[Gift],
    allocations: list[GiftAllocation],
    categories: list[CustomCategory] | None = None,
    settings: Settings | None = None,
) -> WeddingLedger:
    gift_views = build_gift_views(gifts, allocations)
    expense_views = apply_gift_payments(expenses, gift_views)
    return WeddingLedger(
        workspace_id=workspace_id,
        expenses=expense_views,
        contributors=summarize_contributors(contributors, gift_views, expense_views),
        gifts=gift_views,
        categories=categories or [],
        settings=settings or Settings(),
    )


# ── 検証 ──────────────────────────────────────────────────────────────────────


def validate_gift(amount: float, allocations: list[AllocationRequest]) -> None:
    """
    贈与額と割当の整合性を検証する。

    Raises:
        ValidationError: 金額が正でない、または割当合計が贈与額を超える場合
    """
    if amount <= 0:
        raise ValidationError("Gift amount must be positive")
    for allocation in allocations:
        if allocation.amount <= 0:
            raise ValidationError(
                f"Allocation amount must be positive: expense_id={allocation.expense_id}"
            )
    total = sum(a.amount for a in allocations)
    if total > amount + _EPSILON:
        raise ValidationError(
            f"Allocations ({total:.2f}) exceed gift amount ({amount:.2f})"
        )


def payment_warnings(
    expense: Expense,
    amount: float,
    available_balance: float | None,
    replaced_amount: float = 0.0,
) -> list[str]:
    """
    直接支払いの警告コードを返す（空なら警告なし）。

    超過自体は禁止しない。API は confirmed=true が付くまで 409 を返す。

    Args:
        expense: 贈与由来の支払いを含む支出ビュー
        amount: 新しい支払い額
        available_balance: 支払う提供者の残高（不明なら None）
        replaced_amount: 既存支払いの編集時、置き換え前の金額（残額の計算にのみ使う）
    """
    warnings: list[str] = []
    remaining = calculate_remaining_amount(expense) + replaced_amount
    if amount > remaining + _EPSILON:
        warnings.append(OVERPAYMENT)
    if available_balance is not None and amount > available_balance + _EPSILON:
        warnings.append(BALANCE_EXCEEDED)
    return warnings


# ── ダッシュボード ────────────────────────────────────────────────────────────


def dashboard_stats(ledger: WeddingLedger, today: datetime.date) -> DashboardStats:
    expenses = ledger.expenses
    total_expenses = sum(e.total_amount for e in expenses)
    total_paid = sum(calculate_paid_amount(e) for e in expenses)

    upcoming = sorted(
        (
            e
            for e in expenses
            if e.due_date
            # 旧データには時刻付き ISO 文字列が混在する
            and e.due_date[:10] > today.isoformat()
            and calculate_remaining_amount(e) > 0
        ),
        key=lambda e: e.due_date or "",
    )[:UPCOMING_LIMIT]

    by_category: dict[str, float] = defaultdict(float)
    contributor_payments: dict[str, float] = defaultdict(float)
    for expense in expenses:
        by_category[expense.category] += expense.total_amount
        for payment in expense.payment_allocations:
            if payment.contributor_id:
                contributor_payments[payment.contributor_id] += payment.amount

    return DashboardStats(
        total_expenses=total_expenses,
        total_paid=total_paid,
        total_remaining=total_expenses - total_paid,
        total_contributions=sum(view.gift.amount for view in ledger.gifts),
        upcoming_payments=upcoming,
        expenses_by_category=dict(by_category),
        contributor_payments=dict(contributor_payments),
    )
