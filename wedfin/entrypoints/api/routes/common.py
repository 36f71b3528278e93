"""ルート間で共有するレスポンスモデルと変換関数"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from wedfin.domain.models import (
    AllocationRequest,
    Expense,
    GiftAllocation,
    GiftView,
    PaymentAllocation,
)
from wedfin.services.ledger import (
    calculate_paid_amount,
    calculate_remaining_amount,
    payment_status,
)


def reject_null(value: Any) -> Any:
    """
    PATCH で明示的に送られた null を 422 にする。

    未送信のフィールドは model_dump(exclude_unset=True) で落ちるので、
    null を許すのはクリアできるフィールド（期限日・挙式日・予算など）だけにする。
    """
    if value is None:
        raise ValueError("must not be null")
    return value


class IdResponse(BaseModel):
    id: str


class AllocationIn(BaseModel):
    expense_id: str
    amount: float = Field(gt=0)

    def to_request(self) -> AllocationRequest:
        return AllocationRequest(expense_id=self.expense_id, amount=self.amount)


class AllocationResponse(BaseModel):
    id: str
    gift_id: str
    expense_id: str
    amount: float


class GiftResponse(BaseModel):
    id: str
    amount: float
    date: str
    notes: str
    contributor_id: str | None
    from_person: str
    allocated_amount: float
    unallocated_amount: float
    allocations: list[AllocationResponse]


class PaymentResponse(BaseModel):
    id: str
    contributor_id: str
    amount: float
    date: str
    notes: str
    gift_id: str | None
    allocation_id: str | None
    is_gift_funded: bool


class ExpenseResponse(BaseModel):
    id: str
    title: str
    category: str
    total_amount: float
    due_date: str | None
    provider: str
    notes: str
    paid_amount: float
    remaining_amount: float
    status: str
    payments: list[PaymentResponse]


def allocation_response(allocation: GiftAllocation) -> AllocationResponse:
    return AllocationResponse(
        id=allocation.id,
        gift_id=allocation.gift_id,
        expense_id=allocation.expense_id,
        amount=allocation.amount,
    )


def gift_response(view: GiftView) -> GiftResponse:
    gift = view.gift
    return GiftResponse(
        id=gift.id,
        amount=gift.amount,
        date=gift.date,
        notes=gift.notes,
        contributor_id=gift.contributor_id,
        from_person=gift.from_person,
        allocated_amount=view.allocated_amount,
        unallocated_amount=view.unallocated_amount,
        allocations=[allocation_response(a) for a in view.allocations],
    )


def payment_response(payment: PaymentAllocation) -> PaymentResponse:
    return PaymentResponse(
        id=payment.id,
        contributor_id=payment.contributor_id,
        amount=payment.amount,
        date=payment.date,
        notes=payment.notes,
        gift_id=payment.gift_id,
        allocation_id=payment.allocation_id,
        is_gift_funded=payment.is_gift_funded,
    )


def expense_response(expense: Expense) -> ExpenseResponse:
    return ExpenseResponse(
        id=expense.id,
        title=expense.title,
        category=expense.category,
        total_amount=expense.total_amount,
        due_date=expense.due_date,
        provider=expense.provider,
        notes=expense.notes,
        paid_amount=calculate_paid_amount(expense),
        remaining_amount=calculate_remaining_amount(expense),
        status=payment_status(expense).value,
        payments=[payment_response(p) for p in expense.payment_allocations],
    )
