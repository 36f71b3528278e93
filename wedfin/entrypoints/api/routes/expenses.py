"""支出・支払い API ルート

GET    /api/workspaces/{id}/expenses                         → 200 [ExpenseResponse]
POST   /api/workspaces/{id}/expenses                         → 201 { id }
GET    /api/workspaces/{id}/expenses/{eid}                   → 200 ExpenseResponse
PATCH  /api/workspaces/{id}/expenses/{eid}                   → 204
DELETE /api/workspaces/{id}/expenses/{eid}                   → 204
POST   /api/workspaces/{id}/expenses/{eid}/payments          → 201 { payment_id, warnings }
PATCH  /api/workspaces/{id}/expenses/{eid}/payments/{pid}    → 200 { payment_id, warnings }
DELETE /api/workspaces/{id}/expenses/{eid}/payments/{pid}    → 204
POST   /api/workspaces/{id}/expenses/{eid}/gift-payments     → 201 { id }（新規贈与で支払う）

支払いが残額または提供者残高を超える場合、confirmed=true がなければ
409 { detail: "CONFIRMATION_REQUIRED", warnings: [...] } を返す。
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field, field_validator

from wedfin.entrypoints.api.deps import (
    WorkspaceContext,
    get_wedding_service,
    get_workspace_context,
    require_editor,
)
from wedfin.entrypoints.api.routes.common import (
    ExpenseResponse,
    IdResponse,
    expense_response,
    reject_null,
)
from wedfin.services.wedding_service import WeddingService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/workspaces/{workspace_id}/expenses", tags=["expenses"])


# ── リクエスト / レスポンスモデル ──────────────────────────────────────────────


class ExpenseCreateRequest(BaseModel):
    title: str = Field(min_length=1)
    category: str = "miscellaneous"
    total_amount: float = Field(ge=0)
    due_date: str | None = None
    provider: str = ""
    notes: str = ""


class ExpenseUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    category: str | None = None
    total_amount: float | None = Field(default=None, ge=0)
    due_date: str | None = None
    provider: str | None = None
    notes: str | None = None

    # due_date は null で期限なしに戻せる
    @field_validator("title", "category", "total_amount", "provider", "notes", mode="before")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class PaymentCreateRequest(BaseModel):
    contributor_id: str
    amount: float = Field(gt=0)
    date: str
    notes: str = ""
    confirmed: bool = False


class PaymentUpdateRequest(BaseModel):
    contributor_id: str | None = None
    amount: float | None = Field(default=None, gt=0)
    date: str | None = None
    notes: str | None = None
    confirmed: bool = False

    @field_validator("contributor_id", "amount", "date", "notes", mode="before")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class PaymentResultResponse(BaseModel):
    payment_id: str
    warnings: list[str]


class GiftPaymentRequest(BaseModel):
    contributor_id: str
    amount: float = Field(gt=0)
    date: str
    notes: str = ""


# ── 支出 ──────────────────────────────────────────────────────────────────────


@router.get("", response_model=list[ExpenseResponse])
def list_expenses(
    ctx: WorkspaceContext = Depends(get_workspace_context),
    wedding: WeddingService = Depends(get_wedding_service),
) -> list[ExpenseResponse]:
    """贈与由来の支払いを含む支出一覧"""
    return [expense_response(e) for e in wedding.load_ledger(ctx.workspace_id).expenses]


@router.post("", status_code=status.HTTP_201_CREATED, response_model=IdResponse)
def create_expense(
    body: ExpenseCreateRequest,
    ctx: WorkspaceContext = Depends(require_editor),
    wedding: WeddingService = Depends(get_wedding_service),
) -> IdResponse:
    expense_id = wedding.add_expense(ctx.workspace_id, **body.model_dump())
    return IdResponse(id=expense_id)


@router.get("/{expense_id}", response_model=ExpenseResponse)
def get_expense(
    expense_id: str,
    ctx: WorkspaceContext = Depends(get_workspace_context),
    wedding: WeddingService = Depends(get_wedding_service),
) -> ExpenseResponse:
    return expense_response(wedding.get_expense_view(ctx.workspace_id, expense_id))


@router.patch("/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
def update_expense(
    expense_id: str,
    body: ExpenseUpdateRequest,
    ctx: WorkspaceContext = Depends(require_editor),
    wedding: WeddingService = Depends(get_wedding_service),
) -> Response:
    wedding.update_expense(ctx.workspace_id, expense_id, body.model_dump(exclude_unset=True))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_expense(
    expense_id: str,
    ctx: WorkspaceContext = Depends(require_editor),
    wedding: WeddingService = Depends(get_wedding_service),
) -> Response:
    """支出と、その支出への贈与割当を削除する"""
    wedding.delete_expense(ctx.workspace_id, expense_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── 支払い ────────────────────────────────────────────────────────────────────


@router.post(
    "/{expense_id}/payments",
    status_code=status.HTTP_201_CREATED,
    response_model=PaymentResultResponse,
)
def add_payment(
    expense_id: str,
    body: PaymentCreateRequest,
    ctx: WorkspaceContext = Depends(require_editor),
    wedding: WeddingService = Depends(get_wedding_service),
) -> PaymentResultResponse:
    result = wedding.add_payment(
        ctx.workspace_id,
        expense_id,
        contributor_id=body.contributor_id,
        amount=body.amount,
        date=body.date,
        notes=body.notes,
        confirmed=body.confirmed,
    )
    return PaymentResultResponse(payment_id=result.payment_id, warnings=result.warnings)


@router.patch("/{expense_id}/payments/{payment_id}", response_model=PaymentResultResponse)
def update_payment(
    expense_id: str,
    payment_id: str,
    body: PaymentUpdateRequest,
    ctx: WorkspaceContext = Depends(require_editor),
    wedding: WeddingService = Depends(get_wedding_service),
) -> PaymentResultResponse:
    fields = body.model_dump(exclude_unset=True, exclude={"confirmed"})
    result = wedding.update_payment(
        ctx.workspace_id, expense_id, payment_id, fields, confirmed=body.confirmed
    )
    return PaymentResultResponse(payment_id=result.payment_id, warnings=result.warnings)


@router.delete(
    "/{expense_id}/payments/{payment_id}", status_code=status.HTTP_204_NO_CONTENT
)
def remove_payment(
    expense_id: str,
    payment_id: str,
    ctx: WorkspaceContext = Depends(require_editor),
    wedding: WeddingService = Depends(get_wedding_service),
) -> Response:
    """支払いを削除する。贈与由来の支払いは元の割当を削除する"""
    wedding.remove_payment(ctx.workspace_id, expense_id, payment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{expense_id}/gift-payments",
    status_code=status.HTTP_201_CREATED,
    response_model=IdResponse,
)
def pay_with_new_gift(
    expense_id: str,
    body: GiftPaymentRequest,
    ctx: WorkspaceContext = Depends(require_editor),
    wedding: WeddingService = Depends(get_wedding_service),
) -> IdResponse:
    """提供者の新しい贈与として記録し、全額をこの支出に割り当てる"""
    gift_id = wedding.pay_with_new_gift(
        ctx.workspace_id,
        expense_id,
        contributor_id=body.contributor_id,
        amount=body.amount,
        date=body.date,
        notes=body.notes,
    )
    return IdResponse(id=gift_id)
