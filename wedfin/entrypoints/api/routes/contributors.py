"""資金提供者 API ルート

GET    /api/workspaces/{id}/contributors              → 200 [ContributorResponse]
POST   /api/workspaces/{id}/contributors              → 201 { id }
GET    /api/workspaces/{id}/contributors/{cid}        → 200 ContributorResponse
PATCH  /api/workspaces/{id}/contributors/{cid}        → 204
DELETE /api/workspaces/{id}/contributors/{cid}        → 204（贈与は from_person として残る）
POST   /api/workspaces/{id}/contributors/{cid}/gifts  → 201 { id }
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field, field_validator

from wedfin.domain.models import ContributorSummary
from wedfin.entrypoints.api.deps import (
    WorkspaceContext,
    get_wedding_service,
    get_workspace_context,
    require_editor,
)
from wedfin.entrypoints.api.routes.common import (
    AllocationIn,
    GiftResponse,
    IdResponse,
    gift_response,
    reject_null,
)
from wedfin.services.wedding_service import WeddingService

router = APIRouter(
    prefix="/workspaces/{workspace_id}/contributors", tags=["contributors"]
)


class ContributorCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    notes: str = ""


class ContributorUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    notes: str | None = None

    @field_validator("name", "notes", mode="before")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class ContributorGiftRequest(BaseModel):
    amount: float = Field(gt=0)
    date: str
    notes: str = ""
    allocations: list[AllocationIn] = []


class ContributorResponse(BaseModel):
    id: str
    name: str
    notes: str
    total_gift_amount: float
    total_paid: float
    available_balance: float
    gifts: list[GiftResponse]


def _contributor_response(summary: ContributorSummary) -> ContributorResponse:
    return ContributorResponse(
        id=summary.contributor.id,
        name=summary.contributor.name,
        notes=summary.contributor.notes,
        total_gift_amount=summary.total_gift_amount,
        total_paid=summary.total_paid,
        available_balance=summary.available_balance,
        gifts=[gift_response(g) for g in summary.gifts],
    )


@router.get("", response_model=list[ContributorResponse])
def list_contributors(
    ctx: WorkspaceContext = Depends(get_workspace_context),
    wedding: WeddingService = Depends(get_wedding_service),
) -> list[ContributorResponse]:
    return [_contributor_response(s) for s in wedding.list_contributors(ctx.workspace_id)]


@router.post("", status_code=status.HTTP_201_CREATED, response_model=IdResponse)
def create_contributor(
    body: ContributorCreateRequest,
    ctx: WorkspaceContext = Depends(require_editor),
    wedding: WeddingService = Depends(get_wedding_service),
) -> IdResponse:
    return IdResponse(id=wedding.add_contributor(ctx.workspace_id, body.name, body.notes))


@router.get("/{contributor_id}", response_model=ContributorResponse)
def get_contributor(
    contributor_id: str,
    ctx: WorkspaceContext = Depends(get_workspace_context),
    wedding: WeddingService = Depends(get_wedding_service),
) -> ContributorResponse:
    return _contributor_response(
        wedding.get_contributor_summary(ctx.workspace_id, contributor_id)
    )


@router.patch("/{contributor_id}", status_code=status.HTTP_204_NO_CONTENT)
def update_contributor(
    contributor_id: str,
    body: ContributorUpdateRequest,
    ctx: WorkspaceContext = Depends(require_editor),
    wedding: WeddingService = Depends(get_wedding_service),
) -> Response:
    wedding.update_contributor(
        ctx.workspace_id, contributor_id, body.model_dump(exclude_unset=True)
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{contributor_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_contributor(
    contributor_id: str,
    ctx: WorkspaceContext = Depends(require_editor),
    wedding: WeddingService = Depends(get_wedding_service),
) -> Response:
    wedding.delete_contributor(ctx.workspace_id, contributor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{contributor_id}/gifts",
    status_code=status.HTTP_201_CREATED,
    response_model=IdResponse,
)
def add_gift_to_contributor(
    contributor_id: str,
    body: ContributorGiftRequest,
    ctx: WorkspaceContext = Depends(require_editor),
    wedding: WeddingService = Depends(get_wedding_service),
) -> IdResponse:
    """贈与と割当を1バッチで記録する（割当合計が贈与額を超える場合は 422）"""
    gift_id = wedding.add_gift_to_contributor(
        ctx.workspace_id,
        contributor_id,
        amount=body.amount,
        date=body.date,
        notes=body.notes,
        allocations=[a.to_request() for a in body.allocations],
    )
    return IdResponse(id=gift_id)
