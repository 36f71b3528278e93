"""贈与・割当 API ルート

GET    /api/workspaces/{id}/gifts                        → 200 [GiftResponse]
POST   /api/workspaces/{id}/gifts                        → 201 { id }
PATCH  /api/workspaces/{id}/gifts/{gid}                  → 204
DELETE /api/workspaces/{id}/gifts/{gid}                  → 204（割当も削除）
POST   /api/workspaces/{id}/gifts/{gid}/allocations      → 201 { id }
DELETE /api/workspaces/{id}/gifts/{gid}/allocations/{aid} → 204
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field, field_validator

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

router = APIRouter(prefix="/workspaces/{workspace_id}/gifts", tags=["gifts"])


class GiftCreateRequest(BaseModel):
    amount: float = Field(gt=0)
    date: str
    notes: str = ""
    contributor_id: str | None = None
    from_person: str = ""
    allocations: list[AllocationIn] = []


class GiftUpdateRequest(BaseModel):
    amount: float | None = Field(default=None, gt=0)
    date: str | None = None
    notes: str | None = None
    contributor_id: str | None = None
    from_person: str | None = None

    # contributor_id は null で提供者との紐づけを外す
    @field_validator("amount", "date", "notes", "from_person", mode="before")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


@router.get("", response_model=list[GiftResponse])
def list_gifts(
    ctx: WorkspaceContext = Depends(get_workspace_context),
    wedding: WeddingService = Depends(get_wedding_service),
) -> list[GiftResponse]:
    return [gift_response(v) for v in wedding.list_gifts(ctx.workspace_id)]


@router.post("", status_code=status.HTTP_201_CREATED, response_model=IdResponse)
def create_gift(
    body: GiftCreateRequest,
    ctx: WorkspaceContext = Depends(require_editor),
    wedding: WeddingService = Depends(get_wedding_service),
) -> IdResponse:
    """贈与と割当を1バッチで記録する"""
    gift_id = wedding.add_gift(
        ctx.workspace_id,
        amount=body.amount,
        date=body.date,
        notes=body.notes,
        contributor_id=body.contributor_id,
        from_person=body.from_person,
        allocations=[a.to_request() for a in body.allocations],
    )
    return IdResponse(id=gift_id)


@router.patch("/{gift_id}", status_code=status.HTTP_204_NO_CONTENT)
def update_gift(
    gift_id: str,
    body: GiftUpdateRequest,
    ctx: WorkspaceContext = Depends(require_editor),
    wedding: WeddingService = Depends(get_wedding_service),
) -> Response:
    wedding.update_gift(ctx.workspace_id, gift_id, body.model_dump(exclude_unset=True))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{gift_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_gift(
    gift_id: str,
    ctx: WorkspaceContext = Depends(require_editor),
    wedding: WeddingService = Depends(get_wedding_service),
) -> Response:
    wedding.delete_gift(ctx.workspace_id, gift_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{gift_id}/allocations",
    status_code=status.HTTP_201_CREATED,
    response_model=IdResponse,
)
def allocate_gift(
    gift_id: str,
    body: AllocationIn,
    ctx: WorkspaceContext = Depends(require_editor),
    wedding: WeddingService = Depends(get_wedding_service),
) -> IdResponse:
    allocation_id = wedding.allocate_gift(
        ctx.workspace_id, gift_id, body.expense_id, body.amount
    )
    return IdResponse(id=allocation_id)


@router.delete(
    "/{gift_id}/allocations/{allocation_id}", status_code=status.HTTP_204_NO_CONTENT
)
def remove_allocation(
    gift_id: str,
    allocation_id: str,
    ctx: WorkspaceContext = Depends(require_editor),
    wedding: WeddingService = Depends(get_wedding_service),
) -> Response:
    wedding.remove_allocation(ctx.workspace_id, allocation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
