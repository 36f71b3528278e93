"""カスタムカテゴリ API ルート

GET    /api/workspaces/{id}/categories         → 200 [CategoryResponse]
POST   /api/workspaces/{id}/categories         → 201 CategoryResponse
DELETE /api/workspaces/{id}/categories/{cid}   → 204
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field

from wedfin.entrypoints.api.deps import (
    WorkspaceContext,
    get_wedding_service,
    get_workspace_context,
    require_editor,
)
from wedfin.services.wedding_service import WeddingService

router = APIRouter(prefix="/workspaces/{workspace_id}/categories", tags=["categories"])


class CategoryRequest(BaseModel):
    name: str = Field(min_length=1)


class CategoryResponse(BaseModel):
    id: str
    name: str


@router.get("", response_model=list[CategoryResponse])
def list_categories(
    ctx: WorkspaceContext = Depends(get_workspace_context),
    wedding: WeddingService = Depends(get_wedding_service),
) -> list[CategoryResponse]:
    return [
        CategoryResponse(id=c.id, name=c.name)
        for c in wedding.list_categories(ctx.workspace_id)
    ]


@router.post("", status_code=status.HTTP_201_CREATED, response_model=CategoryResponse)
def create_category(
    body: CategoryRequest,
    ctx: WorkspaceContext = Depends(require_editor),
    wedding: WeddingService = Depends(get_wedding_service),
) -> CategoryResponse:
    category_id = wedding.add_category(ctx.workspace_id, body.name)
    return CategoryResponse(id=category_id, name=body.name.strip())


@router.delete("/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_category(
    category_id: str,
    ctx: WorkspaceContext = Depends(require_editor),
    wedding: WeddingService = Depends(get_wedding_service),
) -> Response:
    wedding.delete_category(ctx.workspace_id, category_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
