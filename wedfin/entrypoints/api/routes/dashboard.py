"""ダッシュボード・エクスポート API ルート

GET /api/workspaces/{id}/dashboard  → 200 DashboardResponse
GET /api/workspaces/{id}/export     → 200 xlsx（Content-Disposition: attachment）
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from wedfin.entrypoints.api.deps import (
    WorkspaceContext,
    get_wedding_service,
    get_workspace_context,
)
from wedfin.entrypoints.api.routes.common import ExpenseResponse, expense_response
from wedfin.services.wedding_service import WeddingService

router = APIRouter(prefix="/workspaces/{workspace_id}", tags=["dashboard"])

_XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class DashboardResponse(BaseModel):
    total_expenses: float
    total_paid: float
    total_remaining: float
    total_contributions: float
    upcoming_payments: list[ExpenseResponse]
    expenses_by_category: dict[str, float]
    contributor_payments: dict[str, float]


@router.get("/dashboard", response_model=DashboardResponse)
def get_dashboard(
    ctx: WorkspaceContext = Depends(get_workspace_context),
    wedding: WeddingService = Depends(get_wedding_service),
) -> DashboardResponse:
    stats = wedding.dashboard(ctx.workspace_id)
    return DashboardResponse(
        total_expenses=stats.total_expenses,
        total_paid=stats.total_paid,
        total_remaining=stats.total_remaining,
        total_contributions=stats.total_contributions,
        upcoming_payments=[expense_response(e) for e in stats.upcoming_payments],
        expenses_by_category=stats.expenses_by_category,
        contributor_payments=stats.contributor_payments,
    )


@router.get("/export")
def export_workbook(
    ctx: WorkspaceContext = Depends(get_workspace_context),
    wedding: WeddingService = Depends(get_wedding_service),
) -> Response:
    filename, content = wedding.export_workbook(ctx.workspace_id)
    return Response(
        content=content,
        media_type=_XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
