"""ワークスペース設定 API ルート

GET   /api/workspaces/{id}/settings  → 通貨・挙式日・総予算
PATCH /api/workspaces/{id}/settings  → 部分更新（editor 以上）
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator

from wedfin.domain.models import Settings
from wedfin.entrypoints.api.deps import (
    WorkspaceContext,
    get_wedding_service,
    get_workspace_context,
    require_editor,
)
from wedfin.entrypoints.api.routes.common import reject_null
from wedfin.services.wedding_service import WeddingService

router = APIRouter(prefix="/workspaces/{workspace_id}/settings", tags=["settings"])


class SettingsResponse(BaseModel):
    currency: str
    wedding_date: str | None
    total_budget: float | None


class SettingsUpdateRequest(BaseModel):
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    wedding_date: str | None = None
    total_budget: float | None = Field(default=None, ge=0)

    @field_validator("currency", mode="before")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


def _settings_response(settings: Settings) -> SettingsResponse:
    return SettingsResponse(
        currency=settings.currency,
        wedding_date=settings.wedding_date,
        total_budget=settings.total_budget,
    )


@router.get("", response_model=SettingsResponse)
def get_settings(
    ctx: WorkspaceContext = Depends(get_workspace_context),
    wedding: WeddingService = Depends(get_wedding_service),
) -> SettingsResponse:
    """設定を返す（未作成なら既定値 USD）"""
    return _settings_response(wedding.get_settings(ctx.workspace_id))


@router.patch("", response_model=SettingsResponse)
def update_settings(
    body: SettingsUpdateRequest,
    ctx: WorkspaceContext = Depends(require_editor),
    wedding: WeddingService = Depends(get_wedding_service),
) -> SettingsResponse:
    updated = wedding.update_settings(
        ctx.workspace_id, body.model_dump(exclude_unset=True)
    )
    return _settings_response(updated)
