"""ユーザー設定（選択中ワークスペース）API ルート

GET /api/preferences/current-workspace  → 200 { workspace_id }
PUT /api/preferences/current-workspace  → 200 { workspace_id }

保存値は毎回メンバー行で検証する。メンバーでなくなっていれば
所属ワークスペースの先頭に切り替える。
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from wedfin.domain.ports import UserPreferenceRepository
from wedfin.entrypoints.api.deps import (
    AuthInfo,
    get_auth_info,
    get_preference_repo,
    get_workspace_service,
)
from wedfin.services.state import WorkspaceDirectory
from wedfin.services.workspace_service import WorkspaceService

router = APIRouter(prefix="/preferences", tags=["preferences"])


class CurrentWorkspaceResponse(BaseModel):
    workspace_id: str | None


class CurrentWorkspaceRequest(BaseModel):
    workspace_id: str = Field(min_length=1)


@router.get("/current-workspace", response_model=CurrentWorkspaceResponse)
def get_current_workspace(
    auth_info: AuthInfo = Depends(get_auth_info),
    workspaces: WorkspaceService = Depends(get_workspace_service),
    preferences: UserPreferenceRepository = Depends(get_preference_repo),
) -> CurrentWorkspaceResponse:
    directory = WorkspaceDirectory(auth_info.uid, workspaces, preferences)
    return CurrentWorkspaceResponse(workspace_id=directory.resolve_current())


@router.put("/current-workspace", response_model=CurrentWorkspaceResponse)
def set_current_workspace(
    body: CurrentWorkspaceRequest,
    auth_info: AuthInfo = Depends(get_auth_info),
    workspaces: WorkspaceService = Depends(get_workspace_service),
    preferences: UserPreferenceRepository = Depends(get_preference_repo),
) -> CurrentWorkspaceResponse:
    """メンバーでないワークスペースを指定した場合は 403"""
    directory = WorkspaceDirectory(auth_info.uid, workspaces, preferences)
    directory.select(body.workspace_id)
    return CurrentWorkspaceResponse(workspace_id=body.workspace_id)
