"""ワークスペース管理 API ルート

POST   /api/workspaces                         → 201 WorkspaceResponse
GET    /api/workspaces                         → 200 [WorkspaceSummaryResponse]
GET    /api/workspaces/{id}                    → 200 WorkspaceResponse
PATCH  /api/workspaces/{id}                    → 200 WorkspaceResponse（オーナーのみ）
DELETE /api/workspaces/{id}                    → 204（オーナーのみ）
GET    /api/workspaces/{id}/members            → 200 [MemberResponse]
PATCH  /api/workspaces/{id}/members/{uid}      → 204（オーナーのみ）
DELETE /api/workspaces/{id}/members/{uid}      → 204（オーナー、または本人の退出）
"""

from __future__ import annotations

import datetime
import logging
from typing import Literal

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field, field_validator

from wedfin.domain.models import Role, Workspace, WorkspaceMember
from wedfin.domain.ports import UserPreferenceRepository
from wedfin.entrypoints.api.deps import (
    AuthInfo,
    WorkspaceContext,
    get_auth_info,
    get_preference_repo,
    get_workspace_context,
    get_workspace_service,
    require_owner,
)
from wedfin.entrypoints.api.routes.common import reject_null
from wedfin.services.workspace_service import WorkspaceService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/workspaces", tags=["workspaces"])


# ── リクエスト / レスポンスモデル ──────────────────────────────────────────────


class WorkspaceCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    couple_names: str = ""
    wedding_date: str | None = None
    location: str = ""


class WorkspaceUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    couple_names: str | None = None
    wedding_date: str | None = None
    location: str | None = None

    # wedding_date は null で未定に戻せる
    @field_validator("name", "couple_names", "location", mode="before")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class MemberResponse(BaseModel):
    uid: str
    role: str
    display_name: str
    email: str
    joined_at: datetime.datetime | None


class WorkspaceResponse(BaseModel):
    id: str
    name: str
    display_name: str
    couple_names: str
    wedding_date: str | None
    location: str
    owner_id: str
    owner_name: str
    members_count: int
    pending_invitations_count: int
    role: str


class WorkspaceSummaryResponse(WorkspaceResponse):
    is_owner: bool
    members: list[MemberResponse]


class RoleUpdateRequest(BaseModel):
    role: Literal["editor", "viewer"]


def _member_response(member: WorkspaceMember) -> MemberResponse:
    return MemberResponse(
        uid=member.user_id,
        role=member.role.value,
        display_name=member.display_name,
        email=member.email,
        joined_at=member.joined_at,
    )


def _workspace_fields(workspace: Workspace, role: Role) -> dict:
    return {
        "id": workspace.id,
        "name": workspace.name,
        "display_name": workspace.display_name,
        "couple_names": workspace.couple_names,
        "wedding_date": workspace.wedding_date,
        "location": workspace.location,
        "owner_id": workspace.owner_id,
        "owner_name": workspace.owner_name,
        "members_count": workspace.members_count,
        "pending_invitations_count": workspace.pending_invitations_count,
        "role": role.value,
    }


# ── エンドポイント ────────────────────────────────────────────────────────────────


@router.post("", status_code=status.HTTP_201_CREATED, response_model=WorkspaceResponse)
def create_workspace(
    body: WorkspaceCreateRequest,
    auth_info: AuthInfo = Depends(get_auth_info),
    workspaces: WorkspaceService = Depends(get_workspace_service),
    preferences: UserPreferenceRepository = Depends(get_preference_repo),
) -> WorkspaceResponse:
    """ワークスペースを作成し、作成者をオーナーとして選択中にする"""
    workspace_id = workspaces.create_workspace(
        auth_info.to_user_ref(),
        name=body.name.strip(),
        couple_names=body.couple_names,
        wedding_date=body.wedding_date,
        location=body.location,
    )
    preferences.set_current_workspace(auth_info.uid, workspace_id)
    workspace = workspaces.get_workspace(workspace_id)
    return WorkspaceResponse(**_workspace_fields(workspace, Role.OWNER))


@router.get("", response_model=list[WorkspaceSummaryResponse])
def list_workspaces(
    auth_info: AuthInfo = Depends(get_auth_info),
    workspaces: WorkspaceService = Depends(get_workspace_service),
) -> list[WorkspaceSummaryResponse]:
    """所属する全ワークスペース（オーナー・メンバー両方）"""
    return [
        WorkspaceSummaryResponse(
            **_workspace_fields(d.workspace, d.role),
            is_owner=d.is_owner,
            members=[_member_response(m) for m in d.members],
        )
        for d in workspaces.get_user_workspaces(auth_info.uid)
    ]


@router.get("/{workspace_id}", response_model=WorkspaceResponse)
def get_workspace(
    ctx: WorkspaceContext = Depends(get_workspace_context),
    workspaces: WorkspaceService = Depends(get_workspace_service),
) -> WorkspaceResponse:
    workspace = workspaces.get_workspace(ctx.workspace_id)
    return WorkspaceResponse(**_workspace_fields(workspace, ctx.role))


@router.patch("/{workspace_id}", response_model=WorkspaceResponse)
def update_workspace(
    body: WorkspaceUpdateRequest,
    ctx: WorkspaceContext = Depends(require_owner),
    workspaces: WorkspaceService = Depends(get_workspace_service),
) -> WorkspaceResponse:
    workspaces.update_workspace(
        ctx.workspace_id, ctx.uid, body.model_dump(exclude_unset=True)
    )
    workspace = workspaces.get_workspace(ctx.workspace_id)
    return WorkspaceResponse(**_workspace_fields(workspace, ctx.role))


@router.delete("/{workspace_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_workspace(
    ctx: WorkspaceContext = Depends(require_owner),
    workspaces: WorkspaceService = Depends(get_workspace_service),
) -> Response:
    """
    ワークスペースを削除する（オーナーのみ）。

    他メンバーには workspace_deleted 通知が届く。
    依存データのパージが途中で失敗しても 204 を返す（CLI の cleanup で再開）。
    """
    workspaces.delete_workspace(ctx.workspace_id, ctx.uid)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{workspace_id}/members", response_model=list[MemberResponse])
def list_members(
    ctx: WorkspaceContext = Depends(get_workspace_context),
    workspaces: WorkspaceService = Depends(get_workspace_service),
) -> list[MemberResponse]:
    return [_member_response(m) for m in workspaces.list_members(ctx.workspace_id)]


@router.patch(
    "/{workspace_id}/members/{member_uid}", status_code=status.HTTP_204_NO_CONTENT
)
def update_member_role(
    member_uid: str,
    body: RoleUpdateRequest,
    ctx: WorkspaceContext = Depends(require_owner),
    workspaces: WorkspaceService = Depends(get_workspace_service),
) -> Response:
    workspaces.update_member_role(ctx.workspace_id, member_uid, Role(body.role), ctx.uid)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete(
    "/{workspace_id}/members/{member_uid}", status_code=status.HTTP_204_NO_CONTENT
)
def remove_member(
    member_uid: str,
    ctx: WorkspaceContext = Depends(get_workspace_context),
    workspaces: WorkspaceService = Depends(get_workspace_service),
) -> Response:
    """メンバーを削除する。オーナー以外は自分自身のみ（退出）"""
    workspaces.remove_member(ctx.workspace_id, member_uid, ctx.uid)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
