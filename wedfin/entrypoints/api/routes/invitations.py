"""招待 API ルート

POST   /api/workspaces/{id}/invitations         → 201 { invitation_id, invite_url, ... }（オーナーのみ）
GET    /api/workspaces/{id}/invitations         → 200 [InvitationResponse]（オーナーのみ）
DELETE /api/workspaces/{id}/invitations/{iid}   → 204（オーナーのみ）
GET    /api/invitations/mine                    → 200 [MyInvitationResponse]
POST   /api/invitations/accept                  → 200 { workspace_id, role }
POST   /api/invitations/decline                 → 204
"""

from __future__ import annotations

import datetime
import logging
from typing import Literal

from fastapi import APIRouter, BackgroundTasks, Depends, Response, status
from pydantic import BaseModel, Field

from wedfin.domain.models import Invitation, Role
from wedfin.domain.ports import UserPreferenceRepository
from wedfin.entrypoints.api.deps import (
    AuthInfo,
    WorkspaceContext,
    get_auth_info,
    get_invitation_service,
    get_preference_repo,
    require_owner,
)
from wedfin.services.invitation_service import InvitationService

logger = logging.getLogger(__name__)
router = APIRouter(tags=["invitations"])


# ── リクエスト / レスポンスモデル ──────────────────────────────────────────────


class InviteRequest(BaseModel):
    email: str = Field(min_length=3)
    role: Literal["editor", "viewer"] = "viewer"
    message: str = ""


class InviteResponse(BaseModel):
    invitation_id: str
    invite_url: str
    expires_at: datetime.datetime
    rotated: bool


class InvitationResponse(BaseModel):
    id: str
    workspace_id: str
    email: str
    role: str
    status: str
    invited_by: str
    invited_by_name: str
    expires_at: datetime.datetime
    created_at: datetime.datetime | None


class MyInvitationResponse(InvitationResponse):
    token: str
    message: str


class TokenRequest(BaseModel):
    token: str = Field(min_length=1)


class JoinResponse(BaseModel):
    workspace_id: str
    role: str


def _invitation_fields(invitation: Invitation) -> dict:
    return {
        "id": invitation.id,
        "workspace_id": invitation.workspace_id,
        "email": invitation.email,
        "role": invitation.role.value,
        "status": invitation.status.value,
        "invited_by": invitation.invited_by,
        "invited_by_name": invitation.invited_by_name,
        "expires_at": invitation.expires_at,
        "created_at": invitation.created_at,
    }


# ── エンドポイント ────────────────────────────────────────────────────────────────


@router.post(
    "/workspaces/{workspace_id}/invitations",
    status_code=status.HTTP_201_CREATED,
    response_model=InviteResponse,
)
def send_invitation(
    body: InviteRequest,
    background_tasks: BackgroundTasks,
    ctx: WorkspaceContext = Depends(require_owner),
    auth_info: AuthInfo = Depends(get_auth_info),
    invitations: InvitationService = Depends(get_invitation_service),
) -> InviteResponse:
    """
    メンバーを招待する（オーナーのみ）。

    同じメールアドレスへの pending 招待があればトークンを更新して再送する。
    メールはレスポンス返却後に BackgroundTasks で送信する。
    """
    sent = invitations.send_invitation(
        ctx.workspace_id,
        auth_info.to_user_ref(),
        email=body.email,
        role=Role(body.role),
        message=body.message,
    )
    background_tasks.add_task(invitations.deliver_email, sent.email)
    return InviteResponse(
        invitation_id=sent.invitation_id,
        invite_url=sent.invite_url,
        expires_at=sent.expires_at,
        rotated=sent.rotated,
    )


@router.get(
    "/workspaces/{workspace_id}/invitations",
    response_model=list[InvitationResponse],
)
def list_workspace_invitations(
    ctx: WorkspaceContext = Depends(require_owner),
    invitations: InvitationService = Depends(get_invitation_service),
) -> list[InvitationResponse]:
    """ワークスペースの招待一覧（トークンは含めない）"""
    return [
        InvitationResponse(**_invitation_fields(inv))
        for inv in invitations.list_workspace_invitations(ctx.workspace_id, ctx.uid)
    ]


@router.delete(
    "/workspaces/{workspace_id}/invitations/{invitation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def cancel_invitation(
    invitation_id: str,
    ctx: WorkspaceContext = Depends(require_owner),
    invitations: InvitationService = Depends(get_invitation_service),
) -> Response:
    invitations.cancel_invitation(invitation_id, ctx.uid)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/invitations/mine", response_model=list[MyInvitationResponse])
def list_my_invitations(
    auth_info: AuthInfo = Depends(get_auth_info),
    invitations: InvitationService = Depends(get_invitation_service),
) -> list[MyInvitationResponse]:
    """ログイン中のメールアドレス宛ての有効な招待"""
    return [
        MyInvitationResponse(
            **_invitation_fields(inv), token=inv.token, message=inv.message
        )
        for inv in invitations.list_user_invitations(auth_info.email)
    ]


@router.post("/invitations/accept", response_model=JoinResponse)
def accept_invitation(
    body: TokenRequest,
    auth_info: AuthInfo = Depends(get_auth_info),
    invitations: InvitationService = Depends(get_invitation_service),
    preferences: UserPreferenceRepository = Depends(get_preference_repo),
) -> JoinResponse:
    """
    招待トークンでワークスペースに参加し、参加先を選択中にする。

    期限切れは 410、不明・使用済みのトークンは 404 を返す。
    """
    outcome = invitations.accept_invitation(body.token, auth_info.to_user_ref())
    preferences.set_current_workspace(auth_info.uid, outcome.workspace_id)
    return JoinResponse(workspace_id=outcome.workspace_id, role=outcome.role.value)


@router.post("/invitations/decline", status_code=status.HTTP_204_NO_CONTENT)
def decline_invitation(
    body: TokenRequest,
    auth_info: AuthInfo = Depends(get_auth_info),
    invitations: InvitationService = Depends(get_invitation_service),
) -> Response:
    invitations.decline_invitation(body.token, auth_info.to_user_ref())
    return Response(status_code=status.HTTP_204_NO_CONTENT)
