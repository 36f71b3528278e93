"""FastAPI 依存性注入

Firebase Auth JWT 検証、サービス群の初期化、ワークスペース権限の解決を担当する。
各ルートは Depends() でこのモジュールの関数を呼び出して認証情報と
サービスインスタンスを受け取る。
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import firebase_admin
import firebase_admin.auth as fb_auth
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from firebase_admin import credentials as fb_creds
from google.cloud import firestore

from wedfin.config import AppConfig
from wedfin.domain.models import Role, UserRef
from wedfin.domain.ports import UserPreferenceRepository
from wedfin.entrypoints.factory import ServiceContainer, create_services
from wedfin.services.invitation_service import InvitationService
from wedfin.services.migration_service import MigrationService
from wedfin.services.wedding_service import WeddingService
from wedfin.services.workspace_service import WorkspaceService

logger = logging.getLogger(__name__)

# ── Firebase Admin 初期化（プロセス内で1回のみ） ────────────────────────────────

_firebase_app: firebase_admin.App | None = None


def _get_firebase_app() -> firebase_admin.App:
    global _firebase_app
    if _firebase_app is None:
        try:
            _firebase_app = firebase_admin.get_app()
        except ValueError:
            cred = fb_creds.ApplicationDefault()
            project_id = os.environ.get("PROJECT_ID")
            _firebase_app = firebase_admin.initialize_app(
                cred,
                options={"projectId": project_id} if project_id else {},
            )
            logger.info("Firebase Admin initialized (deps) project=%s", project_id)
    return _firebase_app


# ── 認証 ────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AuthInfo:
    """Firebase Auth JWT から取得した認証情報"""

    uid: str
    email: str
    display_name: str

    def to_user_ref(self) -> UserRef:
        return UserRef(
            user_id=self.uid,
            display_name=self.display_name or self.email or self.uid,
            email=self.email.lower(),
        )


_bearer = HTTPBearer()


async def get_auth_info(
    creds: HTTPAuthorizationCredentials = Depends(_bearer),
) -> AuthInfo:
    """
    Authorization: Bearer <id_token> ヘッダーを検証して AuthInfo を返す。

    Raises:
        HTTPException(401): トークンが無効な場合
    """
    _get_firebase_app()
    try:
        decoded = fb_auth.verify_id_token(creds.credentials)
    except Exception as e:
        logger.warning("Invalid Firebase ID token: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired Firebase ID token",
        ) from e

    return AuthInfo(
        uid=decoded["uid"],
        email=decoded.get("email", ""),
        display_name=decoded.get("name", ""),
    )


# ── Firestore クライアント・サービス（シングルトン） ────────────────────────────

_firestore_client: firestore.Client | None = None
_services: ServiceContainer | None = None


def _get_firestore_client() -> firestore.Client:
    global _firestore_client
    if _firestore_client is None:
        _firestore_client = firestore.Client()
        logger.info("Firestore client initialized")
    return _firestore_client


def get_services() -> ServiceContainer:
    global _services
    if _services is None:
        _services = create_services(AppConfig.from_env(), _get_firestore_client())
    return _services


def get_workspace_service() -> WorkspaceService:
    """WorkspaceService を返す依存関数"""
    return get_services().workspaces


def get_invitation_service() -> InvitationService:
    """InvitationService を返す依存関数"""
    return get_services().invitations


def get_wedding_service() -> WeddingService:
    """WeddingService を返す依存関数"""
    return get_services().wedding


def get_preference_repo() -> UserPreferenceRepository:
    """UserPreferenceRepository を返す依存関数"""
    return get_services().preference_repo


def get_migration_service() -> MigrationService:
    """MigrationService を返す依存関数"""
    return get_services().migration


# ── ワークスペースコンテキスト ──────────────────────────────────────────────────


@dataclass(frozen=True)
class WorkspaceContext:
    """認証済みユーザーとパス上のワークスペースの関係"""

    uid: str
    workspace_id: str
    role: Role


def get_workspace_context(
    workspace_id: str,
    auth_info: AuthInfo = Depends(get_auth_info),
    workspaces: WorkspaceService = Depends(get_workspace_service),
) -> WorkspaceContext:
    """
    パスの workspace_id に対する呼び出し元のメンバー行を毎リクエスト読み直す。

    Raises:
        HTTPException(403): メンバーでない場合
    """
    member = workspaces.get_member(workspace_id, auth_info.uid)
    if member is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this workspace",
        )
    return WorkspaceContext(uid=auth_info.uid, workspace_id=workspace_id, role=member.role)


async def require_editor(
    ctx: WorkspaceContext = Depends(get_workspace_context),
) -> WorkspaceContext:
    """
    書き込み権限（owner / editor）を要求する依存関数。

    Raises:
        HTTPException(403): viewer の場合
    """
    if not ctx.role.can_edit:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Editor role is required for this operation",
        )
    return ctx


async def require_owner(
    ctx: WorkspaceContext = Depends(get_workspace_context),
) -> WorkspaceContext:
    """
    オーナー権限を要求する依存関数。

    Raises:
        HTTPException(403): ロールが owner でない場合
    """
    if ctx.role is not Role.OWNER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Owner role is required for this operation",
        )
    return ctx
