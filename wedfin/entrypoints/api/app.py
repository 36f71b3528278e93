"""FastAPI アプリケーション

Wedding Finance Planner バックエンド API。
Cloud Run Service として動作し、Firebase Auth で認証する。

エンドポイント一覧（/api 配下）:
  POST   /workspaces
  GET    /workspaces
  GET    /workspaces/{id}
  PATCH  /workspaces/{id}
  DELETE /workspaces/{id}
  GET    /workspaces/{id}/members
  PATCH  /workspaces/{id}/members/{uid}
  DELETE /workspaces/{id}/members/{uid}
  POST   /workspaces/{id}/invitations
  GET    /workspaces/{id}/invitations
  DELETE /workspaces/{id}/invitations/{iid}
  GET    /invitations/mine
  POST   /invitations/accept
  POST   /invitations/decline
  *      /workspaces/{id}/expenses[/{eid}[/payments[/{pid}]]]
  *      /workspaces/{id}/contributors[/{cid}[/gifts]]
  *      /workspaces/{id}/gifts[/{gid}[/allocations[/{aid}]]]
  *      /workspaces/{id}/categories[/{cid}]
  GET    /workspaces/{id}/settings
  PATCH  /workspaces/{id}/settings
  GET    /workspaces/{id}/dashboard
  GET    /workspaces/{id}/export
  GET    /preferences/current-workspace
  PUT    /preferences/current-workspace
  GET    /migration/status
  POST   /migration/run
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.responses import Response

from wedfin.domain.errors import (
    AlreadyMemberError,
    ConfirmationRequiredError,
    InvitationExpiredError,
    NotFoundError,
    PermissionDeniedError,
    PlannerError,
    ValidationError,
)
from wedfin.entrypoints.api.routes import (
    categories,
    contributors,
    dashboard,
    expenses,
    gifts,
    invitations,
    migration,
    preferences,
    settings,
    workspaces,
)
from wedfin.logging_config import setup_logging

# ── ロギング初期化 ───────────────────────────────────────────────────────────
setup_logging()
logger = logging.getLogger(__name__)

# ── FastAPI アプリ ───────────────────────────────────────────────────────────
app = FastAPI(
    title="Wedding Finance Planner API",
    description="結婚式の費用・贈与を共同管理するワークスペースのバックエンド API",
    version="1.0.0",
)

# ── ドメイン例外 → HTTP ステータス ────────────────────────────────────────────
# 上から順に isinstance で判定する
_STATUS_BY_ERROR: list[tuple[type[PlannerError], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (InvitationExpiredError, status.HTTP_410_GONE),
    (AlreadyMemberError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
]


@app.exception_handler(ConfirmationRequiredError)
async def _confirmation_required(
    request: Request, exc: ConfirmationRequiredError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": "CONFIRMATION_REQUIRED", "warnings": exc.codes},
    )


@app.exception_handler(PlannerError)
async def _planner_error(request: Request, exc: PlannerError) -> JSONResponse:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            logger.info(
                "Request rejected: %s %s - %s: %s",
                request.method,
                request.url.path,
                type(exc).__name__,
                exc,
            )
            return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    logger.error(
        "Unhandled domain error: %s %s - %s",
        request.method,
        request.url.path,
        exc,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# ── グローバル例外ミドルウェア ──────────────────────────────────────────────────
# 【登録順の注意】
#   add_middleware は後から登録したものが外側になる（insert(0, ...) のため）。
#   このミドルウェアを CORSMiddleware より先に登録することで内側に配置し、
#   500 レスポンスが CORSMiddleware を通過して CORS ヘッダーが付与される。
#
# スタック: ServerErrorMiddleware → CORSMiddleware → このMW → ExceptionMiddleware → Routes


@app.middleware("http")
async def _catch_unhandled_exceptions(
    request: Request, call_next: Callable[[Request], Response]
) -> Response:
    try:
        return await call_next(request)
    except Exception as exc:
        logger.error(
            "Unhandled exception: %s %s - %s",
            request.method,
            request.url.path,
            exc,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )


# ── CORS ─────────────────────────────────────────────────────────────────────
# CORS_ORIGINS 環境変数でカンマ区切りの追加オリジンを指定可能
_extra_origins = [
    o.strip() for o in os.environ.get("CORS_ORIGINS", "").split(",") if o.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_extra_origins if _extra_origins else ["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

# ── ルーター登録 ─────────────────────────────────────────────────────────────
_PREFIX = "/api"

app.include_router(workspaces.router, prefix=_PREFIX)
app.include_router(invitations.router, prefix=_PREFIX)
app.include_router(expenses.router, prefix=_PREFIX)
app.include_router(contributors.router, prefix=_PREFIX)
app.include_router(gifts.router, prefix=_PREFIX)
app.include_router(categories.router, prefix=_PREFIX)
app.include_router(settings.router, prefix=_PREFIX)
app.include_router(dashboard.router, prefix=_PREFIX)
app.include_router(preferences.router, prefix=_PREFIX)
app.include_router(migration.router, prefix=_PREFIX)


@app.get("/health")
async def health() -> dict:
    """ヘルスチェックエンドポイント（Cloud Run の起動確認用）"""
    return {"status": "ok"}


logger.info("Wedding Finance Planner API started")
