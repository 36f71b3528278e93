"""旧データ移行 API ルート

GET  /api/migration/status  → 200 { needed, legacy_weddings, migrated }
POST /api/migration/run     → 200 MigrationResultResponse（ログインユーザー自身のデータのみ）
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from wedfin.entrypoints.api.deps import AuthInfo, get_auth_info, get_migration_service
from wedfin.services.migration_service import MigrationService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/migration", tags=["migration"])


class MigrationStatusResponse(BaseModel):
    needed: bool
    legacy_weddings: int
    migrated: bool


class MigrationRunRequest(BaseModel):
    dry_run: bool = False


class MigrationResultResponse(BaseModel):
    workspace_ids: list[str]
    copied_documents: int
    skipped_documents: int
    already_migrated: bool


@router.get("/status", response_model=MigrationStatusResponse)
def get_migration_status(
    auth_info: AuthInfo = Depends(get_auth_info),
    migration: MigrationService = Depends(get_migration_service),
) -> MigrationStatusResponse:
    result = migration.check_migration_needed(auth_info.uid)
    return MigrationStatusResponse(
        needed=result.needed,
        legacy_weddings=result.legacy_weddings,
        migrated=result.migrated,
    )


@router.post("/run", response_model=MigrationResultResponse)
def run_migration(
    body: MigrationRunRequest | None = None,
    auth_info: AuthInfo = Depends(get_auth_info),
    migration: MigrationService = Depends(get_migration_service),
) -> MigrationResultResponse:
    """移行済みの場合は何もせず already_migrated=true を返す"""
    dry_run = body.dry_run if body else False
    result = migration.run_full_migration(auth_info.uid, dry_run=dry_run)
    logger.info(
        "Migration requested: uid=%s, workspaces=%d, dry_run=%s",
        auth_info.uid,
        len(result.workspace_ids),
        dry_run,
    )
    return MigrationResultResponse(
        workspace_ids=result.workspace_ids,
        copied_documents=result.copied_documents,
        skipped_documents=result.skipped_documents,
        already_migrated=result.already_migrated,
    )
