"""旧データ移行サービス

旧構造（トップレベルの weddings / workspaceUsers と weddingId で紐づく
各コレクション）を、ワークスペース構造に移行する。

処理内容:
  1. weddings（userId == uid）ごとにワークスペースとオーナーのメンバー行を作成
  2. workspaceUsers（weddingId == 旧ID）をメンバー行として移行
  3. weddingId で紐づく10コレクションを workspaces/{id}/ 配下にコピー
     - categories → customCategories、settings → settings/app_settings
     - 贈与に埋め込まれた割当、提供者に埋め込まれた贈与は
       gifts / giftAllocations の個別ドキュメントに展開する
     - 支出に保存された贈与由来の支払いは割当から導出するため除去する
  4. userMigrations/{uid} に完了フラグ、userPreferences/{uid} に選択ワークスペース

注意:
  - 旧データは削除しない
  - 冪等: 完了フラグがあれば何もしない。途中で失敗した場合も再実行で再開でき、
    originalWeddingId が一致するワークスペースや、コピー済みのドキュメントはスキップする
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from google.cloud import firestore

from wedfin.domain.models import MigrationResult, member_id_for

logger = logging.getLogger(__name__)

_WEDDINGS = "weddings"
_WORKSPACE_USERS = "workspaceUsers"
_WORKSPACES = "workspaces"
_MEMBERS = "workspaceMembers"
_USER_MIGRATIONS = "userMigrations"
_PREFERENCES = "userPreferences"
_MIGRATIONS = "migrations"
_GIFTS = "gifts"
_GIFT_ALLOCATIONS = "giftAllocations"
_SETTINGS_DOC_ID = "app_settings"

# 旧コレクション名 → workspaces/{id}/ 配下のサブコレクション名
LEGACY_COLLECTIONS = {
    "expenses": "expenses",
    "gifts": "gifts",
    "contributors": "contributors",
    "categories": "customCategories",
    "settings": "settings",
    "notes": "notes",
    "tasks": "tasks",
    "vendors": "vendors",
    "guestList": "guestList",
    "budgetItems": "budgetItems",
}

# Firestore バッチの上限（500）より余裕を持たせる
_BATCH_LIMIT = 400

_VALID_ROLES = {"editor", "viewer"}


@dataclass(frozen=True)
class MigrationStatus:
    needed: bool
    legacy_weddings: int
    migrated: bool


def resolve_couple_names(wedding: dict[str, Any]) -> str:
    """coupleNames → person1 & person2 → weddingName → "Wedding" の順で決める"""
    couple_names = (wedding.get("coupleNames") or "").strip()
    if couple_names and couple_names != "Wedding":
        return couple_names
    person1 = (wedding.get("person1Name") or "").strip()
    person2 = (wedding.get("person2Name") or "").strip()
    if person1 and person2:
        return f"{person1} & {person2}"
    if person1 or person2:
        return person1 or person2
    return (wedding.get("weddingName") or "").strip() or "Wedding"


class _BatchWriter:
    """_BATCH_LIMIT 件ごとに自動コミットする WriteBatch"""

    def __init__(self, db: firestore.Client, dry_run: bool) -> None:
        self._db = db
        self._dry_run = dry_run
        self._batch = db.batch()
        self._pending = 0
        self.written = 0

    def set(self, ref: Any, data: dict[str, Any]) -> None:
        self.written += 1
        if self._dry_run:
            return
        self._batch.set(ref, data)
        self._pending += 1
        if self._pending >= _BATCH_LIMIT:
            self.commit()

    def commit(self) -> None:
        if self._pending:
            self._batch.commit()
            self._batch = self._db.batch()
            self._pending = 0


class MigrationService:
    """旧 weddings 構造からワークスペース構造への移行"""

    def __init__(self, db: firestore.Client) -> None:
        """
        Args:
            db: 初期化済みの Firestore クライアント
        """
        self._db = db

    # ── 状態確認 ──────────────────────────────────────────────────────────────

    def has_migrated(self, user_id: str) -> bool:
        snap = self._db.collection(_USER_MIGRATIONS).document(user_id).get()
        return bool(snap.exists and (snap.to_dict() or {}).get("migrated"))

    def check_migration_needed(self, user_id: str) -> MigrationStatus:
        """旧データがあり、かつ所有ワークスペースがない場合に移行が必要"""
        legacy = list(
            self._db.collection(_WEDDINGS).where("userId", "==", user_id).stream()
        )
        owned = list(
            self._db.collection(_WORKSPACES)
            .where("ownerId", "==", user_id)
            .limit(1)
            .stream()
        )
        migrated = self.has_migrated(user_id)
        return MigrationStatus(
            needed=bool(legacy) and not owned and not migrated,
            legacy_weddings=len(legacy),
            migrated=migrated,
        )

    # ── 移行 ──────────────────────────────────────────────────────────────────

    def run_full_migration(self, user_id: str, dry_run: bool = False) -> MigrationResult:
        """
        1ユーザーの全移行を実行する。

        Returns:
            MigrationResult（完了済みの場合は already_migrated=True）
        """
        if self.has_migrated(user_id):
            logger.info("SKIP uid=%s (already migrated)", user_id)
            return MigrationResult(user_id=user_id, already_migrated=True)

        pairs = self.migrate_user_data(user_id, dry_run=dry_run)
        copied = 0
        skipped = 0
        for wedding_id, workspace_id in pairs:
            c, s = self.migrate_related_data(wedding_id, workspace_id, dry_run=dry_run)
            copied += c
            skipped += s

        if not dry_run:
            self.complete_migration(user_id)
            self._db.collection(_MIGRATIONS).document().set(
                {
                    "userId": user_id,
                    "type": "wedding_to_workspace",
                    "migratedCount": len(pairs),
                    "copiedDocuments": copied,
                    "skippedDocuments": skipped,
                    "details": [
                        {"oldWeddingId": w, "newWorkspaceId": ws} for w, ws in pairs
                    ],
                    "completedAt": firestore.SERVER_TIMESTAMP,
                }
            )

        logger.info(
            "Migration finished: uid=%s, workspaces=%d, copied=%d, skipped=%d, dry_run=%s",
            user_id,
            len(pairs),
            copied,
            skipped,
            dry_run,
        )
        return MigrationResult(
            user_id=user_id,
            workspace_ids=[ws for _, ws in pairs],
            copied_documents=copied,
            skipped_documents=skipped,
        )

    def migrate_user_data(
        self, user_id: str, dry_run: bool = False
    ) -> list[tuple[str, str]]:
        """
        旧 weddings をワークスペースに移行する。

        Returns:
            (旧 wedding ID, ワークスペースID) のリスト
        """
        pairs: list[tuple[str, str]] = []
        weddings = self._db.collection(_WEDDINGS).where("userId", "==", user_id).stream()
        for wedding in weddings:
            existing = list(
                self._db.collection(_WORKSPACES)
                .where("originalWeddingId", "==", wedding.id)
                .limit(1)
                .stream()
            )
            if existing:
                logger.info(
                    "SKIP wedding=%s (workspace %s exists)", wedding.id, existing[0].id
                )
                pairs.append((wedding.id, existing[0].id))
                continue
            pairs.append(
                (wedding.id, self._create_workspace(user_id, wedding, dry_run))
            )
        return pairs

    def _create_workspace(self, user_id: str, wedding: Any, dry_run: bool) -> str:
        data = wedding.to_dict() or {}
        couple_names = resolve_couple_names(data)
        owner_name = data.get("userName", "")
        owner_email = (data.get("userEmail") or "").lower()
        workspace_ref = self._db.collection(_WORKSPACES).document()
        workspace_id = workspace_ref.id

        members: list[tuple[str, dict[str, Any]]] = []
        for row in (
            self._db.collection(_WORKSPACE_USERS)
            .where("weddingId", "==", wedding.id)
            .stream()
        ):
            row_data = row.to_dict() or {}
            member_uid = row_data.get("userId")
            if not member_uid or member_uid == user_id:
                continue
            role = row_data.get("role", "viewer")
            members.append(
                (
                    member_uid,
                    {
                        "workspaceId": workspace_id,
                        "userId": member_uid,
                        "displayName": row_data.get("displayName", ""),
                        "email": (row_data.get("email") or "").lower(),
                        "role": role if role in _VALID_ROLES else "viewer",
                        "joinedAt": row_data.get("joinedAt")
                        or firestore.SERVER_TIMESTAMP,
                        "invitedBy": user_id,
                        "originalMemberId": row.id,
                        "migratedFrom": _WORKSPACE_USERS,
                    },
                )
            )

        logger.info(
            "MIGRATE wedding=%s → workspace=%s, members=%d (dry_run=%s)",
            wedding.id,
            workspace_id,
            len(members) + 1,
            dry_run,
        )
        if dry_run:
            return workspace_id

        batch = self._db.batch()
        batch.set(
            workspace_ref,
            {
                "name": couple_names,
                "coupleNames": couple_names,
                "ownerId": user_id,
                "ownerName": owner_name,
                "ownerEmail": owner_email,
                "weddingDate": data.get("weddingDate") or data.get("date"),
                "location": data.get("location", ""),
                "membersCount": 1 + len(members),
                "pendingInvitationsCount": 0,
                "originalWeddingId": wedding.id,
                "migratedFrom": _WEDDINGS,
                "createdAt": data.get("createdAt") or firestore.SERVER_TIMESTAMP,
                "updatedAt": firestore.SERVER_TIMESTAMP,
                "migratedAt": firestore.SERVER_TIMESTAMP,
            },
        )
        batch.set(
            self._db.collection(_MEMBERS).document(member_id_for(workspace_id, user_id)),
            {
                "workspaceId": workspace_id,
                "userId": user_id,
                "displayName": owner_name,
                "email": owner_email,
                "role": "owner",
                "joinedAt": firestore.SERVER_TIMESTAMP,
            },
        )
        for member_uid, member_data in members:
            batch.set(
                self._db.collection(_MEMBERS).document(
                    member_id_for(workspace_id, member_uid)
                ),
                member_data,
            )
        batch.commit()
        return workspace_id

    def migrate_related_data(
        self, original_wedding_id: str, workspace_id: str, dry_run: bool = False
    ) -> tuple[int, int]:
        """
        weddingId で紐づくドキュメントをワークスペース配下にコピーする。

        Returns:
            (コピー件数, スキップ件数)
        """
        workspace_ref = self._db.collection(_WORKSPACES).document(workspace_id)
        writer = _BatchWriter(self._db, dry_run)
        copied = 0
        skipped = 0

        for source, target in LEGACY_COLLECTIONS.items():
            target_col = workspace_ref.collection(target)
            existing_ids = {snap.id for snap in target_col.stream()}
            snaps = (
                self._db.collection(source)
                .where("weddingId", "==", original_wedding_id)
                .stream()
            )
            for snap in snaps:
                target_id = _SETTINGS_DOC_ID if source == "settings" else snap.id
                if target_id in existing_ids:
                    skipped += 1
                    continue
                existing_ids.add(target_id)
                data = dict(snap.to_dict() or {})
                meta = {
                    "workspaceId": workspace_id,
                    "originalId": snap.id,
                    "migratedFrom": source,
                    "migratedAt": firestore.SERVER_TIMESTAMP,
                }

                if source == "expenses":
                    data["paymentAllocations"] = [
                        p
                        for p in data.get("paymentAllocations") or []
                        if not p.get("giftId")
                    ]
                elif source == "gifts":
                    allocations = data.pop("allocations", None) or []
                    self._write_allocations(
                        writer, workspace_ref, snap.id, allocations, meta
                    )
                elif source == "contributors":
                    gifts = data.pop("gifts", None) or []
                    data.pop("totalGiftAmount", None)
                    for i, gift in enumerate(gifts):
                        gift_id = gift.get("id") or f"{snap.id}_gift_{i}"
                        writer.set(
                            workspace_ref.collection(_GIFTS).document(gift_id),
                            {
                                "amount": gift.get("amount", 0),
                                "date": gift.get("date", ""),
                                "notes": gift.get("notes", ""),
                                "contributorId": snap.id,
                                "fromPerson": "",
                                **meta,
                                "originalId": gift_id,
                            },
                        )
                        self._write_allocations(
                            writer,
                            workspace_ref,
                            gift_id,
                            gift.get("allocations") or [],
                            meta,
                        )

                writer.set(target_col.document(target_id), {**data, **meta})
                copied += 1

        writer.commit()
        logger.info(
            "Copied related data: wedding=%s → workspace=%s, copied=%d, skipped=%d",
            original_wedding_id,
            workspace_id,
            copied,
            skipped,
        )
        return copied, skipped

    @staticmethod
    def _write_allocations(
        writer: _BatchWriter,
        workspace_ref: Any,
        gift_id: str,
        allocations: list[dict[str, Any]],
        meta: dict[str, Any],
    ) -> None:
        for i, allocation in enumerate(allocations):
            allocation_id = allocation.get("id") or f"{gift_id}_alloc_{i}"
            writer.set(
                workspace_ref.collection(_GIFT_ALLOCATIONS).document(allocation_id),
                {
                    "giftId": gift_id,
                    "expenseId": allocation.get("expenseId", ""),
                    "amount": allocation.get("amount", 0),
                    **meta,
                    "originalId": allocation_id,
                },
            )

    def complete_migration(self, user_id: str) -> str | None:
        """
        完了フラグを立て、最初の所有ワークスペースを選択中にする。

        Returns:
            選択したワークスペースID（所有ワークスペースがなければ None）
        """
        self._db.collection(_USER_MIGRATIONS).document(user_id).set(
            {"migrated": True, "migratedAt": firestore.SERVER_TIMESTAMP}
        )
        owned = list(
            self._db.collection(_WORKSPACES)
            .where("ownerId", "==", user_id)
            .limit(1)
            .stream()
        )
        current = owned[0].id if owned else None
        if current:
            self._db.collection(_PREFERENCES).document(user_id).set(
                {
                    "currentWorkspaceId": current,
                    "updatedAt": firestore.SERVER_TIMESTAMP,
                },
                merge=True,
            )
        logger.info("Completed migration: uid=%s, current_workspace=%s", user_id, current)
        return current
