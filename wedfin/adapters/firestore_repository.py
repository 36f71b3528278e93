"""Firestore Repository Adapter

WorkspaceRepository / InvitationRepository / UserPreferenceRepository の Firestore 実装。

Firestore コレクション構造:
  workspaces/{workspaceId}                      ← ワークスペース
  workspaceMembers/{workspaceId}_{userId}       ← メンバー（IDで一意性を保証）
  invitations/{invitationId}                    ← 招待
  notifications/{notificationId}                ← ユーザー宛て通知
  userPreferences/{userId}                      ← 選択中のワークスペース
  workspaceDeletions/{workspaceId}              ← 削除後クリーンアップの outbox

フィールド名は既存スキーマに合わせて camelCase。
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any, TypeVar

from google.cloud import firestore

from wedfin.domain.models import (
    CleanupOutbox,
    Invitation,
    InvitationStatus,
    Notification,
    Role,
    UserRef,
    Workspace,
    WorkspaceMember,
    member_id_for,
)
from wedfin.domain.ports import (
    InvitationRepository,
    Unsubscribe,
    UserPreferenceRepository,
    WorkspaceRepository,
    WorkspaceTransaction,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_WORKSPACES = "workspaces"
_MEMBERS = "workspaceMembers"
_INVITATIONS = "invitations"
_NOTIFICATIONS = "notifications"
_PREFERENCES = "userPreferences"
_DELETIONS = "workspaceDeletions"

# Firestore の "in" クエリは最大30値
_IN_QUERY_LIMIT = 30

_WORKSPACE_FIELDS = {
    "name": "name",
    "couple_names": "coupleNames",
    "owner_name": "ownerName",
    "owner_email": "ownerEmail",
    "wedding_date": "weddingDate",
    "location": "location",
}

_COUNTER_FIELDS = {
    "members_count": "membersCount",
    "pending_invitations_count": "pendingInvitationsCount",
}

_INVITATION_FIELDS = {
    "status": "status",
    "token": "token",
    "role": "role",
    "message": "message",
    "expires_at": "expiresAt",
    "accepted_by": "acceptedBy",
    "accepted_at": "acceptedAt",
    "declined_by": "declinedBy",
    "declined_at": "declinedAt",
    "expired_at": "expiredAt",
    "workspace_member_id": "workspaceMemberId",
}


# ── 共通ヘルパー ──────────────────────────────────────────────────────────────


def as_datetime(value: Any) -> datetime.datetime | None:
    """Firestore Timestamp / ISO 文字列 / None を UTC の datetime に正規化する"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        result = value
    elif isinstance(value, datetime.date):
        result = datetime.datetime.combine(value, datetime.time())
    elif isinstance(value, str):
        try:
            result = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Unparseable timestamp value: %r", value)
            return None
    else:
        logger.warning("Unsupported timestamp type: %s", type(value).__name__)
        return None
    if result.tzinfo is None:
        result = result.replace(tzinfo=datetime.UTC)
    return result


def _chunks(values: list[str], size: int) -> list[list[str]]:
    return [values[i : i + size] for i in range(0, len(values), size)]


def _user_ref_to_dict(ref: UserRef) -> dict[str, str]:
    return {"userId": ref.user_id, "displayName": ref.display_name, "email": ref.email}


def _user_ref_from_dict(data: dict | None) -> UserRef | None:
    if not data:
        return None
    return UserRef(
        user_id=data.get("userId", ""),
        display_name=data.get("displayName", ""),
        email=data.get("email", ""),
    )


def _storable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UserRef):
        return _user_ref_to_dict(value)
    return value


def _map_fields(fields: dict[str, Any], mapping: dict[str, str]) -> dict[str, Any]:
    unknown = set(fields) - set(mapping)
    if unknown:
        raise KeyError(f"Unknown fields: {sorted(unknown)}")
    return {mapping[k]: _storable(v) for k, v in fields.items()}


def workspace_to_dict(workspace: Workspace) -> dict[str, Any]:
    data: dict[str, Any] = {
        "name": workspace.name,
        "coupleNames": workspace.couple_names,
        "ownerId": workspace.owner_id,
        "ownerName": workspace.owner_name,
        "ownerEmail": workspace.owner_email,
        "weddingDate": workspace.wedding_date,
        "location": workspace.location,
        "membersCount": workspace.members_count,
        "pendingInvitationsCount": workspace.pending_invitations_count,
        "createdAt": firestore.SERVER_TIMESTAMP,
        "updatedAt": firestore.SERVER_TIMESTAMP,
    }
    if workspace.original_wedding_id:
        data["originalWeddingId"] = workspace.original_wedding_id
        data["migratedFrom"] = "weddings"
    return data


def workspace_from_dict(workspace_id: str, data: dict[str, Any]) -> Workspace:
    return Workspace(
        id=workspace_id,
        name=data.get("name", ""),
        owner_id=data.get("ownerId", ""),
        owner_name=data.get("ownerName", ""),
        owner_email=data.get("ownerEmail", ""),
        couple_names=data.get("coupleNames", ""),
        wedding_date=data.get("weddingDate"),
        location=data.get("location", ""),
        members_count=int(data.get("membersCount", 1)),
        pending_invitations_count=int(data.get("pendingInvitationsCount", 0)),
        original_wedding_id=data.get("originalWeddingId"),
        created_at=as_datetime(data.get("createdAt")),
        updated_at=as_datetime(data.get("updatedAt")),
    )


def member_to_dict(member: WorkspaceMember) -> dict[str, Any]:
    data: dict[str, Any] = {
        "workspaceId": member.workspace_id,
        "userId": member.user_id,
        "role": member.role.value,
        "displayName": member.display_name,
        "email": member.email,
        "joinedAt": member.joined_at or firestore.SERVER_TIMESTAMP,
    }
    if member.invitation_id:
        data["invitationId"] = member.invitation_id
    return data


def member_from_dict(member_id: str, data: dict[str, Any]) -> WorkspaceMember:
    return WorkspaceMember(
        id=member_id,
        workspace_id=data.get("workspaceId", ""),
        user_id=data.get("userId", ""),
        role=Role(data.get("role", Role.VIEWER.value)),
        display_name=data.get("displayName", ""),
        email=data.get("email", ""),
        joined_at=as_datetime(data.get("joinedAt")),
        invitation_id=data.get("invitationId"),
    )


def invitation_to_dict(invitation: Invitation) -> dict[str, Any]:
    return {
        "workspaceId": invitation.workspace_id,
        "email": invitation.email,
        "role": invitation.role.value,
        "status": invitation.status.value,
        "token": invitation.token,
        "invitedBy": invitation.invited_by,
        "invitedByName": invitation.invited_by_name,
        "invitedByEmail": invitation.invited_by_email,
        "message": invitation.message,
        "expiresAt": invitation.expires_at,
        "createdAt": firestore.SERVER_TIMESTAMP,
    }


def invitation_from_dict(invitation_id: str, data: dict[str, Any]) -> Invitation:
    return Invitation(
        id=invitation_id,
        workspace_id=data.get("workspaceId", ""),
        email=data.get("email", ""),
        role=Role(data.get("role", Role.VIEWER.value)),
        status=InvitationStatus(data.get("status", InvitationStatus.PENDING.value)),
        token=data.get("token", ""),
        invited_by=data.get("invitedBy", ""),
        expires_at=as_datetime(data.get("expiresAt"))
        or datetime.datetime.min.replace(tzinfo=datetime.UTC),
        invited_by_name=data.get("invitedByName", ""),
        invited_by_email=data.get("invitedByEmail", ""),
        message=data.get("message", ""),
        created_at=as_datetime(data.get("createdAt")),
        accepted_by=_user_ref_from_dict(data.get("acceptedBy")),
        declined_by=_user_ref_from_dict(data.get("declinedBy")),
    )


def notification_to_dict(notification: Notification) -> dict[str, Any]:
    return {
        "userId": notification.user_id,
        "type": notification.type.value,
        "title": notification.title,
        "message": notification.message,
        "workspaceId": notification.workspace_id,
        "relatedUserId": notification.related_user_id,
        "read": False,
        "createdAt": firestore.SERVER_TIMESTAMP,
    }


def _outbox_from_dict(workspace_id: str, data: dict[str, Any]) -> CleanupOutbox:
    return CleanupOutbox(
        workspace_id=workspace_id,
        jobs=list(data.get("jobs", [])),
        requested_by=data.get("requestedBy", ""),
        created_at=as_datetime(data.get("createdAt")),
    )


# ── トランザクション ───────────────────────────────────────────────────────────


class FirestoreWorkspaceTransaction(WorkspaceTransaction):
    """firestore.Transaction を包んだ WorkspaceTransaction 実装"""

    def __init__(self, db: firestore.Client, transaction: firestore.Transaction) -> None:
        self._db = db
        self._txn = transaction

    def _workspace_ref(self, workspace_id: str):
        return self._db.collection(_WORKSPACES).document(workspace_id)

    def _member_ref(self, workspace_id: str, user_id: str):
        return self._db.collection(_MEMBERS).document(
            member_id_for(workspace_id, user_id)
        )

    def _invitation_ref(self, invitation_id: str):
        return self._db.collection(_INVITATIONS).document(invitation_id)

    # ── 読み取り ──

    def get_workspace(self, workspace_id: str) -> Workspace | None:
        snap = self._workspace_ref(workspace_id).get(transaction=self._txn)
        if not snap.exists:
            return None
        return workspace_from_dict(snap.id, snap.to_dict())

    def get_member(self, workspace_id: str, user_id: str) -> WorkspaceMember | None:
        snap = self._member_ref(workspace_id, user_id).get(transaction=self._txn)
        if not snap.exists:
            return None
        return member_from_dict(snap.id, snap.to_dict())

    def list_members(self, workspace_id: str) -> list[WorkspaceMember]:
        query = self._db.collection(_MEMBERS).where("workspaceId", "==", workspace_id)
        return [
            member_from_dict(snap.id, snap.to_dict())
            for snap in query.stream(transaction=self._txn)
        ]

    def get_invitation(self, invitation_id: str) -> Invitation | None:
        snap = self._invitation_ref(invitation_id).get(transaction=self._txn)
        if not snap.exists:
            return None
        return invitation_from_dict(snap.id, snap.to_dict())

    def find_invitation_by_token(self, token: str) -> Invitation | None:
        query = (
            self._db.collection(_INVITATIONS)
            .where("token", "==", token)
            .where("status", "==", InvitationStatus.PENDING.value)
            .limit(1)
        )
        for snap in query.stream(transaction=self._txn):
            return invitation_from_dict(snap.id, snap.to_dict())
        return None

    def find_pending_invitation(
        self, workspace_id: str, email: str
    ) -> Invitation | None:
        query = (
            self._db.collection(_INVITATIONS)
            .where("workspaceId", "==", workspace_id)
            .where("email", "==", email)
            .where("status", "==", InvitationStatus.PENDING.value)
            .limit(1)
        )
        for snap in query.stream(transaction=self._txn):
            return invitation_from_dict(snap.id, snap.to_dict())
        return None

    # ── 書き込み ──

    def create_workspace(self, workspace: Workspace) -> None:
        self._txn.set(self._workspace_ref(workspace.id), workspace_to_dict(workspace))

    def update_workspace(self, workspace_id: str, fields: dict[str, Any]) -> None:
        data = _map_fields(fields, _WORKSPACE_FIELDS)
        data["updatedAt"] = firestore.SERVER_TIMESTAMP
        self._txn.update(self._workspace_ref(workspace_id), data)

    def delete_workspace(self, workspace_id: str) -> None:
        self._txn.delete(self._workspace_ref(workspace_id))

    def adjust_counter(self, workspace_id: str, counter: str, delta: int) -> None:
        field_name = _COUNTER_FIELDS[counter]
        self._txn.update(
            self._workspace_ref(workspace_id),
            {
                field_name: firestore.Increment(delta),
                "updatedAt": firestore.SERVER_TIMESTAMP,
            },
        )

    def put_member(self, member: WorkspaceMember) -> None:
        self._txn.set(
            self._member_ref(member.workspace_id, member.user_id),
            member_to_dict(member),
        )

    def update_member_role(self, workspace_id: str, user_id: str, role: Role) -> None:
        self._txn.update(
            self._member_ref(workspace_id, user_id),
            {"role": role.value, "updatedAt": firestore.SERVER_TIMESTAMP},
        )

    def delete_member(self, workspace_id: str, user_id: str) -> None:
        self._txn.delete(self._member_ref(workspace_id, user_id))

    def create_invitation(self, invitation: Invitation) -> None:
        self._txn.set(
            self._invitation_ref(invitation.id), invitation_to_dict(invitation)
        )

    def update_invitation(self, invitation_id: str, fields: dict[str, Any]) -> None:
        data = _map_fields(fields, _INVITATION_FIELDS)
        data["updatedAt"] = firestore.SERVER_TIMESTAMP
        self._txn.update(self._invitation_ref(invitation_id), data)

    def add_notification(self, notification: Notification) -> None:
        ref = self._db.collection(_NOTIFICATIONS).document()
        self._txn.set(ref, notification_to_dict(notification))

    def put_cleanup_outbox(self, outbox: CleanupOutbox) -> None:
        ref = self._db.collection(_DELETIONS).document(outbox.workspace_id)
        self._txn.set(
            ref,
            {
                "jobs": list(outbox.jobs),
                "requestedBy": outbox.requested_by,
                "createdAt": firestore.SERVER_TIMESTAMP,
            },
        )


# ── ワークスペース ─────────────────────────────────────────────────────────────


class FirestoreWorkspaceRepository(WorkspaceRepository):
    """
    Firestore を使った WorkspaceRepository 実装。

    workspaces / workspaceMembers / workspaceDeletions を管理する。
    """

    def __init__(
        self,
        db: firestore.Client,
        transactional: Callable | None = None,
    ) -> None:
        """
        Args:
            db: 初期化済みの Firestore クライアント
            transactional: トランザクションデコレータ（テスト用に差し替え可能）
        """
        self._db = db
        self._transactional = transactional or firestore.transactional

    def new_id(self) -> str:
        return self._db.collection(_WORKSPACES).document().id

    def run_transaction(self, fn: Callable[[WorkspaceTransaction], T]) -> T:
        def _body(transaction):
            return fn(FirestoreWorkspaceTransaction(self._db, transaction))

        return self._transactional(_body)(self._db.transaction())

    def get_workspace(self, workspace_id: str) -> Workspace | None:
        snap = self._db.collection(_WORKSPACES).document(workspace_id).get()
        if not snap.exists:
            return None
        return workspace_from_dict(snap.id, snap.to_dict())

    def get_workspaces(self, workspace_ids: list[str]) -> list[Workspace]:
        if not workspace_ids:
            return []
        refs = [self._db.collection(_WORKSPACES).document(i) for i in workspace_ids]
        found = {
            snap.id: workspace_from_dict(snap.id, snap.to_dict())
            for snap in self._db.get_all(refs)
            if snap.exists
        }
        return [found[i] for i in workspace_ids if i in found]

    def list_owned_workspaces(self, user_id: str) -> list[Workspace]:
        snaps = (
            self._db.collection(_WORKSPACES).where("ownerId", "==", user_id).stream()
        )
        return [workspace_from_dict(snap.id, snap.to_dict()) for snap in snaps]

    def get_member(self, workspace_id: str, user_id: str) -> WorkspaceMember | None:
        snap = (
            self._db.collection(_MEMBERS)
            .document(member_id_for(workspace_id, user_id))
            .get()
        )
        if not snap.exists:
            return None
        return member_from_dict(snap.id, snap.to_dict())

    def list_members(self, workspace_id: str) -> list[WorkspaceMember]:
        snaps = (
            self._db.collection(_MEMBERS)
            .where("workspaceId", "==", workspace_id)
            .stream()
        )
        return [member_from_dict(snap.id, snap.to_dict()) for snap in snaps]

    def list_memberships(self, user_id: str) -> list[WorkspaceMember]:
        snaps = self._db.collection(_MEMBERS).where("userId", "==", user_id).stream()
        return [member_from_dict(snap.id, snap.to_dict()) for snap in snaps]

    def list_members_of(self, workspace_ids: list[str]) -> list[WorkspaceMember]:
        members: list[WorkspaceMember] = []
        for chunk in _chunks(workspace_ids, _IN_QUERY_LIMIT):
            snaps = (
                self._db.collection(_MEMBERS).where("workspaceId", "in", chunk).stream()
            )
            members.extend(member_from_dict(snap.id, snap.to_dict()) for snap in snaps)
        return members

    def watch_owned_workspaces(
        self, user_id: str, on_change: Callable[[], None]
    ) -> Unsubscribe:
        query = self._db.collection(_WORKSPACES).where("ownerId", "==", user_id)
        watch = query.on_snapshot(lambda docs, changes, read_time: on_change())
        return watch.unsubscribe

    def watch_memberships(
        self, user_id: str, on_change: Callable[[], None]
    ) -> Unsubscribe:
        query = self._db.collection(_MEMBERS).where("userId", "==", user_id)
        watch = query.on_snapshot(lambda docs, changes, read_time: on_change())
        return watch.unsubscribe

    # ── 削除クリーンアップ ──

    def list_pending_cleanups(self) -> list[CleanupOutbox]:
        return [
            _outbox_from_dict(snap.id, snap.to_dict())
            for snap in self._db.collection(_DELETIONS).stream()
        ]

    def get_cleanup(self, workspace_id: str) -> CleanupOutbox | None:
        snap = self._db.collection(_DELETIONS).document(workspace_id).get()
        if not snap.exists:
            return None
        return _outbox_from_dict(snap.id, snap.to_dict())

    def purge_collection(self, workspace_id: str, job: str, batch_size: int) -> int:
        if job == _INVITATIONS:
            query = self._db.collection(_INVITATIONS).where(
                "workspaceId", "==", workspace_id
            )
        else:
            query = (
                self._db.collection(_WORKSPACES).document(workspace_id).collection(job)
            )

        deleted = 0
        while True:
            snaps = list(query.limit(batch_size).stream())
            if not snaps:
                break
            batch = self._db.batch()
            for snap in snaps:
                batch.delete(snap.reference)
            batch.commit()
            deleted += len(snaps)
            if len(snaps) < batch_size:
                break

        logger.info(
            "Purged collection: workspace_id=%s, job=%s, deleted=%d",
            workspace_id,
            job,
            deleted,
        )
        return deleted

    def complete_cleanup_job(self, workspace_id: str, job: str) -> None:
        self._db.collection(_DELETIONS).document(workspace_id).update(
            {"jobs": firestore.ArrayRemove([job])}
        )

    def delete_cleanup(self, workspace_id: str) -> None:
        self._db.collection(_DELETIONS).document(workspace_id).delete()


# ── 招待 ──────────────────────────────────────────────────────────────────────


class FirestoreInvitationRepository(InvitationRepository):
    """invitations コレクションの参照系"""

    def __init__(self, db: firestore.Client) -> None:
        self._db = db

    def get(self, invitation_id: str) -> Invitation | None:
        snap = self._db.collection(_INVITATIONS).document(invitation_id).get()
        if not snap.exists:
            return None
        return invitation_from_dict(snap.id, snap.to_dict())

    def list_for_workspace(self, workspace_id: str) -> list[Invitation]:
        snaps = (
            self._db.collection(_INVITATIONS)
            .where("workspaceId", "==", workspace_id)
            .stream()
        )
        invitations = [invitation_from_dict(snap.id, snap.to_dict()) for snap in snaps]
        # 複合インデックスを避けるためクライアント側で新しい順に並べる
        _epoch = datetime.datetime.min.replace(tzinfo=datetime.UTC)
        return sorted(invitations, key=lambda i: i.created_at or _epoch, reverse=True)

    def list_pending_for_email(self, email: str) -> list[Invitation]:
        snaps = (
            self._db.collection(_INVITATIONS)
            .where("email", "==", email.strip().lower())
            .where("status", "==", InvitationStatus.PENDING.value)
            .stream()
        )
        return [invitation_from_dict(snap.id, snap.to_dict()) for snap in snaps]


# ── ユーザー設定 ───────────────────────────────────────────────────────────────


class FirestoreUserPreferenceRepository(UserPreferenceRepository):
    """userPreferences/{uid} の currentWorkspaceId を管理する"""

    def __init__(self, db: firestore.Client) -> None:
        self._db = db

    def get_current_workspace(self, user_id: str) -> str | None:
        snap = self._db.collection(_PREFERENCES).document(user_id).get()
        if not snap.exists:
            return None
        return (snap.to_dict() or {}).get("currentWorkspaceId")

    def set_current_workspace(self, user_id: str, workspace_id: str | None) -> None:
        self._db.collection(_PREFERENCES).document(user_id).set(
            {
                "currentWorkspaceId": workspace_id,
                "updatedAt": firestore.SERVER_TIMESTAMP,
            },
            merge=True,
        )
        logger.info(
            "Updated current workspace: uid=%s, workspace_id=%s", user_id, workspace_id
        )
