"""FastAPI ワークスペース・ユーザー設定・移行 API のユニットテスト

dependency_overrides で FakeFirestore 上の実サービスに差し替える（tests/conftest.py の client）。
ログインユーザーは auth.login_as() で切り替える。
"""

import inspect

import pytest
from fastapi.routing import APIRoute

from wedfin.domain.models import Role
from wedfin.entrypoints.api.app import app
from wedfin.entrypoints.api.deps import get_workspace_context


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestHandlersRunInThreadpool:
    """Firestore を同期で呼ぶハンドラがイベントループを塞がないこと"""

    def test_api_endpoints_are_sync(self):
        endpoints = [
            route.endpoint
            for route in app.routes
            if isinstance(route, APIRoute) and route.path.startswith("/api")
        ]

        assert endpoints
        coroutines = [e.__name__ for e in endpoints if inspect.iscoroutinefunction(e)]
        assert coroutines == []

    def test_membership_lookup_is_sync(self):
        assert not inspect.iscoroutinefunction(get_workspace_context)


class TestCreateWorkspace:
    """POST /api/workspaces のテスト"""

    def test_creates_and_selects_workspace(self, client, preference_repo):
        """作成者がオーナーになり、選択中ワークスペースが切り替わること"""
        response = client.post(
            "/api/workspaces",
            json={"name": "  Alice & Dan  ", "wedding_date": "2026-09-12"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Alice & Dan"
        assert data["role"] == "owner"
        assert data["owner_id"] == "uid-owner"
        assert data["members_count"] == 1
        assert data["wedding_date"] == "2026-09-12"
        assert preference_repo.get_current_workspace("uid-owner") == data["id"]

    def test_empty_name_is_rejected(self, client):
        response = client.post("/api/workspaces", json={"name": ""})
        assert response.status_code == 422


class TestListWorkspaces:
    """GET /api/workspaces のテスト"""

    def test_owner_view(self, client, shared_workspace):
        response = client.get("/api/workspaces")

        assert response.status_code == 200
        [data] = response.json()
        assert data["id"] == shared_workspace
        assert data["is_owner"] is True
        assert data["members_count"] == 3
        # 自分以外のメンバーのみ
        assert sorted(m["uid"] for m in data["members"]) == ["uid-editor", "uid-viewer"]

    def test_member_view(self, client, auth, shared_workspace, viewer):
        auth.login_as(viewer)

        [data] = client.get("/api/workspaces").json()

        assert data["is_owner"] is False
        assert data["role"] == "viewer"

    def test_no_workspaces(self, client):
        response = client.get("/api/workspaces")
        assert response.status_code == 200
        assert response.json() == []


class TestWorkspaceAccess:
    """メンバー行による権限解決のテスト"""

    def test_non_member_gets_403(self, client, auth, workspace_id, editor):
        auth.login_as(editor)

        response = client.get(f"/api/workspaces/{workspace_id}")

        assert response.status_code == 403
        assert response.json()["detail"] == "You are not a member of this workspace"

    def test_member_can_read(self, client, auth, shared_workspace, viewer):
        auth.login_as(viewer)

        response = client.get(f"/api/workspaces/{shared_workspace}")

        assert response.status_code == 200
        assert response.json()["role"] == "viewer"

    def test_removed_member_loses_access_immediately(
        self, client, auth, workspace_service, shared_workspace, editor
    ):
        """メンバー行が消えた直後のリクエストから 403 になること"""
        workspace_service.remove_member(shared_workspace, "uid-editor", "uid-owner")
        auth.login_as(editor)

        response = client.get(f"/api/workspaces/{shared_workspace}/members")

        assert response.status_code == 403


class TestUpdateWorkspace:
    """PATCH /api/workspaces/{id} のテスト"""

    def test_owner_can_update(self, client, workspace_id):
        response = client.patch(
            f"/api/workspaces/{workspace_id}", json={"location": "Kyoto"}
        )

        assert response.status_code == 200
        assert response.json()["location"] == "Kyoto"
        assert response.json()["name"] == "Alice & Dan"

    def test_null_name_is_rejected(self, client, workspace_id):
        for field in ("name", "couple_names", "location"):
            response = client.patch(f"/api/workspaces/{workspace_id}", json={field: None})
            assert response.status_code == 422, field

        assert client.get(f"/api/workspaces/{workspace_id}").json()["name"] == "Alice & Dan"

    def test_clear_wedding_date(self, client, workspace_id):
        client.patch(f"/api/workspaces/{workspace_id}", json={"wedding_date": "2026-10-10"})

        response = client.patch(
            f"/api/workspaces/{workspace_id}", json={"wedding_date": None}
        )

        assert response.status_code == 200
        assert response.json()["wedding_date"] is None

    def test_editor_cannot_update(self, client, auth, shared_workspace, editor):
        auth.login_as(editor)

        response = client.patch(
            f"/api/workspaces/{shared_workspace}", json={"name": "Hijacked"}
        )

        assert response.status_code == 403
        assert response.json()["detail"] == "Owner role is required for this operation"


class TestDeleteWorkspace:
    """DELETE /api/workspaces/{id} のテスト"""

    def test_owner_deletes_and_members_are_notified(
        self, client, db, shared_workspace
    ):
        response = client.delete(f"/api/workspaces/{shared_workspace}")

        assert response.status_code == 204
        assert db.read(f"workspaces/{shared_workspace}") is None
        assert db.paths("workspaceMembers") == []
        notified = sorted(db.read(p)["userId"] for p in db.paths("notifications"))
        assert notified == ["uid-editor", "uid-viewer"]
        assert client.get(f"/api/workspaces/{shared_workspace}").status_code == 403

    def test_editor_cannot_delete(self, client, auth, db, shared_workspace, editor):
        auth.login_as(editor)

        response = client.delete(f"/api/workspaces/{shared_workspace}")

        assert response.status_code == 403
        assert db.read(f"workspaces/{shared_workspace}") is not None


class TestMembers:
    """/api/workspaces/{id}/members のテスト"""

    def test_list_members_owner_first(self, client, auth, shared_workspace, viewer):
        auth.login_as(viewer)

        response = client.get(f"/api/workspaces/{shared_workspace}/members")

        assert response.status_code == 200
        data = response.json()
        assert [m["uid"] for m in data][0] == "uid-owner"
        assert {m["uid"]: m["role"] for m in data} == {
            "uid-owner": "owner",
            "uid-editor": "editor",
            "uid-viewer": "viewer",
        }

    def test_owner_changes_role(self, client, workspace_service, shared_workspace):
        response = client.patch(
            f"/api/workspaces/{shared_workspace}/members/uid-viewer",
            json={"role": "editor"},
        )

        assert response.status_code == 204
        assert workspace_service.get_member(shared_workspace, "uid-viewer").role is Role.EDITOR

    def test_owner_role_cannot_be_granted(self, client, shared_workspace):
        response = client.patch(
            f"/api/workspaces/{shared_workspace}/members/uid-viewer",
            json={"role": "owner"},
        )
        assert response.status_code == 422

    def test_unknown_member_is_404(self, client, shared_workspace):
        response = client.patch(
            f"/api/workspaces/{shared_workspace}/members/uid-nobody",
            json={"role": "editor"},
        )
        assert response.status_code == 404

    def test_member_can_leave(self, client, auth, db, shared_workspace, editor):
        auth.login_as(editor)

        response = client.delete(f"/api/workspaces/{shared_workspace}/members/uid-editor")

        assert response.status_code == 204
        assert db.read(f"workspaceMembers/{shared_workspace}_uid-editor") is None
        assert db.read(f"workspaces/{shared_workspace}")["membersCount"] == 2

    def test_member_cannot_remove_others(self, client, auth, shared_workspace, editor):
        auth.login_as(editor)

        response = client.delete(f"/api/workspaces/{shared_workspace}/members/uid-viewer")

        assert response.status_code == 403

    def test_owner_cannot_be_removed(self, client, shared_workspace):
        response = client.delete(f"/api/workspaces/{shared_workspace}/members/uid-owner")
        assert response.status_code == 403


class TestCurrentWorkspace:
    """/api/preferences/current-workspace のテスト"""

    def test_defaults_to_first_workspace(self, client, preference_repo, workspace_id):
        response = client.get("/api/preferences/current-workspace")

        assert response.status_code == 200
        assert response.json() == {"workspace_id": workspace_id}
        assert preference_repo.get_current_workspace("uid-owner") == workspace_id

    def test_none_without_workspaces(self, client):
        response = client.get("/api/preferences/current-workspace")
        assert response.json() == {"workspace_id": None}

    def test_select_workspace(self, client, workspace_service, owner, preference_repo):
        first = workspace_service.create_workspace(owner, name="First")
        second = workspace_service.create_workspace(owner, name="Second")
        preference_repo.set_current_workspace("uid-owner", first)

        response = client.put(
            "/api/preferences/current-workspace", json={"workspace_id": second}
        )

        assert response.status_code == 200
        assert preference_repo.get_current_workspace("uid-owner") == second

    def test_select_requires_membership(self, client, auth, workspace_id, editor):
        auth.login_as(editor)

        response = client.put(
            "/api/preferences/current-workspace", json={"workspace_id": workspace_id}
        )

        assert response.status_code == 403


class TestMigrationEndpoints:
    """/api/migration のテスト"""

    @pytest.fixture
    def legacy(self, db):
        db.seed("weddings/w1", {"userId": "uid-owner", "coupleNames": "Alice & Dan"})
        db.seed("expenses/e1", {"weddingId": "w1", "title": "Venue", "totalAmount": 500})

    def test_status(self, client, legacy):
        response = client.get("/api/migration/status")

        assert response.status_code == 200
        assert response.json() == {"needed": True, "legacy_weddings": 1, "migrated": False}

    def test_run_migrates_once(self, client, db, legacy):
        response = client.post("/api/migration/run")

        assert response.status_code == 200
        data = response.json()
        [workspace_id] = data["workspace_ids"]
        assert data["copied_documents"] == 1
        assert data["already_migrated"] is False
        assert db.read(f"workspaces/{workspace_id}/expenses/e1")["title"] == "Venue"

        again = client.post("/api/migration/run").json()
        assert again["already_migrated"] is True
        assert client.get("/api/migration/status").json()["needed"] is False

    def test_dry_run(self, client, db, legacy):
        response = client.post("/api/migration/run", json={"dry_run": True})

        assert response.status_code == 200
        assert len(response.json()["workspace_ids"]) == 1
        assert db.paths("workspaces") == []
