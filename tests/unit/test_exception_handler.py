"""グローバル例外ハンドラーのユニットテスト

未処理例外が 500 JSON レスポンスになること、かつ CORS ヘッダーが付与されることを検証する。
ドメイン例外の HTTP ステータス変換もここで確認する。
"""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from wedfin.domain.errors import (
    AlreadyMemberError,
    ConfirmationRequiredError,
    InvitationExpiredError,
    PlannerError,
    WorkspaceNotFoundError,
)
from wedfin.domain.models import Role, WorkspaceMember
from wedfin.entrypoints.api.app import app
from wedfin.entrypoints.api.deps import (
    AuthInfo,
    get_auth_info,
    get_wedding_service,
    get_workspace_service,
)
from wedfin.services.wedding_service import WeddingService
from wedfin.services.workspace_service import WorkspaceService

_UID = "test-uid"
_WORKSPACE_ID = "test-workspace-id"
_AUTH_INFO = AuthInfo(uid=_UID, email="owner@example.com", display_name="Owner")
_ORIGIN = "http://localhost:3000"


@pytest.fixture
def mock_workspaces():
    workspaces = MagicMock(spec=WorkspaceService)
    workspaces.get_member.return_value = WorkspaceMember(
        id=f"{_WORKSPACE_ID}_{_UID}",
        workspace_id=_WORKSPACE_ID,
        user_id=_UID,
        role=Role.OWNER,
    )
    return workspaces


@pytest.fixture
def mock_wedding():
    return MagicMock(spec=WeddingService)


@pytest.fixture
def client(mock_workspaces, mock_wedding):
    app.dependency_overrides[get_auth_info] = lambda: _AUTH_INFO
    app.dependency_overrides[get_workspace_service] = lambda: mock_workspaces
    app.dependency_overrides[get_wedding_service] = lambda: mock_wedding

    # raise_server_exceptions=False で 500 をレスポンスとして受け取る
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c

    app.dependency_overrides.clear()


class TestUnhandledExceptionHandler:
    """グローバル例外ハンドラーのテスト"""

    def test_500_returns_json(self, client, mock_wedding):
        """未処理例外が 500 JSON レスポンスになること"""
        mock_wedding.dashboard.side_effect = RuntimeError("Firestore index not ready")

        response = client.get(
            f"/api/workspaces/{_WORKSPACE_ID}/dashboard", headers={"Origin": _ORIGIN}
        )

        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error"}

    def test_500_has_cors_header(self, client, mock_wedding):
        """500 レスポンスに CORS ヘッダーが付与されること"""
        mock_wedding.export_workbook.side_effect = RuntimeError(
            "Spreadsheet renderer is not configured"
        )

        response = client.get(
            f"/api/workspaces/{_WORKSPACE_ID}/export", headers={"Origin": _ORIGIN}
        )

        assert response.status_code == 500
        assert "access-control-allow-origin" in response.headers

    def test_normal_request_unaffected(self, client, mock_wedding):
        """正常系リクエストが 200 を返し、既存挙動に影響がないこと"""
        mock_wedding.list_categories.return_value = []

        response = client.get(
            f"/api/workspaces/{_WORKSPACE_ID}/categories", headers={"Origin": _ORIGIN}
        )

        assert response.status_code == 200
        assert response.json() == []


class TestDomainErrorMapping:
    """ドメイン例外 → HTTP ステータスのテスト"""

    @pytest.mark.parametrize(
        "error, expected",
        [
            (WorkspaceNotFoundError(_WORKSPACE_ID), 404),
            (InvitationExpiredError("expired"), 410),
            (AlreadyMemberError("already a member"), 409),
            (PlannerError("unexpected"), 500),
        ],
    )
    def test_status(self, client, mock_wedding, error, expected):
        mock_wedding.list_categories.side_effect = error

        response = client.get(f"/api/workspaces/{_WORKSPACE_ID}/categories")

        assert response.status_code == expected

    def test_unknown_domain_error_hides_message(self, client, mock_wedding):
        mock_wedding.list_categories.side_effect = PlannerError("secret detail")

        response = client.get(f"/api/workspaces/{_WORKSPACE_ID}/categories")

        assert response.json() == {"detail": "Internal server error"}

    def test_confirmation_required(self, client, mock_wedding):
        mock_wedding.add_payment.side_effect = ConfirmationRequiredError(
            ["OVERPAYMENT", "BALANCE_EXCEEDED"]
        )

        response = client.post(
            f"/api/workspaces/{_WORKSPACE_ID}/expenses/e1/payments",
            json={"contributor_id": "c1", "amount": 10, "date": "2026-02-01"},
        )

        assert response.status_code == 409
        assert response.json() == {
            "detail": "CONFIRMATION_REQUIRED",
            "warnings": ["OVERPAYMENT", "BALANCE_EXCEEDED"],
        }
