"""E2E テスト用フィクスチャ

Firestore Emulator に接続し、実際の Repository とトランザクションを使ってテストする。
Firebase Auth は dependency_overrides でバイパスし、招待メールは MagicMock に送る。

前提: FIRESTORE_EMULATOR_HOST 環境変数が設定されていること
  例: FIRESTORE_EMULATOR_HOST=localhost:8080 uv run pytest tests/e2e/ -m e2e -v
"""

from __future__ import annotations

import os
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from google.cloud import firestore

from wedfin.config import AppConfig
from wedfin.entrypoints.api import deps
from wedfin.entrypoints.api.app import app
from wedfin.entrypoints.api.deps import AuthInfo
from wedfin.entrypoints.factory import create_services

OWNER = AuthInfo(uid="e2e-owner", email="owner@example.com", display_name="E2E Owner")
GUEST = AuthInfo(uid="e2e-guest", email="guest@example.com", display_name="E2E Guest")

_COLLECTIONS = [
    "workspaces",
    "workspaceMembers",
    "workspaceDeletions",
    "invitations",
    "userPreferences",
    "notifications",
    "userMigrations",
    "migrations",
]


@pytest.fixture(scope="session")
def firestore_client():
    """Firestore Emulator に接続するクライアント（セッション共有）。

    FIRESTORE_EMULATOR_HOST が未設定の場合は localhost:8080 をデフォルトとして使用する。
    """
    host = os.environ.get("FIRESTORE_EMULATOR_HOST", "localhost:8080")
    os.environ["FIRESTORE_EMULATOR_HOST"] = host
    return firestore.Client(project="test-project")


@pytest.fixture(autouse=True)
def _cleanup_firestore(firestore_client):
    """各テスト後に Emulator のデータをクリーンアップ"""
    yield
    for name in _COLLECTIONS:
        for doc in firestore_client.collection(name).stream():
            _delete_document_recursive(doc.reference)


def _delete_document_recursive(doc_ref) -> None:
    """ドキュメントとサブコレクションを再帰的に削除"""
    for subcol in doc_ref.collections():
        for doc in subcol.stream():
            _delete_document_recursive(doc.reference)
    doc_ref.delete()


class _Login:
    def __init__(self) -> None:
        self.current = OWNER


@pytest.fixture
def login():
    return _Login()


@pytest.fixture
def mailer():
    return MagicMock()


@pytest.fixture
def e2e_client(firestore_client, login, mailer):
    """認証バイパス + 実 Firestore の TestClient。

    - get_auth_info: login.current を返す（Firebase Auth をバイパス）
    - サービス群: Emulator に接続した実 Client で create_services() する
    """
    deps._services = create_services(
        AppConfig(project_id="test-project"), db=firestore_client, mailer=mailer
    )
    app.dependency_overrides[deps.get_auth_info] = lambda: login.current

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
    deps._services = None
