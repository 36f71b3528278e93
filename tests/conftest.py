"""共通テストフィクスチャ

全テストから利用可能なテストダブルとサンプルデータを提供。

- FakeFirestore: Firestore アダプタを実際に通すためのインメモリ Firestore
- ManualTimerFactory: threading.Timer の代替。fire_all() で手動発火する
- MagicMock(spec=ABC) でポートのメソッドシグネチャを保持したモック
"""

from __future__ import annotations

import datetime
import itertools
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from tests.fake_firestore import FakeFirestore, fake_transactional
from wedfin.adapters.firestore_finance import FirestoreFinanceRepository
from wedfin.adapters.firestore_repository import (
    FirestoreInvitationRepository,
    FirestoreUserPreferenceRepository,
    FirestoreWorkspaceRepository,
)
from wedfin.adapters.xlsx_exporter import XlsxExporter
from wedfin.domain.models import Role, UserRef
from wedfin.domain.ports import (
    FinanceRepository,
    InvitationMailer,
    SpreadsheetRenderer,
    UserPreferenceRepository,
    WorkspaceRepository,
)
from wedfin.entrypoints.api.app import app
from wedfin.entrypoints.api.deps import (
    AuthInfo,
    get_auth_info,
    get_invitation_service,
    get_migration_service,
    get_preference_repo,
    get_wedding_service,
    get_workspace_service,
)
from wedfin.services.invitation_service import InvitationService
from wedfin.services.migration_service import MigrationService
from wedfin.services.wedding_service import WeddingService
from wedfin.services.workspace_service import WorkspaceService

NOW = datetime.datetime(2026, 3, 1, 12, 0, tzinfo=datetime.UTC)
TODAY = datetime.date(2026, 3, 1)
FRONTEND_URL = "https://planner.example.com"


# ========== タイマー ==========


class ManualTimer:
    """threading.Timer 互換。start() しても fire() されるまで実行しない"""

    def __init__(self, interval: float, function) -> None:
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def pending(self) -> bool:
        return self.started and not self.cancelled and not self.fired

    def fire(self) -> None:
        self.fired = True
        self.function()


class ManualTimerFactory:
    def __init__(self) -> None:
        self.timers: list[ManualTimer] = []

    def __call__(self, interval: float, function) -> ManualTimer:
        timer = ManualTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[ManualTimer]:
        return [t for t in self.timers if t.pending]

    def fire_all(self) -> int:
        """保留中のタイマーを、発火で新たに作られたものも含めて全て実行する"""
        fired = 0
        while self.pending:
            for timer in self.pending:
                timer.fire()
                fired += 1
        return fired


@pytest.fixture
def timers() -> ManualTimerFactory:
    return ManualTimerFactory()


# ========== Firestore ==========


@pytest.fixture
def db() -> FakeFirestore:
    return FakeFirestore()


@pytest.fixture
def workspace_repo(db) -> FirestoreWorkspaceRepository:
    return FirestoreWorkspaceRepository(db, transactional=fake_transactional)


@pytest.fixture
def invitation_repo(db) -> FirestoreInvitationRepository:
    return FirestoreInvitationRepository(db)


@pytest.fixture
def preference_repo(db) -> FirestoreUserPreferenceRepository:
    return FirestoreUserPreferenceRepository(db)


@pytest.fixture
def finance_repo(db) -> FirestoreFinanceRepository:
    return FirestoreFinanceRepository(db)


# ========== サンプルユーザー ==========


@pytest.fixture
def owner() -> UserRef:
    return UserRef(user_id="uid-owner", display_name="Alice", email="alice@example.com")


@pytest.fixture
def editor() -> UserRef:
    return UserRef(user_id="uid-editor", display_name="Bob", email="bob@example.com")


@pytest.fixture
def viewer() -> UserRef:
    return UserRef(user_id="uid-viewer", display_name="Carol", email="carol@example.com")


# ========== サービス ==========


@pytest.fixture
def mock_mailer() -> MagicMock:
    """InvitationMailerのモック"""
    return MagicMock(spec=InvitationMailer)


class Clock:
    """テスト中に進められる時計"""

    def __init__(self, now: datetime.datetime) -> None:
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += datetime.timedelta(**kwargs)


@pytest.fixture
def clock() -> Clock:
    return Clock(NOW)


@pytest.fixture
def workspace_service(workspace_repo, timers) -> WorkspaceService:
    return WorkspaceService(workspace_repo, timer_factory=timers)


@pytest.fixture
def invitation_service(
    workspace_repo, invitation_repo, mock_mailer, clock
) -> InvitationService:
    counter = itertools.count(1)
    return InvitationService(
        workspace_repo,
        invitation_repo,
        mock_mailer,
        frontend_base_url=FRONTEND_URL,
        clock=clock,
        token_factory=lambda: f"token-{next(counter)}",
    )


@pytest.fixture
def wedding_service(finance_repo) -> WeddingService:
    return WeddingService(finance_repo, renderer=XlsxExporter(), today=lambda: TODAY)


@pytest.fixture
def workspace_id(workspace_service, owner) -> str:
    """owner が作成した空のワークスペース"""
    return workspace_service.create_workspace(owner, name="Alice & Dan")


@pytest.fixture
def shared_workspace(workspace_service, workspace_id, editor, viewer) -> str:
    """owner / editor / viewer の3人が所属するワークスペース"""
    workspace_service.add_member(workspace_id, "uid-owner", editor, Role.EDITOR)
    workspace_service.add_member(workspace_id, "uid-owner", viewer, Role.VIEWER)
    return workspace_id


# ========== ポートのモック ==========


@pytest.fixture
def mock_workspace_repo() -> MagicMock:
    """WorkspaceRepositoryのモック"""
    return MagicMock(spec=WorkspaceRepository)


@pytest.fixture
def mock_finance_repo() -> MagicMock:
    """FinanceRepositoryのモック"""
    return MagicMock(spec=FinanceRepository)


@pytest.fixture
def mock_preference_repo() -> MagicMock:
    """UserPreferenceRepositoryのモック"""
    return MagicMock(spec=UserPreferenceRepository)


@pytest.fixture
def mock_renderer() -> MagicMock:
    """SpreadsheetRendererのモック"""
    renderer = MagicMock(spec=SpreadsheetRenderer)
    renderer.render.return_value = b"xlsx-bytes"
    return renderer


# ========== API ==========


class AuthSwitch:
    """テストクライアントのログインユーザー。login_as() で切り替える"""

    def __init__(self, user: UserRef) -> None:
        self.login_as(user)

    def login_as(self, user: UserRef) -> None:
        self.current = AuthInfo(
            uid=user.user_id, email=user.email, display_name=user.display_name
        )


@pytest.fixture
def auth(owner) -> AuthSwitch:
    return AuthSwitch(owner)


@pytest.fixture
def client(
    db, auth, workspace_service, invitation_service, wedding_service, preference_repo
):
    """FakeFirestore 上の実サービスに差し替えたテストクライアント"""
    app.dependency_overrides[get_auth_info] = lambda: auth.current
    app.dependency_overrides[get_workspace_service] = lambda: workspace_service
    app.dependency_overrides[get_invitation_service] = lambda: invitation_service
    app.dependency_overrides[get_wedding_service] = lambda: wedding_service
    app.dependency_overrides[get_preference_repo] = lambda: preference_repo
    app.dependency_overrides[get_migration_service] = lambda: MigrationService(db)

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
