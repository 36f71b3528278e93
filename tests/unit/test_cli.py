"""CLI エントリーポイントのユニットテスト"""

import threading
from unittest.mock import MagicMock, patch

import pytest

from wedfin.entrypoints import cli
from wedfin.entrypoints.factory import ServiceContainer
from wedfin.services.migration_service import MigrationService


@pytest.fixture
def services(
    db,
    workspace_repo,
    invitation_repo,
    preference_repo,
    finance_repo,
    workspace_service,
    invitation_service,
    wedding_service,
):
    """FakeFirestore 上で組み立てたサービス群"""
    return ServiceContainer(
        workspace_repo=workspace_repo,
        invitation_repo=invitation_repo,
        preference_repo=preference_repo,
        finance_repo=finance_repo,
        workspaces=workspace_service,
        invitations=invitation_service,
        wedding=wedding_service,
        migration=MigrationService(db),
    )


class TestRunCleanup:
    def test_resumes_pending_cleanups(self, db, services):
        db.seed("workspaceDeletions/ws-1", {"jobs": ["expenses"], "requestedBy": "uid-owner"})
        db.seed("workspaces/ws-1/expenses/e1", {"title": "Venue"})

        assert cli.run_cleanup(services) == 0
        assert db.paths("workspaces/ws-1/expenses") == []
        assert db.paths("workspaceDeletions") == []

    def test_nothing_pending(self, services):
        assert cli.run_cleanup(services) == 0

    def test_returns_1_when_cleanup_still_pending(self, db, services):
        db.seed("workspaceDeletions/ws-1", {"jobs": ["expenses"], "requestedBy": "uid-owner"})

        with patch.object(
            services.workspace_repo,
            "purge_collection",
            side_effect=RuntimeError("deadline exceeded"),
        ):
            assert cli.run_cleanup(services) == 1
        assert db.paths("workspaceDeletions") == ["workspaceDeletions/ws-1"]


class TestRunMigrate:
    def test_migrates_user(self, db, services):
        db.seed("weddings/w1", {"userId": "uid-owner", "coupleNames": "Alice & Dan"})

        assert cli.run_migrate(services, "uid-owner", dry_run=False) == 0
        assert len(db.paths("workspaces")) == 1
        assert cli.run_migrate(services, "uid-owner", dry_run=False) == 0
        assert len(db.paths("workspaces")) == 1

    def test_dry_run(self, db, services):
        db.seed("weddings/w1", {"userId": "uid-owner"})

        assert cli.run_migrate(services, "uid-owner", dry_run=True) == 0
        assert db.paths("workspaces") == []


class TestRunWatch:
    def test_prints_workspaces_and_stops(self, capsys, db, services, workspace_id):
        stop = threading.Event()
        stop.set()

        assert cli.run_watch(services, "uid-owner", stop) == 0

        out = capsys.readouterr().out
        assert "-- 1 workspace(s)" in out
        assert f"* {workspace_id}  Alice & Dan  (owner)" in out
        assert db.watch_count == 0


class TestMain:
    @pytest.fixture(autouse=True)
    def _no_logging_setup(self):
        with patch("wedfin.entrypoints.cli.setup_logging"):
            yield

    def test_cleanup_success_does_not_exit(self):
        with patch("wedfin.entrypoints.cli.create_services") as mock_create, patch(
            "wedfin.entrypoints.cli.run_cleanup", return_value=0
        ) as mock_run:
            cli.main(["cleanup"])

        mock_run.assert_called_once_with(mock_create.return_value)

    def test_nonzero_code_exits(self):
        with patch("wedfin.entrypoints.cli.create_services"), patch(
            "wedfin.entrypoints.cli.run_cleanup", return_value=1
        ):
            with pytest.raises(SystemExit) as exc_info:
                cli.main(["cleanup"])
        assert exc_info.value.code == 1

    def test_migrate_arguments(self):
        with patch("wedfin.entrypoints.cli.create_services") as mock_create, patch(
            "wedfin.entrypoints.cli.run_migrate", return_value=0
        ) as mock_run:
            cli.main(["migrate", "--uid", "uid-owner", "--dry-run"])

        mock_run.assert_called_once_with(mock_create.return_value, "uid-owner", True)

    def test_fatal_error_exits_1(self):
        with patch(
            "wedfin.entrypoints.cli.create_services",
            side_effect=ValueError("PROJECT_ID is not set in environment"),
        ):
            with pytest.raises(SystemExit) as exc_info:
                cli.main(["cleanup"])
        assert exc_info.value.code == 1

    def test_keyboard_interrupt_exits_130(self):
        with patch("wedfin.entrypoints.cli.create_services", return_value=MagicMock()), patch(
            "wedfin.entrypoints.cli.run_watch", side_effect=KeyboardInterrupt
        ):
            with pytest.raises(SystemExit) as exc_info:
                cli.main(["watch", "--uid", "uid-owner"])
        assert exc_info.value.code == 130

    def test_uid_is_required(self):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["migrate"])
        assert exc_info.value.code == 2
