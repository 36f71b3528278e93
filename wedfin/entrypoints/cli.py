#!/usr/bin/env python3
"""CLI Entrypoint - コマンドラインから実行

使い方:
    python -m wedfin.entrypoints.cli cleanup
    python -m wedfin.entrypoints.cli migrate --uid <uid> [--dry-run]
    python -m wedfin.entrypoints.cli watch --uid <uid>

サブコマンド:
    cleanup: 削除済みワークスペースの未完了パージ（workspaceDeletions）を再実行
    migrate: 旧 weddings 構造のデータをワークスペース構造に移行
    watch:   ユーザーのワークスペース一覧を監視し、変更のたびに出力

環境変数:
    PROJECT_ID: GCP プロジェクトID（必須）
    LOG_LEVEL: ログレベル (DEBUG, INFO, WARNING, ERROR) デフォルト: INFO
    K_SERVICE / CLOUD_RUN_JOB: Cloud Run 環境では自動設定されJSON形式ログに切替
"""

import argparse
import logging
import sys
import threading

from wedfin.entrypoints.factory import ServiceContainer, create_services
from wedfin.logging_config import log_context, setup_logging
from wedfin.services.state import WorkspaceDirectory

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wedfin", description="Wedding Finance Planner tools")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("cleanup", help="Resume pending workspace cleanups")

    migrate = sub.add_parser("migrate", help="Migrate legacy weddings of a user")
    migrate.add_argument("--uid", required=True, help="User to migrate")
    migrate.add_argument(
        "--dry-run",
        action="store_true",
        help="Run without making any changes (preview only)",
    )

    watch = sub.add_parser("watch", help="Print the workspace list on every change")
    watch.add_argument("--uid", required=True, help="User whose workspaces to watch")
    return parser


def run_cleanup(services: ServiceContainer) -> int:
    completed = services.workspaces.resume_pending_cleanups()
    pending = services.workspace_repo.list_pending_cleanups()
    logger.info("Cleanup complete: completed=%d, still_pending=%d", len(completed), len(pending))
    return 1 if pending else 0


def run_migrate(services: ServiceContainer, uid: str, dry_run: bool) -> int:
    with log_context(uid=uid, dry_run=dry_run):
        result = services.migration.run_full_migration(uid, dry_run=dry_run)
    if result.already_migrated:
        logger.info("Already migrated: uid=%s", uid)
    else:
        logger.info(
            "Migrated uid=%s: workspaces=%s copied=%d skipped=%d",
            uid,
            result.workspace_ids,
            result.copied_documents,
            result.skipped_documents,
        )
    if dry_run:
        logger.info("DRY RUN: No changes were made")
    return 0


def run_watch(services: ServiceContainer, uid: str, stop: threading.Event | None = None) -> int:
    def _print(items) -> None:
        print(f"-- {len(items)} workspace(s)")
        for d in items:
            marker = "*" if d.workspace.id == directory.current_workspace_id else " "
            print(f"{marker} {d.workspace.id}  {d.workspace.display_name}  ({d.role.value})")
        sys.stdout.flush()

    directory = WorkspaceDirectory(uid, services.workspaces, services.preference_repo, _print)
    with log_context(uid=uid):
        directory.start()
        _print(directory.workspaces)
        try:
            (stop or threading.Event()).wait()
        finally:
            directory.close()
    return 0


def main(argv: list[str] | None = None) -> None:
    """メインエントリーポイント"""
    setup_logging()
    args = _build_parser().parse_args(argv)

    try:
        services = create_services()
        if args.command == "cleanup":
            code = run_cleanup(services)
        elif args.command == "migrate":
            code = run_migrate(services, args.uid, args.dry_run)
        else:
            code = run_watch(services, args.uid)
        if code:
            sys.exit(code)

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)

    except Exception:
        logger.exception("Fatal error")
        sys.exit(1)


if __name__ == "__main__":
    main()
