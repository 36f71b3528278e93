"""旧 weddings 構造のデータをワークスペース構造に移行するスクリプト

実行方法:
    # Firestore Emulator で検証する場合
    FIRESTORE_EMULATOR_HOST=localhost:8080 python scripts/migrate_legacy_weddings.py --dry-run

    # 本番実行
    python scripts/migrate_legacy_weddings.py

    # 特定ユーザーのみ
    python scripts/migrate_legacy_weddings.py --uid <uid>

処理内容は wedfin.services.migration_service を参照。
旧データは削除しない。移行済みユーザーはスキップする（冪等）。
"""

from __future__ import annotations

import argparse
import logging

from google.cloud import firestore

from wedfin.services.migration_service import MigrationService

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
logger = logging.getLogger(__name__)

_WEDDINGS = "weddings"


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Migrate legacy weddings to workspace structure"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run without making any changes (preview only)",
    )
    parser.add_argument(
        "--uid",
        type=str,
        default=None,
        help="Migrate only this specific uid (optional)",
    )
    args = parser.parse_args()

    db = firestore.Client()
    service = MigrationService(db)

    if args.uid:
        uids = [args.uid]
    else:
        uids = sorted(
            {
                (snap.to_dict() or {}).get("userId")
                for snap in db.collection(_WEDDINGS).stream()
            }
            - {None, ""}
        )
        logger.info("Found %d users with legacy weddings", len(uids))

    migrated = 0
    skipped = 0
    errors = 0
    for uid in uids:
        try:
            result = service.run_full_migration(uid, dry_run=args.dry_run)
            if result.already_migrated:
                skipped += 1
            else:
                migrated += 1
        except Exception:
            logger.exception("Migration failed for uid=%s", uid)
            errors += 1

    logger.info(
        "Migration complete: migrated=%d, skipped=%d, errors=%d",
        migrated,
        skipped,
        errors,
    )
    if args.dry_run:
        logger.info("DRY RUN: No changes were made")


if __name__ == "__main__":
    main()
