"""
Re-key slug-keyed post history under each post's stable article id.

Slug-keyed files are left in place. Existing id-keyed history is never
overwritten.

Usage:
    python -m content_history.tasks.migrate_history_to_ids            # Migrate
    python -m content_history.tasks.migrate_history_to_ids --dry-run  # Report only
"""
import argparse
import logging

from content_history.core.config import get_settings
from content_history.services.delta_codec import DeltaCodec
from content_history.services.document_registry import (
    DocumentRegistry,
    MarkdownDocumentRegistry,
)
from content_history.services.history_store import FileHistoryStore, HistoryStore
from content_history.services.identity_migration import (
    MigrationAction,
    MigrationReport,
    migrate_keys_to_ids,
)

logger = logging.getLogger(__name__)


def run_migration(
    store: HistoryStore | None = None,
    registry: DocumentRegistry | None = None,
    dry_run: bool = False,
) -> MigrationReport:
    """
    Entry point for the slug-to-id history migration.

    Args:
        store: History store. If None, uses the history directory from settings.
        registry: Document registry. If None, scans the drafts and published
            directories from settings.
        dry_run: If True, report decisions without writing.

    Returns:
        MigrationReport with per-file details.
    """
    settings = get_settings()
    if store is None:
        store = FileHistoryStore(
            settings.history_dir, codec=DeltaCodec(diff_timeout=settings.diff_timeout),
        )
    if registry is None:
        registry = MarkdownDocumentRegistry([settings.drafts_dir, settings.published_dir])

    logger.info("Starting history id migration (dry_run=%s)", dry_run)
    report = migrate_keys_to_ids(store, registry, dry_run=dry_run)

    prefix = "[dry-run] " if dry_run else ""
    for detail in report.details:
        target = f" -> {detail.id}" if detail.id else ""
        if detail.status == MigrationAction.MIGRATE:
            logger.info("%s- migrated: %s%s", prefix, detail.file, target)
        else:
            reason = detail.reason.value if detail.reason else "unreadable"
            logger.info(
                "%s- %s: %s (%s)%s", prefix, detail.status.value, detail.file, reason, target,
            )

    logger.info("%sHistory id migration complete: %s", prefix, report.to_dict())
    return report


def main() -> None:
    """CLI entry point with --dry-run flag."""
    parser = argparse.ArgumentParser(
        description="Move slug-keyed post history to stable article ids.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be migrated without making changes",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    run_migration(dry_run=args.dry_run)


if __name__ == "__main__":
    main()
