"""
Convert legacy full-content history files to the delta chain format.

Each legacy file is backed up to <file>.backup before it is rewritten. Files
already in the current format, and empty legacy files, are left alone.

Usage:
    python -m content_history.tasks.migrate_history_to_delta            # Migrate
    python -m content_history.tasks.migrate_history_to_delta --dry-run  # Report only
"""
import argparse
import logging
from dataclasses import dataclass

from content_history.core.config import get_settings
from content_history.services.delta_codec import DeltaCodec, compression_stats
from content_history.services.exceptions import HistoryError
from content_history.services.history_store import FileHistoryStore

logger = logging.getLogger(__name__)


@dataclass
class DeltaMigrationStats:
    """Statistics from a legacy-to-delta migration run."""

    migrated: int = 0
    skipped: int = 0
    errors: int = 0
    size_before: int = 0
    size_after: int = 0

    @property
    def savings(self) -> str:
        """Overall storage saved across migrated files."""
        if not self.size_before:
            return "0.0%"
        return f"{(1 - self.size_after / self.size_before) * 100:.1f}%"

    def to_dict(self) -> dict[str, int | str]:
        """Convert to simple dict for logging/return."""
        return {
            "migrated": self.migrated,
            "skipped": self.skipped,
            "errors": self.errors,
            "size_before": self.size_before,
            "size_after": self.size_after,
            "savings": self.savings,
        }


def format_bytes(size: int) -> str:
    """Human-readable size, e.g. '1.5 KB'."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def migrate_history_to_delta(
    store: FileHistoryStore,
    dry_run: bool = False,
) -> DeltaMigrationStats:
    """
    Rewrite every legacy history file in the store in the delta format.

    Args:
        store: File store to migrate.
        dry_run: If True, report what would be migrated without writing.

    Returns:
        DeltaMigrationStats with counts and storage totals.
    """
    stats = DeltaMigrationStats()

    for ref in store.list_files():
        try:
            key = ref.storage_key()
            loaded = store.load(ref.document_type, key)
            if not loaded.is_legacy:
                logger.info("%s: already in delta format, skipping", ref.file)
                stats.skipped += 1
                continue
            if not loaded.legacy_entries:
                logger.info("%s: empty history, skipping", ref.file)
                stats.skipped += 1
                continue

            compression = compression_stats(loaded.legacy_entries, loaded.entries)
            stats.size_before += compression.full_size
            stats.size_after += compression.delta_size
            logger.info(
                "%s: %d versions, %s -> %s (saves %s)",
                ref.file,
                len(loaded.legacy_entries),
                format_bytes(compression.full_size),
                format_bytes(compression.delta_size),
                compression.savings,
            )

            if dry_run:
                logger.info("%s: would migrate", ref.file)
            else:
                backup_path = store.backup(ref.document_type, key)
                store.save(ref.document_type, key, loaded.entries)
                logger.info("%s: migrated (backup: %s)", ref.file, backup_path)
            stats.migrated += 1
        except HistoryError as e:
            logger.error("%s: %s", ref.file, e)
            stats.errors += 1

    return stats


def run_migration(
    store: FileHistoryStore | None = None,
    dry_run: bool = False,
) -> DeltaMigrationStats:
    """
    Entry point for the legacy-to-delta migration.

    Args:
        store: Store to migrate. If None, uses the history directory from settings.
        dry_run: If True, make no changes.

    Returns:
        DeltaMigrationStats with results.
    """
    if store is None:
        settings = get_settings()
        store = FileHistoryStore(
            settings.history_dir, codec=DeltaCodec(diff_timeout=settings.diff_timeout),
        )

    logger.info("Starting history migration to delta format (dry_run=%s)", dry_run)
    stats = migrate_history_to_delta(store, dry_run=dry_run)
    logger.info("History delta migration complete: %s", stats.to_dict())
    if dry_run and stats.migrated:
        logger.info("Run without --dry-run to apply changes")
    return stats


def main() -> None:
    """CLI entry point with --dry-run flag."""
    parser = argparse.ArgumentParser(
        description="Convert legacy full-content history files to delta format.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be migrated without making changes",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    run_migration(dry_run=args.dry_run)


if __name__ == "__main__":
    main()
