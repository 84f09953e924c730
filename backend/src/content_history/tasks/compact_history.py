"""
Compact stored history chains so delta runs stay bounded.

Only files whose chain changes are rewritten. Legacy-format files are skipped;
run migrate_history_to_delta first.

Usage:
    python -m content_history.tasks.compact_history
    python -m content_history.tasks.compact_history --max-chain-length 3 --dry-run
"""
import argparse
import logging
from dataclasses import dataclass

from content_history.core.config import get_settings
from content_history.services.compaction import compact, longest_delta_run
from content_history.services.delta_codec import DeltaCodec
from content_history.services.exceptions import HistoryError
from content_history.services.history_store import FileHistoryStore

logger = logging.getLogger(__name__)


@dataclass
class CompactionStats:
    """Statistics from a compaction run."""

    files_compacted: int = 0
    files_unchanged: int = 0
    files_skipped: int = 0
    entries_promoted: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        """Convert to simple dict for logging/return."""
        return {
            "files_compacted": self.files_compacted,
            "files_unchanged": self.files_unchanged,
            "files_skipped": self.files_skipped,
            "entries_promoted": self.entries_promoted,
            "errors": self.errors,
        }


def compact_store(
    store: FileHistoryStore,
    max_chain_length: int,
    dry_run: bool = False,
) -> CompactionStats:
    """
    Compact every current-format chain in the store.

    Args:
        store: File store to compact.
        max_chain_length: Maximum consecutive deltas after a base.
        dry_run: If True, report what would change without writing.

    Returns:
        CompactionStats with per-file counts.
    """
    stats = CompactionStats()

    for ref in store.list_files():
        try:
            key = ref.storage_key()
            loaded = store.load(ref.document_type, key)
            if loaded.is_legacy:
                logger.info("%s: legacy format, skipping", ref.file)
                stats.files_skipped += 1
                continue

            compacted = compact(loaded.entries, max_chain_length, codec=store.codec)
            promoted = sum(
                1
                for before, after in zip(loaded.entries, compacted, strict=True)
                if after.is_base and not before.is_base
            )
            if not promoted:
                stats.files_unchanged += 1
                continue

            logger.info(
                "%s: promoting %d entries (longest delta run %d -> %d)",
                ref.file,
                promoted,
                longest_delta_run(loaded.entries),
                longest_delta_run(compacted),
            )
            if not dry_run:
                store.save(ref.document_type, key, compacted)
            stats.files_compacted += 1
            stats.entries_promoted += promoted
        except HistoryError as e:
            logger.error("%s: %s", ref.file, e)
            stats.errors += 1

    return stats


def run_compaction(
    store: FileHistoryStore | None = None,
    max_chain_length: int | None = None,
    dry_run: bool = False,
) -> CompactionStats:
    """
    Entry point for history compaction.

    Args:
        store: Store to compact. If None, uses the history directory from settings.
        max_chain_length: Bound on delta runs. Defaults to the configured value.
        dry_run: If True, make no changes.

    Returns:
        CompactionStats with results.
    """
    settings = get_settings()
    if store is None:
        store = FileHistoryStore(
            settings.history_dir, codec=DeltaCodec(diff_timeout=settings.diff_timeout),
        )
    if max_chain_length is None:
        max_chain_length = settings.max_chain_length

    logger.info(
        "Starting history compaction (max_chain_length=%d, dry_run=%s)",
        max_chain_length,
        dry_run,
    )
    stats = compact_store(store, max_chain_length, dry_run=dry_run)
    logger.info("History compaction complete: %s", stats.to_dict())
    return stats


def main() -> None:
    """CLI entry point with --max-chain-length and --dry-run flags."""
    parser = argparse.ArgumentParser(
        description="Compact stored history so delta chains stay short.",
    )
    parser.add_argument(
        "--max-chain-length",
        type=int,
        default=None,
        help="Maximum consecutive deltas after a base (default: HISTORY_MAX_CHAIN_LENGTH)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would change without writing",
    )
    args = parser.parse_args()
    if args.max_chain_length is not None and args.max_chain_length < 1:
        parser.error("--max-chain-length must be >= 1")

    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    run_compaction(max_chain_length=args.max_chain_length, dry_run=args.dry_run)


if __name__ == "__main__":
    main()
