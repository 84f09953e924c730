"""
Re-keying post history from mutable slugs to stable article identifiers.

The decision for each file is a pure function of the key, the resolved
identifier, the slug-keyed chain, and any chain already stored under the
identifier. Writing is kept separate so the decision can be tested without a
filesystem. Existing identifier-keyed history is never overwritten, and the
slug-keyed file is left in place, so running the migration again is safe.
"""
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum

from content_history.schemas.history import DocumentType, VersionEntry
from content_history.services.document_registry import DocumentRegistry
from content_history.services.exceptions import HistoryFileError, InvalidIdentifierError
from content_history.services.history_store import HistoryStore

logger = logging.getLogger(__name__)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
LEGACY_ID_PREFIX = "legacy-"


class MigrationAction(StrEnum):
    """What to do with one slug-keyed history file."""

    MIGRATE = "migrated"
    SKIP = "skipped"
    FAIL = "failed"  # History file unreadable; reported, never fatal to the batch


class SkipReason(StrEnum):
    """Expected outcomes that leave a file where it is."""

    ALREADY_ID = "already-id"
    NO_ARTICLE_ID = "no-article-id"
    EMPTY_HISTORY = "empty-history"
    ID_HISTORY_EXISTS = "id-history-exists"
    INVALID_SLUG = "invalid-slug"


@dataclass(frozen=True)
class MigrationDecision:
    """Outcome of the migration decision for one file."""

    action: MigrationAction
    reason: SkipReason | None = None
    target_id: str | None = None

    @classmethod
    def skip(cls, reason: SkipReason, target_id: str | None = None) -> "MigrationDecision":
        """Build a skip decision."""
        return cls(action=MigrationAction.SKIP, reason=reason, target_id=target_id)


@dataclass
class MigrationDetail:
    """Per-file line of a migration report."""

    file: str
    status: MigrationAction
    reason: SkipReason | None = None
    id: str | None = None

    def to_dict(self) -> dict[str, str]:
        """Convert to a plain dict, omitting absent fields."""
        data = {"file": self.file, "status": self.status.value}
        if self.reason is not None:
            data["reason"] = self.reason.value
        if self.id is not None:
            data["id"] = self.id
        return data


@dataclass
class MigrationReport:
    """Result of a migration run."""

    migrated: int = 0
    skipped: int = 0
    failed: int = 0
    details: list[MigrationDetail] = field(default_factory=list)

    def record(self, file: str, decision: MigrationDecision) -> None:
        """Count a decision and add its detail line."""
        if decision.action == MigrationAction.MIGRATE:
            self.migrated += 1
        elif decision.action == MigrationAction.FAIL:
            self.failed += 1
        else:
            self.skipped += 1
        self.details.append(
            MigrationDetail(
                file=file,
                status=decision.action,
                reason=decision.reason,
                id=decision.target_id,
            ),
        )

    def to_dict(self) -> dict[str, int]:
        """Convert counts to a simple dict for logging."""
        return {"migrated": self.migrated, "skipped": self.skipped, "failed": self.failed}


def is_likely_id(value: str) -> bool:
    """Whether a key already looks like a stable identifier rather than a slug."""
    return bool(UUID_PATTERN.match(value)) or value.startswith(LEGACY_ID_PREFIX)


def decide_migration(
    key: str,
    resolved_id: str | None,
    chain: Sequence[VersionEntry] | None,
    existing_target_chain: Sequence[VersionEntry] | None,
) -> MigrationDecision:
    """
    Decide whether a slug-keyed history should be copied under an identifier.

    Checks run in order: empty key, key already an identifier, no identifier
    resolved for the slug, nothing to migrate, identifier already has history.

    Args:
        key: Storage key of the file being considered.
        resolved_id: Stable identifier of the document with that slug, if any.
        chain: History stored under the key (already converted from legacy).
        existing_target_chain: History already stored under resolved_id.

    Returns:
        MigrationDecision to migrate, or to skip with a reason.
    """
    if not key:
        return MigrationDecision.skip(SkipReason.INVALID_SLUG)
    if is_likely_id(key):
        return MigrationDecision.skip(SkipReason.ALREADY_ID)
    if not resolved_id:
        return MigrationDecision.skip(SkipReason.NO_ARTICLE_ID)
    if not chain:
        return MigrationDecision.skip(SkipReason.EMPTY_HISTORY, target_id=resolved_id)
    if existing_target_chain:
        return MigrationDecision.skip(SkipReason.ID_HISTORY_EXISTS, target_id=resolved_id)
    return MigrationDecision(action=MigrationAction.MIGRATE, target_id=resolved_id)


def migrate_keys_to_ids(
    store: HistoryStore,
    registry: DocumentRegistry,
    dry_run: bool = False,
) -> MigrationReport:
    """
    Copy every slug-keyed post history under its article's stable identifier.

    Dry runs make every decision a real run would and report identical counts,
    but write nothing.

    Only post histories are considered; pages have no stable identifiers.
    The read-decide-write sequence for a target key is not atomic, so only one
    migration run may execute at a time.

    A history file that can't be decoded is reported as failed and the run
    continues with the next file.
    """
    report = MigrationReport()
    document_type = DocumentType.POST

    for ref in store.list_files(document_type):
        key = ref.key
        if not key:
            report.record(ref.file, MigrationDecision.skip(SkipReason.INVALID_SLUG))
            continue
        if is_likely_id(key):
            report.record(ref.file, MigrationDecision.skip(SkipReason.ALREADY_ID))
            continue
        try:
            ref.storage_key()
        except InvalidIdentifierError:
            report.record(ref.file, MigrationDecision.skip(SkipReason.INVALID_SLUG))
            continue

        record = registry.find(key)
        resolved_id = record.article_id if record is not None else None
        if not resolved_id:
            report.record(ref.file, MigrationDecision.skip(SkipReason.NO_ARTICLE_ID))
            continue

        try:
            chain = store.load(document_type, key).entries
            existing = store.load(document_type, resolved_id).entries
        except HistoryFileError as e:
            logger.error("Skipping unreadable history for %s: %s", ref.file, e)
            report.record(
                ref.file,
                MigrationDecision(action=MigrationAction.FAIL, target_id=resolved_id),
            )
            continue
        except InvalidIdentifierError:
            logger.warning("Article id %r for %s is not a valid key", resolved_id, ref.file)
            report.record(ref.file, MigrationDecision.skip(SkipReason.NO_ARTICLE_ID))
            continue

        decision = decide_migration(key, resolved_id, chain, existing)
        if decision.action == MigrationAction.MIGRATE and not dry_run:
            store.save(document_type, resolved_id, chain)
            logger.info("Migrated history %s -> %s", ref.file, resolved_id)
        report.record(ref.file, decision)

    return report

