"""Service layer for recording and reading document version history."""
import logging
import re
import secrets
import string
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import lru_cache

from content_history.core.config import Settings, get_settings
from content_history.schemas.history import Chain, DocumentType, VersionEntry
from content_history.services.compaction import DEFAULT_MAX_CHAIN_LENGTH, compact
from content_history.services.delta_codec import DeltaCodec
from content_history.services.document_registry import (
    DocumentRegistry,
    MarkdownDocumentRegistry,
)
from content_history.services.exceptions import (
    InvalidIdentifierError,
    ReconstructErrorKind,
    VersionNotFoundError,
    VersionReconstructionError,
)
from content_history.services.history_store import (
    FileHistoryStore,
    HistoryStore,
    LoadedHistory,
    sanitize_key,
)
from content_history.services.identity_migration import is_likely_id
from content_history.services.reconstruction import (
    ReconstructionResult,
    find_index,
    get_version_content,
    rebase_entry,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_VERSIONS = 10
SUMMARY_MAX_LENGTH = 100
VERSION_ID_SUFFIX_LENGTH = 6
VERSION_ID_ALPHABET = string.ascii_lowercase + string.digits

HEADING_PATTERN = re.compile(r"^#\s+(.+)$", re.MULTILINE)
FRONTMATTER_BLOCK_PATTERN = re.compile(r"^---\n[\s\S]*?\n---\n")


@dataclass
class SaveResult:
    """Outcome of saving a new version."""

    saved: bool
    version_id: str | None = None
    versions_kept: int = 0
    migrated_from_legacy: bool = False
    message: str | None = None


@dataclass
class VersionSummary:
    """Version metadata without content, for history listings."""

    id: str
    timestamp: int
    document_type: DocumentType
    slug: str
    summary: str | None


@dataclass
class VersionContent:
    """A version's metadata with its reconstructed content."""

    id: str
    timestamp: int
    document_type: DocumentType
    slug: str
    summary: str | None
    content: str
    warnings: list[str] = field(default_factory=list)


@dataclass
class VersionStats:
    """Size of one version's content."""

    id: str
    timestamp: int
    line_count: int
    char_count: int


@dataclass
class VersionComparison:
    """Size comparison between two versions."""

    version1: VersionStats
    version2: VersionStats
    lines_diff: int
    chars_diff: int


def extract_summary(content: str) -> str:
    """
    Summarize a version by its first heading, else its first non-empty line.

    Frontmatter is ignored when falling back to the first line.
    """
    heading = HEADING_PATTERN.search(content)
    if heading and heading.group(1):
        return heading.group(1)[:SUMMARY_MAX_LENGTH]

    body = FRONTMATTER_BLOCK_PATTERN.sub("", content, count=1)
    for line in body.split("\n"):
        if line.strip():
            return line[:SUMMARY_MAX_LENGTH]

    return "Untitled version"


def generate_version_id(now: datetime) -> str:
    """Version ids look like 'v1718000000000_k3j9xq'."""
    suffix = "".join(
        secrets.choice(VERSION_ID_ALPHABET) for _ in range(VERSION_ID_SUFFIX_LENGTH)
    )
    return f"v{int(now.timestamp() * 1000)}_{suffix}"


class HistoryService:
    """
    Records and reads version history for posts and pages.

    Each save reads the whole chain, prepends the new version, and writes it
    back. Callers must serialize saves per document; reads may run concurrently.
    """

    def __init__(
        self,
        store: HistoryStore,
        registry: DocumentRegistry | None = None,
        max_chain_length: int = DEFAULT_MAX_CHAIN_LENGTH,
        max_versions: int = DEFAULT_MAX_VERSIONS,
        codec: DeltaCodec | None = None,
    ) -> None:
        """
        Initialize the history service.

        Args:
            store: Where chains are persisted.
            registry: Resolves post identifiers to their slugs, for reading
                history saved under a slug before the post had an identifier.
            max_chain_length: Compaction bound applied on every save.
            max_versions: Number of most recent versions kept on save.
            codec: Patch codec; defaults to one with an unbounded diff budget.
        """
        if max_versions < 1:
            raise ValueError(f"max_versions must be >= 1, got {max_versions}")
        self.store = store
        self.registry = registry
        self.max_chain_length = max_chain_length
        self.max_versions = max_versions
        self.codec = codec or DeltaCodec()

    @classmethod
    def from_settings(cls, settings: Settings) -> "HistoryService":
        """Build a service over the file store and markdown registry in settings."""
        codec = DeltaCodec(diff_timeout=settings.diff_timeout)
        return cls(
            store=FileHistoryStore(settings.history_dir, codec=codec),
            registry=MarkdownDocumentRegistry([settings.drafts_dir, settings.published_dir]),
            max_chain_length=settings.max_chain_length,
            max_versions=settings.max_versions,
            codec=codec,
        )

    def save_version(
        self,
        document_type: DocumentType | str,
        key: str,
        content: str,
        now: datetime | None = None,
    ) -> SaveResult:
        """
        Save content as the newest version of a document.

        The version is stored as a delta from the newest existing version, or as
        a base when there is no history or the newest content can't be rebuilt.
        Older versions beyond max_versions are dropped and the chain is compacted
        before it is written.

        Args:
            document_type: post or page.
            key: Slug or stable identifier of the document.
            content: Full content of the new version.
            now: Timestamp for the version. Defaults to datetime.now(UTC).

        Returns:
            SaveResult; saved=False when content matches the newest version.

        Raises:
            InvalidIdentifierError: If key can't be used as a storage key.
            HistoryFileError: If the existing history file can't be decoded.
        """
        if now is None:
            now = datetime.now(UTC)
        document_type = DocumentType(document_type)
        slug = sanitize_key(key)

        loaded, migrated = self._load_with_fallback(document_type, slug)
        entries: Chain = list(loaded.entries)

        latest_content: str | None = None
        if entries:
            latest = get_version_content(entries, entries[0].id, codec=self.codec)
            if latest.ok:
                latest_content = latest.content
            else:
                logger.warning(
                    "Newest version of %s/%s can't be rebuilt (%s); saving a new base",
                    document_type.value,
                    slug,
                    latest.error,
                )

        if latest_content == content:
            return SaveResult(
                saved=False,
                versions_kept=len(entries),
                message="No changes from previous version",
            )

        version_id = generate_version_id(now)
        while find_index(entries, version_id) is not None:
            version_id = generate_version_id(now)

        common = {
            "id": version_id,
            "timestamp": int(now.timestamp() * 1000),
            "document_type": document_type,
            "slug": slug,
            "summary": extract_summary(content),
        }
        if latest_content is None:
            new_entry = VersionEntry(**common, is_base=True, full_content=content)
        else:
            delta = self.codec.create_delta(latest_content, content)
            new_entry = VersionEntry(**common, is_base=False, delta=delta)

        entries.insert(0, new_entry)
        entries = self._apply_retention(entries)
        entries = compact(entries, self.max_chain_length, codec=self.codec)
        self.store.save(document_type, slug, entries)

        return SaveResult(
            saved=True,
            version_id=version_id,
            versions_kept=len(entries),
            migrated_from_legacy=loaded.is_legacy or migrated,
        )

    def list_versions(
        self,
        document_type: DocumentType | str,
        key: str,
    ) -> list[VersionSummary]:
        """Newest-first version metadata for a document, without content."""
        loaded, _ = self._load_with_fallback(DocumentType(document_type), sanitize_key(key))
        return [
            VersionSummary(
                id=entry.id,
                timestamp=entry.timestamp,
                document_type=entry.document_type,
                slug=entry.slug,
                summary=entry.summary,
            )
            for entry in loaded.entries
        ]

    def get_version(
        self,
        document_type: DocumentType | str,
        key: str,
        version_id: str,
    ) -> VersionContent:
        """
        Read a version's full content.

        Raises:
            VersionNotFoundError: If the version isn't in the document's history.
            VersionReconstructionError: If the version exists but can't be rebuilt.
        """
        loaded, _ = self._load_with_fallback(DocumentType(document_type), sanitize_key(key))
        entry, result = self._read(loaded.entries, version_id)
        return VersionContent(
            id=entry.id,
            timestamp=entry.timestamp,
            document_type=entry.document_type,
            slug=entry.slug,
            summary=entry.summary,
            content=result.content or "",
            warnings=result.warnings,
        )

    def delete_version(
        self,
        document_type: DocumentType | str,
        key: str,
        version_id: str,
    ) -> None:
        """
        Delete one version from a document's history.

        When the next newer version is a delta it was computed against the
        deleted version, so it is first promoted to a base holding its own
        content. If that content can't be rebuilt nothing is deleted.

        Raises:
            VersionNotFoundError: If the version isn't in the document's history.
            VersionReconstructionError: If the dependent version can't be promoted.
        """
        document_type = DocumentType(document_type)
        slug = sanitize_key(key)
        loaded, _ = self._load_with_fallback(document_type, slug)
        entries: Chain = list(loaded.entries)

        index = find_index(entries, version_id)
        if index is None:
            raise VersionNotFoundError(version_id)

        if index > 0 and not entries[index - 1].is_base:
            dependent_id = entries[index - 1].id
            entries, result = rebase_entry(entries, dependent_id, codec=self.codec)
            if not result.ok:
                raise VersionReconstructionError(
                    result.error or ReconstructErrorKind.PATCH_FAILED,
                    dependent_id,
                    result.failed_version_id,
                )

        del entries[index]
        self.store.save(document_type, slug, entries)

    def clear_history(self, document_type: DocumentType | str, key: str) -> int:
        """
        Delete all history for a document.

        For posts keyed by identifier, history still stored under the post's
        slug is deleted as well.

        Returns:
            Number of history files deleted.
        """
        document_type = DocumentType(document_type)
        slug = sanitize_key(key)
        deleted = int(self.store.delete(document_type, slug))

        legacy_slug = self._legacy_slug_for(document_type, slug)
        if legacy_slug is not None:
            try:
                deleted += int(self.store.delete(document_type, legacy_slug))
            except InvalidIdentifierError as e:
                logger.warning("Not clearing legacy history under %r: %s", legacy_slug, e)
        return deleted

    def compare_versions(
        self,
        document_type: DocumentType | str,
        key: str,
        version_id1: str,
        version_id2: str,
    ) -> VersionComparison:
        """
        Compare line and character counts of two versions.

        Raises:
            VersionNotFoundError: If either version is missing.
            VersionReconstructionError: If either version can't be rebuilt.
        """
        loaded, _ = self._load_with_fallback(DocumentType(document_type), sanitize_key(key))
        entry1, result1 = self._read(loaded.entries, version_id1)
        entry2, result2 = self._read(loaded.entries, version_id2)
        stats1 = _version_stats(entry1, result1.content or "")
        stats2 = _version_stats(entry2, result2.content or "")
        return VersionComparison(
            version1=stats1,
            version2=stats2,
            lines_diff=stats2.line_count - stats1.line_count,
            chars_diff=stats2.char_count - stats1.char_count,
        )

    def _read(
        self,
        entries: Chain,
        version_id: str,
    ) -> tuple[VersionEntry, ReconstructionResult]:
        index = find_index(entries, version_id)
        if index is None:
            raise VersionNotFoundError(version_id)
        result = get_version_content(entries, version_id, codec=self.codec)
        if not result.ok:
            raise VersionReconstructionError(
                result.error or ReconstructErrorKind.PATCH_FAILED,
                version_id,
                result.failed_version_id,
            )
        return entries[index], result

    def _apply_retention(self, entries: Chain) -> Chain:
        """
        Keep only the newest max_versions entries.

        The oldest kept entry is promoted to a base first when it is a delta, so
        every kept version stays reachable. If it can't be rebuilt, nothing is
        dropped.
        """
        if len(entries) <= self.max_versions:
            return entries

        oldest_kept = entries[self.max_versions - 1]
        if not oldest_kept.is_base:
            rebased, result = rebase_entry(entries, oldest_kept.id, codec=self.codec)
            if not result.ok:
                logger.warning(
                    "Keeping %d versions: oldest retained version %s can't be rebuilt (%s)",
                    len(entries),
                    oldest_kept.id,
                    result.error,
                )
                return entries
            entries = rebased

        return entries[: self.max_versions]

    def _legacy_slug_for(self, document_type: DocumentType, key: str) -> str | None:
        """Slug-keyed history location for a post keyed by identifier, if any."""
        if document_type != DocumentType.POST or not is_likely_id(key) or self.registry is None:
            return None
        record = self.registry.find(key)
        if record is None or not record.slug or record.slug == key:
            return None
        return record.slug

    def _load_with_fallback(
        self,
        document_type: DocumentType,
        key: str,
    ) -> tuple[LoadedHistory, bool]:
        """
        Load history, falling back to slug-keyed history for identifier keys.

        Posts that gained a stable identifier may still have their history under
        the old slug. When the identifier has no history yet, the slug-keyed
        chain is copied under the identifier and returned.

        Returns:
            Tuple of (loaded history, whether it was copied from the slug key).
        """
        primary = self.store.load(document_type, key)
        if primary.entries:
            return primary, False

        legacy_slug = self._legacy_slug_for(document_type, key)
        if legacy_slug is None:
            return primary, False

        try:
            legacy = self.store.load(document_type, legacy_slug)
        except InvalidIdentifierError as e:
            logger.warning("Ignoring legacy history under %r: %s", legacy_slug, e)
            return primary, False

        if not legacy.entries:
            return primary, False

        self.store.save(document_type, key, legacy.entries)
        logger.info(
            "Copied %d history entries from %s to %s",
            len(legacy.entries),
            legacy_slug,
            key,
        )
        return legacy, True


def _version_stats(entry: VersionEntry, content: str) -> VersionStats:
    return VersionStats(
        id=entry.id,
        timestamp=entry.timestamp,
        line_count=len(content.split("\n")),
        char_count=len(content),
    )


@lru_cache
def get_history_service() -> HistoryService:
    """Get cached history service built from application settings."""
    return HistoryService.from_settings(get_settings())
