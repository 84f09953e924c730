"""
File-per-document persistence for history chains.

Each document's history lives at <history_dir>/<type>_<key>.json where key is
the document's slug or stable identifier. The store performs no locking: at
most one read-modify-write cycle per key may be in flight, and concurrent
writers must be serialized by the caller. Writes replace the file atomically,
so readers never observe a half-written file and the last writer wins.
"""
import json
import logging
import re
import shutil
import tempfile
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from content_history.schemas.history import (
    Chain,
    DocumentType,
    HistoryFile,
    LegacyVersionEntry,
    VersionEntry,
)
from content_history.services.delta_codec import DeltaCodec
from content_history.services.exceptions import HistoryFileError, InvalidIdentifierError
from content_history.services.format_migration import parse_history_payload

logger = logging.getLogger(__name__)

# Keys are used verbatim as file name components
SAFE_KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
MAX_KEY_LENGTH = 200

# Percent-encoded traversal characters, rejected before pattern matching
ENCODED_TRAVERSAL_PATTERN = re.compile(r"%(2e|2f|5c|00)", re.IGNORECASE)

# One trailing file extension, e.g. "my-post.md"
FILE_EXTENSION_PATTERN = re.compile(r"\.[^.]+$")

HISTORY_FILE_SUFFIX = ".json"
BACKUP_SUFFIX = ".backup"


@dataclass
class LoadedHistory:
    """History read from the store, converted to a chain."""

    entries: Chain = field(default_factory=list)
    is_legacy: bool = False
    exists: bool = False
    legacy_entries: list[LegacyVersionEntry] | None = None


@dataclass(frozen=True)
class StoredHistoryRef:
    """A history file present in the store."""

    file: str  # File name, e.g. "post_my-slug.json"
    document_type: DocumentType
    key: str  # Raw key from the file name; may not pass sanitization

    def storage_key(self) -> str:
        """
        The key that loads and saves this file.

        Raises InvalidIdentifierError when the raw key fails sanitization or
        sanitizes to a different key, e.g. "post_notes.md.json" would resolve
        to "post_notes.json".
        """
        key = sanitize_key(self.key)
        if key != self.key:
            raise InvalidIdentifierError(self.key, f"file name resolves to key '{key}'")
        return key


class HistoryStore(Protocol):
    """Durable get/put/exists storage of history chains keyed by document."""

    def exists(self, document_type: DocumentType, key: str) -> bool: ...

    def load(self, document_type: DocumentType, key: str) -> LoadedHistory: ...

    def save(
        self, document_type: DocumentType, key: str, entries: Sequence[VersionEntry],
    ) -> None: ...

    def delete(self, document_type: DocumentType, key: str) -> bool: ...

    def backup(self, document_type: DocumentType, key: str) -> Path | None: ...

    def list_files(self, document_type: DocumentType | None = None) -> list[StoredHistoryRef]: ...


def sanitize_key(key: str) -> str:
    """
    Validate a slug or identifier for use as a storage key.

    Args:
        key: Slug or identifier.

    Returns:
        The key, stripped of surrounding whitespace and of one file
        extension, so "my-post.md" gives "my-post".

    Raises:
        InvalidIdentifierError: If the key is empty, too long, or contains
            anything other than letters, digits, hyphens, and underscores.
    """
    if not isinstance(key, str) or not key.strip():
        raise InvalidIdentifierError(str(key), "identifier is required")
    candidate = key.strip()
    if (
        ".." in candidate
        or "/" in candidate
        or "\\" in candidate
        or "\x00" in candidate
        or ENCODED_TRAVERSAL_PATTERN.search(candidate)
    ):
        logger.warning("Security: path traversal attempt in history key %r", key)
        raise InvalidIdentifierError(key, "invalid characters in identifier")
    candidate = FILE_EXTENSION_PATTERN.sub("", candidate)
    if len(candidate) > MAX_KEY_LENGTH:
        raise InvalidIdentifierError(key, f"identifier exceeds {MAX_KEY_LENGTH} characters")
    if not SAFE_KEY_PATTERN.match(candidate):
        raise InvalidIdentifierError(key, "identifier contains invalid characters")
    return candidate


class FileHistoryStore:
    """History store backed by one JSON file per document."""

    def __init__(self, history_dir: Path | str, codec: DeltaCodec | None = None) -> None:
        self.history_dir = Path(history_dir)
        self.codec = codec

    def path_for(self, document_type: DocumentType | str, key: str) -> Path:
        """
        Resolve the history file path for a document.

        Raises:
            InvalidIdentifierError: If the key is unsafe or the path would fall
                outside the history directory.
        """
        document_type = DocumentType(document_type)
        sanitized = sanitize_key(key)
        path = self.history_dir / f"{document_type.value}_{sanitized}{HISTORY_FILE_SUFFIX}"

        base = self.history_dir.resolve()
        if base not in path.resolve().parents:
            logger.warning("Security: history path escapes base directory: %s", path)
            raise InvalidIdentifierError(key, "path escapes history directory")
        return path

    def exists(self, document_type: DocumentType, key: str) -> bool:
        """Whether a history file exists for the document."""
        return self.path_for(document_type, key).exists()

    def read_payload(self, document_type: DocumentType, key: str) -> object | None:
        """
        Read the raw decoded JSON for a document, or None if there is no file.

        Raises:
            HistoryFileError: If the file is not valid JSON.
        """
        path = self.path_for(document_type, key)
        if not path.exists():
            return None
        try:
            with path.open(encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise HistoryFileError(str(path), f"invalid JSON: {e}") from e

    def load(self, document_type: DocumentType, key: str) -> LoadedHistory:
        """
        Load a document's history, converting legacy files on read.

        A missing file loads as empty, non-legacy history.

        Raises:
            InvalidIdentifierError: If the key is unsafe.
            HistoryFileError: If the file exists but can't be decoded.
        """
        payload = self.read_payload(document_type, key)
        if payload is None:
            return LoadedHistory()
        try:
            parsed = parse_history_payload(payload, codec=self.codec)
        except ValueError as e:
            raise HistoryFileError(str(self.path_for(document_type, key)), str(e)) from e
        return LoadedHistory(
            entries=parsed.entries,
            is_legacy=parsed.is_legacy,
            exists=True,
            legacy_entries=parsed.legacy_entries,
        )

    def save(
        self,
        document_type: DocumentType,
        key: str,
        entries: Sequence[VersionEntry],
    ) -> None:
        """Write a chain in the current tagged format, replacing any existing file."""
        path = self.path_for(document_type, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = HistoryFile(entries=list(entries)).to_storage()

        with tempfile.NamedTemporaryFile(
            "w", delete=False, dir=str(path.parent), encoding="utf-8", suffix=".tmp",
        ) as tf:
            tmp_path = Path(tf.name)
            try:
                json.dump(payload, tf, indent=2, ensure_ascii=False)
            except BaseException:
                tf.close()
                tmp_path.unlink(missing_ok=True)
                raise
        try:
            tmp_path.replace(path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        logger.debug("Saved %d history entries to %s", len(entries), path)

    def delete(self, document_type: DocumentType, key: str) -> bool:
        """Delete a document's history file. Returns False if it didn't exist."""
        path = self.path_for(document_type, key)
        if not path.exists():
            return False
        path.unlink()
        return True

    def backup(self, document_type: DocumentType, key: str) -> Path | None:
        """Copy a document's history file to <file>.backup. Returns the copy's path."""
        path = self.path_for(document_type, key)
        if not path.exists():
            return None
        backup_path = path.with_name(path.name + BACKUP_SUFFIX)
        shutil.copyfile(path, backup_path)
        return backup_path

    def list_files(self, document_type: DocumentType | None = None) -> list[StoredHistoryRef]:
        """
        List history files in the store, sorted by file name.

        Keys are taken from file names as-is and may fail sanitization; callers
        decide how to report those.
        """
        return sorted(self._iter_files(document_type), key=lambda ref: ref.file)

    def _iter_files(self, document_type: DocumentType | None) -> Iterator[StoredHistoryRef]:
        if not self.history_dir.is_dir():
            return
        types = [document_type] if document_type is not None else list(DocumentType)
        for path in self.history_dir.iterdir():
            if not path.is_file() or path.suffix != HISTORY_FILE_SUFFIX:
                continue
            for doc_type in types:
                prefix = f"{doc_type.value}_"
                if path.name.startswith(prefix):
                    key = path.name[len(prefix):-len(HISTORY_FILE_SUFFIX)]
                    yield StoredHistoryRef(file=path.name, document_type=doc_type, key=key)
                    break
