"""Shared exceptions for history service operations."""
from enum import StrEnum


class ReconstructErrorKind(StrEnum):
    """Why a version's content could not be rebuilt from its chain."""

    NOT_FOUND = "not_found"
    NO_BASE_FOUND = "no_base_found"
    MISSING_DELTA = "missing_delta"
    PATCH_FAILED = "patch_failed"


class HistoryError(Exception):
    """Base exception for history operations surfaced to callers."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class InvalidIdentifierError(HistoryError):
    """Raised when a slug or identifier can't be used as a history storage key."""

    def __init__(self, identifier: str, reason: str) -> None:
        self.identifier = identifier
        self.reason = reason
        super().__init__(f"Invalid history identifier '{identifier}': {reason}")


class HistoryFileError(HistoryError):
    """
    Raised when a stored history file can't be parsed.

    A corrupt file is never treated as empty history, since the next save would
    overwrite whatever is still recoverable from it.
    """

    def __init__(self, path: str, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"Unreadable history file {path}: {detail}")


class VersionNotFoundError(HistoryError):
    """Raised when a version id is not present in a document's history."""

    def __init__(self, version_id: str) -> None:
        self.version_id = version_id
        super().__init__(f"Version not found: {version_id}")


class VersionReconstructionError(HistoryError):
    """
    Raised when a version exists but its content can't be rebuilt.

    Kept distinct from VersionNotFoundError: the version is known but
    unrecoverable from the stored chain (failed patch or corrupt chain).
    """

    def __init__(
        self,
        kind: ReconstructErrorKind,
        version_id: str,
        failed_version_id: str | None = None,
    ) -> None:
        self.kind = kind
        self.version_id = version_id
        # Entry where replay stopped; differs from version_id when an older delta failed
        self.failed_version_id = failed_version_id or version_id
        super().__init__(
            f"Failed to reconstruct version {version_id}: {kind.value} "
            f"at {self.failed_version_id}",
        )
