"""Rebuilding version content from a delta chain."""
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from content_history.schemas.history import Chain, VersionEntry
from content_history.services.delta_codec import DeltaCodec, default_codec
from content_history.services.exceptions import ReconstructErrorKind

logger = logging.getLogger(__name__)


@dataclass
class ReconstructionResult:
    """Result of content reconstruction at a version."""

    content: str | None  # None whenever error is set
    error: ReconstructErrorKind | None = None
    failed_version_id: str | None = None  # Entry where reconstruction stopped
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when content was rebuilt."""
        return self.error is None

    @property
    def found(self) -> bool:
        """Whether the requested version exists in the chain."""
        return self.error != ReconstructErrorKind.NOT_FOUND


def find_index(chain: Sequence[VersionEntry], version_id: str) -> int | None:
    """Position of the entry with version_id, or None."""
    for index, entry in enumerate(chain):
        if entry.id == version_id:
            return index
    return None


def reconstruct(
    chain: Sequence[VersionEntry],
    target_id: str,
    codec: DeltaCodec | None = None,
) -> ReconstructionResult:
    """
    Reconstruct content at target_id by replaying deltas from the nearest base.

    The chain is newest first, so the nearest base is the first base at or
    after the target's position. Deltas are then applied from the one just
    newer than the base down to the target itself, i.e. moving forward in time.

    The chain is never modified.

    Args:
        chain: Newest-first version entries.
        target_id: Version id to rebuild.
        codec: Codec used to apply deltas. Defaults to the module codec.

    Returns:
        ReconstructionResult with content, or with the error kind and the id of
        the entry where reconstruction stopped.
    """
    codec = codec or default_codec

    target_index = find_index(chain, target_id)
    if target_index is None:
        return ReconstructionResult(
            content=None,
            error=ReconstructErrorKind.NOT_FOUND,
            failed_version_id=target_id,
        )

    base_index = next(
        (i for i in range(target_index, len(chain)) if chain[i].is_base),
        None,
    )
    if base_index is None:
        logger.error("No base version found for reconstruction of %s", target_id)
        return ReconstructionResult(
            content=None,
            error=ReconstructErrorKind.NO_BASE_FOUND,
            failed_version_id=target_id,
        )

    content = chain[base_index].full_content
    if content is None:
        # Only reachable for entries built without validation
        logger.error("Base version %s has no content", chain[base_index].id)
        return ReconstructionResult(
            content=None,
            error=ReconstructErrorKind.NO_BASE_FOUND,
            failed_version_id=chain[base_index].id,
        )

    warnings: list[str] = []
    for i in range(base_index - 1, target_index - 1, -1):
        entry = chain[i]
        if entry.delta is None:
            logger.error("Missing delta for non-base version %s", entry.id)
            return ReconstructionResult(
                content=None,
                error=ReconstructErrorKind.MISSING_DELTA,
                failed_version_id=entry.id,
                warnings=warnings,
            )

        applied = codec.apply_delta(content, entry.delta)
        warnings.extend(f"{entry.id}: {warning}" for warning in applied.warnings)
        if applied.content is None:
            logger.warning(
                "Failed to apply delta for version %s: %s", entry.id, applied.error,
            )
            return ReconstructionResult(
                content=None,
                error=ReconstructErrorKind.PATCH_FAILED,
                failed_version_id=entry.id,
                warnings=warnings,
            )
        content = applied.content

    return ReconstructionResult(content=content, warnings=warnings)


def get_version_content(
    chain: Sequence[VersionEntry],
    version_id: str,
    codec: DeltaCodec | None = None,
) -> ReconstructionResult:
    """Content of a version, read directly for bases and rebuilt otherwise."""
    index = find_index(chain, version_id)
    if index is not None:
        entry = chain[index]
        if entry.is_base and entry.full_content is not None:
            return ReconstructionResult(content=entry.full_content)
    return reconstruct(chain, version_id, codec=codec)


def rebase_entry(
    chain: Sequence[VersionEntry],
    version_id: str,
    codec: DeltaCodec | None = None,
) -> tuple[Chain, ReconstructionResult]:
    """
    Return a copy of the chain with version_id converted to a base entry.

    The content is rebuilt against the unmodified input chain. If that fails the
    entry is left as it was and the failed result is returned alongside the
    unchanged copy.
    """
    result_chain = list(chain)
    index = find_index(chain, version_id)
    if index is None:
        return result_chain, ReconstructionResult(
            content=None,
            error=ReconstructErrorKind.NOT_FOUND,
            failed_version_id=version_id,
        )

    entry = chain[index]
    if entry.is_base:
        return result_chain, ReconstructionResult(content=entry.full_content)

    result = reconstruct(chain, version_id, codec=codec)
    if result.ok:
        result_chain[index] = to_base(entry, result.content)
    return result_chain, result


def to_base(entry: VersionEntry, content: str | None) -> VersionEntry:
    """Copy of entry stored as a base with the given full content."""
    return entry.model_copy(update={"is_base": True, "full_content": content, "delta": None})
