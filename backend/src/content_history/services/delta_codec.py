"""Patch creation and application for delta-compressed history."""
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from diff_match_patch import diff_match_patch

from content_history.schemas.history import Chain, DeltaPatch, LegacyVersionEntry
from content_history.services.unified_diff import apply_line_diff, is_line_diff

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """Result of applying a delta to a source text."""

    content: str | None  # None when the patch could not be applied
    warnings: list[str] = field(default_factory=list)  # Non-fatal integrity warnings
    error: str | None = None

    @property
    def ok(self) -> bool:
        """True when the patch applied cleanly."""
        return self.content is not None


@dataclass
class CompressionStats:
    """Storage comparison between full-content and delta-compressed history."""

    full_size: int
    delta_size: int
    ratio: float

    @property
    def savings(self) -> str:
        """Saved share of storage as a percentage string, e.g. '62.5%'."""
        return f"{(1 - self.ratio) * 100:.1f}%"


class DeltaCodec:
    """Computes and applies patches between two versions using diff-match-patch."""

    def __init__(self, diff_timeout: float = 0.0) -> None:
        """
        Initialize the codec.

        Args:
            diff_timeout: Seconds diff-match-patch may spend on a diff. 0 means
                unbounded, which keeps patches deterministic for identical inputs.
        """
        self.dmp = diff_match_patch()
        self.dmp.Diff_Timeout = diff_timeout

    def create_delta(self, old_content: str, new_content: str) -> DeltaPatch:
        """Compute a patch that transforms old_content into new_content."""
        patches = self.dmp.patch_make(old_content, new_content)
        return DeltaPatch(
            patch_text=self.dmp.patch_toText(patches),
            source_length=len(old_content),
            target_length=len(new_content),
        )

    def apply_delta(self, content: str, delta: DeltaPatch) -> ApplyResult:
        """
        Apply a delta to content.

        Length mismatches before or after application are reported as warnings
        and do not fail the operation, because fuzzy hunk matching can still
        produce the intended text. A hunk that can't be placed, or patch text
        that can't be parsed, fails the whole application: partial content is
        never returned.
        """
        warnings: list[str] = []

        if len(content) != delta.source_length:
            warnings.append(
                f"Source length mismatch: expected {delta.source_length}, got {len(content)}",
            )
            logger.warning(
                "Delta source length mismatch: expected=%d actual=%d",
                delta.source_length,
                len(content),
            )

        if is_line_diff(delta.patch_text):
            # Written by the earlier line-based engine
            try:
                result = apply_line_diff(content, delta.patch_text)
            except ValueError as e:
                logger.warning("Corrupted line diff: %s", e)
                return ApplyResult(content=None, warnings=warnings, error=f"Corrupted patch: {e}")
            if result is None:
                logger.warning("Line diff application failed: hunk context not found")
                return ApplyResult(
                    content=None, warnings=warnings, error="Hunk context not found",
                )
        else:
            try:
                patches = self.dmp.patch_fromText(delta.patch_text)
            except ValueError as e:
                logger.warning("Corrupted patch text: %s", e)
                return ApplyResult(content=None, warnings=warnings, error=f"Corrupted patch: {e}")

            result, hunks_applied = self.dmp.patch_apply(patches, content)
            if not all(hunks_applied):
                logger.warning("Patch application failed: hunk results %s", hunks_applied)
                failed = sum(1 for applied in hunks_applied if not applied)
                return ApplyResult(
                    content=None,
                    warnings=warnings,
                    error=f"{failed} of {len(hunks_applied)} hunks could not be applied",
                )

        if len(result) != delta.target_length:
            warnings.append(
                f"Result length mismatch: expected {delta.target_length}, got {len(result)}",
            )
            logger.warning(
                "Delta result length mismatch: expected=%d actual=%d",
                delta.target_length,
                len(result),
            )

        return ApplyResult(content=result, warnings=warnings)


def compression_stats(
    legacy_entries: Sequence[LegacyVersionEntry],
    chain: Chain,
) -> CompressionStats:
    """
    Compare full-content storage against a delta chain of the same history.

    Delta size counts base contents plus patch texts. A ratio below 1 means
    the chain is smaller.
    """
    full_size = sum(len(entry.content) for entry in legacy_entries)
    delta_size = 0
    for entry in chain:
        if entry.full_content is not None:
            delta_size += len(entry.full_content)
        if entry.delta is not None:
            delta_size += len(entry.delta.patch_text)
    ratio = delta_size / full_size if full_size else 0.0
    return CompressionStats(full_size=full_size, delta_size=delta_size, ratio=ratio)


# Default codec for callers that don't need a custom diff budget
default_codec = DeltaCodec()


def create_delta(old_content: str, new_content: str) -> DeltaPatch:
    """Compute a patch from old_content to new_content with the default codec."""
    return default_codec.create_delta(old_content, new_content)


def apply_delta(content: str, delta: DeltaPatch) -> ApplyResult:
    """Apply a patch to content with the default codec."""
    return default_codec.apply_delta(content, delta)
