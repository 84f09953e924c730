"""Bounding delta run lengths by promoting deltas to base entries."""
import logging
from collections.abc import Sequence

from content_history.schemas.history import Chain, VersionEntry
from content_history.services.delta_codec import DeltaCodec
from content_history.services.reconstruction import reconstruct, to_base

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHAIN_LENGTH = 5


def compact(
    chain: Sequence[VersionEntry],
    max_chain_length: int = DEFAULT_MAX_CHAIN_LENGTH,
    codec: DeltaCodec | None = None,
) -> Chain:
    """
    Rewrite a chain so no more than max_chain_length deltas follow any base.

    Runs are counted from each base forward in time (toward the front of the
    newest-first chain), which is the order deltas are replayed in. A delta that
    would exceed the bound is replaced by a base holding its reconstructed
    content. Reconstruction always runs against the input chain.

    If a delta can't be reconstructed it stays a delta and the run keeps
    growing; history is never dropped to satisfy the bound. Entry order, ids and
    timestamps are preserved and the input is not modified.

    Args:
        chain: Newest-first version entries.
        max_chain_length: Maximum consecutive deltas after a base (>= 1).
        codec: Codec used for reconstruction.

    Returns:
        New newest-first chain.
    """
    if max_chain_length < 1:
        raise ValueError(f"max_chain_length must be >= 1, got {max_chain_length}")

    result: Chain = list(chain)
    if len(result) <= 1:
        return result

    run_length = 0
    converted = 0
    for index in range(len(chain) - 1, -1, -1):
        entry = chain[index]
        if entry.is_base:
            run_length = 0
            continue

        if run_length + 1 <= max_chain_length:
            run_length += 1
            continue

        reconstructed = reconstruct(chain, entry.id, codec=codec)
        if reconstructed.ok:
            result[index] = to_base(entry, reconstructed.content)
            run_length = 0
            converted += 1
        else:
            logger.warning(
                "Compaction kept %s as a delta: reconstruction failed (%s)",
                entry.id,
                reconstructed.error,
            )
            run_length += 1

    if converted:
        logger.debug("Compaction promoted %d of %d entries to base", converted, len(chain))
    return result


def longest_delta_run(chain: Sequence[VersionEntry]) -> int:
    """Longest run of consecutive delta entries in the chain."""
    longest = 0
    current = 0
    for entry in chain:
        current = 0 if entry.is_base else current + 1
        longest = max(longest, current)
    return longest
