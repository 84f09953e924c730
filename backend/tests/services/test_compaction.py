"""Tests for chain compaction."""
import logging
from collections.abc import Callable

import pytest

from content_history.schemas.history import Chain, DeltaPatch
from content_history.services.compaction import compact, longest_delta_run
from content_history.services.delta_codec import DeltaCodec
from content_history.services.reconstruction import reconstruct


def _contents(count: int) -> list[str]:
    return [f"# Post\n\nVersion {n} body.\n" + "extra line\n" * n for n in range(count)]


class TestCompact:
    """Tests for compact."""

    def test__compact__promotes_delta_past_bound(
        self, build_chain: Callable[..., Chain], codec: DeltaCodec,
    ) -> None:
        """With a bound of 1, the second delta after the base becomes a base."""
        chain = build_chain(["Hello", "Hello world", "Hello world!"])

        compacted = compact(chain, 1, codec=codec)

        assert [entry.id for entry in compacted] == ["v3", "v2", "v1"]
        assert compacted[0].is_base
        assert compacted[0].full_content == "Hello world!"
        assert compacted[0].delta is None
        assert not compacted[1].is_base
        assert compacted[1].delta == chain[1].delta
        assert compacted[2].is_base

    def test__compact__bounds_every_run(
        self, build_chain: Callable[..., Chain], codec: DeltaCodec,
    ) -> None:
        """No run of deltas exceeds the bound afterwards."""
        chain = build_chain(_contents(12))
        assert longest_delta_run(chain) == 11

        for bound in (1, 2, 3, 5):
            compacted = compact(chain, bound, codec=codec)
            assert longest_delta_run(compacted) <= bound

    def test__compact__preserves_content_ids_and_timestamps(
        self, build_chain: Callable[..., Chain], codec: DeltaCodec,
    ) -> None:
        """Every version reconstructs to the same content after compaction."""
        contents = _contents(9)
        chain = build_chain(contents)

        compacted = compact(chain, 3, codec=codec)

        assert [(e.id, e.timestamp) for e in compacted] == [(e.id, e.timestamp) for e in chain]
        for number, content in enumerate(contents, start=1):
            assert reconstruct(compacted, f"v{number}", codec=codec).content == content

    def test__compact__idempotent(
        self, build_chain: Callable[..., Chain], codec: DeltaCodec,
    ) -> None:
        """Compacting a compacted chain changes nothing."""
        once = compact(build_chain(_contents(10)), 2, codec=codec)
        assert compact(once, 2, codec=codec) == once

    def test__compact__within_bound_unchanged(
        self, build_chain: Callable[..., Chain], codec: DeltaCodec,
    ) -> None:
        """Chains already within the bound are returned as an equal copy."""
        chain = build_chain(_contents(4))
        compacted = compact(chain, 5, codec=codec)
        assert compacted == chain
        assert compacted is not chain

    @pytest.mark.parametrize("size", [0, 1])
    def test__compact__trivial_chains(
        self, build_chain: Callable[..., Chain], size: int,
    ) -> None:
        """Empty and single-entry chains come back unchanged."""
        chain = build_chain(_contents(size))
        assert compact(chain, 1) == chain

    def test__compact__does_not_mutate_input(
        self, build_chain: Callable[..., Chain], codec: DeltaCodec,
    ) -> None:
        """The input chain keeps its entries."""
        chain = build_chain(_contents(6))
        snapshot = list(chain)
        compact(chain, 1, codec=codec)
        assert chain == snapshot

    def test__compact__keeps_unreconstructable_delta(
        self,
        build_chain: Callable[..., Chain],
        codec: DeltaCodec,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """A delta that can't be rebuilt stays a delta rather than being dropped."""
        chain = build_chain(_contents(4))
        broken = DeltaPatch(patch_text="not a patch", source_length=0, target_length=0)
        chain[1] = chain[1].model_copy(update={"delta": broken})

        with caplog.at_level(logging.WARNING):
            compacted = compact(chain, 1, codec=codec)

        assert len(compacted) == 4
        assert not compacted[1].is_base
        assert compacted[1].delta == broken
        # v4 replays v3, so it can't be promoted either
        assert not compacted[0].is_base
        assert "kept v3 as a delta" in caplog.text

    def test__compact__rejects_zero_bound(self, build_chain: Callable[..., Chain]) -> None:
        """The bound must allow at least one delta."""
        with pytest.raises(ValueError, match="max_chain_length"):
            compact(build_chain(_contents(3)), 0)


class TestLongestDeltaRun:
    """Tests for longest_delta_run."""

    def test__longest_delta_run__counts_consecutive_deltas(
        self, build_chain: Callable[..., Chain],
    ) -> None:
        """Bases reset the count."""
        chain = build_chain(_contents(5))
        assert longest_delta_run(chain) == 4
        chain[2] = chain[2].model_copy(
            update={"is_base": True, "full_content": "x", "delta": None},
        )
        assert longest_delta_run(chain) == 2
        assert longest_delta_run([]) == 0
