"""Tests for applying line-based unified diffs from earlier stores."""
import pytest

from content_history.services.unified_diff import (
    apply_line_diff,
    is_line_diff,
    parse_hunks,
    split_lines,
)

HEADER = (
    "Index: content\n"
    "===================================================================\n"
    "--- content\t\n"
    "+++ content\t\n"
)


class TestIsLineDiff:
    """Tests for is_line_diff."""

    def test__is_line_diff__recognizes_headers(self) -> None:
        """Index, separator, and file headers mark a line diff."""
        assert is_line_diff(HEADER)
        assert is_line_diff("--- content\n+++ content\n")

    def test__is_line_diff__rejects_character_patches(self) -> None:
        """diff-match-patch text starts directly with a hunk header."""
        assert not is_line_diff("@@ -1,5 +1,11 @@\n Hello\n+%20world\n")
        assert not is_line_diff("")


class TestSplitLines:
    """Tests for split_lines."""

    def test__split_lines__keeps_terminators(self) -> None:
        """Lines keep their newline; a final unterminated line is kept as-is."""
        assert split_lines("a\nb\nc") == ["a\n", "b\n", "c"]
        assert split_lines("a\n\nb\n") == ["a\n", "\n", "b\n"]
        assert split_lines("") == []


class TestParseHunks:
    """Tests for parse_hunks."""

    def test__parse_hunks__context_removed_added(self) -> None:
        """Context lines appear on both sides of a hunk."""
        patch = HEADER + "@@ -1,3 +1,3 @@\n a\n-b\n+B\n c\n"
        [hunk] = parse_hunks(patch)
        assert hunk.old_start == 1
        assert hunk.before == ["a\n", "b\n", "c\n"]
        assert hunk.after == ["a\n", "B\n", "c\n"]

    def test__parse_hunks__truncated_raises(self) -> None:
        """A hunk shorter than its header declares is malformed."""
        with pytest.raises(ValueError, match="Truncated hunk"):
            parse_hunks(HEADER + "@@ -1,3 +1,3 @@\n a")

    def test__parse_hunks__unexpected_prefix_raises(self) -> None:
        """Lines without a diff prefix are malformed."""
        with pytest.raises(ValueError, match="Unexpected line"):
            parse_hunks(HEADER + "@@ -1,1 +1,1 @@\n?a\n+b\n")


class TestApplyLineDiff:
    """Tests for apply_line_diff."""

    def test__apply_line_diff__replaces_middle_line(self) -> None:
        """A single-hunk change applies at its recorded position."""
        patch = HEADER + "@@ -1,3 +1,3 @@\n a\n-b\n+B\n c\n"
        assert apply_line_diff("a\nb\nc\n", patch) == "a\nB\nc\n"

    def test__apply_line_diff__hunk_found_at_offset(self) -> None:
        """Hunks still apply when lines were inserted above them."""
        patch = HEADER + "@@ -1,3 +1,3 @@\n a\n-b\n+B\n c\n"
        assert apply_line_diff("new\nlines\na\nb\nc\n", patch) == "new\nlines\na\nB\nc\n"

    def test__apply_line_diff__multiple_hunks(self) -> None:
        """Later hunks account for lines added by earlier ones."""
        source = "".join(f"line {n}\n" for n in range(1, 13))
        patch = (
            HEADER
            + "@@ -1,2 +1,3 @@\n line 1\n+inserted\n line 2\n"
            + "@@ -10,3 +11,3 @@\n line 10\n-line 11\n+LINE 11\n line 12\n"
        )
        expected = source.replace("line 1\n", "line 1\ninserted\n", 1).replace(
            "line 11\n", "LINE 11\n",
        )
        assert apply_line_diff(source, patch) == expected

    def test__apply_line_diff__adds_trailing_newline(self) -> None:
        """No-newline markers distinguish 'a' from 'a\\n'."""
        patch = HEADER + "@@ -1,1 +1,1 @@\n-a\n\\ No newline at end of file\n+a\n"
        assert apply_line_diff("a", patch) == "a\n"

    def test__apply_line_diff__insert_into_empty(self) -> None:
        """Pure insertions into an empty document apply at the top."""
        patch = HEADER + "@@ -0,0 +1,2 @@\n+first\n+second\n"
        assert apply_line_diff("", patch) == "first\nsecond\n"

    def test__apply_line_diff__no_hunks_is_identity(self) -> None:
        """A diff of identical content has only headers."""
        assert apply_line_diff("unchanged\n", HEADER) == "unchanged\n"

    def test__apply_line_diff__missing_context_returns_none(self) -> None:
        """Context that isn't in the source can't be placed."""
        patch = HEADER + "@@ -1,3 +1,3 @@\n a\n-b\n+B\n c\n"
        assert apply_line_diff("x\ny\nz\n", patch) is None
