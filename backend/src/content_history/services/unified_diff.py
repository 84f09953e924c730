"""
Applying line-based unified diffs from stores written by the earlier engine.

Those deltas look like:

    Index: content
    ===================================================================
    --- content
    +++ content
    @@ -1,3 +1,3 @@
     a
    -b
    +B
     c

New deltas are produced by diff-match-patch; this module only reads the old
format. Hunks must match their context exactly but may sit at a different line
offset than recorded.
"""
import re
from dataclasses import dataclass, field

HUNK_HEADER_PATTERN = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
LINE_PATTERN = re.compile(r"[^\n]*\n|[^\n]+")
NO_NEWLINE_MARKER = "\\"


@dataclass
class Hunk:
    """One @@ block of a unified diff."""

    old_start: int
    old_count: int
    before: list[str] = field(default_factory=list)  # Context and removed lines
    after: list[str] = field(default_factory=list)  # Context and added lines


def is_line_diff(patch_text: str) -> bool:
    """Whether patch text is a line-based unified diff rather than diff-match-patch."""
    return patch_text.startswith(("Index:", "====", "--- "))


def split_lines(text: str) -> list[str]:
    """Split text into lines that keep their trailing newline."""
    return LINE_PATTERN.findall(text)


def parse_hunks(patch_text: str) -> list[Hunk]:
    """
    Parse the hunks of a unified diff.

    Raises:
        ValueError: If a hunk is malformed or truncated.
    """
    lines = patch_text.split("\n")
    hunks: list[Hunk] = []
    i = 0
    while i < len(lines):
        header = HUNK_HEADER_PATTERN.match(lines[i])
        i += 1
        if header is None:
            continue

        old_count = int(header.group(2)) if header.group(2) else 1
        new_count = int(header.group(4)) if header.group(4) else 1
        hunk = Hunk(old_start=int(header.group(1)), old_count=old_count)

        removed_or_context = 0
        added_or_context = 0
        while removed_or_context < old_count or added_or_context < new_count:
            if i >= len(lines):
                raise ValueError(f"Truncated hunk at line {i}")
            line = lines[i]
            i += 1
            terminated = not (i < len(lines) and lines[i].startswith(NO_NEWLINE_MARKER))
            if not terminated:
                i += 1  # Skip the marker
            text = line[1:] + ("\n" if terminated else "")

            prefix = line[:1]
            if prefix == " ":
                hunk.before.append(text)
                hunk.after.append(text)
                removed_or_context += 1
                added_or_context += 1
            elif prefix == "-":
                hunk.before.append(text)
                removed_or_context += 1
            elif prefix == "+":
                hunk.after.append(text)
                added_or_context += 1
            else:
                raise ValueError(f"Unexpected line in hunk: {line!r}")
        hunks.append(hunk)
    return hunks


def apply_line_diff(content: str, patch_text: str) -> str | None:
    """
    Apply a unified diff to content.

    Returns:
        The patched text, or None if any hunk's context can't be found.

    Raises:
        ValueError: If the patch text is malformed.
    """
    lines = split_lines(content)
    offset = 0
    for hunk in parse_hunks(patch_text):
        expected = (hunk.old_start - 1 if hunk.old_count else hunk.old_start) + offset
        position = _locate(lines, hunk.before, expected)
        if position is None:
            return None
        lines[position:position + len(hunk.before)] = hunk.after
        offset = position - expected + offset + len(hunk.after) - len(hunk.before)
    return "".join(lines)


def _locate(lines: list[str], expected_lines: list[str], start: int) -> int | None:
    """Nearest index to start where expected_lines occur, searching both directions."""
    size = len(expected_lines)
    last = len(lines) - size
    if last < 0:
        return None
    start = min(max(start, 0), last)
    for distance in range(last + 1):
        for candidate in (start + distance, start - distance):
            if 0 <= candidate <= last and lines[candidate:candidate + size] == expected_lines:
                return candidate
    return None
