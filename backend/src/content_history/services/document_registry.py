"""Lookup of documents by slug or stable identifier from markdown frontmatter."""
import csv
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import yaml

logger = logging.getLogger(__name__)

FRONTMATTER_PATTERN = re.compile(r"\A---\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)

# Trailing publication date in file names, e.g. "my-post-2024-01-31.md"
FILENAME_DATE_PATTERN = re.compile(r"-\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class DocumentRecord:
    """A document's current slug and, when assigned, its stable identifier."""

    slug: str
    article_id: str | None
    path: Path | None = None


class DocumentRegistry(Protocol):
    """Resolves a slug or identifier to the document it names."""

    def find(self, identifier: str) -> DocumentRecord | None: ...


def parse_frontmatter(content: str) -> dict[str, Any]:
    """
    Parse the YAML frontmatter block at the top of a markdown document.

    Returns an empty dict when there is no frontmatter or it isn't a mapping.
    Blocks that are not valid YAML are read with parse_flat_frontmatter.
    """
    match = FRONTMATTER_PATTERN.match(content)
    if match is None:
        return {}
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        logger.warning("Frontmatter is not valid YAML, reading it line by line: %s", e)
        return parse_flat_frontmatter(match.group(1))
    return data if isinstance(data, dict) else {}


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        inner = value[1:-1]
        return re.sub(r"\\(.)", lambda m: "\n" if m.group(1) == "n" else m.group(1), inner)
    return value


def parse_flat_frontmatter(block: str) -> dict[str, Any]:
    """
    Read frontmatter as flat ``key: value`` lines.

    Used for blocks the publishing tool wrote without YAML quoting, e.g.
    ``excerpt: @team shipped it``. Each line is split at its first colon; lines
    without one are ignored. Quoted values are unquoted and ``[a, b]`` values
    become lists. All other values are kept as strings.
    """
    result: dict[str, Any] = {}
    for line in block.splitlines():
        key, sep, value = line.partition(":")
        key = key.strip()
        if not sep or not key:
            continue
        value = value.strip()
        if value.startswith("[") and value.endswith("]"):
            items = next(csv.reader([value[1:-1]], skipinitialspace=True), [])
            result[key] = [_unquote(item.strip()) for item in items if item.strip()]
        else:
            result[key] = _unquote(value)
    return result


def normalize_slug(value: str) -> str:
    """Strip a leading '/blog/' or '/' from a slug."""
    value = value.strip()
    if value.startswith("/blog/"):
        return value[len("/blog/"):]
    return value.removeprefix("/")


def slug_from_filename(filename: str) -> str:
    """Derive a slug from a markdown file name, dropping a trailing date."""
    stem = filename.removesuffix(".md")
    return FILENAME_DATE_PATTERN.sub("", stem)


def slug_from_frontmatter(frontmatter: dict[str, Any]) -> str:
    """Slug declared in frontmatter, or '' if none."""
    raw = frontmatter.get("url_slug", frontmatter.get("URL Slug", ""))
    return normalize_slug(raw) if isinstance(raw, str) else ""


def article_id_from_frontmatter(frontmatter: dict[str, Any]) -> str:
    """Stable identifier declared in frontmatter, or '' if none."""
    raw = frontmatter.get("article_id")
    return raw.strip() if isinstance(raw, str) else ""


@dataclass
class MarkdownDocumentRegistry:
    """
    Registry backed by directories of markdown files with YAML frontmatter.

    Directories are searched in order and the first match wins. A document
    matches when its article_id equals the identifier or its slug (from the
    url_slug frontmatter field, else the file name) equals the normalized
    identifier.
    """

    directories: Sequence[Path] = field(default_factory=list)

    def find(self, identifier: str) -> DocumentRecord | None:
        """Find the document named by a slug or identifier, or None."""
        normalized = normalize_slug(identifier)
        for directory in self.directories:
            record = self._find_in_directory(Path(directory), identifier, normalized)
            if record is not None:
                return record
        return None

    def resolve_slug_for_id(self, article_id: str) -> str | None:
        """Current slug of the document with this identifier, or None."""
        record = self.find(article_id)
        return record.slug if record is not None else None

    def _find_in_directory(
        self,
        directory: Path,
        identifier: str,
        normalized: str,
    ) -> DocumentRecord | None:
        if not directory.is_dir():
            return None
        for path in sorted(directory.glob("*.md")):
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Skipping unreadable document %s: %s", path, e)
                continue
            frontmatter = parse_frontmatter(content)
            article_id = article_id_from_frontmatter(frontmatter)
            slug = slug_from_frontmatter(frontmatter) or slug_from_filename(path.name)
            if (article_id and article_id == identifier) or slug == normalized:
                return DocumentRecord(slug=slug, article_id=article_id or None, path=path)
        return None
