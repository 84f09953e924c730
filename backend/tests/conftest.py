"""Pytest fixtures for testing."""
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
import yaml

from content_history.core.config import get_settings
from content_history.schemas.history import Chain, DocumentType, VersionEntry
from content_history.services.delta_codec import DeltaCodec
from content_history.services.document_registry import MarkdownDocumentRegistry
from content_history.services.history_service import HistoryService, get_history_service
from content_history.services.history_store import FileHistoryStore


@pytest.fixture(autouse=True)
def clear_cached_settings() -> Generator[None]:
    """Make every test read settings and build services from a clean slate."""
    get_settings.cache_clear()
    get_history_service.cache_clear()
    yield
    get_settings.cache_clear()
    get_history_service.cache_clear()


@pytest.fixture
def codec() -> DeltaCodec:
    """Codec with an unbounded diff budget."""
    return DeltaCodec()


@pytest.fixture
def content_dir(tmp_path: Path) -> Path:
    """Empty document store with drafts/ and published/ directories."""
    root = tmp_path / "content"
    (root / "drafts").mkdir(parents=True)
    (root / "published").mkdir(parents=True)
    return root


@pytest.fixture
def history_dir(content_dir: Path) -> Path:
    """History directory inside the document store (not yet created)."""
    return content_dir / ".history"


@pytest.fixture
def store(history_dir: Path, codec: DeltaCodec) -> FileHistoryStore:
    """File history store over the temporary history directory."""
    return FileHistoryStore(history_dir, codec=codec)


@pytest.fixture
def registry(content_dir: Path) -> MarkdownDocumentRegistry:
    """Registry over the temporary drafts and published directories."""
    return MarkdownDocumentRegistry([content_dir / "drafts", content_dir / "published"])


@pytest.fixture
def history_service(
    store: FileHistoryStore,
    registry: MarkdownDocumentRegistry,
    codec: DeltaCodec,
) -> HistoryService:
    """History service with the default chain and retention limits."""
    return HistoryService(store=store, registry=registry, codec=codec)


@pytest.fixture
def write_document(content_dir: Path) -> Callable[..., Path]:
    """Factory writing a markdown document with YAML frontmatter."""

    def _write(
        filename: str,
        frontmatter: dict | None = None,
        body: str = "Body text.\n",
        folder: str = "drafts",
    ) -> Path:
        path = content_dir / folder / filename
        text = body
        if frontmatter is not None:
            text = f"---\n{yaml.safe_dump(frontmatter, sort_keys=False)}---\n{body}"
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def build_chain(codec: DeltaCodec) -> Callable[..., Chain]:
    """
    Factory building a newest-first chain from oldest-first contents.

    The oldest version is the only base; every later version is a delta from the
    one before it. Version ids are v1, v2, ... in write order.
    """

    def _build(contents: list[str], slug: str = "my-post") -> Chain:
        chain: Chain = []
        for number, content in enumerate(contents, start=1):
            common = {
                "id": f"v{number}",
                "timestamp": 1_700_000_000_000 + number,
                "document_type": DocumentType.POST,
                "slug": slug,
            }
            if not chain:
                entry = VersionEntry(**common, is_base=True, full_content=content)
            else:
                delta = codec.create_delta(contents[number - 2], content)
                entry = VersionEntry(**common, is_base=False, delta=delta)
            chain.insert(0, entry)
        return chain

    return _build
