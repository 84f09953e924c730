"""Conversion between legacy full-content history and the delta chain format."""
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import TypeAdapter, ValidationError

from content_history.schemas.history import (
    Chain,
    HistoryFile,
    LegacyVersionEntry,
    VersionEntry,
)
from content_history.services.delta_codec import DeltaCodec, default_codec

_legacy_list_adapter = TypeAdapter(list[LegacyVersionEntry])


@dataclass
class ParsedHistory:
    """A decoded history payload and the format it was stored in."""

    entries: Chain
    is_legacy: bool
    legacy_entries: list[LegacyVersionEntry] | None = None  # Set for legacy payloads


def convert_legacy_to_chain(
    legacy_entries: Sequence[LegacyVersionEntry],
    codec: DeltaCodec | None = None,
) -> Chain:
    """
    Convert newest-first full-content records into a newest-first delta chain.

    The oldest record becomes the base; every newer record is stored as a delta
    from the record just older than it.
    """
    codec = codec or default_codec
    oldest_first = list(reversed(legacy_entries))
    chain: Chain = []

    for position, legacy in enumerate(oldest_first):
        common = {
            "id": legacy.id,
            "timestamp": legacy.timestamp,
            "document_type": legacy.document_type,
            "slug": legacy.slug,
            "summary": legacy.summary,
        }
        if position == 0:
            chain.append(VersionEntry(**common, is_base=True, full_content=legacy.content))
        else:
            previous = oldest_first[position - 1]
            delta = codec.create_delta(previous.content, legacy.content)
            chain.append(VersionEntry(**common, is_base=False, delta=delta))

    chain.reverse()
    return chain


def is_legacy_payload(data: Any) -> bool:
    """Legacy stores are bare JSON arrays; current stores are tagged objects."""
    return isinstance(data, list)


def parse_history_payload(data: Any, codec: DeltaCodec | None = None) -> ParsedHistory:
    """
    Decode a stored history payload of either format.

    Legacy arrays are converted to a chain on read.

    Raises:
        ValueError: If the payload matches neither format.
    """
    if is_legacy_payload(data):
        try:
            legacy_entries = _legacy_list_adapter.validate_python(data)
        except ValidationError as e:
            raise ValueError(f"invalid legacy history: {e}") from e
        return ParsedHistory(
            entries=convert_legacy_to_chain(legacy_entries, codec=codec),
            is_legacy=True,
            legacy_entries=legacy_entries,
        )

    if isinstance(data, dict) and "entries" in data:
        try:
            history_file = HistoryFile.model_validate(data)
        except ValidationError as e:
            raise ValueError(f"invalid history file: {e}") from e
        return ParsedHistory(entries=list(history_file.entries), is_legacy=False)

    raise ValueError(f"unrecognized history payload of type {type(data).__name__}")
