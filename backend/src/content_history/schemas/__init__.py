"""Pydantic schemas for stored history records."""
from content_history.schemas.history import (
    Chain,
    DeltaPatch,
    DocumentType,
    HistoryFile,
    LegacyVersionEntry,
    VersionEntry,
)

__all__ = [
    "Chain",
    "DeltaPatch",
    "DocumentType",
    "HistoryFile",
    "LegacyVersionEntry",
    "VersionEntry",
]
