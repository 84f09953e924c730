"""
Pydantic schemas for version history records.

A document's history is a chain of VersionEntry records ordered newest first.
Base entries carry full content; delta entries carry a patch that transforms the
next older entry's content into their own.

On disk the current format is an object tagged with formatVersion=2. Stores
written before delta compression hold a bare JSON array of full-content records
(LegacyVersionEntry). Keys written by earlier deployments (type, content, patch,
originalLength, resultLength, version, useDelta) are accepted on read.
"""
from enum import StrEnum
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

HISTORY_FORMAT_VERSION = 2


class DocumentType(StrEnum):
    """Kind of document a history chain belongs to."""

    POST = "post"
    PAGE = "page"


class DeltaPatch(BaseModel):
    """
    Textual patch between two versions.

    source_length and target_length are the lengths of the un-diffed strings.
    They are integrity checks only; the patch text is authoritative.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    patch_text: str = Field(
        serialization_alias="patchText",
        validation_alias=AliasChoices("patchText", "patch", "patch_text"),
    )
    source_length: int = Field(
        ge=0,
        serialization_alias="sourceLength",
        validation_alias=AliasChoices("sourceLength", "originalLength", "source_length"),
    )
    target_length: int = Field(
        ge=0,
        serialization_alias="targetLength",
        validation_alias=AliasChoices("targetLength", "resultLength", "target_length"),
    )


class VersionEntry(BaseModel):
    """One node in a document's history chain."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    id: str = Field(min_length=1)
    timestamp: int  # epoch milliseconds
    document_type: DocumentType = Field(
        serialization_alias="documentType",
        validation_alias=AliasChoices("documentType", "type", "document_type"),
    )
    slug: str = Field(
        validation_alias=AliasChoices("slug", "slugAtTimeOfWrite"),
    )  # slug at time of write
    summary: str | None = None
    is_base: bool = Field(
        serialization_alias="isBase",
        validation_alias=AliasChoices("isBase", "is_base"),
    )
    full_content: str | None = Field(
        default=None,
        serialization_alias="fullContent",
        validation_alias=AliasChoices("fullContent", "content", "full_content"),
    )
    delta: DeltaPatch | None = None

    @model_validator(mode="after")
    def validate_storage_kind(self) -> "VersionEntry":
        """A base carries full content and no delta; a delta entry the reverse."""
        if self.is_base:
            if self.full_content is None:
                raise ValueError(f"Base version '{self.id}' is missing its content")
            if self.delta is not None:
                raise ValueError(f"Base version '{self.id}' must not carry a delta")
        else:
            if self.delta is None:
                raise ValueError(f"Delta version '{self.id}' is missing its delta")
            if self.full_content is not None:
                raise ValueError(f"Delta version '{self.id}' must not carry full content")
        return self

    def to_storage(self) -> dict:
        """Serialize with on-disk key names, omitting absent optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class LegacyVersionEntry(BaseModel):
    """Full-content history record from the pre-delta store format."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    id: str = Field(min_length=1)
    timestamp: int
    content: str
    document_type: DocumentType = Field(
        serialization_alias="documentType",
        validation_alias=AliasChoices("documentType", "type", "document_type"),
    )
    slug: str
    summary: str | None = None


class HistoryFile(BaseModel):
    """Persisted current-format history: a tagged wrapper around the chain."""

    model_config = ConfigDict(populate_by_name=True)

    format_version: Literal[2] = Field(
        default=HISTORY_FORMAT_VERSION,
        serialization_alias="formatVersion",
        validation_alias=AliasChoices("formatVersion", "version", "format_version"),
    )
    uses_delta: Literal[True] = Field(
        default=True,
        serialization_alias="usesDelta",
        validation_alias=AliasChoices("usesDelta", "useDelta", "uses_delta"),
    )
    entries: list[VersionEntry] = Field(default_factory=list)

    def to_storage(self) -> dict:
        """Serialize with on-disk key names, omitting absent optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# Newest-first sequence of entries for one document
Chain = list[VersionEntry]
