"""Bulk mutation request types."""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class BulkMode(str, Enum):
    """How the related set modifies the target records' relationship field."""

    ADD = "ADD"
    REMOVE = "REMOVE"
    SET = "SET"


class RelationshipField(str, Enum):
    """Scene relationship fields that support bulk updates."""

    TAGS = "tag_ids"
    PERFORMERS = "performer_ids"
    GALLERIES = "gallery_ids"
    STUDIO = "studio_id"

    @property
    def is_single_valued(self) -> bool:
        """Whether the field holds at most one reference."""
        return self is RelationshipField.STUDIO


def _normalize_ids(values: Iterable[str | int]) -> tuple[str, ...]:
    return tuple(str(value) for value in values)


@dataclass(frozen=True)
class ChunkRequest:
    """
    Payload of one batch mutation.

    Attributes:
        record_ids: Ordered scene identifiers in this chunk
        related_ids: Related entity identifiers (tags, performers, ...)
        mode: ADD, REMOVE or SET
        field: Relationship field being modified
        batch_index: Zero-based position of the chunk within its job
    """

    record_ids: tuple[str, ...]
    related_ids: tuple[str, ...]
    mode: BulkMode
    field: RelationshipField = RelationshipField.TAGS
    batch_index: int = 0

    def __post_init__(self) -> None:
        # Accept lists of ints or strings, store as immutable tuples of strings.
        object.__setattr__(self, "record_ids", _normalize_ids(self.record_ids))
        object.__setattr__(self, "related_ids", _normalize_ids(self.related_ids))
        object.__setattr__(self, "mode", BulkMode(self.mode))
        object.__setattr__(self, "field", RelationshipField(self.field))

        if not self.record_ids:
            raise ValueError("ChunkRequest requires at least one record id")
        if self.field.is_single_valued:
            if self.mode is not BulkMode.SET:
                raise ValueError(
                    f"{self.field.value} only supports SET mode, got {self.mode.value}"
                )
            if len(self.related_ids) > 1:
                raise ValueError(
                    f"{self.field.value} accepts at most one related id, "
                    f"got {len(self.related_ids)}"
                )

    @property
    def size(self) -> int:
        """Number of records in this chunk."""
        return len(self.record_ids)

    def describe(self) -> str:
        """Short human-readable description for logs."""
        return (
            f"{self.mode.value} {len(self.related_ids)} {self.field.value} "
            f"on {self.size} record(s)"
        )


@dataclass(frozen=True)
class SceneMetadata:
    """
    Scalar scene fields overwritten by a metadata edit.

    Fields left as None keep each scene's existing value. At least one field
    must be set.

    Attributes:
        rating100: Rating on Stash's 0-100 scale
        date: Release date as YYYY-MM-DD
        organized: Organized flag
        details: Description text (surrounding whitespace is dropped)
    """

    rating100: int | None = None
    date: str | None = None
    organized: bool | None = None
    details: str | None = None

    def __post_init__(self) -> None:
        if self.details is not None:
            object.__setattr__(self, "details", self.details.strip() or None)
        if self.date is not None:
            object.__setattr__(self, "date", self.date.strip() or None)

        if not self.to_input():
            raise ValueError("No metadata changes specified")
        if self.rating100 is not None and not 0 <= self.rating100 <= 100:
            raise ValueError(f"rating100 must be between 0 and 100, got {self.rating100}")
        if self.date is not None:
            try:
                datetime.strptime(self.date, "%Y-%m-%d")
            except ValueError as e:
                raise ValueError(f"date must be YYYY-MM-DD, got {self.date!r}") from e

    def to_input(self) -> dict[str, Any]:
        """Fields that are set, keyed by their BulkSceneUpdateInput name."""
        values = {
            "rating100": self.rating100,
            "date": self.date,
            "organized": self.organized,
            "details": self.details,
        }
        return {name: value for name, value in values.items() if value is not None}

    @property
    def field_names(self) -> list[str]:
        return list(self.to_input())


@dataclass(frozen=True)
class MetadataChunkRequest:
    """
    Payload of one batch metadata mutation.

    Attributes:
        record_ids: Ordered scene identifiers in this chunk
        metadata: Values written to every scene in the chunk
        batch_index: Zero-based position of the chunk within its job
    """

    record_ids: tuple[str, ...]
    metadata: SceneMetadata
    batch_index: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "record_ids", _normalize_ids(self.record_ids))
        if not self.record_ids:
            raise ValueError("MetadataChunkRequest requires at least one record id")

    @property
    def size(self) -> int:
        """Number of records in this chunk."""
        return len(self.record_ids)

    def describe(self) -> str:
        return f"SET {', '.join(self.metadata.field_names)} on {self.size} record(s)"


# Anything RemoteExecutor.execute accepts
SceneUpdateRequest = ChunkRequest | MetadataChunkRequest
