"""Data models for stashbulk."""

from .requests import (
    BulkMode,
    ChunkRequest,
    MetadataChunkRequest,
    RelationshipField,
    SceneMetadata,
    SceneUpdateRequest,
)
from .results import (
    ChunkError,
    ChunkFailure,
    OperationResult,
    ProgressSnapshot,
    QueueStats,
)

__all__ = [
    # Requests
    "BulkMode",
    "RelationshipField",
    "ChunkRequest",
    "SceneMetadata",
    "MetadataChunkRequest",
    "SceneUpdateRequest",
    # Results
    "ChunkError",
    "ChunkFailure",
    "OperationResult",
    "ProgressSnapshot",
    "QueueStats",
]
