"""GraphQL documents for bulk scene mutations."""

from dataclasses import dataclass
from typing import Any

from ..constants import (
    BULK_UPDATE_IDS_MUTATION,
    BULK_UPDATE_METADATA_MUTATION,
    BULK_UPDATE_STUDIO_MUTATION,
)
from ..models.requests import MetadataChunkRequest, RelationshipField, SceneUpdateRequest

BULK_SCENE_UPDATE = "bulkSceneUpdate"


@dataclass(frozen=True)
class GraphQLOperation:
    """A GraphQL document with its variables, ready to POST."""

    operation_name: str
    query: str
    variables: dict[str, Any]
    result_field: str = BULK_SCENE_UPDATE


def build_bulk_update(request: SceneUpdateRequest) -> GraphQLOperation:
    """
    Build the bulkSceneUpdate mutation for one chunk.

    Set-valued fields send ``{"ids": [...], "mode": ...}``; the studio field
    sends a single id, or null to clear it. Metadata chunks send every set
    field inside one ``input`` object.

    Args:
        request: Chunk to mutate

    Returns:
        GraphQLOperation for the chunk
    """
    ids = list(request.record_ids)

    if isinstance(request, MetadataChunkRequest):
        return GraphQLOperation(
            operation_name="BulkSceneUpdateMetadata",
            query=BULK_UPDATE_METADATA_MUTATION,
            variables={"input": {"ids": ids, **request.metadata.to_input()}},
        )

    if request.field is RelationshipField.STUDIO:
        studio_id = request.related_ids[0] if request.related_ids else None
        return GraphQLOperation(
            operation_name="BulkSceneUpdateStudio",
            query=BULK_UPDATE_STUDIO_MUTATION,
            variables={"ids": ids, "studio_id": studio_id},
        )

    return GraphQLOperation(
        operation_name="BulkSceneUpdate",
        query=BULK_UPDATE_IDS_MUTATION % {"field": request.field.value},
        variables={
            "ids": ids,
            "related": {"ids": list(request.related_ids), "mode": request.mode.value},
        },
    )
