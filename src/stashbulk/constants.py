"""Named constants for stashbulk.

Defaults mirror the values the Stash userscripts shipped with; the GraphQL
documents target Stash's ``bulkSceneUpdate`` mutation.
"""

# -----------------------------------------------------------------------------
# Request level (RemoteExecutor)
# -----------------------------------------------------------------------------

DEFAULT_REQUEST_TIMEOUT: float = 30.0
DEFAULT_REQUEST_RETRY_ATTEMPTS: int = 2
DEFAULT_REQUEST_RETRY_DELAY: float = 1.0

# -----------------------------------------------------------------------------
# Chunk level (TaskQueue)
# -----------------------------------------------------------------------------

DEFAULT_CONCURRENCY: int = 4
DEFAULT_QUEUE_RETRY_COUNT: int = 2
# Larger than one request with its internal retries so the watchdog only
# catches calls that are genuinely stuck.
DEFAULT_TASK_TIMEOUT: float = 120.0
DEFAULT_QUEUE_BASE_DELAY: float = 1.0
DEFAULT_QUEUE_DELAY_CAP: float = 10.0

# -----------------------------------------------------------------------------
# Partitioning
# -----------------------------------------------------------------------------

DEFAULT_BATCH_SIZE: int = 50

# -----------------------------------------------------------------------------
# GraphQL
# -----------------------------------------------------------------------------

API_KEY_HEADER: str = "ApiKey"

# Relationship set fields take a BulkUpdateIds input ({ids, mode}).
BULK_UPDATE_IDS_MUTATION: str = """
mutation BulkSceneUpdate($ids: [ID!]!, $related: BulkUpdateIds!) {
    bulkSceneUpdate(input: { ids: $ids, %(field)s: $related }) {
        id
    }
}
"""

# studio_id is a single nullable reference; null clears it.
BULK_UPDATE_STUDIO_MUTATION: str = """
mutation BulkSceneUpdateStudio($ids: [ID!]!, $studio_id: ID) {
    bulkSceneUpdate(input: { ids: $ids, studio_id: $studio_id }) {
        id
    }
}
"""

# Scalar metadata fields travel in a full BulkSceneUpdateInput.
BULK_UPDATE_METADATA_MUTATION: str = """
mutation BulkSceneUpdateMetadata($input: BulkSceneUpdateInput!) {
    bulkSceneUpdate(input: $input) {
        id
    }
}
"""

# Maximum length of a server error detail kept in exception messages
MAX_ERROR_DETAIL_LENGTH: int = 200
