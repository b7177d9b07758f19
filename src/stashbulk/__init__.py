"""stashbulk - Bulk scene edits for a Stash server."""

from .config import BulkToolConfig, load_config
from .engine import BulkEditOptions, BulkMutationCoordinator, apply_bulk_edit, apply_bulk_metadata
from .models import SceneMetadata

__version__ = "0.1.0"
__all__ = [
    "BulkToolConfig",
    "load_config",
    "BulkEditOptions",
    "BulkMutationCoordinator",
    "SceneMetadata",
    "apply_bulk_edit",
    "apply_bulk_metadata",
]
