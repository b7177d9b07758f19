"""Stash GraphQL client layer."""

from .executor import RemoteExecutor
from .mutations import GraphQLOperation, build_bulk_update
from .response_models import GraphQLResponse, MutationResponse

__all__ = [
    "RemoteExecutor",
    "GraphQLOperation",
    "build_bulk_update",
    "GraphQLResponse",
    "MutationResponse",
]
