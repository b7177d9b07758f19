"""Pydantic models for Stash GraphQL responses.

Design Principles:
- Graceful degradation: extra="allow" for unknown fields
- A response either carries ``errors`` (the server rejected the request) or
  ``data``; both are validated here so the executor only deals with types

Usage:
    envelope = GraphQLResponse.model_validate(response.json())
    if envelope.errors:
        raise SemanticError(envelope.get_error_message(), ...)
    ack = MutationResponse.from_data(envelope.data, "bulkSceneUpdate")
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..constants import MAX_ERROR_DETAIL_LENGTH


class GraphQLErrorLocation(BaseModel):
    """Line/column of a GraphQL error in the submitted document."""

    line: int | None = None
    column: int | None = None


class GraphQLError(BaseModel):
    """One entry of a GraphQL ``errors`` array.

    Attributes:
        message: Primary error message
        path: Response path the error relates to
        locations: Document locations
        extensions: Server-specific details (error codes)
    """

    message: str = Field("Unknown error", description="Primary error message")
    path: list[str | int] | None = Field(None, description="Response path")
    locations: list[GraphQLErrorLocation] | None = Field(None, description="Document locations")
    extensions: dict[str, Any] | None = Field(None, description="Server-specific details")

    model_config = {"extra": "allow"}

    def get_full_message(self) -> str:
        """Message with the error code appended when the server provided one."""
        msg = self.message
        code = (self.extensions or {}).get("code")
        if code:
            msg += f" (Code: {code})"
        if self.path:
            msg += f" at {'.'.join(str(p) for p in self.path)}"
        if len(msg) > MAX_ERROR_DETAIL_LENGTH:
            msg = msg[: MAX_ERROR_DETAIL_LENGTH - 3] + "..."
        return msg


class GraphQLResponse(BaseModel):
    """Top-level GraphQL response envelope."""

    data: dict[str, Any] | None = None
    errors: list[GraphQLError] | None = None

    model_config = {"extra": "allow"}

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def get_error_message(self) -> str:
        """
        Combined message for all errors.

        Returns:
            First error's full message, with a count of any further errors
        """
        if not self.errors:
            return ""
        first = self.errors[0].get_full_message()
        if len(self.errors) > 1:
            first += f" (+{len(self.errors) - 1} more)"
        return first


class AcknowledgedRecord(BaseModel):
    """A record returned by a bulk mutation."""

    id: str

    model_config = {"extra": "allow"}

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        """Stash IDs are strings in GraphQL but may arrive as numbers."""
        return str(v)


class MutationResponse(BaseModel):
    """Per-record acknowledgement of one bulk mutation.

    Attributes:
        operation: Name of the mutation field (e.g. bulkSceneUpdate)
        records: Records the server reported as updated
    """

    operation: str
    records: list[AcknowledgedRecord] = Field(default_factory=list)

    @classmethod
    def from_data(cls, data: dict[str, Any] | None, operation: str) -> "MutationResponse":
        """
        Extract the acknowledgement list for ``operation`` from a data payload.

        Args:
            data: ``data`` member of the GraphQL response
            operation: Mutation field name

        Returns:
            MutationResponse (empty when the server returned null)
        """
        payload = (data or {}).get(operation) or []
        if isinstance(payload, dict):
            payload = [payload]
        return cls.model_validate({"operation": operation, "records": payload})

    @property
    def acknowledged_ids(self) -> list[str]:
        return [record.id for record in self.records]
