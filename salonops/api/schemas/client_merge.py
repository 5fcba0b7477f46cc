"""Client merge request and response schemas.

The merge endpoints speak camelCase on the wire; field resolution keys stay
as client column names.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from salonops.domain.models.client_merge import FieldResolutions


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MergeClientsRequest(CamelModel):
    """Merge clients request."""

    organization_id: int
    primary_client_id: int
    secondary_client_ids: list[int]
    field_resolutions: FieldResolutions | None = None


class MergeClientsResponse(CamelModel):
    """Merge clients response."""

    success: bool = True
    merge_log_id: int
    reparenting_counts: dict[str, int]
    skipped_tables: dict[str, str] = {}


class MergePreviewRequest(CamelModel):
    """Merge preview request."""

    organization_id: int
    client_ids: list[int]


class ClientResponse(CamelModel):
    """Client record as shown in previews and canonical lookups."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    id: int
    first_name: str | None
    last_name: str | None
    email: str | None
    phone: str | None
    is_vip: bool
    status: str
    merged_into_client_id: int | None
    created_at: datetime


class MergeConflictResponse(CamelModel):
    """Merge conflict response."""

    field: str
    values: dict[str, Any]  # client_id (as string) -> value


class MergePreviewResponse(CamelModel):
    """Merge preview response."""

    clients: list[ClientResponse]
    conflicts: list[MergeConflictResponse]
    suggested_primary_id: int | None


class MergeLogResponse(CamelModel):
    """One recorded merge."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    id: int
    primary_client_id: int
    secondary_client_ids: list[int]
    performed_by: int
    field_resolutions: dict[str, Any] | None
    reparenting_counts: dict[str, int]
    skipped_tables: dict[str, str] | None
    undo_expires_at: datetime
    created_at: datetime


class UndoMergeRequest(CamelModel):
    """Undo request body; the organization may also come as a query parameter."""

    organization_id: int | None = None


class UndoMergeResponse(CamelModel):
    """Undo merge response."""

    success: bool = True
    merge_log_id: int
    restored_client_ids: list[int]
    restored_counts: dict[str, int]
    skipped_tables: dict[str, str] = {}


class ReleaseStaleLocksResponse(CamelModel):
    """Clients returned to active after an abandoned merge or undo."""

    released_client_ids: list[int]
