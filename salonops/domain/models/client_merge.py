"""Typed structures passed between the client merge components."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr

from salonops.domain.errors import PartialReparentError


class FieldResolutions(BaseModel):
    """Winning values for the primary client's resolvable fields.

    Only fields explicitly set by the caller are written; unknown fields
    are rejected.
    """

    model_config = ConfigDict(extra="forbid")

    first_name: str | None = None
    last_name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    notes: str | None = None
    is_vip: bool | None = None
    lead_source: str | None = None
    preferred_stylist_id: int | None = None
    location_id: int | None = None

    def to_update(self) -> dict[str, Any]:
        """Return only the fields the caller chose."""
        return self.model_dump(exclude_unset=True, mode="json")


RESOLVABLE_FIELDS: tuple[str, ...] = tuple(FieldResolutions.model_fields)


class ClientSnapshot(BaseModel):
    """Full prior state of a client row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    notes: str | None = None
    is_vip: bool = False
    lead_source: str | None = None
    preferred_stylist_id: int | None = None
    location_id: int | None = None
    phorest_client_id: str | None = None
    status: str
    is_active: bool
    merged_into_client_id: int | None = None
    merged_at: datetime | None = None
    merged_by: int | None = None
    created_at: datetime
    updated_at: datetime | None = None


@dataclass
class TableOutcome:
    """Result of processing one registry entry.

    Either ``count`` rows changed, or the entry was skipped and ``error``
    says why.
    """

    key: str
    count: int = 0
    error: PartialReparentError | None = None
    # row id -> value the reference held before the rewrite
    changed_rows: dict[int, Any] = field(default_factory=dict)
    table: str | None = None
    column: str | None = None
    # value the reference was rewritten to
    new_value: Any = None
    # client id -> {balance column -> amount moved}
    transfers: dict[int, dict[str, Any]] = field(default_factory=dict)

    @property
    def skipped(self) -> bool:
        return self.error is not None

    @property
    def skip_reason(self) -> str | None:
        return self.error.reason if self.error else None

    @classmethod
    def skip(cls, key: str, reason: str) -> "TableOutcome":
        return cls(key=key, error=PartialReparentError(key, reason))


@dataclass
class MergeSummary:
    """Outcome of a successful merge."""

    merge_log_id: int
    primary_client_id: int
    secondary_client_ids: list[int]
    reparenting_counts: dict[str, int]
    skipped_tables: dict[str, str]


@dataclass
class MergeUndoSummary:
    """Outcome of a successful undo."""

    merge_log_id: int
    primary_client_id: int
    restored_client_ids: list[int]
    restored_counts: dict[str, int]
    skipped_tables: dict[str, str]


@dataclass
class MergeConflict:
    """A resolvable field on which the candidate clients disagree."""

    field: str
    values: dict[int, Any]  # {client_id: value}


@dataclass
class MergePreview:
    """Preview of a merge operation."""

    clients: list[ClientSnapshot]
    conflicts: list[MergeConflict]
    suggested_primary_id: int | None = None
