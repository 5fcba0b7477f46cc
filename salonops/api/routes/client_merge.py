"""Client merge API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from salonops.api.deps import get_current_user, require_merge_actor
from salonops.api.schemas.client_merge import (
    ClientResponse,
    MergeClientsRequest,
    MergeClientsResponse,
    MergeConflictResponse,
    MergeLogResponse,
    MergePreviewRequest,
    MergePreviewResponse,
    ReleaseStaleLocksResponse,
    UndoMergeRequest,
    UndoMergeResponse,
)
from salonops.core.tenant_context import set_organization_context
from salonops.domain.errors import ValidationError
from salonops.domain.services.client_merge_service import ClientMergeService
from salonops.domain.services.merge_undo_service import MergeUndoService
from salonops.persistence.database import get_db
from salonops.persistence.models.organization import User

router = APIRouter()


@router.post("/merge", response_model=MergeClientsResponse)
async def merge_clients(
    request: MergeClientsRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
) -> MergeClientsResponse:
    """Merge secondary clients into a primary client."""
    set_organization_context(request.organization_id)
    summary = await ClientMergeService(db).merge_clients(
        organization_id=request.organization_id,
        primary_client_id=request.primary_client_id,
        secondary_client_ids=request.secondary_client_ids,
        field_resolutions=request.field_resolutions,
        actor_id=current_user.id,
    )
    return MergeClientsResponse(
        merge_log_id=summary.merge_log_id,
        reparenting_counts=summary.reparenting_counts,
        skipped_tables=summary.skipped_tables,
    )


@router.post("/merge/preview", response_model=MergePreviewResponse)
async def get_merge_preview(
    request: MergePreviewRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
) -> MergePreviewResponse:
    """Get a preview of merging multiple clients."""
    set_organization_context(request.organization_id)
    preview = await ClientMergeService(db).get_merge_preview(
        request.organization_id, request.client_ids, current_user.id
    )
    return MergePreviewResponse(
        clients=[ClientResponse.model_validate(c.model_dump()) for c in preview.clients],
        conflicts=[
            MergeConflictResponse(
                field=conflict.field,
                values={str(k): v for k, v in conflict.values.items()},
            )
            for conflict in preview.conflicts
        ],
        suggested_primary_id=preview.suggested_primary_id,
    )


@router.get("/merge-logs", response_model=list[MergeLogResponse])
async def list_merge_logs(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_merge_actor)],
    organization_id: Annotated[int, Query(alias="organizationId")],
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
) -> list[MergeLogResponse]:
    """List the organization's merges, newest first."""
    logs = await ClientMergeService(db).list_merge_logs(organization_id, skip, limit)
    return [MergeLogResponse.model_validate(log) for log in logs]


@router.post("/merge-locks/release-stale", response_model=ReleaseStaleLocksResponse)
async def release_stale_merge_locks(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_merge_actor)],
    organization_id: Annotated[int, Query(alias="organizationId")],
) -> ReleaseStaleLocksResponse:
    """Return clients stuck in a merge that never finished to active."""
    released = await ClientMergeService(db).release_stale_locks(organization_id, current_user.id)
    return ReleaseStaleLocksResponse(released_client_ids=released)


@router.post("/merge-logs/{merge_log_id}/undo", response_model=UndoMergeResponse)
async def undo_merge(
    merge_log_id: int,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    organization_id: Annotated[int | None, Query(alias="organizationId")] = None,
    request: Annotated[UndoMergeRequest | None, Body()] = None,
) -> UndoMergeResponse:
    """Undo a merge within its undo window."""
    if organization_id is None and request is not None:
        organization_id = request.organization_id
    if organization_id is None:
        raise ValidationError("Missing required fields")

    set_organization_context(organization_id)
    summary = await MergeUndoService(db).undo_merge(
        organization_id, merge_log_id, current_user.id
    )
    return UndoMergeResponse(
        merge_log_id=summary.merge_log_id,
        restored_client_ids=summary.restored_client_ids,
        restored_counts=summary.restored_counts,
        skipped_tables=summary.skipped_tables,
    )


@router.get("/{client_id}/merge-history", response_model=list[MergeLogResponse])
async def get_merge_history(
    client_id: int,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_merge_actor)],
    organization_id: Annotated[int, Query(alias="organizationId")],
) -> list[MergeLogResponse]:
    """Get the merges a client survived, newest first."""
    history = await ClientMergeService(db).get_merge_history(organization_id, client_id)
    return [MergeLogResponse.model_validate(log) for log in history]


@router.get("/{client_id}/canonical", response_model=ClientResponse)
async def get_canonical_client(
    client_id: int,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_merge_actor)],
    organization_id: Annotated[int, Query(alias="organizationId")],
) -> ClientResponse:
    """Resolve a client, possibly a merged one, to its surviving record."""
    client = await ClientMergeService(db).resolve_canonical(organization_id, client_id)
    return ClientResponse.model_validate(client)
