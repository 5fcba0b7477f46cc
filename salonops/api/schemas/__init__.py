"""API schemas package."""

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

__all__ = [
    "ClientResponse",
    "MergeClientsRequest",
    "MergeClientsResponse",
    "MergeConflictResponse",
    "MergeLogResponse",
    "MergePreviewRequest",
    "MergePreviewResponse",
    "ReleaseStaleLocksResponse",
    "UndoMergeRequest",
    "UndoMergeResponse",
]
