"""Domain services."""

from salonops.domain.services.client_merge_service import ClientMergeService
from salonops.domain.services.merge_undo_service import MergeUndoService

__all__ = ["ClientMergeService", "MergeUndoService"]
