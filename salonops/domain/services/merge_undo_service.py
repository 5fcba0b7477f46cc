"""Reverses a client merge inside its undo window."""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from salonops.domain.errors import (
    MergeInProgressError,
    NotFoundError,
    PersistenceError,
    UndoConflictError,
    UndoWindowExpiredError,
)
from salonops.domain.models.client_merge import ClientSnapshot, MergeUndoSummary, TableOutcome
from salonops.domain.services.balance_reconciler import BalanceReconciler
from salonops.domain.services.merge_registry import DEFAULT_REGISTRY, DependentTable
from salonops.domain.services.permission_gate import PermissionGate
from salonops.domain.services.reparenting_service import ReparentingService
from salonops.persistence.models.client import ClientStatus
from salonops.persistence.repositories.client_merge_log_repository import ClientMergeLogRepository
from salonops.persistence.repositories.client_repository import ClientRepository

logger = logging.getLogger(__name__)


class MergeUndoService:
    """Restores the state recorded in a merge log.

    Only what the merge itself changed is reversed: rows it reparented that
    still point at the primary, the balances it moved, the fields it
    resolved, and the clients it tombstoned.

    An undo claims the log (a client_merge_undos row) while holding the
    primary's lock, and every restored table is committed together with its
    entry in that row. A failed undo can therefore be retried: finished
    tables are not touched again and balances are never reversed twice.
    """

    def __init__(
        self, session: AsyncSession, registry: tuple[DependentTable, ...] = DEFAULT_REGISTRY
    ) -> None:
        """Initialize merge undo service."""
        self.session = session
        self.gate = PermissionGate(session)
        self.reparenting = ReparentingService(session, registry)
        self.reconciler = BalanceReconciler(session, registry)
        self.client_repo = ClientRepository(session)
        self.merge_log_repo = ClientMergeLogRepository(session)

    async def undo_merge(
        self, organization_id: int, merge_log_id: int, actor_id: int
    ) -> MergeUndoSummary:
        """Undo a merge, or finish an undo that failed part way.

        Args:
            organization_id: Organization ID
            merge_log_id: Merge to reverse
            actor_id: ID of user performing the undo

        Returns:
            Summary of what was restored

        Raises:
            AuthorizationError: If the actor may not merge clients
            NotFoundError: If the merge log does not exist in the organization
            UndoConflictError: If the merge was already undone or its clients changed since
            UndoWindowExpiredError: If the undo window has closed
            MergeInProgressError: If another merge or undo holds the primary client
            PersistenceError: If restoring the client records fails
        """
        await self.gate.authorize(actor_id, organization_id)

        merge_log = await self.merge_log_repo.get_by_id(organization_id, merge_log_id)
        if merge_log is None:
            raise NotFoundError(f"Merge log {merge_log_id} not found")

        # Later steps roll the session back on failure, which expires the instance
        primary_id = merge_log.primary_client_id
        secondary_ids = list(merge_log.secondary_client_ids)
        undo_expires_at = merge_log.undo_expires_at
        before_snapshots = dict(merge_log.before_snapshots)
        field_resolutions = dict(merge_log.field_resolutions or {})
        reparented_rows = dict(merge_log.reparented_rows or {})
        balance_transfers = dict(merge_log.balance_transfers or {})
        repointed = {int(k): v for k, v in (merge_log.repointed_tombstones or {}).items()}

        existing = await self.merge_log_repo.get_undo(merge_log_id)
        if existing is not None and existing.completed_at is not None:
            raise UndoConflictError(f"Merge {merge_log_id} was already undone")
        # An undo that was claimed inside the window may always be finished
        if existing is None and datetime.utcnow() >= undo_expires_at:
            raise UndoWindowExpiredError(
                f"Undo window for merge {merge_log_id} closed at {undo_expires_at.isoformat()}"
            )

        snapshots = {
            int(client_id): ClientSnapshot.model_validate(row)
            for client_id, row in before_snapshots.items()
        }
        # Secondaries that were already tombstoned before this request stay merged
        restored = {
            client_id: snapshots[client_id].is_active
            for client_id in secondary_ids
            if snapshots[client_id].status == ClientStatus.ACTIVE.value
        }
        await self._check_current_state(organization_id, primary_id, list(restored))

        if not await self.client_repo.acquire_merge_lock(organization_id, [primary_id]):
            raise MergeInProgressError(f"Client {primary_id} is part of a merge in progress")

        undo_id, progress = await self._claim(organization_id, merge_log_id, primary_id, actor_id)
        skipped: dict[str, str] = {}

        for key, change in reparented_rows.items():
            if key in progress:
                continue
            outcome = await self.reparenting.restore_column(
                organization_id,
                key,
                change["table"],
                change["column"],
                {int(row_id): original for row_id, original in change["rows"].items()},
                current_value=change["value"],
                record=self._recorder(undo_id, progress),
            )
            self._track(outcome, progress, skipped)

        for key, moved in balance_transfers.items():
            if key in progress:
                continue
            (outcome,) = await self.reconciler.reverse(
                organization_id,
                primary_id,
                {key: {int(client_id): amounts for client_id, amounts in moved.items()}},
                record=self._recorder(undo_id, progress),
            )
            self._track(outcome, progress, skipped)

        primary_fields = {
            field: getattr(snapshots[primary_id], field) for field in field_resolutions
        }
        counts = dict(progress)
        try:
            counts["clients"] = await self.client_repo.restore_tombstones(
                organization_id, primary_id, restored, repointed
            )
            await self.client_repo.update_fields(
                organization_id,
                primary_id,
                {**primary_fields, "status": ClientStatus.ACTIVE.value, "merge_locked_at": None},
            )
            await self.merge_log_repo.complete_undo(
                undo_id,
                performed_by=actor_id,
                restored_counts=counts,
                skipped_tables=skipped or None,
            )
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                f"Failed to restore clients for merge {merge_log_id}; the undo can be retried: {e}",
                exc_info=True,
            )
            await self.client_repo.release_merge_lock(organization_id, [primary_id])
            raise PersistenceError(f"Failed to restore merged clients: {e}") from e

        logger.info(
            f"Undid merge {merge_log_id} of clients {list(restored)} from {primary_id}",
            extra={"actor_id": actor_id, "restored_counts": counts, "skipped_tables": skipped},
        )
        return MergeUndoSummary(
            merge_log_id=merge_log_id,
            primary_client_id=primary_id,
            restored_client_ids=list(restored),
            restored_counts=counts,
            skipped_tables=skipped,
        )

    async def _claim(
        self, organization_id: int, merge_log_id: int, primary_id: int, actor_id: int
    ) -> tuple[int, dict[str, int]]:
        """Create or resume the undo record while holding the primary's lock.

        Returns:
            Undo record ID and the tables it already restored
        """
        try:
            undo = await self.merge_log_repo.get_undo(merge_log_id)
            if undo is None:
                undo = await self.merge_log_repo.claim_undo(organization_id, merge_log_id, actor_id)
        except IntegrityError:
            await self.session.rollback()
            undo = None

        if undo is None or undo.completed_at is not None:
            await self.client_repo.release_merge_lock(organization_id, [primary_id])
            raise UndoConflictError(f"Merge {merge_log_id} was already undone")

        if undo.restored_counts:
            logger.info(
                f"Resuming undo of merge {merge_log_id}",
                extra={"restored_counts": undo.restored_counts},
            )
        return undo.id, dict(undo.restored_counts or {})

    def _recorder(self, undo_id: int, progress: dict[str, int]):
        async def record(outcome: TableOutcome) -> None:
            await self.merge_log_repo.record_undo_progress(
                undo_id, {**progress, outcome.key: outcome.count}
            )

        return record

    @staticmethod
    def _track(outcome: TableOutcome, progress: dict[str, int], skipped: dict[str, Any]) -> None:
        if outcome.skipped:
            skipped[outcome.key] = outcome.skip_reason
        else:
            progress[outcome.key] = outcome.count

    async def _check_current_state(
        self, organization_id: int, primary_id: int, secondary_ids: list[int]
    ) -> None:
        clients = {
            client.id: client
            for client in await self.client_repo.get_multiple_by_ids_any_status(
                organization_id, [primary_id, *secondary_ids]
            )
        }
        primary = clients.get(primary_id)
        if primary is None:
            raise UndoConflictError(f"Client {primary_id} no longer exists")
        if primary.status == ClientStatus.MERGING.value:
            raise MergeInProgressError(f"Client {primary_id} is part of a merge in progress")
        if primary.status != ClientStatus.ACTIVE.value:
            raise UndoConflictError(f"Client {primary_id} has since been merged into another client")
        for client_id in secondary_ids:
            client = clients.get(client_id)
            if client is None or client.merged_into_client_id != primary_id:
                raise UndoConflictError(f"Client {client_id} is no longer merged into client {primary_id}")
