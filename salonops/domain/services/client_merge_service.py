"""Client merge service: consolidates duplicate clients into one canonical record."""

import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from salonops.domain.errors import (
    MergeInProgressError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from salonops.domain.models.client_merge import (
    RESOLVABLE_FIELDS,
    ClientSnapshot,
    FieldResolutions,
    MergeConflict,
    MergePreview,
    MergeSummary,
    TableOutcome,
)
from salonops.domain.services.balance_reconciler import BalanceReconciler, to_json_amount
from salonops.domain.services.client_snapshot_service import ClientSnapshotService
from salonops.domain.services.field_resolver import FieldResolver
from salonops.domain.services.merge_registry import DEFAULT_REGISTRY, DependentTable
from salonops.domain.services.permission_gate import PermissionGate
from salonops.domain.services.reparenting_service import ReparentContext, ReparentingService
from salonops.persistence.models.client import Client, ClientStatus
from salonops.persistence.models.client_merge_log import ClientMergeLog
from salonops.persistence.repositories.client_merge_log_repository import ClientMergeLogRepository
from salonops.persistence.repositories.client_repository import ClientRepository
from salonops.settings import settings

logger = logging.getLogger(__name__)

# Guards resolve_canonical against corrupted data
_MAX_MERGE_HOPS = 16


def validate_merge_ids(primary_client_id: int, secondary_client_ids: list[int]) -> None:
    """Reject malformed merge groups before touching the database."""
    if not secondary_client_ids:
        raise ValidationError("At least one secondary client required")
    if primary_client_id in secondary_client_ids:
        raise ValidationError("Primary client cannot be in secondary list")
    if len(set(secondary_client_ids)) != len(secondary_client_ids):
        raise ValidationError("Secondary client list contains duplicates")


class ClientMergeService:
    """Orchestrates a client merge.

    Steps run in a fixed order: authorize, snapshot, lock, resolve fields,
    reparent dependent tables, reconcile balances, tombstone, write the log.
    Failures up to and including field resolution abort the merge and
    release the lock. Once reparenting starts, table-level failures are
    skipped and the merge still completes.
    """

    def __init__(
        self, session: AsyncSession, registry: tuple[DependentTable, ...] = DEFAULT_REGISTRY
    ) -> None:
        """Initialize merge service."""
        self.session = session
        self.gate = PermissionGate(session)
        self.snapshots = ClientSnapshotService(session)
        self.field_resolver = FieldResolver(session)
        self.reparenting = ReparentingService(session, registry)
        self.reconciler = BalanceReconciler(session, registry)
        self.client_repo = ClientRepository(session)
        self.merge_log_repo = ClientMergeLogRepository(session)

    async def merge_clients(
        self,
        organization_id: int,
        primary_client_id: int,
        secondary_client_ids: list[int],
        field_resolutions: FieldResolutions | None,
        actor_id: int,
    ) -> MergeSummary:
        """Merge secondary clients into a primary client.

        Secondaries already merged into the same primary are accepted, so a
        request that failed after its structural changes can be replayed; the
        replay finds nothing left to move.

        Args:
            organization_id: Organization ID
            primary_client_id: ID of the client that will survive
            secondary_client_ids: IDs of clients to merge into the primary
            field_resolutions: Winning values to write onto the primary
            actor_id: ID of user performing the merge

        Returns:
            Merge summary with the log ID and per-table counts

        Raises:
            ValidationError: If the merge group is malformed or ineligible
            AuthorizationError: If the actor may not merge clients
            NotFoundError: If any client does not exist in the organization
            MergeInProgressError: If another merge holds one of the clients
            PersistenceError: If field resolution, tombstoning or the log write fails
        """
        validate_merge_ids(primary_client_id, secondary_client_ids)
        resolutions = field_resolutions or FieldResolutions()

        await self.gate.authorize(actor_id, organization_id)

        snapshots = await self.snapshots.capture(
            organization_id, primary_client_id, secondary_client_ids
        )
        to_lock = self._check_eligibility(snapshots, primary_client_id, secondary_client_ids)

        if not await self.client_repo.acquire_merge_lock(
            organization_id, [primary_client_id, *to_lock]
        ):
            raise MergeInProgressError("One or more clients are already part of a merge in progress")

        try:
            resolved_fields = await self.field_resolver.apply_resolutions(
                organization_id, primary_client_id, resolutions
            )
        except PersistenceError:
            await self.client_repo.release_merge_lock(organization_id, [primary_client_id, *to_lock])
            raise

        primary = snapshots[primary_client_id]
        context = ReparentContext(
            organization_id=organization_id,
            primary_id=primary_client_id,
            secondary_ids=list(secondary_client_ids),
            primary_external_id=primary.phorest_client_id,
            secondary_external_ids=[
                snapshots[client_id].phorest_client_id
                for client_id in secondary_client_ids
                if snapshots[client_id].phorest_client_id
            ],
        )
        outcomes = await self.reparenting.reparent(context)
        outcomes += await self.reconciler.reconcile(
            organization_id, primary_client_id, secondary_client_ids
        )

        merged_at = datetime.utcnow()
        try:
            repointed = await self.client_repo.tombstone(
                organization_id, to_lock, primary_client_id, actor_id, merged_at
            )
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Failed to tombstone clients {to_lock}: {e}", exc_info=True)
            await self._release_after_failure(organization_id, [primary_client_id, *to_lock])
            raise PersistenceError(f"Failed to mark secondary clients as merged: {e}") from e

        counts = {o.key: o.count for o in outcomes if not o.skipped}
        skipped = {o.key: o.skip_reason for o in outcomes if o.skipped}

        try:
            merge_log = await self.merge_log_repo.create_merge_log(
                organization_id=organization_id,
                primary_client_id=primary_client_id,
                secondary_client_ids=list(secondary_client_ids),
                performed_by=actor_id,
                field_resolutions=resolutions.to_update() or None,
                before_snapshots={
                    str(client_id): snapshot.model_dump(mode="json")
                    for client_id, snapshot in snapshots.items()
                },
                reparenting_counts=counts,
                skipped_tables=skipped or None,
                reparented_rows=self._row_changes(outcomes) or None,
                balance_transfers=self._balance_transfers(outcomes) or None,
                repointed_tombstones={str(k): v for k, v in repointed.items()} or None,
            )
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                f"Clients merged into {primary_client_id} but the merge log could not be written: {e}",
                exc_info=True,
            )
            raise PersistenceError(
                "Merge applied but the merge log could not be written; verify client state before retrying"
            ) from e

        logger.info(
            f"Merged clients {secondary_client_ids} into {primary_client_id}",
            extra={
                "actor_id": actor_id,
                "merge_log_id": merge_log.id,
                "resolved_fields": resolved_fields,
                "reparenting_counts": counts,
                "skipped_tables": skipped,
            },
        )
        return MergeSummary(
            merge_log_id=merge_log.id,
            primary_client_id=primary_client_id,
            secondary_client_ids=list(secondary_client_ids),
            reparenting_counts=counts,
            skipped_tables=skipped,
        )

    def _check_eligibility(
        self,
        snapshots: dict[int, ClientSnapshot],
        primary_client_id: int,
        secondary_client_ids: list[int],
    ) -> list[int]:
        """Validate statuses and return the secondaries that still need merging."""
        primary = snapshots[primary_client_id]
        if primary.status == ClientStatus.MERGING.value:
            raise MergeInProgressError(f"Client {primary_client_id} is part of a merge in progress")
        if primary.status == ClientStatus.MERGED.value:
            raise ValidationError(
                f"Primary client {primary_client_id} was merged into client {primary.merged_into_client_id}"
            )

        to_lock = []
        for client_id in secondary_client_ids:
            snapshot = snapshots[client_id]
            if snapshot.status == ClientStatus.ACTIVE.value:
                to_lock.append(client_id)
            elif snapshot.status == ClientStatus.MERGING.value:
                raise MergeInProgressError(f"Client {client_id} is part of a merge in progress")
            elif snapshot.merged_into_client_id != primary_client_id:
                raise ValidationError(
                    f"Client {client_id} was already merged into client {snapshot.merged_into_client_id}"
                )
        return to_lock

    async def _release_after_failure(self, organization_id: int, client_ids: list[int]) -> None:
        try:
            await self.client_repo.release_merge_lock(organization_id, client_ids)
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Failed to release merge lock on clients {client_ids}: {e}", exc_info=True)

    @staticmethod
    def _row_changes(outcomes: list[TableOutcome]) -> dict:
        return {
            o.key: {
                "table": o.table,
                "column": o.column,
                "value": o.new_value,
                "rows": {str(row_id): value for row_id, value in o.changed_rows.items()},
            }
            for o in outcomes
            if o.changed_rows
        }

    @staticmethod
    def _balance_transfers(outcomes: list[TableOutcome]) -> dict:
        return {
            o.key: {
                str(client_id): {c: to_json_amount(v) for c, v in amounts.items()}
                for client_id, amounts in o.transfers.items()
            }
            for o in outcomes
            if o.transfers
        }

    async def get_merge_preview(
        self, organization_id: int, client_ids: list[int], actor_id: int
    ) -> MergePreview:
        """Get a preview of merging clients, showing field conflicts.

        Args:
            organization_id: Organization ID
            client_ids: Candidate client IDs
            actor_id: ID of user requesting the preview

        Returns:
            MergePreview with client snapshots and conflicts

        Raises:
            ValidationError: If fewer than 2 distinct clients are given
            NotFoundError: If any client does not exist in the organization
        """
        unique_ids = list(dict.fromkeys(client_ids))
        if len(unique_ids) < 2:
            raise ValidationError("At least 2 clients required for merge")

        await self.gate.authorize(actor_id, organization_id)
        snapshots = await self.snapshots.capture(organization_id, unique_ids[0], unique_ids[1:])
        clients = [snapshots[client_id] for client_id in unique_ids]

        conflicts = []
        for field in RESOLVABLE_FIELDS:
            values = {}
            for client in clients:
                value = getattr(client, field)
                if value not in (None, ""):
                    values[client.id] = value
            if len(set(values.values())) > 1:
                conflicts.append(MergeConflict(field, values))

        # Suggest the oldest active client as primary
        active = [c for c in clients if c.status == ClientStatus.ACTIVE.value]
        suggested = min(active, key=lambda c: (c.created_at, c.id)) if active else None

        return MergePreview(
            clients=clients,
            conflicts=conflicts,
            suggested_primary_id=suggested.id if suggested else None,
        )

    async def get_merge_history(
        self, organization_id: int, client_id: int
    ) -> list[ClientMergeLog]:
        """Get merge logs in which the client survived, newest first."""
        return await self.merge_log_repo.get_merge_history_for_client(organization_id, client_id)

    async def list_merge_logs(
        self, organization_id: int, skip: int = 0, limit: int = 100
    ) -> list[ClientMergeLog]:
        """List an organization's merge logs, newest first."""
        return await self.merge_log_repo.get_merge_logs_for_organization(organization_id, skip, limit)

    async def release_stale_locks(self, organization_id: int, actor_id: int) -> list[int]:
        """Release merge locks left behind by a merge or undo that never finished.

        Only locks older than ``merge_lock_timeout_minutes`` are released. A
        released merge can be replayed and an interrupted undo retried.

        Returns:
            IDs of the clients returned to active
        """
        await self.gate.authorize(actor_id, organization_id)
        locked_before = datetime.utcnow() - timedelta(minutes=settings.merge_lock_timeout_minutes)
        released = await self.client_repo.release_stale_merge_locks(organization_id, locked_before)
        if released:
            logger.warning(
                f"Released stale merge locks on clients {released}",
                extra={"actor_id": actor_id},
            )
        return released

    async def resolve_canonical(self, organization_id: int, client_id: int) -> Client:
        """Follow merged_into_client_id to the surviving client.

        Raises:
            NotFoundError: If the client or a link in its chain is missing
        """
        seen: set[int] = set()
        current_id = client_id
        for _ in range(_MAX_MERGE_HOPS):
            client = await self.client_repo.get_by_id(organization_id, current_id)
            if client is None:
                raise NotFoundError(f"Client {current_id} not found")
            if client.status != ClientStatus.MERGED.value or client.merged_into_client_id is None:
                return client
            seen.add(client.id)
            if client.merged_into_client_id in seen:
                break
            current_id = client.merged_into_client_id
        raise NotFoundError(f"Could not resolve canonical client for {client_id}")
