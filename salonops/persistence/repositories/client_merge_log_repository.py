"""Client merge log repository."""

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from salonops.persistence.models.client_merge_log import ClientMergeLog, ClientMergeUndo
from salonops.persistence.repositories.base import BaseRepository
from salonops.settings import settings


class ClientMergeLogRepository(BaseRepository[ClientMergeLog]):
    """Repository for ClientMergeLog entities.

    Merge logs are append-only: there is no update method.
    """

    def __init__(self, session: AsyncSession):
        """Initialize client merge log repository."""
        super().__init__(ClientMergeLog, session)

    async def create_merge_log(
        self,
        organization_id: int,
        primary_client_id: int,
        secondary_client_ids: list[int],
        performed_by: int,
        field_resolutions: dict[str, Any] | None,
        before_snapshots: dict[str, Any],
        reparenting_counts: dict[str, int],
        skipped_tables: dict[str, str] | None = None,
        reparented_rows: dict[str, Any] | None = None,
        balance_transfers: dict[str, Any] | None = None,
        repointed_tombstones: dict[str, int] | None = None,
    ) -> ClientMergeLog:
        """Persist the audit record of a merge.

        Args:
            organization_id: Organization ID
            primary_client_id: ID of the surviving client
            secondary_client_ids: IDs of the merged clients
            performed_by: User ID who performed the merge
            field_resolutions: Values written onto the primary
            before_snapshots: Client rows read before the merge, keyed by ID
            reparenting_counts: Rows changed per registry key
            skipped_tables: Registry keys that failed, with reasons
            reparented_rows: Row-level changes, for undo
            balance_transfers: Balance amounts moved, for undo
            repointed_tombstones: Earlier tombstones re-pointed at the primary

        Returns:
            Created merge log
        """
        now = datetime.utcnow()
        merge_log = ClientMergeLog(
            organization_id=organization_id,
            primary_client_id=primary_client_id,
            secondary_client_ids=secondary_client_ids,
            performed_by=performed_by,
            field_resolutions=field_resolutions,
            before_snapshots=before_snapshots,
            reparenting_counts=reparenting_counts,
            skipped_tables=skipped_tables,
            reparented_rows=reparented_rows,
            balance_transfers=balance_transfers,
            repointed_tombstones=repointed_tombstones,
            undo_expires_at=now + timedelta(days=settings.merge_undo_window_days),
            created_at=now,
        )
        self.session.add(merge_log)
        await self.session.commit()
        return merge_log

    async def get_merge_history_for_client(
        self, organization_id: int, client_id: int
    ) -> list[ClientMergeLog]:
        """Get all merge logs where this client was the primary.

        Args:
            organization_id: Organization ID
            client_id: Client ID to get history for

        Returns:
            List of merge logs, newest first
        """
        stmt = (
            select(ClientMergeLog)
            .where(
                ClientMergeLog.organization_id == organization_id,
                ClientMergeLog.primary_client_id == client_id,
            )
            .order_by(ClientMergeLog.created_at.desc(), ClientMergeLog.id.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_merge_logs_for_organization(
        self, organization_id: int, skip: int = 0, limit: int = 100
    ) -> list[ClientMergeLog]:
        """Get all merge logs for an organization.

        Args:
            organization_id: Organization ID
            skip: Number of records to skip
            limit: Maximum records to return

        Returns:
            List of merge logs, newest first
        """
        stmt = (
            select(ClientMergeLog)
            .where(ClientMergeLog.organization_id == organization_id)
            .order_by(ClientMergeLog.created_at.desc(), ClientMergeLog.id.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_undo(self, merge_log_id: int) -> ClientMergeUndo | None:
        """Get the undo record for a merge log, finished or not."""
        stmt = (
            select(ClientMergeUndo)
            .where(ClientMergeUndo.merge_log_id == merge_log_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def claim_undo(
        self, organization_id: int, merge_log_id: int, performed_by: int
    ) -> ClientMergeUndo:
        """Insert the undo record for a merge log before anything is restored.

        merge_log_id is unique, so only one undo can ever claim a log.

        Raises:
            IntegrityError: If another undo already claimed the log
        """
        undo = ClientMergeUndo(
            organization_id=organization_id,
            merge_log_id=merge_log_id,
            performed_by=performed_by,
            restored_counts={},
            skipped_tables=None,
            completed_at=None,
        )
        self.session.add(undo)
        await self.session.commit()
        return undo

    async def record_undo_progress(self, undo_id: int, restored_counts: dict[str, int]) -> None:
        """Store the tables restored so far.

        Not committed here: the caller commits it together with the table it
        just restored.
        """
        await self.session.execute(
            update(ClientMergeUndo)
            .where(ClientMergeUndo.id == undo_id)
            .values(restored_counts=restored_counts)
            .execution_options(synchronize_session=False)
        )

    async def complete_undo(
        self,
        undo_id: int,
        performed_by: int,
        restored_counts: dict[str, int],
        skipped_tables: dict[str, str] | None = None,
    ) -> None:
        """Mark an undo as finished, committing the caller's pending client restores with it."""
        await self.session.execute(
            update(ClientMergeUndo)
            .where(ClientMergeUndo.id == undo_id)
            .values(
                performed_by=performed_by,
                restored_counts=restored_counts,
                skipped_tables=skipped_tables,
                completed_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
