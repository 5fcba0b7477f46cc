"""Client repository."""

from datetime import datetime
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from salonops.persistence.models.client import Client, ClientStatus
from salonops.persistence.repositories.base import BaseRepository


def _select_clients():
    # Merge steps write with bulk UPDATEs, so reads must overwrite identity-mapped rows.
    return select(Client).execution_options(populate_existing=True)


def _update_clients():
    return update(Client).execution_options(synchronize_session=False)


class ClientRepository(BaseRepository[Client]):
    """Repository for Client entities."""

    def __init__(self, session: AsyncSession):
        """Initialize client repository."""
        super().__init__(Client, session)

    async def get_by_id(self, organization_id: int, id: int) -> Client | None:
        """Get client by ID regardless of status."""
        stmt = _select_clients().where(
            Client.id == id,
            Client.organization_id == organization_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_multiple_by_ids_any_status(
        self, organization_id: int, ids: list[int]
    ) -> list[Client]:
        """Get multiple clients by IDs regardless of status.

        Args:
            organization_id: Organization ID
            ids: List of client IDs

        Returns:
            List of clients found
        """
        if not ids:
            return []

        stmt = _select_clients().where(
            Client.organization_id == organization_id,
            Client.id.in_(ids),
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update_fields(
        self, organization_id: int, client_id: int, values: dict[str, Any]
    ) -> int:
        """Write several fields with a single UPDATE statement.

        Returns:
            Number of rows updated (0 or 1)
        """
        stmt = (
            _update_clients()
            .where(Client.id == client_id, Client.organization_id == organization_id)
            .values(**values, updated_at=datetime.utcnow())
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def acquire_merge_lock(self, organization_id: int, client_ids: list[int]) -> bool:
        """Move every given client from active to merging, or none of them.

        The status transition is a compare-and-set: if any client is not
        active (already merging or merged) nothing changes.

        Returns:
            True if all clients were locked
        """
        if not client_ids:
            return True
        stmt = (
            _update_clients()
            .where(
                Client.organization_id == organization_id,
                Client.id.in_(client_ids),
                Client.status == ClientStatus.ACTIVE.value,
            )
            .values(status=ClientStatus.MERGING.value, merge_locked_at=datetime.utcnow())
        )
        result = await self.session.execute(stmt)
        if result.rowcount != len(set(client_ids)):
            await self.session.rollback()
            return False
        await self.session.commit()
        return True

    async def release_merge_lock(self, organization_id: int, client_ids: list[int]) -> None:
        """Return locked clients to active."""
        if not client_ids:
            return
        stmt = (
            _update_clients()
            .where(
                Client.organization_id == organization_id,
                Client.id.in_(client_ids),
                Client.status == ClientStatus.MERGING.value,
            )
            .values(status=ClientStatus.ACTIVE.value, merge_locked_at=None)
        )
        await self.session.execute(stmt)
        await self.session.commit()

    async def release_stale_merge_locks(
        self, organization_id: int, locked_before: datetime
    ) -> list[int]:
        """Return clients abandoned in the merging state to active.

        A lock older than ``locked_before`` (or one with no lock time) belongs
        to a merge or undo whose process died before releasing it.

        Returns:
            IDs of the released clients
        """
        stmt = select(Client.id).where(
            Client.organization_id == organization_id,
            Client.status == ClientStatus.MERGING.value,
            or_(Client.merge_locked_at.is_(None), Client.merge_locked_at < locked_before),
        )
        client_ids = list((await self.session.execute(stmt)).scalars().all())
        if client_ids:
            await self.session.execute(
                _update_clients()
                .where(
                    Client.id.in_(client_ids),
                    Client.status == ClientStatus.MERGING.value,
                )
                .values(status=ClientStatus.ACTIVE.value, merge_locked_at=None)
            )
        await self.session.commit()
        return client_ids

    async def tombstone(
        self,
        organization_id: int,
        secondary_ids: list[int],
        primary_id: int,
        actor_id: int,
        timestamp: datetime,
    ) -> dict[int, int]:
        """Mark secondaries as merged into the primary and release the primary.

        Clients previously merged into one of the secondaries are re-pointed
        at the primary so merge chains never form. Everything happens in one
        commit.

        Args:
            organization_id: Organization ID
            secondary_ids: Locked clients to tombstone
            primary_id: Surviving client
            actor_id: User performing the merge
            timestamp: Merge time

        Returns:
            Re-pointed tombstones: client ID -> previous merged_into_client_id
        """
        repointed: dict[int, int] = {}
        if secondary_ids:
            stmt = select(Client.id, Client.merged_into_client_id).where(
                Client.organization_id == organization_id,
                Client.merged_into_client_id.in_(secondary_ids),
                Client.status == ClientStatus.MERGED.value,
            )
            repointed = {row[0]: row[1] for row in (await self.session.execute(stmt)).all()}
            if repointed:
                await self.session.execute(
                    _update_clients()
                    .where(Client.id.in_(list(repointed)))
                    .values(merged_into_client_id=primary_id)
                )

            await self.session.execute(
                _update_clients()
                .where(
                    Client.organization_id == organization_id,
                    Client.id.in_(secondary_ids),
                    Client.status == ClientStatus.MERGING.value,
                )
                .values(
                    status=ClientStatus.MERGED.value,
                    merged_into_client_id=primary_id,
                    merged_at=timestamp,
                    merged_by=actor_id,
                    is_active=False,
                    merge_locked_at=None,
                    updated_at=timestamp,
                )
            )

        await self.session.execute(
            _update_clients()
            .where(
                Client.organization_id == organization_id,
                Client.id == primary_id,
                Client.status == ClientStatus.MERGING.value,
            )
            .values(status=ClientStatus.ACTIVE.value, merge_locked_at=None)
        )
        await self.session.commit()
        return repointed

    async def restore_tombstones(
        self,
        organization_id: int,
        primary_id: int,
        restored: dict[int, bool],
        repointed: dict[int, int],
    ) -> int:
        """Reverse a tombstone write.

        Args:
            organization_id: Organization ID
            primary_id: Client the secondaries were merged into
            restored: Secondary client ID -> is_active value to restore
            repointed: Earlier tombstone ID -> merged_into_client_id to restore

        Returns:
            Number of secondaries returned to active
        """
        now = datetime.utcnow()
        reactivated = 0
        for client_id, is_active in restored.items():
            result = await self.session.execute(
                _update_clients()
                .where(
                    Client.organization_id == organization_id,
                    Client.id == client_id,
                    Client.status == ClientStatus.MERGED.value,
                    Client.merged_into_client_id == primary_id,
                )
                .values(
                    status=ClientStatus.ACTIVE.value,
                    merged_into_client_id=None,
                    merged_at=None,
                    merged_by=None,
                    is_active=is_active,
                    updated_at=now,
                )
            )
            reactivated += result.rowcount or 0
        for client_id, previous in repointed.items():
            await self.session.execute(
                _update_clients()
                .where(
                    Client.organization_id == organization_id,
                    Client.id == client_id,
                    Client.merged_into_client_id == primary_id,
                )
                .values(merged_into_client_id=previous)
            )
        return reactivated
