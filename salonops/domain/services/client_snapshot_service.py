"""Captures the pre-merge state of clients."""

from sqlalchemy.ext.asyncio import AsyncSession

from salonops.domain.errors import NotFoundError
from salonops.domain.models.client_merge import ClientSnapshot
from salonops.persistence.repositories.client_repository import ClientRepository


class ClientSnapshotService:
    """Reads full client rows before anything is mutated."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize snapshot service."""
        self.client_repo = ClientRepository(session)

    async def capture(
        self, organization_id: int, primary_id: int, secondary_ids: list[int]
    ) -> dict[int, ClientSnapshot]:
        """Snapshot the primary and every secondary client.

        Reads are scoped to the organization, so a client belonging to another
        organization does not resolve.

        Args:
            organization_id: Organization ID
            primary_id: Surviving client
            secondary_ids: Clients being merged away

        Returns:
            Snapshots keyed by client ID

        Raises:
            NotFoundError: If any requested client does not exist in the organization
        """
        requested = [primary_id, *secondary_ids]
        clients = await self.client_repo.get_multiple_by_ids_any_status(organization_id, requested)
        snapshots = {client.id: ClientSnapshot.model_validate(client) for client in clients}

        missing = [client_id for client_id in requested if client_id not in snapshots]
        if missing:
            raise NotFoundError(f"Clients not found: {missing}")
        return snapshots
