"""Applies chosen field values to the surviving client."""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from salonops.domain.errors import PersistenceError
from salonops.domain.models.client_merge import FieldResolutions
from salonops.persistence.repositories.client_repository import ClientRepository

logger = logging.getLogger(__name__)


class FieldResolver:
    """Writes winning field values onto the primary client only."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize field resolver."""
        self.session = session
        self.client_repo = ClientRepository(session)

    async def apply_resolutions(
        self, organization_id: int, primary_id: int, resolutions: FieldResolutions
    ) -> list[str]:
        """Apply resolutions as a single update of the primary row.

        Args:
            organization_id: Organization ID
            primary_id: Surviving client
            resolutions: Fields chosen by the caller

        Returns:
            Names of the fields written

        Raises:
            PersistenceError: If the update fails; nothing is applied
        """
        values = resolutions.to_update()
        if not values:
            return []
        try:
            updated = await self.client_repo.update_fields(organization_id, primary_id, values)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Failed to apply field resolutions to client {primary_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to apply field resolutions: {e}") from e
        if not updated:
            raise PersistenceError(f"Failed to apply field resolutions: client {primary_id} not updated")
        return sorted(values)
