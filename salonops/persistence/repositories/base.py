"""Base repository with organization-scoped queries."""

from typing import Generic, TypeVar, Type
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from salonops.persistence.database import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Base repository with organization-scoped query methods."""

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        """Initialize repository with model and session."""
        self.model = model
        self.session = session

    async def get_by_id(self, organization_id: int | None, id: int) -> ModelType | None:
        """Get entity by ID, scoped to organization."""
        if organization_id is None:
            # For platform-level lookups
            stmt = select(self.model).where(self.model.id == id)
        else:
            stmt = select(self.model).where(
                self.model.id == id,
                self.model.organization_id == organization_id
            )
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return result.scalar_one_or_none()
