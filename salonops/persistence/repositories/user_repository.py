"""User repository."""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from salonops.persistence.models.organization import User
from salonops.persistence.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    """Repository for User entities."""

    def __init__(self, session: AsyncSession):
        """Initialize user repository."""
        super().__init__(User, session)

    async def get_active(self, user_id: int) -> User | None:
        """Get an active user by ID, across organizations."""
        stmt = select(User).where(User.id == user_id, User.is_active.is_(True))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
