"""Permission gate for client merge operations."""

import logging

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from salonops.domain.errors import AuthorizationError
from salonops.persistence.models.access_control import Permission, PlatformRole, RolePermission, UserRole
from salonops.settings import settings

logger = logging.getLogger(__name__)


class PermissionGate:
    """Read-only check that an actor may merge clients in an organization."""

    def __init__(self, session: AsyncSession, permission: str | None = None) -> None:
        """Initialize permission gate."""
        self.session = session
        self.permission = permission or settings.merge_permission

    async def has_org_permission(self, actor_id: int, organization_id: int) -> bool:
        """Whether one of the actor's roles in the organization grants the permission."""
        stmt = select(
            exists()
            .where(
                UserRole.user_id == actor_id,
                UserRole.organization_id == organization_id,
                RolePermission.role == UserRole.role,
                RolePermission.permission_id == Permission.id,
                Permission.name == self.permission,
            )
        )
        return bool((await self.session.execute(stmt)).scalar())

    async def has_platform_role(self, actor_id: int) -> bool:
        """Whether the actor holds an elevated cross-organization role."""
        stmt = select(exists().where(PlatformRole.user_id == actor_id))
        return bool((await self.session.execute(stmt)).scalar())

    async def authorize(self, actor_id: int, organization_id: int) -> None:
        """Authorize the actor or raise.

        Args:
            actor_id: User performing the operation
            organization_id: Organization the operation targets

        Raises:
            AuthorizationError: If the actor has neither the permission nor a platform role
        """
        if await self.has_org_permission(actor_id, organization_id):
            return
        if await self.has_platform_role(actor_id):
            logger.info(
                f"Platform role used for {self.permission} in organization {organization_id}",
                extra={"actor_id": actor_id},
            )
            return
        logger.warning(
            f"Actor {actor_id} denied {self.permission} in organization {organization_id}",
            extra={"actor_id": actor_id},
        )
        raise AuthorizationError(f"Missing {self.permission} permission")
