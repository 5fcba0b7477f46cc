"""FastAPI dependencies for auth and organization resolution."""

from typing import Annotated

from fastapi import Depends, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from salonops.core.auth import read_actor_id
from salonops.core.tenant_context import set_organization_context
from salonops.domain.errors import AuthenticationError
from salonops.domain.services.permission_gate import PermissionGate
from salonops.persistence.database import get_db
from salonops.persistence.models.organization import User
from salonops.persistence.repositories.user_repository import UserRepository

# auto_error=False so a missing header is a 401 rather than FastAPI's 403
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Get current authenticated user from JWT token.

    Args:
        credentials: HTTP bearer credentials
        db: Database session

    Returns:
        Current user

    Raises:
        AuthenticationError: If authentication fails
    """
    if credentials is None:
        raise AuthenticationError("Unauthorized")

    user_id = read_actor_id(credentials.credentials)
    user = await UserRepository(db).get_active(user_id)
    if user is None:
        raise AuthenticationError("User not found")

    return user


async def require_merge_actor(
    organization_id: Annotated[int, Query(alias="organizationId")],
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Require the client_merge permission in the organization named by the query string.

    Used by read endpoints; the merge itself authorizes inside the service.

    Raises:
        AuthorizationError: If the user may not merge clients in the organization
    """
    set_organization_context(organization_id)
    await PermissionGate(db).authorize(current_user.id, organization_id)
    return current_user
