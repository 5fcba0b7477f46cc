"""Pytest configuration and fixtures."""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from factories import create_organization, create_user, grant_role
from salonops.persistence.database import Base, get_db
from salonops.persistence.models import *  # noqa: F401, F403
from salonops.persistence.models import Permission, PlatformRole, RolePermission


@pytest.fixture
async def db_session():
    """Create a test database session."""
    # Use in-memory SQLite for testing; StaticPool keeps one shared connection
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def organization_id(db_session):
    """Organization the tests merge clients in, with client_merge granted to managers."""
    org = await create_organization(db_session, "Primary")
    permission = Permission(name="client_merge")
    db_session.add(permission)
    await db_session.commit()
    db_session.add(RolePermission(role="manager", permission_id=permission.id))
    await db_session.commit()
    return org.id


@pytest.fixture
async def other_organization_id(db_session):
    """A second organization for isolation checks."""
    return (await create_organization(db_session, "Other")).id


@pytest.fixture
async def merge_actor_id(db_session, organization_id):
    """User holding a role that grants client_merge in the organization."""
    user = await create_user(db_session, organization_id)
    await grant_role(db_session, user, organization_id, "manager")
    return user.id


@pytest.fixture
async def unprivileged_user_id(db_session, organization_id):
    """User in the organization whose role does not grant client_merge."""
    user = await create_user(db_session, organization_id)
    await grant_role(db_session, user, organization_id, "front_desk")
    return user.id


@pytest.fixture
async def platform_user_id(db_session):
    """Platform operator with no organization role."""
    user = await create_user(db_session, None)
    db_session.add(PlatformRole(user_id=user.id, role="platform_admin"))
    await db_session.commit()
    return user.id


@pytest.fixture
async def http_client(db_session):
    """Create a test HTTP client bound to the test session."""
    from salonops.main import app

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
