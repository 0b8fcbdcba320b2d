"""
Pytest configuration and fixtures for VoterPulse API tests
"""
import os
import tempfile

# The engine is created at import time, so point it at a throwaway database first
_TEST_DIR = tempfile.mkdtemp(prefix="voterpulse_tests_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DIR, 'test.db')}"
os.environ["IMPORT_SPOOL_DIR"] = os.path.join(_TEST_DIR, "spool")
os.environ["LOG_TO_FILE"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest
from dataclasses import dataclass
from typing import AsyncGenerator, Dict
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession

from voterpulse.main import app
from voterpulse.db.database import (
    AsyncSessionLocal, drop_db, engine, init_db,
    Organization, User, OrganizationMember
)
from voterpulse.services.container import get_service_container
from voterpulse.services.organizations import DEFAULT_ROLE_PERMISSIONS
from tests.helpers.api_helpers import wait_for_imports


@dataclass
class SeededTenant:
    organization_id: int
    user_id: int

    @property
    def headers(self) -> Dict[str, str]:
        return {"X-User-Id": str(self.user_id), "X-Organization-Id": str(self.organization_id)}


async def seed_tenant(name: str, email: str, role: str = "admin") -> SeededTenant:
    """Create an organization with one active member"""
    async with AsyncSessionLocal() as session:
        organization = Organization(name=name, slug=name.lower().replace(" ", "-"))
        user = User(email=email, first_name="Test", last_name=role.title())
        session.add_all([organization, user])
        await session.flush()
        session.add(OrganizationMember(
            organization_id=organization.id,
            user_id=user.id,
            role=role,
            status="active",
            permissions=dict(DEFAULT_ROLE_PERMISSIONS[role])
        ))
        await session.commit()
        return SeededTenant(organization_id=organization.id, user_id=user.id)


async def add_member(tenant: SeededTenant, email: str, role: str) -> SeededTenant:
    """Add another member to an existing organization"""
    async with AsyncSessionLocal() as session:
        user = User(email=email, first_name="Test", last_name=role.title())
        session.add(user)
        await session.flush()
        session.add(OrganizationMember(
            organization_id=tenant.organization_id,
            user_id=user.id,
            role=role,
            status="active",
            permissions=dict(DEFAULT_ROLE_PERMISSIONS[role])
        ))
        await session.commit()
        return SeededTenant(organization_id=tenant.organization_id, user_id=user.id)


@pytest.fixture(autouse=True)
async def setup_database():
    """Fresh schema for every test; background imports are drained before teardown"""
    await init_db()
    get_service_container().reset()
    yield
    await wait_for_imports()
    await drop_db()
    # Pooled connections must not outlive the test's event loop
    await engine.dispose()
    get_service_container().reset()


@pytest.fixture(scope="function")
async def client() -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the FastAPI app (startup events are not run)"""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@pytest.fixture(scope="function")
async def tenant() -> SeededTenant:
    """Organization with an admin member"""
    return await seed_tenant("Test Campaign", "admin@example.org")


@pytest.fixture(scope="function")
async def other_tenant() -> SeededTenant:
    """Second, unrelated organization"""
    return await seed_tenant("Other Campaign", "admin@other.example.org")


@pytest.fixture(scope="function")
async def volunteer(tenant: SeededTenant) -> SeededTenant:
    """Volunteer in the primary organization (no management permissions)"""
    return await add_member(tenant, "volunteer@example.org", "volunteer")
