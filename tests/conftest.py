"""
Shared fixtures.

The environment is configured before ``app`` is imported: the engine and the
limiter read their settings at import time.
"""
import asyncio
import os
import tempfile
from pathlib import Path

_TEST_DIR = Path(tempfile.mkdtemp(prefix="crm_permissions_"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR / 'test.db'}"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["RATE_LIMIT_ENABLED"] = "0"
os.environ["ENABLE_DOCS"] = "0"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import select  # noqa: E402

from app.core.database.engine import AsyncSessionLocal, reset_db  # noqa: E402
from app.features.permissions.models import Role  # noqa: E402
from app.features.users.auth import create_access_token  # noqa: E402
from app.main import app  # noqa: E402
from scripts.seed_permissions import seed_organization, seed_user  # noqa: E402


SEEDED_ROLES = ("admin", "manager", "agent", "member")


class Tenant:
    """Ids and tokens of a seeded organization."""

    def __init__(self, organization_id: str, users: dict[str, str], roles: dict[str, str]):
        self.organization_id = organization_id
        self.users = users
        self.roles = roles

    def token(self, slug: str) -> str:
        return create_access_token(self.users[slug], self.organization_id)

    def headers(self, slug: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token(slug)}"}


async def _seed_tenant(name: str, slug: str, user_roles) -> Tenant:
    async with AsyncSessionLocal() as db:
        organization = await seed_organization(db, name, slug)
        users = {}
        for role_slug in user_roles:
            user = await seed_user(db, organization, f"{role_slug}@{slug}.example.com", f"{name} {role_slug.title()}", role_slug)
            users[role_slug] = user.id
        result = await db.execute(select(Role).where(Role.organization_id == organization.id))
        roles = {role.slug: role.id for role in result.scalars().all()}
        return Tenant(organization.id, users, roles)


async def _seed():
    await reset_db()
    acme = await _seed_tenant("Acme", "acme", SEEDED_ROLES)
    globex = await _seed_tenant("Globex", "globex", ("admin", "member"))
    return acme, globex


@pytest.fixture
def tenants():
    """Fresh database with two organizations: Acme (one user per system role) and Globex."""
    return asyncio.run(_seed())


@pytest.fixture
def acme(tenants) -> Tenant:
    return tenants[0]


@pytest.fixture
def globex(tenants) -> Tenant:
    return tenants[1]


@pytest.fixture
def client(tenants) -> TestClient:
    return TestClient(app)
