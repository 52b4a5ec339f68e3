"""
Seed script to provision a demo organization.

Run this script after database initialization to create:
- A demo organization
- Its system roles (admin, manager, agent, member)
- One active user per system role

and print a development bearer token for each user.

Usage:
    uv run python -m scripts.seed_permissions
    uv run python -m scripts.seed_permissions --reset
"""
import argparse
import asyncio
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import AsyncSessionLocal, init_db, reset_db
from app.features.organizations.models import Organization
from app.features.permissions.catalog import SYSTEM_ROLES
from app.features.permissions.dependencies import seed_system_roles
from app.features.permissions.models import Role
from app.features.users.auth import create_access_token
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


DEMO_ORGANIZATION = {"name": "Demo Organization", "slug": "demo"}

DEMO_USERS = {
    "admin": ("admin@demo.example.com", "Demo Admin"),
    "manager": ("manager@demo.example.com", "Demo Manager"),
    "agent": ("agent@demo.example.com", "Demo Agent"),
    "member": ("member@demo.example.com", "Demo Member"),
}


async def seed_organization(db: AsyncSession, name: str, slug: str) -> Organization:
    """
    Create an organization with its system roles, or return the existing one.
    """
    result = await db.execute(select(Organization).where(Organization.slug == slug))
    organization = result.scalars().first()

    if organization:
        log.debug(f"Organization '{slug}' already exists, skipping")
    else:
        organization = Organization(name=name, slug=slug)
        db.add(organization)
        await db.flush()
        log.info(f"Created organization: {slug}")

    await seed_system_roles(db, organization.id)
    await db.commit()
    return organization


async def seed_user(
    db: AsyncSession,
    organization: Organization,
    email: str,
    name: str,
    role_slug: Optional[str],
    grant: Optional[list[str]] = None,
    revoke: Optional[list[str]] = None,
) -> User:
    """
    Create a user of ``organization`` holding the role ``role_slug``.

    Existing users (matched by email) are returned untouched.
    """
    result = await db.execute(select(User).where(User.email == email))
    existing = result.scalars().first()

    if existing:
        log.debug(f"User '{email}' already exists, skipping")
        return existing

    role = None
    if role_slug is not None:
        result = await db.execute(
            select(Role).where(Role.organization_id == organization.id, Role.slug == role_slug)
        )
        role = result.scalars().one()

    user = User(
        organization_id=organization.id,
        email=email,
        name=name,
        role_id=role.id if role is not None else None,
        permissions={"grant": sorted(grant or []), "revoke": sorted(revoke or [])},
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    log.info(f"Created user {email} with role {role_slug}")
    return user


async def main(reset: bool = False):
    """Main function to provision the demo organization and its users."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    if reset:
        await reset_db()
    else:
        await init_db()

    async with AsyncSessionLocal() as db:
        try:
            organization = await seed_organization(db, **DEMO_ORGANIZATION)

            tokens = {}
            for role_slug, (email, name) in DEMO_USERS.items():
                user = await seed_user(db, organization, email, name, role_slug)
                tokens[role_slug] = create_access_token(user.id, organization.id)

            log.info("Permission seeding completed successfully!")
            log.info("")
            log.info("System roles:")
            for role_slug, role_config in SYSTEM_ROLES.items():
                log.info(f"  - {role_slug}: {role_config['description']}")
            log.info("")
            log.info("Development tokens:")
            for role_slug, token in tokens.items():
                log.info(f"  - {role_slug}: {token}")

        except Exception as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            await db.rollback()
            raise


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Provision the demo organization")
    parser.add_argument("--reset", action="store_true", help="Drop and recreate all tables first")
    args = parser.parse_args()
    asyncio.run(main(reset=args.reset))
