"""
Server-side permission checks and FastAPI dependencies.

Implements:
- Loading a user's permission subject from the authoritative rows
- FastAPI dependencies for route protection
- Audit logging helpers
- System role provisioning for new organizations
"""
from typing import Dict, Any, Optional, List, Iterable
from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.features.permissions.models import Role, AuditLog
from app.features.permissions.calculator import (
    EffectivePermissions,
    PermissionSubject,
    resolve_permissions,
)
from app.features.permissions.catalog import DEFAULT_CATALOG, DEFAULT_ROLE_PERMISSIONS, SYSTEM_ROLES
from app.features.permissions.errors import PermissionDenied
from app.features.permissions.overrides import UserPermissionOverride
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Permission Resolution
# ============================================================================

def load_permission_subject(user: User) -> PermissionSubject:
    """
    Build the calculator input from the user's role row and override column.

    Client-sent role or permission data is never consulted here.
    """
    role = user.role
    return PermissionSubject(
        role=role.slug if role is not None else None,
        role_permissions=list(role.permissions or []) if role is not None else [],
        permissions=UserPermissionOverride.from_payload(user.permissions),
    )


def resolve_user_permissions(user: User) -> EffectivePermissions:
    return resolve_permissions(load_permission_subject(user), DEFAULT_CATALOG)


# ============================================================================
# FastAPI Dependencies
# ============================================================================

async def get_effective_permissions(
    current_user: User = Depends(get_current_user)
) -> EffectivePermissions:
    """
    Effective permissions of the caller, computed once per request.

    Usage:
        @router.get("/contacts")
        async def list_contacts(perms: EffectivePermissions = Depends(get_effective_permissions)):
            if perms.allows("contacts.export"):
                ...
    """
    return resolve_user_permissions(current_user)


def _deny(user: User, required: List[str], request: Request) -> PermissionDenied:
    log.warning(
        f"Permission denied: user={user.id} requires {required} path={request.url.path}"
    )
    return PermissionDenied("Insufficient permissions", details={"required": required})


def require_permission(permission: str):
    """
    FastAPI dependency to require a specific permission.

    Usage:
        @router.post("/roles")
        async def create_role(
            user: User = Depends(require_permission("permissions.manage"))
        ):
            # User holds permissions.manage
            pass

    Returns:
        Dependency function that returns the current user if they hold the permission

    Raises:
        PermissionDenied: 403 if user doesn't hold the permission
    """
    async def permission_dependency(
        request: Request,
        current_user: User = Depends(get_current_user),
        effective: EffectivePermissions = Depends(get_effective_permissions),
    ) -> User:
        if not effective.allows(permission):
            raise _deny(current_user, [permission], request)
        return current_user

    return permission_dependency


def require_any_permission(permissions: Iterable[str]):
    """
    FastAPI dependency to require ANY of the specified permissions.

    Usage:
        @router.get("/team")
        async def team(
            user: User = Depends(require_any_permission(["users.view", "permissions.manage"]))
        ):
            pass
    """
    required = list(permissions)

    async def permission_dependency(
        request: Request,
        current_user: User = Depends(get_current_user),
        effective: EffectivePermissions = Depends(get_effective_permissions),
    ) -> User:
        if not effective.allows_any(required):
            raise _deny(current_user, required, request)
        return current_user

    return permission_dependency


# ============================================================================
# Audit Logging
# ============================================================================

async def create_audit_log(
    db: AsyncSession,
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> AuditLog:
    """
    Add an audit log entry to the current transaction.

    The row is flushed but not committed: it is written together with the
    change it describes, or not at all.

    Args:
        db: Database session
        user_id: User performing the action
        action: Action performed (e.g., "create", "update", "delete", "assign")
        resource_type: Type of resource (e.g., "role", "user_permissions")
        resource_id: ID of the resource
        organization_id: Organization context
        details: Additional details
        request: Incoming request, for client IP and user agent
    """
    audit_log = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        organization_id=organization_id,
        details=details,
        ip_address=request.client.host if request is not None and request.client else None,
        user_agent=request.headers.get("user-agent") if request is not None else None,
    )

    db.add(audit_log)
    await db.flush()

    log.info(
        f"Audit: user={user_id} action={action} resource={resource_type}:{resource_id} org={organization_id}"
    )

    return audit_log


# ============================================================================
# Provisioning
# ============================================================================

async def seed_system_roles(db: AsyncSession, organization_id: str) -> Dict[str, Role]:
    """
    Create the system roles of an organization, skipping any that exist.

    Returns:
        Roles by slug
    """
    result = await db.execute(select(Role).where(Role.organization_id == organization_id))
    roles = {role.slug: role for role in result.scalars().all()}

    for slug, definition in SYSTEM_ROLES.items():
        if slug in roles:
            continue
        role = Role(
            organization_id=organization_id,
            slug=slug,
            name=definition["name"],
            description=definition["description"],
            is_system=True,
            permissions=sorted(DEFAULT_ROLE_PERMISSIONS[slug]),
        )
        db.add(role)
        roles[slug] = role
        log.info(f"Seeded system role {slug} for organization {organization_id}")

    await db.flush()
    return roles
