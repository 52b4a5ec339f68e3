"""
User feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.models import User
from app.features.users.schemas import UserResponse, TeamMember, RoleAssignment
from app.features.users.dependencies import get_current_user
from app.features.permissions.calculator import EffectivePermissions, is_admin_role
from app.features.permissions.dependencies import (
    create_audit_log,
    get_effective_permissions,
    load_permission_subject,
    require_permission,
)
from app.features.permissions.errors import PermissionDenied, PermissionValidationError
from app.features.permissions.models import Role
from app.features.permissions.schemas import OverridePayload
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["users"])


def build_team_member(user: User) -> TeamMember:
    return TeamMember(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role_slug,
        role_id=user.role_id,
        has_custom_overrides=bool((user.permissions or {}).get("grant") or (user.permissions or {}).get("revoke")),
        is_active=user.is_active,
        last_login_at=user.last_login_at,
        created_at=user.created_at,
    )


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)],
    effective: Annotated[EffectivePermissions, Depends(get_effective_permissions)]
):
    """Get current authenticated user's profile, role defaults and overrides."""
    subject = load_permission_subject(user)
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        organization_id=user.organization_id,
        role=subject.role,
        role_permissions=sorted(set(subject.role_permissions)),
        permissions=OverridePayload(**subject.permissions.to_payload()),
        permissions_version=user.permissions_version,
        effective_permissions=sorted(effective.keys),
        is_active=user.is_active,
        last_login_at=user.last_login_at,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


@router.get("/", response_model=list[TeamMember])
async def list_users(
    user: Annotated[User, Depends(require_permission("users.view"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = 0,
    limit: int = 50,
    include_inactive: bool = False
):
    """List team members of the caller's organization."""
    stmt = select(User).where(User.organization_id == user.organization_id)
    if not include_inactive:
        stmt = stmt.where(User.is_active == True)  # noqa: E712
    result = await db.execute(stmt.order_by(User.name).offset(skip).limit(limit))
    return [build_team_member(u) for u in result.scalars().all()]


@router.patch("/{user_id}/role", response_model=TeamMember)
async def assign_role(
    user_id: str,
    assignment: RoleAssignment,
    request: Request,
    admin: Annotated[User, Depends(require_permission("users.edit"))],
    effective: Annotated[EffectivePermissions, Depends(get_effective_permissions)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Assign a role of the same organization to a user."""
    result = await db.execute(
        select(User).where(User.id == user_id, User.organization_id == admin.organization_id)
    )
    user = result.scalar_one_or_none()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    # Prevent self-demotion
    if user.id == admin.id:
        raise PermissionValidationError("Cannot change your own role", code="SELF_ROLE_CHANGE")

    result = await db.execute(
        select(Role).where(Role.id == assignment.role_id, Role.organization_id == admin.organization_id)
    )
    role = result.scalar_one_or_none()

    if role is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Role not found"
        )

    if is_admin_role(role.slug) and not effective.allows("permissions.manage"):
        raise PermissionDenied("Insufficient permissions", details={"required": ["permissions.manage"]})

    previous = user.role_slug
    user.role_id = role.id
    user.role = role
    await create_audit_log(
        db,
        user_id=admin.id,
        action="assign",
        resource_type="user_role",
        resource_id=user.id,
        organization_id=admin.organization_id,
        details={"previous": previous, "current": role.slug},
        request=request,
    )
    await db.commit()

    log.info(f"User {user.id} assigned role {role.slug} (was {previous})")
    return build_team_member(user)


@router.delete("/{user_id}")
async def deactivate_user(
    user_id: str,
    request: Request,
    admin: Annotated[User, Depends(require_permission("users.delete"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Deactivate a user account of the caller's organization."""
    result = await db.execute(
        select(User).where(User.id == user_id, User.organization_id == admin.organization_id)
    )
    user = result.scalar_one_or_none()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    # Prevent self-deactivation
    if user.id == admin.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot deactivate your own account"
        )

    user.is_active = False
    await create_audit_log(
        db,
        user_id=admin.id,
        action="deactivate",
        resource_type="user",
        resource_id=user.id,
        organization_id=admin.organization_id,
        request=request,
    )
    await db.commit()

    return {"message": "User deactivated successfully"}
