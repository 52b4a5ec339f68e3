"""
Permission management API routes.

Provides endpoints for the permission catalog, organization roles, per-user
grant/revoke overrides, permission checks and the audit trail. Every query is
scoped to the caller's organization.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from app.core.database.engine import get_db
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.features.permissions.models import Role, AuditLog
from app.features.permissions.schemas import (
    AvailablePermissionsResponse,
    RoleCreate,
    RoleUpdate,
    RoleResponse,
    RoleUserResponse,
    OverridePayload,
    UserPermissionsUpdate,
    UserPermissionsResponse,
    UserMatrixResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
    AuditLogResponse,
    AuditLogListResponse,
)
from app.features.permissions.dependencies import (
    create_audit_log,
    get_effective_permissions,
    load_permission_subject,
    require_any_permission,
    require_permission,
    resolve_user_permissions,
)
from app.features.permissions.calculator import (
    EffectivePermissions,
    compare_permissions,
    is_admin_role,
    permission_summary,
)
from app.features.permissions.catalog import DEFAULT_CATALOG, SYSTEM_ROLES, is_valid_permission_key
from app.features.permissions.errors import Conflict, PermissionValidationError, VersionConflict
from app.features.permissions.matrix import build_permission_matrix
from app.features.permissions.overrides import UserPermissionOverride, normalize_override, validate_override
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Helpers
# ============================================================================

def build_user_permissions_response(user: User) -> UserPermissionsResponse:
    summary = permission_summary(load_permission_subject(user), DEFAULT_CATALOG)
    return UserPermissionsResponse(
        user_id=user.id,
        role=summary.role,
        role_permissions=summary.role_permissions,
        permissions=OverridePayload(grant=summary.grant, revoke=summary.revoke),
        permissions_version=user.permissions_version,
        effective_permissions=summary.effective_permissions,
        effective_count=summary.effective_count,
        has_custom_overrides=summary.has_custom_overrides,
        is_admin=summary.is_admin,
    )


async def get_org_role(db: AsyncSession, role_id: str, organization_id: str) -> Role:
    """Load a role of the organization or raise 404."""
    stmt = select(Role).where(Role.id == role_id, Role.organization_id == organization_id)
    result = await db.execute(stmt)
    role = result.scalars().first()

    if not role:
        raise HTTPException(status_code=404, detail="Role not found")

    return role


async def get_org_user(db: AsyncSession, user_id: str, organization_id: str) -> User:
    """Load a user of the organization or raise 404."""
    stmt = select(User).where(User.id == user_id, User.organization_id == organization_id)
    result = await db.execute(stmt)
    user = result.scalars().first()

    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    return user


async def count_role_users(db: AsyncSession, role_id: str) -> int:
    result = await db.execute(select(func.count(User.id)).where(User.role_id == role_id))
    return result.scalar() or 0


def check_role_permissions(keys: List[str]) -> None:
    """Reject role defaults the catalog does not define; they could never take effect."""
    known = {descriptor.key for descriptor in DEFAULT_CATALOG.descriptors_for(keys)}
    unknown = [key for key in keys if key not in known]
    if unknown:
        raise PermissionValidationError(
            "Unknown permissions",
            code="UNKNOWN_PERMISSION",
            details={"keys": unknown},
        )


def build_role_response(role: Role, user_count: int) -> RoleResponse:
    response = RoleResponse.model_validate(role)
    response.user_count = user_count
    response.permission_count = len(role.permissions or [])
    return response


# ============================================================================
# Catalog & Self Routes
# ============================================================================

@router.get("/available", response_model=AvailablePermissionsResponse)
async def list_available_permissions(
    current_user: User = Depends(get_current_user)
):
    """Every grantable permission, grouped by module with English and Arabic labels."""
    return DEFAULT_CATALOG.to_groups()


@router.get("/me", response_model=UserPermissionsResponse)
async def get_my_permissions(
    current_user: User = Depends(get_current_user)
):
    """Permission summary of the current user, computed from fresh rows."""
    return build_user_permissions_response(current_user)


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    check_request: PermissionCheckRequest,
    effective: EffectivePermissions = Depends(get_effective_permissions)
):
    """Check if the current user holds a permission. Unknown keys are simply not held."""
    key = check_request.permission
    if not is_valid_permission_key(key):
        return PermissionCheckResponse(permission=key, has_permission=False, reason="Invalid permission key")

    has_perm = effective.allows(key)
    reason = None
    if not has_perm:
        reason = "Unknown permission" if key not in DEFAULT_CATALOG else "Permission denied"

    return PermissionCheckResponse(permission=key, has_permission=has_perm, reason=reason)


# ============================================================================
# Role Routes
# ============================================================================

@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List roles of the caller's organization, system roles first."""
    stmt = (
        select(Role)
        .where(Role.organization_id == current_user.organization_id)
        .order_by(Role.is_system.desc(), Role.name)
    )
    result = await db.execute(stmt)
    roles = result.scalars().all()

    count_stmt = (
        select(User.role_id, func.count(User.id))
        .where(User.organization_id == current_user.organization_id)
        .group_by(User.role_id)
    )
    counts = dict((await db.execute(count_stmt)).all())

    return [build_role_response(role, counts.get(role.id, 0)) for role in roles]


@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role: RoleCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("permissions.manage"))
):
    """Create a custom role."""
    org_id = current_user.organization_id
    check_role_permissions(role.permissions)
    stmt = select(Role.id).where(Role.organization_id == org_id, Role.slug == role.slug)
    if role.slug in SYSTEM_ROLES or (await db.execute(stmt)).first():
        raise Conflict("Role with this slug already exists", code="ROLE_EXISTS", details={"slug": role.slug})

    try:
        db_role = Role(organization_id=org_id, is_system=False, **role.model_dump())
        db.add(db_role)
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise Conflict("Role with this slug already exists", code="ROLE_EXISTS", details={"slug": role.slug})

    await create_audit_log(
        db,
        user_id=current_user.id,
        action="create",
        resource_type="role",
        resource_id=db_role.id,
        organization_id=org_id,
        details=role.model_dump(),
        request=request,
    )
    await db.commit()
    await db.refresh(db_role)

    return build_role_response(db_role, 0)


@router.get("/roles/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get a role of the caller's organization."""
    role = await get_org_role(db, role_id, current_user.organization_id)
    return build_role_response(role, await count_role_users(db, role.id))


@router.patch("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    role_update: RoleUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("permissions.manage"))
):
    """Update a custom role. System roles are immutable."""
    db_role = await get_org_role(db, role_id, current_user.organization_id)

    if db_role.is_system:
        raise PermissionValidationError(
            "System roles cannot be modified",
            code="SYSTEM_ROLE_IMMUTABLE",
            details={"role": db_role.slug},
        )

    update_data = role_update.model_dump(exclude_unset=True, exclude_none=True)
    added, removed = [], []
    if "permissions" in update_data:
        check_role_permissions(update_data["permissions"])
        added, removed = compare_permissions(db_role.permissions or [], update_data["permissions"])

    for key, value in update_data.items():
        setattr(db_role, key, value)

    await create_audit_log(
        db,
        user_id=current_user.id,
        action="update",
        resource_type="role",
        resource_id=db_role.id,
        organization_id=current_user.organization_id,
        details={**update_data, "added": added, "removed": removed},
        request=request,
    )
    await db.commit()
    await db.refresh(db_role)

    return build_role_response(db_role, await count_role_users(db, db_role.id))


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("permissions.manage"))
):
    """Delete a custom role that no user is assigned to."""
    db_role = await get_org_role(db, role_id, current_user.organization_id)

    if db_role.is_system:
        raise PermissionValidationError(
            "System roles cannot be deleted",
            code="SYSTEM_ROLE_IMMUTABLE",
            details={"role": db_role.slug},
        )

    user_count = await count_role_users(db, db_role.id)
    if user_count:
        raise Conflict(
            "Role is assigned to users",
            code="ROLE_IN_USE",
            details={"user_count": user_count},
        )

    role_slug = db_role.slug
    await db.delete(db_role)
    await create_audit_log(
        db,
        user_id=current_user.id,
        action="delete",
        resource_type="role",
        resource_id=role_id,
        organization_id=current_user.organization_id,
        details={"slug": role_slug},
        request=request,
    )
    await db.commit()

    return None


@router.get("/roles/{role_id}/users", response_model=List[RoleUserResponse])
async def list_role_users(
    role_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("users.view"))
):
    """List users assigned to a role."""
    role = await get_org_role(db, role_id, current_user.organization_id)
    stmt = select(User).where(User.role_id == role.id).order_by(User.name)
    result = await db.execute(stmt)
    return result.scalars().all()


# ============================================================================
# User Override Routes
# ============================================================================

@router.get("/users/{user_id}", response_model=UserPermissionsResponse)
async def get_user_permissions(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_any_permission(["users.view", "permissions.manage"]))
):
    """Permission summary of a user in the caller's organization."""
    user = await get_org_user(db, user_id, current_user.organization_id)
    return build_user_permissions_response(user)


@router.patch("/users/{user_id}", response_model=UserPermissionsResponse)
async def update_user_permissions(
    user_id: str,
    permissions_update: UserPermissionsUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("permissions.manage"))
):
    """
    Replace a user's grant and revoke lists in one write.

    When ``version`` is sent and no longer matches, nothing is written and 409
    is returned.
    """
    user = await get_org_user(db, user_id, current_user.organization_id)

    if is_admin_role(user.role_slug):
        raise PermissionValidationError(
            "Administrators already hold every permission",
            code="ADMIN_OVERRIDE_FORBIDDEN",
        )

    override = validate_override(UserPermissionOverride(
        grant=permissions_update.grant,
        revoke=permissions_update.revoke,
    ))
    override = normalize_override(override, load_permission_subject(user).role_permissions)

    before = resolve_user_permissions(user)
    previous = UserPermissionOverride.from_payload(user.permissions)

    stmt = update(User).where(User.id == user.id)
    if permissions_update.version is not None:
        stmt = stmt.where(User.permissions_version == permissions_update.version)
    stmt = stmt.values(
        permissions=override.to_payload(),
        permissions_version=User.permissions_version + 1,
    ).execution_options(synchronize_session=False)

    result = await db.execute(stmt)
    if result.rowcount == 0:
        await db.refresh(user, attribute_names=["permissions_version"])
        raise VersionConflict(
            "Permissions were changed by someone else",
            details={"current_version": user.permissions_version},
        )

    await db.refresh(user, attribute_names=["permissions", "permissions_version"])
    after = resolve_user_permissions(user)
    added, removed = compare_permissions(sorted(before.keys), sorted(after.keys))

    await create_audit_log(
        db,
        user_id=current_user.id,
        action="update",
        resource_type="user_permissions",
        resource_id=user.id,
        organization_id=current_user.organization_id,
        details={
            "previous": previous.to_payload(),
            "current": override.to_payload(),
            "added": added,
            "removed": removed,
            "version": user.permissions_version,
        },
        request=request,
    )
    await db.commit()

    log.info(f"Updated permissions of user {user.id} to version {user.permissions_version}")
    return build_user_permissions_response(user)


@router.get("/users/{user_id}/matrix", response_model=UserMatrixResponse)
async def get_user_permission_matrix(
    user_id: str,
    module: str = "crm",
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_any_permission(["users.view", "permissions.manage"])),
    effective: EffectivePermissions = Depends(get_effective_permissions)
):
    """Render one catalog module of a user's permissions as a resource x action grid."""
    user = await get_org_user(db, user_id, current_user.organization_id)
    subject = load_permission_subject(user)

    matrix = build_permission_matrix(
        DEFAULT_CATALOG,
        module,
        subject.role_permissions,
        subject.permissions,
        role=subject.role,
        can_edit=effective.allows("permissions.manage"),
    )

    return UserMatrixResponse(
        user_id=user.id,
        permissions_version=user.permissions_version,
        modules=[m.key for m in DEFAULT_CATALOG.modules],
        matrix=matrix,
    )


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    skip: int = 0,
    limit: int = 50,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("permissions.manage"))
):
    """List audit logs of the caller's organization with optional filtering."""
    stmt = select(AuditLog).where(AuditLog.organization_id == current_user.organization_id)

    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)
    if resource_id:
        stmt = stmt.where(AuditLog.resource_id == resource_id)

    # Get total count
    count_stmt = select(func.count()).select_from(stmt.subquery())
    total_result = await db.execute(count_stmt)
    total = total_result.scalar() or 0

    # Get paginated results
    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    logs = result.scalars().all()

    pages = (total + limit - 1) // limit if limit > 0 else 0
    page = (skip // limit) + 1 if limit > 0 else 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )
