"""
Organization feature routes.

Organizations are provisioned by the seed script (or an operator); the API
only exposes the caller's own tenant.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.models import User
from app.features.organizations.models import Organization
from app.features.organizations.schemas import OrganizationResponse, OrganizationUpdate
from app.features.organizations.dependencies import get_current_organization
from app.features.permissions.dependencies import create_audit_log, require_permission
from app.features.permissions.models import Role


router = APIRouter(tags=["organizations"])


async def build_organization_response(db: AsyncSession, organization: Organization) -> OrganizationResponse:
    response = OrganizationResponse.model_validate(organization)
    response.member_count = (await db.execute(
        select(func.count(User.id)).where(User.organization_id == organization.id, User.is_active == True)  # noqa: E712
    )).scalar() or 0
    response.role_count = (await db.execute(
        select(func.count(Role.id)).where(Role.organization_id == organization.id)
    )).scalar() or 0
    return response


@router.get("/current", response_model=OrganizationResponse)
async def get_current_organization_endpoint(
    organization: Annotated[Organization, Depends(get_current_organization)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get the caller's organization."""
    return await build_organization_response(db, organization)


@router.patch("/current", response_model=OrganizationResponse)
async def update_current_organization(
    update_data: OrganizationUpdate,
    request: Request,
    user: Annotated[User, Depends(require_permission("organization.edit"))],
    organization: Annotated[Organization, Depends(get_current_organization)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update the caller's organization."""
    # Update only provided fields
    update_dict = update_data.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in update_dict.items():
        setattr(organization, field, value)

    await create_audit_log(
        db,
        user_id=user.id,
        action="update",
        resource_type="organization",
        resource_id=organization.id,
        organization_id=organization.id,
        details=update_dict,
        request=request,
    )
    await db.commit()
    await db.refresh(organization)

    return await build_organization_response(db, organization)
