"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.features.permissions.schemas import OverridePayload


class UserBase(BaseModel):
    """Base user schema with common fields."""
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)


class UserResponse(UserBase):
    """
    The signed-in user as the front end sees it.

    ``rolePermissions`` is a snapshot of the role's defaults at request time;
    clients re-fetch after role definitions change.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str
    organization_id: str
    role: str | None = None
    role_permissions: list[str] = Field(default_factory=list, alias="rolePermissions")
    permissions: OverridePayload
    permissions_version: int
    effective_permissions: list[str] = []
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class TeamMember(UserBase):
    """A user as listed on the team page."""
    id: str
    role: str | None = None
    role_id: str | None = None
    has_custom_overrides: bool = False
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime


class RoleAssignment(BaseModel):
    """Schema for assigning a role to a user."""
    role_id: str = Field(..., min_length=1, description="Role of the same organization")
