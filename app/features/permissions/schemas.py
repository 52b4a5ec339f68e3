"""
Pydantic schemas for permission management.

Request and response models for roles, user overrides, permission checks and
audit logs.
"""
import re
from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.features.permissions.catalog import is_valid_permission_key
from app.features.permissions.matrix import PermissionMatrix


ROLE_SLUG_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")


def _check_keys(keys: List[str]) -> List[str]:
    bad = [k for k in keys if not is_valid_permission_key(k)]
    if bad:
        raise ValueError(f"Invalid permission keys: {', '.join(map(str, bad))}")
    # Keep first-seen order, drop duplicates
    return list(dict.fromkeys(keys))


# ============================================================================
# Catalog Schemas
# ============================================================================

class PermissionDescriptorResponse(BaseModel):
    key: str
    label_en: str
    label_ar: str


class PermissionGroupResponse(BaseModel):
    label: str
    label_en: str
    label_ar: str
    permissions: List[PermissionDescriptorResponse]


class AvailablePermissionsResponse(BaseModel):
    """Schema for the catalog grouped by module."""
    groups: Dict[str, PermissionGroupResponse]


# ============================================================================
# Role Schemas
# ============================================================================

class RoleBase(BaseModel):
    """Base role schema."""
    name: str = Field(..., min_length=1, max_length=100, description="Display name")
    description: Optional[str] = Field(None, max_length=1000, description="Role description")
    permissions: List[str] = Field(default_factory=list, description="Default permission keys")

    @field_validator('name')
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        """Reject whitespace-only names."""
        v = v.strip()
        if not v:
            raise ValueError('Role name cannot be empty')
        return v

    @field_validator('permissions')
    @classmethod
    def permission_keys_well_formed(cls, v: List[str]) -> List[str]:
        return _check_keys(v)


class RoleCreate(RoleBase):
    """Schema for creating a custom role."""
    slug: str = Field(..., min_length=1, max_length=50, description="Identifier unique within the organization")

    @field_validator('slug')
    @classmethod
    def slug_format(cls, v: str) -> str:
        """Lowercase letters, digits, underscores and hyphens."""
        v = v.strip().lower()
        if not ROLE_SLUG_PATTERN.match(v):
            raise ValueError('Role slug must start with a letter and contain only lowercase letters, digits, underscores and hyphens')
        return v


class RoleUpdate(BaseModel):
    """Schema for updating a custom role. Omitted fields are left as they are."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    permissions: Optional[List[str]] = None

    @field_validator('name')
    @classmethod
    def name_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError('Role name cannot be empty')
        return v

    @field_validator('permissions')
    @classmethod
    def permission_keys_well_formed(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return None if v is None else _check_keys(v)


class RoleResponse(BaseModel):
    """Schema for role response."""
    id: str
    organization_id: str
    slug: str
    name: str
    description: Optional[str]
    is_system: bool
    permissions: List[str]
    user_count: int = 0
    permission_count: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RoleUserResponse(BaseModel):
    """A user listed under a role."""
    id: str
    email: str
    name: str
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# User Override Schemas
# ============================================================================

class OverridePayload(BaseModel):
    grant: List[str] = []
    revoke: List[str] = []


class UserPermissionsUpdate(BaseModel):
    """
    Full replacement of a user's overrides.

    ``version`` is the ``permissions_version`` the client loaded; when given and
    stale the update is rejected with 409.
    """
    grant: List[str] = Field(default_factory=list)
    revoke: List[str] = Field(default_factory=list)
    version: Optional[int] = Field(None, ge=0)

    @field_validator('grant', 'revoke', mode='before')
    @classmethod
    def none_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class UserPermissionsResponse(BaseModel):
    """Schema for a user's permission summary."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str
    role: Optional[str]
    role_permissions: List[str] = Field(alias="rolePermissions")
    permissions: OverridePayload
    permissions_version: int
    effective_permissions: List[str]
    effective_count: int
    has_custom_overrides: bool
    is_admin: bool


class UserMatrixResponse(BaseModel):
    """Schema for the rendered permission matrix of one module."""
    user_id: str
    permissions_version: int
    modules: List[str]
    matrix: PermissionMatrix


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Schema for checking if the current user has a permission."""
    permission: str = Field(..., description="Permission key, e.g. 'contacts.view'")


class PermissionCheckResponse(BaseModel):
    """Schema for permission check response."""
    permission: str
    has_permission: bool
    reason: Optional[str] = None


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    user_id: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str]
    organization_id: Optional[str]
    details: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
