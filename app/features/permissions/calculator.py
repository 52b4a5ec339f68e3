"""
Effective permission calculator.

    effective = ((role defaults | grant) - revoke) & catalog keys

with one exception: the admin role is a universal bypass and always resolves to
the whole catalog, whatever its overrides say. Both the API guard and the
client-side guard/presenter go through this module, so the rule lives in
exactly one place.
"""
from collections.abc import Iterable
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.features.permissions.catalog import ADMIN_ROLE, DEFAULT_CATALOG, PermissionCatalog
from app.features.permissions.overrides import UserPermissionOverride


def is_admin_role(role: Optional[str]) -> bool:
    return role == ADMIN_ROLE


def effective_permissions(
    role_defaults: Iterable[str],
    grant: Iterable[str] = (),
    revoke: Iterable[str] = (),
    *,
    role: Optional[str] = None,
    catalog: Optional[PermissionCatalog] = None,
) -> frozenset[str]:
    """
    Compute the permissions a user actually holds.

    Keys unknown to the catalog are inert: they never appear in the result,
    whether they come from the role or from a stale override.
    """
    catalog = catalog or DEFAULT_CATALOG
    if is_admin_role(role):
        return catalog.keys
    result = (set(role_defaults) | set(grant)) - set(revoke)
    return frozenset(result & catalog.keys)


class PermissionSubject(BaseModel):
    """
    What the calculator needs to know about a user.

    Mirrors the user object served by ``GET /users/me``; server-side it is
    built from the authoritative role row and override column instead.
    """
    model_config = ConfigDict(populate_by_name=True)

    role: Optional[str] = None
    role_permissions: list[str] = Field(default_factory=list, alias="rolePermissions")
    permissions: UserPermissionOverride = Field(default_factory=UserPermissionOverride)


class EffectivePermissions:
    """Result of one permission resolution; computed once and passed around."""

    __slots__ = ("keys", "is_admin", "role")

    def __init__(self, keys: frozenset[str], *, role: Optional[str] = None):
        self.keys = keys
        self.role = role
        self.is_admin = is_admin_role(role)

    def __contains__(self, key: object) -> bool:
        return key in self.keys

    def __len__(self) -> int:
        return len(self.keys)

    def __repr__(self) -> str:
        return f"<EffectivePermissions(role={self.role!r}, count={len(self.keys)})>"

    def allows(self, key: str) -> bool:
        return key in self.keys

    def allows_any(self, keys: Iterable[str]) -> bool:
        return any(k in self.keys for k in keys)

    def allows_all(self, keys: Iterable[str]) -> bool:
        return all(k in self.keys for k in keys)


NO_PERMISSIONS = EffectivePermissions(frozenset())


def resolve_permissions(
    subject: Optional[PermissionSubject],
    catalog: Optional[PermissionCatalog] = None,
) -> EffectivePermissions:
    if subject is None:
        return NO_PERMISSIONS
    keys = effective_permissions(
        subject.role_permissions,
        subject.permissions.grant,
        subject.permissions.revoke,
        role=subject.role,
        catalog=catalog,
    )
    return EffectivePermissions(keys, role=subject.role)


def has_permission(
    subject: Optional[PermissionSubject],
    key: str,
    catalog: Optional[PermissionCatalog] = None,
) -> bool:
    """True if ``subject`` holds ``key``. Unknown keys are simply absent."""
    return resolve_permissions(subject, catalog).allows(key)


def has_any_permission(
    subject: Optional[PermissionSubject],
    keys: Iterable[str],
    catalog: Optional[PermissionCatalog] = None,
) -> bool:
    return resolve_permissions(subject, catalog).allows_any(keys)


def has_all_permissions(
    subject: Optional[PermissionSubject],
    keys: Iterable[str],
    catalog: Optional[PermissionCatalog] = None,
) -> bool:
    return resolve_permissions(subject, catalog).allows_all(keys)


class PermissionSummary(BaseModel):
    role: Optional[str]
    role_permissions: list[str]
    grant: list[str]
    revoke: list[str]
    effective_permissions: list[str]
    effective_count: int
    has_custom_overrides: bool
    is_admin: bool


def permission_summary(
    subject: PermissionSubject,
    catalog: Optional[PermissionCatalog] = None,
) -> PermissionSummary:
    effective = resolve_permissions(subject, catalog)
    return PermissionSummary(
        role=subject.role,
        role_permissions=sorted(set(subject.role_permissions)),
        grant=sorted(subject.permissions.grant),
        revoke=sorted(subject.permissions.revoke),
        effective_permissions=sorted(effective.keys),
        effective_count=len(effective),
        has_custom_overrides=not subject.permissions.is_empty,
        is_admin=effective.is_admin,
    )


def compare_permissions(old: Iterable[str], new: Iterable[str]) -> tuple[list[str], list[str]]:
    """Return (added, removed), each in the order the keys were given."""
    old_list, new_list = list(old), list(new)
    old_set, new_set = set(old_list), set(new_list)
    added = [k for k in dict.fromkeys(new_list) if k not in old_set]
    removed = [k for k in dict.fromkeys(old_list) if k not in new_set]
    return added, removed
