"""Unit tests for effective permission resolution."""
import pytest

from app.features.permissions.calculator import (
    NO_PERMISSIONS,
    PermissionSubject,
    compare_permissions,
    effective_permissions,
    has_all_permissions,
    has_any_permission,
    has_permission,
    permission_summary,
    resolve_permissions,
)
from app.features.permissions.catalog import DEFAULT_CATALOG, PermissionCatalog
from app.features.permissions.overrides import UserPermissionOverride


SMALL_CATALOG = PermissionCatalog.from_layout((
    ("crm", (("contacts", ("view", "create", "edit", "delete")),)),
))


def subject(role="agent", defaults=(), grant=(), revoke=()):
    return PermissionSubject(
        role=role,
        role_permissions=list(defaults),
        permissions=UserPermissionOverride(grant=grant, revoke=revoke),
    )


def test_role_defaults_plus_grant_minus_revoke():
    """Example scenario: role {view, edit}, grant {delete}, revoke {edit}."""
    result = effective_permissions(
        {"contacts.view", "contacts.edit"},
        grant={"contacts.delete"},
        revoke={"contacts.edit"},
        catalog=SMALL_CATALOG,
    )
    assert result == {"contacts.view", "contacts.delete"}


def test_revoke_wins_over_grant():
    result = effective_permissions(set(), grant={"contacts.view"}, revoke={"contacts.view"}, catalog=SMALL_CATALOG)
    assert result == frozenset()


def test_result_is_restricted_to_catalog():
    result = effective_permissions(
        {"contacts.view", "spaceships.launch"},
        grant={"unicorns.view"},
        catalog=SMALL_CATALOG,
    )
    assert result == {"contacts.view"}


def test_resolution_is_idempotent():
    first = effective_permissions({"contacts.view"}, {"contacts.edit"}, {"contacts.view"}, catalog=SMALL_CATALOG)
    second = effective_permissions(first, (), (), catalog=SMALL_CATALOG)
    assert second == first == {"contacts.edit"}


@pytest.mark.parametrize("revoke", [(), ("contacts.view",), tuple(DEFAULT_CATALOG.keys)])
def test_admin_bypass_ignores_overrides(revoke):
    result = effective_permissions((), grant=(), revoke=revoke, role="admin")
    assert result == DEFAULT_CATALOG.keys


def test_admin_holds_every_catalog_key():
    admin = subject(role="admin", revoke=("permissions.manage",))
    effective = resolve_permissions(admin)
    assert effective.is_admin is True
    assert all(has_permission(admin, key) for key in DEFAULT_CATALOG.keys)
    assert has_permission(admin, "contacts.teleport") is False


def test_unknown_keys_are_inert():
    user = subject(defaults=("contacts.view",), grant=("ghosts.view",))
    assert has_permission(user, "ghosts.view") is False
    assert has_permission(user, "not even a key") is False
    assert has_permission(user, "contacts.view") is True


def test_missing_subject_has_nothing():
    assert resolve_permissions(None) is NO_PERMISSIONS
    assert has_permission(None, "contacts.view") is False
    assert len(NO_PERMISSIONS) == 0


def test_any_and_all():
    user = subject(defaults=("contacts.view", "deals.view"))
    assert has_any_permission(user, ["contacts.delete", "deals.view"]) is True
    assert has_any_permission(user, []) is False
    assert has_all_permissions(user, ["contacts.view", "deals.view"]) is True
    assert has_all_permissions(user, ["contacts.view", "deals.edit"]) is False


def test_subject_accepts_api_field_names():
    parsed = PermissionSubject.model_validate({
        "role": "member",
        "rolePermissions": ["contacts.view"],
        "permissions": {"grant": ["contacts.edit"], "revoke": None},
    })
    assert parsed.role_permissions == ["contacts.view"]
    assert parsed.permissions.grant == {"contacts.edit"}
    assert parsed.permissions.revoke == frozenset()


def test_permission_summary():
    summary = permission_summary(subject(
        defaults=("contacts.view", "contacts.edit"),
        grant=("contacts.delete",),
        revoke=("contacts.edit",),
    ), SMALL_CATALOG)

    assert summary.effective_permissions == ["contacts.delete", "contacts.view"]
    assert summary.effective_count == 2
    assert summary.has_custom_overrides is True
    assert summary.is_admin is False
    assert summary.grant == ["contacts.delete"]
    assert summary.revoke == ["contacts.edit"]


def test_compare_permissions():
    added, removed = compare_permissions(["a.view", "b.view"], ["b.view", "c.view", "c.view"])
    assert added == ["c.view"]
    assert removed == ["a.view"]
