"""Unit tests for the permissions API client."""
import json

import httpx
import pytest

from app.features.permissions.calculator import PermissionSubject
from app.features.permissions.catalog import DEFAULT_CATALOG
from app.features.permissions.client import PermissionsClient
from app.features.permissions.editor import PermissionEditor
from app.features.permissions.errors import (
    Conflict,
    NotFound,
    PermissionDenied,
    PermissionValidationError,
    VersionConflict,
)
from app.features.permissions.overrides import UserPermissionOverride


def make_client(handler):
    return PermissionsClient("https://crm.test", "token-123", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_get_available_permissions_builds_catalog():
    def handler(request):
        assert request.url.path == "/permissions/available"
        assert request.headers["Authorization"] == "Bearer token-123"
        return httpx.Response(200, json=DEFAULT_CATALOG.to_groups())

    async with make_client(handler) as api:
        catalog = await api.get_available_permissions()

    assert catalog.keys == DEFAULT_CATALOG.keys


@pytest.mark.asyncio
async def test_get_me_reads_role_snapshot_and_overrides():
    def handler(request):
        return httpx.Response(200, json={
            "id": "u1",
            "role": "agent",
            "rolePermissions": ["contacts.view"],
            "permissions": {"grant": ["contacts.delete"], "revoke": []},
            "permissions_version": 2,
        })

    async with make_client(handler) as api:
        me = await api.get_me()

    assert me.role == "agent"
    assert me.role_permissions == ["contacts.view"]
    assert me.permissions.grant == {"contacts.delete"}


@pytest.mark.asyncio
async def test_check():
    def handler(request):
        assert json.loads(request.content) == {"permission": "deals.view"}
        return httpx.Response(200, json={"permission": "deals.view", "has_permission": False})

    async with make_client(handler) as api:
        assert await api.check("deals.view") is False


@pytest.mark.asyncio
async def test_update_sends_both_lists_and_version():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "user_id": "u1",
            "permissions": {"grant": ["contacts.delete"], "revoke": ["contacts.edit"]},
            "permissions_version": 5,
            "effective_permissions": ["contacts.delete", "contacts.view"],
        })

    override = UserPermissionOverride(grant={"contacts.delete"}, revoke={"contacts.edit"})
    async with make_client(handler) as api:
        saved = await api.update_user_permissions("u1", override, version=4)

    assert seen == {
        "method": "PATCH",
        "path": "/permissions/users/u1",
        "body": {"grant": ["contacts.delete"], "revoke": ["contacts.edit"], "version": 4},
    }
    assert saved.override == override
    assert saved.version == 5
    assert saved.effective_permissions == ["contacts.delete", "contacts.view"]


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code,body,error_class", [
    (400, {"error": "Invalid permission key", "code": "INVALID_PERMISSION_KEY"}, PermissionValidationError),
    (422, {"detail": "Unprocessable"}, PermissionValidationError),
    (403, {"error": "Insufficient permissions", "code": "INSUFFICIENT_PERMISSIONS", "required": ["users.view"]}, PermissionDenied),
    (401, {"detail": "Token has expired"}, PermissionDenied),
    (404, {"detail": "User not found"}, NotFound),
    (409, {"error": "Stale", "code": "VERSION_CONFLICT", "current_version": 7}, VersionConflict),
    (409, {"error": "Role is assigned to users", "code": "ROLE_IN_USE"}, Conflict),
])
async def test_error_responses_map_to_domain_errors(status_code, body, error_class):
    def handler(request):
        return httpx.Response(status_code, json=body)

    async with make_client(handler) as api:
        with pytest.raises(error_class) as exc:
            await api.get_user_permissions("u1")

    if "code" in body:
        assert exc.value.code == body["code"]


@pytest.mark.asyncio
async def test_denial_keeps_required_permissions():
    def handler(request):
        return httpx.Response(403, json={
            "error": "Insufficient permissions",
            "code": "INSUFFICIENT_PERMISSIONS",
            "required": ["permissions.manage"],
        })

    async with make_client(handler) as api:
        with pytest.raises(PermissionDenied) as exc:
            await api.get_roles()

    assert exc.value.details["required"] == ["permissions.manage"]
    assert exc.value.message == "Insufficient permissions"


@pytest.mark.asyncio
async def test_server_errors_raise_http_status_error():
    def handler(request):
        return httpx.Response(503, text="unavailable")

    async with make_client(handler) as api:
        with pytest.raises(httpx.HTTPStatusError):
            await api.get_roles()


@pytest.mark.asyncio
async def test_editor_saves_through_client():
    def handler(request):
        body = json.loads(request.content)
        return httpx.Response(200, json={
            "permissions": {"grant": body["grant"], "revoke": body["revoke"]},
            "permissions_version": body["version"] + 1,
            "effective_permissions": ["contacts.view", "deals.view"],
        })

    me = {"role": "agent", "rolePermissions": ["contacts.view"], "permissions": {"grant": [], "revoke": []}}
    editor = PermissionEditor("u1", PermissionSubject.model_validate(me), version=0)
    editor.toggle("deals.view", True)

    async with make_client(handler) as api:
        saved = await editor.save(api)

    assert saved.version == 1
    assert editor.baseline.grant == {"deals.view"}
    assert editor.is_dirty is False
