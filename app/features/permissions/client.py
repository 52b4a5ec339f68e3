"""
Async HTTP client for the permissions API.

Used by front ends and scripts that render the matrix or gate navigation. It
doubles as the OverrideStore a PermissionEditor saves through, and maps error
responses back onto the exceptions in errors.py.
"""
from typing import Any, Optional

import httpx

from app.features.permissions.calculator import PermissionSubject
from app.features.permissions.catalog import PermissionCatalog
from app.features.permissions.editor import SavedOverride
from app.features.permissions.errors import (
    Conflict,
    NotFound,
    PermissionDenied,
    PermissionsError,
    PermissionValidationError,
    VersionConflict,
)
from app.features.permissions.overrides import UserPermissionOverride
from app.utils import get_logger


log = get_logger(__name__)


def _error_from_response(response: httpx.Response) -> Exception:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    detail = body.get("detail")
    if isinstance(detail, dict):
        body = {**body, **detail}
    message = body.get("error") or (detail if isinstance(detail, str) else None) or response.reason_phrase
    code = body.get("code")
    details = {k: v for k, v in body.items() if k not in ("error", "code", "detail")}

    status_code = response.status_code
    if status_code in (400, 422):
        return PermissionValidationError(message, code=code, details=details)
    if status_code in (401, 403):
        return PermissionDenied(message, code=code, details=details)
    if status_code == 404:
        return NotFound(message, code=code, details=details)
    if status_code == 409:
        if code == VersionConflict.code:
            return VersionConflict(message, details=details)
        return Conflict(message, code=code, details=details)
    if status_code < 500:
        error = PermissionsError(message, code=code, details=details)
        error.status_code = status_code
        return error
    return httpx.HTTPStatusError(
        f"Server error {status_code} for {response.request.method} {response.request.url}",
        request=response.request,
        response=response,
    )


class PermissionsClient:
    """
    Usage:
        async with PermissionsClient("https://api.example.com", token) as api:
            catalog = await api.get_available_permissions()
            me = await api.get_me()
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
            timeout=timeout,
        )

    async def __aenter__(self) -> "PermissionsClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        response = await self._client.request(method, path, **kwargs)
        if response.is_error:
            error = _error_from_response(response)
            log.debug("%s %s failed with %s", method, path, response.status_code)
            raise error
        if not response.content:
            return None
        return response.json()

    async def get_available_permissions(self) -> PermissionCatalog:
        return PermissionCatalog.from_groups(await self._request("GET", "/permissions/available"))

    async def get_me(self) -> PermissionSubject:
        """Current user as a PermissionSubject (role, rolePermissions snapshot, overrides)."""
        return PermissionSubject.model_validate(await self._request("GET", "/users/me"))

    async def get_roles(self) -> list[dict[str, Any]]:
        return await self._request("GET", "/permissions/roles")

    async def get_user_permissions(self, user_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/permissions/users/{user_id}")

    async def check(self, permission: str) -> bool:
        data = await self._request("POST", "/permissions/check", json={"permission": permission})
        return bool(data["has_permission"])

    async def update_user_permissions(
        self,
        user_id: str,
        override: UserPermissionOverride,
        version: Optional[int] = None,
    ) -> SavedOverride:
        payload: dict[str, Any] = override.to_payload()
        if version is not None:
            payload["version"] = version
        data = await self._request("PATCH", f"/permissions/users/{user_id}", json=payload)
        return SavedOverride(
            override=UserPermissionOverride.from_payload(data["permissions"]),
            version=data["permissions_version"],
            effective_permissions=data.get("effective_permissions") or [],
        )

    # OverrideStore
    replace_overrides = update_user_permissions
