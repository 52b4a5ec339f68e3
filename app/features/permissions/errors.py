"""
Error taxonomy for permission resolution and editing.

The HTTP layer maps each class to a status code (see ``status_code``); the API
client maps responses back to the same classes, so callers on either side of the
wire handle one set of exceptions.
"""
from typing import Any, Optional

from fastapi import status


class PermissionsError(Exception):
    """Base class for every permission-domain error."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "PERMISSIONS_ERROR"

    def __init__(self, message: str, *, code: Optional[str] = None, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            payload.update(self.details)
        return payload


class PermissionValidationError(PermissionsError):
    """Malformed input: bad permission key, empty role name, overlapping override."""

    code = "VALIDATION_ERROR"


class InvalidPermissionKey(PermissionValidationError):
    code = "INVALID_PERMISSION_KEY"

    def __init__(self, key: Any):
        super().__init__(f"Invalid permission key: {key!r}", details={"key": str(key)})
        self.key = key


class PermissionDenied(PermissionsError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "INSUFFICIENT_PERMISSIONS"


class NotFound(PermissionsError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class UnknownModule(NotFound):
    code = "MODULE_NOT_FOUND"

    def __init__(self, module_key: str):
        super().__init__(f"Permission module not found: {module_key}", details={"module": module_key})
        self.module_key = module_key


class Conflict(PermissionsError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"


class VersionConflict(Conflict):
    """The override was changed by someone else since it was loaded."""

    code = "VERSION_CONFLICT"


class SaveInProgress(PermissionsError):
    code = "SAVE_IN_PROGRESS"


class EditorLocked(PermissionsError):
    """Editing attempted on a read-only matrix (admin target or no edit rights)."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "EDITOR_LOCKED"
