"""
Per-user grant/revoke overrides and the checkbox state machine that edits them.

Every (permission, user) cell is in one of four states:

    DEFAULT  role grants it, no override        (checked)
    GRANTED  role lacks it, user grant adds it  (checked)
    REVOKED  role grants it, user revoke drops it
    OFF      role lacks it, no override

Checking an OFF cell adds a grant, unchecking a DEFAULT cell adds a revoke, and
the other two transitions remove the override again. Nothing else changes the
override, so a key is never in both sets and flipping a cell twice is a no-op.
"""
import enum
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from app.features.permissions.catalog import is_valid_permission_key, parse_permission_key
from app.features.permissions.errors import InvalidPermissionKey, PermissionValidationError


class UserPermissionOverride(BaseModel):
    model_config = ConfigDict(frozen=True)

    grant: frozenset[str] = frozenset()
    revoke: frozenset[str] = frozenset()

    @field_validator("grant", "revoke", mode="before")
    @classmethod
    def none_is_empty(cls, v: Any) -> Any:
        return () if v is None else v

    @property
    def is_empty(self) -> bool:
        return not self.grant and not self.revoke

    def to_payload(self) -> dict[str, list[str]]:
        """JSON form stored on the user row and sent over the wire."""
        return {"grant": sorted(self.grant), "revoke": sorted(self.revoke)}

    @classmethod
    def from_payload(cls, payload: Any) -> "UserPermissionOverride":
        if not payload:
            return cls()
        return cls(grant=payload.get("grant") or (), revoke=payload.get("revoke") or ())


EMPTY_OVERRIDE = UserPermissionOverride()


def validate_override(override: UserPermissionOverride) -> UserPermissionOverride:
    """
    Reject overrides that could not have come from the toggle rules.

    Well-formed keys the catalog does not know are accepted; the calculator
    ignores them.
    """
    for key in sorted(override.grant | override.revoke):
        if not is_valid_permission_key(key):
            raise InvalidPermissionKey(key)
    overlap = override.grant & override.revoke
    if overlap:
        raise PermissionValidationError(
            "A permission cannot be both granted and revoked",
            code="OVERRIDE_OVERLAP",
            details={"keys": sorted(overlap)},
        )
    return override


def normalize_override(
    override: UserPermissionOverride,
    role_defaults: Iterable[str],
) -> UserPermissionOverride:
    """
    Drop entries that do not change anything for this role.

    A grant of a key the role already confers and a revoke of a key it lacks are
    removed, so a stored override only ever holds real deviations.
    """
    defaults = frozenset(role_defaults)
    return UserPermissionOverride(
        grant=override.grant - defaults,
        revoke=override.revoke & defaults,
    )


class PermissionState(str, enum.Enum):
    DEFAULT = "default"
    GRANTED = "granted"
    REVOKED = "revoked"
    OFF = "off"

    @property
    def is_checked(self) -> bool:
        return self in (PermissionState.DEFAULT, PermissionState.GRANTED)

    @property
    def is_custom(self) -> bool:
        return self in (PermissionState.GRANTED, PermissionState.REVOKED)


def permission_state(
    key: str,
    role_defaults: Iterable[str],
    override: UserPermissionOverride,
) -> PermissionState:
    if key in set(role_defaults):
        return PermissionState.REVOKED if key in override.revoke else PermissionState.DEFAULT
    return PermissionState.GRANTED if key in override.grant else PermissionState.OFF


def toggle_permission(
    key: str,
    checked: bool,
    role_defaults: Iterable[str],
    override: UserPermissionOverride,
) -> UserPermissionOverride:
    """
    Apply one checkbox change and return the new override.

    Changes that do not match a transition (checking an already checked cell)
    return ``override`` unchanged.
    """
    parse_permission_key(key)
    state = permission_state(key, role_defaults, override)

    if checked and state is PermissionState.OFF:
        return UserPermissionOverride(grant=override.grant | {key}, revoke=override.revoke)
    if not checked and state is PermissionState.DEFAULT:
        return UserPermissionOverride(grant=override.grant, revoke=override.revoke | {key})
    if not checked and state is PermissionState.GRANTED:
        return UserPermissionOverride(grant=override.grant - {key}, revoke=override.revoke)
    if checked and state is PermissionState.REVOKED:
        return UserPermissionOverride(grant=override.grant, revoke=override.revoke - {key})
    return override


def flip_permission(
    key: str,
    role_defaults: Iterable[str],
    override: UserPermissionOverride,
) -> UserPermissionOverride:
    defaults = set(role_defaults)
    checked = permission_state(key, defaults, override).is_checked
    return toggle_permission(key, not checked, defaults, override)


def override_from_selection(
    role_defaults: Iterable[str],
    selected: Iterable[str],
) -> UserPermissionOverride:
    """Smallest override that makes exactly ``selected`` checked."""
    defaults, chosen = set(role_defaults), set(selected)
    for key in chosen:
        parse_permission_key(key)
    return UserPermissionOverride(grant=chosen - defaults, revoke=defaults - chosen)
