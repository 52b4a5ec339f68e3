"""
Editing session behind the "manage permissions" dialog.

Holds the override as last confirmed by the server (the baseline) and the
pending override the admin is building with checkbox toggles. Nothing is
applied to the baseline until the store accepts the whole grant/revoke pair.
"""
from typing import Optional, Protocol

from pydantic import BaseModel

from app.features.permissions.calculator import (
    PermissionSubject,
    PermissionSummary,
    is_admin_role,
    permission_summary,
)
from app.features.permissions.catalog import DEFAULT_CATALOG, PermissionCatalog
from app.features.permissions.errors import EditorLocked, SaveInProgress
from app.features.permissions.matrix import PermissionMatrix, build_permission_matrix
from app.features.permissions.overrides import UserPermissionOverride, flip_permission, toggle_permission
from app.utils import get_logger


log = get_logger(__name__)


class SavedOverride(BaseModel):
    """What the store returns after accepting an override."""
    override: UserPermissionOverride
    version: int
    effective_permissions: list[str] = []


class OverrideStore(Protocol):
    async def replace_overrides(
        self,
        user_id: str,
        override: UserPermissionOverride,
        version: Optional[int] = None,
    ) -> SavedOverride:
        ...


class PermissionEditor:
    """
    Usage:
        editor = PermissionEditor(user_id, subject, catalog=catalog, version=3)
        editor.toggle("contacts.delete", True)
        matrix = editor.matrix()
        await editor.save(client)
    """

    def __init__(
        self,
        user_id: str,
        subject: PermissionSubject,
        *,
        catalog: Optional[PermissionCatalog] = None,
        can_edit: bool = True,
        version: Optional[int] = None,
    ):
        self.user_id = user_id
        self.catalog = catalog or DEFAULT_CATALOG
        self.can_edit = can_edit
        self.role = subject.role
        self.role_defaults = frozenset(subject.role_permissions)
        self.version = version
        self.baseline: UserPermissionOverride = subject.permissions
        self.pending: UserPermissionOverride = subject.permissions
        self.last_effective: list[str] = []
        self._saving = False

        module_keys = [m.key for m in self.catalog.modules]
        if "crm" in module_keys:
            self.active_module: Optional[str] = "crm"
        else:
            self.active_module = module_keys[0] if module_keys else None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def read_only(self) -> bool:
        return is_admin_role(self.role) or not self.can_edit

    @property
    def is_dirty(self) -> bool:
        return self.pending != self.baseline

    @property
    def is_saving(self) -> bool:
        return self._saving

    @property
    def can_save(self) -> bool:
        return self.is_dirty and not self._saving and not self.read_only

    def _subject(self, override: UserPermissionOverride) -> PermissionSubject:
        return PermissionSubject(role=self.role, role_permissions=sorted(self.role_defaults), permissions=override)

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def select_module(self, module_key: str) -> None:
        self.catalog.module(module_key)
        self.active_module = module_key

    def _check_editable(self) -> None:
        if self.read_only:
            raise EditorLocked("Permissions of this user cannot be edited")

    def toggle(self, key: str, checked: bool) -> UserPermissionOverride:
        self._check_editable()
        self.pending = toggle_permission(key, checked, self.role_defaults, self.pending)
        return self.pending

    def flip(self, key: str) -> UserPermissionOverride:
        self._check_editable()
        self.pending = flip_permission(key, self.role_defaults, self.pending)
        return self.pending

    def discard(self) -> None:
        self.pending = self.baseline

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    def matrix(self, module_key: Optional[str] = None) -> PermissionMatrix:
        return build_permission_matrix(
            self.catalog,
            module_key or self.active_module or "",
            self.role_defaults,
            self.pending,
            role=self.role,
            can_edit=self.can_edit,
        )

    def summary(self) -> PermissionSummary:
        return permission_summary(self._subject(self.pending), self.catalog)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def save(self, store: OverrideStore) -> SavedOverride:
        """
        Send the pending grant/revoke pair in one request.

        On failure the pending state stays as the admin left it and the error
        propagates; the baseline only moves once the store confirms.
        """
        self._check_editable()
        if self._saving:
            raise SaveInProgress("A save is already in progress for this user")

        self._saving = True
        submitted = self.pending
        try:
            saved = await store.replace_overrides(self.user_id, submitted, self.version)
        except Exception:
            log.warning("Saving permissions for user %s failed", self.user_id)
            raise
        finally:
            self._saving = False

        self.baseline = saved.override
        self.version = saved.version
        self.last_effective = list(saved.effective_permissions)
        # Toggles made while the request was in flight are kept
        if self.pending == submitted:
            self.pending = saved.override
        log.info("Saved permissions for user %s (version %s)", self.user_id, saved.version)
        return saved
