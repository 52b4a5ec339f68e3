"""
Permission matrix presenter.

Renders one catalog module as a resource x action grid of four-state cells.
"""
from collections.abc import Iterable
from typing import Optional

from pydantic import BaseModel

from app.features.permissions.calculator import is_admin_role
from app.features.permissions.catalog import PermissionCatalog, action_label
from app.features.permissions.overrides import PermissionState, UserPermissionOverride, permission_state


ACTION_PRIORITY: dict[str, int] = {
    "view": 1,
    "create": 2,
    "edit": 3,
    "delete": 4,
    "export": 5,
    "invite": 6,
    "manage": 7,
}


def sort_actions(actions: Iterable[str]) -> list[str]:
    """Known actions by priority, then unknown ones in first-seen order."""
    unique = list(dict.fromkeys(actions))
    return sorted(unique, key=lambda a: (ACTION_PRIORITY.get(a, 99), unique.index(a)))


class ActionColumn(BaseModel):
    key: str
    label_en: str
    label_ar: str


class MatrixCell(BaseModel):
    key: str
    action: str
    state: PermissionState
    checked: bool
    interactive: bool


class MatrixRow(BaseModel):
    resource: str
    label_en: str
    label_ar: str
    # None where the resource does not support the column's action
    cells: list[Optional[MatrixCell]]


class PermissionMatrix(BaseModel):
    module: str
    label_en: str
    label_ar: str
    columns: list[ActionColumn]
    rows: list[MatrixRow]
    disabled: bool
    notice: Optional[str] = None

    def cell(self, key: str) -> Optional[MatrixCell]:
        for row in self.rows:
            for cell in row.cells:
                if cell is not None and cell.key == key:
                    return cell
        return None


def build_permission_matrix(
    catalog: PermissionCatalog,
    module_key: str,
    role_defaults: Iterable[str],
    override: UserPermissionOverride,
    *,
    role: Optional[str] = None,
    can_edit: bool = True,
) -> PermissionMatrix:
    """
    Render ``module_key`` for a user with the given role defaults and override.

    Raises UnknownModule when the catalog has no such module. When the role is
    admin or the viewer cannot edit, all cells are read-only but keep their
    state.
    """
    module = catalog.module(module_key)
    defaults = frozenset(role_defaults)
    admin = is_admin_role(role)
    disabled = admin or not can_edit

    actions = sort_actions(a for resource in module.resources for a in resource.actions)
    columns = []
    for action in actions:
        label_en, label_ar = action_label(action)
        columns.append(ActionColumn(key=action, label_en=label_en, label_ar=label_ar))

    rows = []
    for resource in module.resources:
        by_action = {d.action: d for d in resource.permissions}
        cells: list[Optional[MatrixCell]] = []
        for action in actions:
            descriptor = by_action.get(action)
            if descriptor is None:
                cells.append(None)
                continue
            if admin:
                state = PermissionState.DEFAULT
            else:
                state = permission_state(descriptor.key, defaults, override)
            cells.append(MatrixCell(
                key=descriptor.key,
                action=action,
                state=state,
                checked=state.is_checked,
                interactive=not disabled,
            ))
        rows.append(MatrixRow(
            resource=resource.key,
            label_en=resource.label_en,
            label_ar=resource.label_ar,
            cells=cells,
        ))

    return PermissionMatrix(
        module=module.key,
        label_en=module.label_en,
        label_ar=module.label_ar,
        columns=columns,
        rows=rows,
        disabled=disabled,
        notice="admin" if admin else None,
    )
