"""
Navigation guard.

Decides, before a protected view is produced, whether it is rendered, denied
or the visitor is sent to the login page. This is a convenience for clients;
the API enforces the same rule independently (see dependencies.py).
"""
import enum
from collections.abc import Mapping
from typing import Optional

from pydantic import BaseModel

from app.features.permissions.calculator import PermissionSubject, resolve_permissions
from app.features.permissions.catalog import PermissionCatalog
from app.utils import get_logger


log = get_logger(__name__)

LOGIN_PATH = "/login"
PERMISSION_DENIED_PATH = "/permission-denied"


class RouteState(str, enum.Enum):
    UNCHECKED = "unchecked"
    RENDERED = "rendered"
    DENIED = "denied"
    REDIRECTED_TO_LOGIN = "redirected_to_login"


class RouteDecision(BaseModel):
    state: RouteState
    permission: Optional[str] = None
    redirect_to: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.state is RouteState.RENDERED


def resolve_route(
    subject: Optional[PermissionSubject],
    required_permission: Optional[str],
    catalog: Optional[PermissionCatalog] = None,
) -> RouteDecision:
    if subject is None:
        return RouteDecision(
            state=RouteState.REDIRECTED_TO_LOGIN,
            permission=required_permission,
            redirect_to=LOGIN_PATH,
        )
    if not required_permission:
        return RouteDecision(state=RouteState.RENDERED)
    if resolve_permissions(subject, catalog).allows(required_permission):
        return RouteDecision(state=RouteState.RENDERED, permission=required_permission)

    log.warning("Access denied: user lacks permission %r", required_permission)
    return RouteDecision(
        state=RouteState.DENIED,
        permission=required_permission,
        redirect_to=PERMISSION_DENIED_PATH,
    )


# Menu entries and the permission needed to open them
DEFAULT_ROUTE_PERMISSIONS: dict[str, str] = {
    "/crm/contacts": "contacts.view",
    "/crm/companies": "companies.view",
    "/crm/segmentation": "segments.view",
    "/crm/deals": "deals.view",
    "/campaigns": "campaigns.view",
    "/conversations": "conversations.view",
    "/tickets": "tickets.view",
    "/analytics": "analytics.view",
    "/crm/settings": "tags.view",
    "/team/members": "users.view",
    "/team/roles": "permissions.manage",
    "/settings/account": "organization.view",
}


class NavigationGuard:
    """
    Route table plus resolver.

    Paths not in the table need no permission (only a signed-in user).
    """

    def __init__(
        self,
        routes: Optional[Mapping[str, str]] = None,
        catalog: Optional[PermissionCatalog] = None,
    ):
        self.routes = dict(DEFAULT_ROUTE_PERMISSIONS if routes is None else routes)
        self.catalog = catalog

    def required_permission(self, path: str) -> Optional[str]:
        return self.routes.get(path.rstrip("/") or "/")

    def check(self, path: str, subject: Optional[PermissionSubject]) -> RouteDecision:
        return resolve_route(subject, self.required_permission(path), self.catalog)

    def visible_routes(self, subject: Optional[PermissionSubject]) -> list[str]:
        if subject is None:
            return []
        effective = resolve_permissions(subject, self.catalog)
        return [path for path, key in self.routes.items() if effective.allows(key)]
