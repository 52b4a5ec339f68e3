"""
Permission catalog: the taxonomy of every grantable permission key.

Keys have the form ``resource.action``. For display they are grouped
module -> resource -> action, each level carrying English and Arabic labels.
The catalog is leaf data; nothing here decides who may do what.
"""
import re
from collections.abc import Iterable, Iterator, Mapping
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from app.features.permissions.errors import InvalidPermissionKey, UnknownModule
from app.utils import get_logger


log = get_logger(__name__)

PERMISSION_KEY_PATTERN = re.compile(r"^[a-z][a-z0-9_]*\.[a-z][a-z0-9_]*$")

ADMIN_ROLE = "admin"


# ============================================================================
# Key helpers
# ============================================================================

def is_valid_permission_key(key: Any) -> bool:
    return isinstance(key, str) and PERMISSION_KEY_PATTERN.match(key) is not None


def parse_permission_key(key: Any) -> tuple[str, str]:
    """Split ``resource.action``; raise InvalidPermissionKey when malformed."""
    if not is_valid_permission_key(key):
        raise InvalidPermissionKey(key)
    resource, action = key.split(".", 1)
    return resource, action


def build_permission_key(resource: str, action: str) -> str:
    key = f"{resource}.{action}"
    if not is_valid_permission_key(key):
        raise InvalidPermissionKey(key)
    return key


# ============================================================================
# Labels
# ============================================================================

ACTION_LABELS: dict[str, tuple[str, str]] = {
    "view": ("View", "عرض"),
    "create": ("Create", "إنشاء"),
    "edit": ("Edit", "تعديل"),
    "delete": ("Delete", "حذف"),
    "export": ("Export", "تصدير"),
    "invite": ("Invite", "دعوة"),
    "manage": ("Manage", "إدارة"),
    "send": ("Send", "إرسال"),
    "reply": ("Reply", "الرد"),
    "assign": ("Assign", "تعيين"),
}

RESOURCE_LABELS: dict[str, tuple[str, str]] = {
    "contacts": ("Contacts", "جهات الاتصال"),
    "companies": ("Companies", "الشركات"),
    "segments": ("Segments", "الشرائح"),
    "deals": ("Deals", "الصفقات"),
    "pipelines": ("Pipelines", "مسارات المبيعات"),
    "campaigns": ("Campaigns", "الحملات"),
    "conversations": ("Conversations", "المحادثات"),
    "tickets": ("Tickets", "التذاكر"),
    "analytics": ("Analytics", "التحليلات"),
    "tags": ("Tags", "الوسوم"),
    "statuses": ("Contact Statuses", "حالات جهات الاتصال"),
    "lead_sources": ("Lead Sources", "مصادر العملاء المحتملين"),
    "users": ("Users", "المستخدمون"),
    "permissions": ("Permissions", "الصلاحيات"),
    "organization": ("Organization", "المؤسسة"),
}

MODULE_LABELS: dict[str, tuple[str, str]] = {
    "crm": ("CRM", "إدارة علاقات العملاء"),
    "campaigns": ("Campaigns", "الحملات"),
    "conversations": ("Conversations", "المحادثات"),
    "tickets": ("Tickets", "التذاكر"),
    "analytics": ("Analytics", "التحليلات"),
    "settings": ("Settings", "الإعدادات"),
    "team": ("Team Management", "إدارة الفريق"),
    "organization": ("Organization", "المؤسسة"),
}

# Keys whose generated "<Action> <Resource>" label reads badly
LABEL_OVERRIDES: dict[str, tuple[str, str]] = {
    "conversations.reply": ("Reply to Conversations", "الرد على المحادثات"),
    "conversations.manage": ("Manage Conversation Settings", "إدارة إعدادات المحادثات"),
}


def _humanize(token: str) -> str:
    return token.replace("_", " ").title()


def action_label(action: str) -> tuple[str, str]:
    return ACTION_LABELS.get(action, (action[:1].upper() + action[1:], action))


def resource_label(resource: str) -> tuple[str, str]:
    return RESOURCE_LABELS.get(resource, (_humanize(resource), _humanize(resource)))


def module_label(module_key: str) -> tuple[str, str]:
    return MODULE_LABELS.get(module_key, resource_label(module_key))


def format_permission_label(key: str) -> tuple[str, str]:
    """
    Bilingual display label for a key, e.g. ``contacts.view`` -> ("View Contacts", "عرض جهات الاتصال").

    Malformed keys are returned unchanged for both languages.
    """
    if key in LABEL_OVERRIDES:
        return LABEL_OVERRIDES[key]
    if not is_valid_permission_key(key):
        return key, key
    resource, action = key.split(".", 1)
    action_en, action_ar = action_label(action)
    resource_en, resource_ar = resource_label(resource)
    return f"{action_en} {resource_en}", f"{action_ar} {resource_ar}"


# ============================================================================
# Taxonomy models
# ============================================================================

class PermissionDescriptor(BaseModel):
    """A single grantable permission with its display labels."""
    model_config = ConfigDict(frozen=True)

    key: str
    label_en: str
    label_ar: str

    @property
    def resource(self) -> str:
        return self.key.split(".", 1)[0]

    @property
    def action(self) -> str:
        return self.key.split(".", 1)[1]

    @classmethod
    def for_key(cls, key: str) -> "PermissionDescriptor":
        parse_permission_key(key)
        label_en, label_ar = format_permission_label(key)
        return cls(key=key, label_en=label_en, label_ar=label_ar)


class Resource(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    label_en: str
    label_ar: str
    permissions: tuple[PermissionDescriptor, ...] = ()

    @property
    def actions(self) -> list[str]:
        """Distinct actions this resource supports, in catalog order."""
        seen: dict[str, None] = {}
        for descriptor in self.permissions:
            seen.setdefault(descriptor.action, None)
        return list(seen)

    def supports(self, action: str) -> bool:
        return any(d.action == action for d in self.permissions)


class Module(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    label_en: str
    label_ar: str
    resources: tuple[Resource, ...] = ()

    @property
    def permissions(self) -> list[PermissionDescriptor]:
        return [d for resource in self.resources for d in resource.permissions]


def _build_module(
    key: str,
    descriptors: Iterable[PermissionDescriptor],
    label_en: Optional[str] = None,
    label_ar: Optional[str] = None,
) -> Module:
    """Group descriptors by resource, keeping first-appearance order."""
    by_resource: dict[str, list[PermissionDescriptor]] = {}
    for descriptor in descriptors:
        bucket = by_resource.setdefault(descriptor.resource, [])
        if all(d.key != descriptor.key for d in bucket):
            bucket.append(descriptor)

    resources = []
    for resource_key, items in by_resource.items():
        res_en, res_ar = resource_label(resource_key)
        resources.append(Resource(key=resource_key, label_en=res_en, label_ar=res_ar, permissions=tuple(items)))

    default_en, default_ar = module_label(key)
    return Module(
        key=key,
        label_en=label_en or default_en,
        label_ar=label_ar or default_ar,
        resources=tuple(resources),
    )


# ============================================================================
# Catalog
# ============================================================================

class PermissionCatalog:
    """
    Ordered, immutable collection of modules.

    Usage:
        catalog = PermissionCatalog.from_layout(CATALOG_LAYOUT)
        "contacts.view" in catalog          # True
        catalog.module("crm").resources     # contacts, companies, ...
    """

    def __init__(self, modules: Iterable[Module]):
        self._modules: tuple[Module, ...] = tuple(modules)
        self._by_module = {m.key: m for m in self._modules}
        self._by_key: dict[str, PermissionDescriptor] = {}
        self._module_of: dict[str, str] = {}
        for module in self._modules:
            for descriptor in module.permissions:
                # First module wins when a key is listed twice
                self._by_key.setdefault(descriptor.key, descriptor)
                self._module_of.setdefault(descriptor.key, module.key)
        self._keys = frozenset(self._by_key)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def __iter__(self) -> Iterator[PermissionDescriptor]:
        return iter(self._by_key.values())

    def __len__(self) -> int:
        return len(self._by_key)

    def __repr__(self) -> str:
        return f"<PermissionCatalog(modules={[m.key for m in self._modules]}, keys={len(self)})>"

    @property
    def keys(self) -> frozenset[str]:
        return self._keys

    @property
    def modules(self) -> tuple[Module, ...]:
        return self._modules

    def get(self, key: str) -> Optional[PermissionDescriptor]:
        return self._by_key.get(key)

    def module(self, module_key: str) -> Module:
        try:
            return self._by_module[module_key]
        except KeyError:
            raise UnknownModule(module_key) from None

    def module_for(self, key: str) -> Optional[str]:
        return self._module_of.get(key)

    def descriptors_for(self, keys: Iterable[str]) -> list[PermissionDescriptor]:
        """Descriptors for the known keys among ``keys``, in catalog order."""
        wanted = set(keys)
        return [d for d in self if d.key in wanted]

    def to_groups(self) -> dict[str, Any]:
        """Payload of ``GET /permissions/available``."""
        return {
            "groups": {
                module.key: {
                    "label": module.label_en,
                    "label_en": module.label_en,
                    "label_ar": module.label_ar,
                    "permissions": [d.model_dump() for d in module.permissions],
                }
                for module in self._modules
            }
        }

    @classmethod
    def from_layout(cls, layout: Iterable[tuple[str, Iterable[tuple[str, Iterable[str]]]]]) -> "PermissionCatalog":
        modules = []
        for module_key, resources in layout:
            descriptors = [
                PermissionDescriptor.for_key(build_permission_key(resource, action))
                for resource, actions in resources
                for action in actions
            ]
            modules.append(_build_module(module_key, descriptors))
        return cls(modules)

    @classmethod
    def from_groups(cls, payload: Mapping[str, Any]) -> "PermissionCatalog":
        """
        Load a catalog served by ``GET /permissions/available``.

        Entries whose key is malformed are skipped; missing labels are generated.
        """
        groups = payload.get("groups") or {}
        modules = []
        for module_key, group in groups.items():
            descriptors = []
            for entry in group.get("permissions") or []:
                key = entry.get("key") if isinstance(entry, Mapping) else None
                if not is_valid_permission_key(key):
                    log.debug("Skipping malformed catalog entry %r in module %s", entry, module_key)
                    continue
                label_en, label_ar = format_permission_label(key)
                descriptors.append(PermissionDescriptor(
                    key=key,
                    label_en=entry.get("label_en") or entry.get("label") or label_en,
                    label_ar=entry.get("label_ar") or label_ar,
                ))
            modules.append(_build_module(
                module_key,
                descriptors,
                label_en=group.get("label_en") or group.get("label"),
                label_ar=group.get("label_ar"),
            ))
        return cls(modules)

    @classmethod
    def discover(cls, role_permission_sets: Iterable[Iterable[str]]) -> "PermissionCatalog":
        """
        Derive a catalog from the permissions actually assigned to roles.

        Resources are filed under ``crm``, ``settings`` or ``team``; any other
        resource becomes a module of its own. Empty modules are dropped.
        """
        found: dict[str, None] = {}
        for permissions in role_permission_sets:
            for key in permissions:
                if is_valid_permission_key(key):
                    found.setdefault(key, None)

        grouped: dict[str, list[PermissionDescriptor]] = {"crm": [], "settings": [], "team": []}
        for key in found:
            resource = key.split(".", 1)[0]
            module_key = DISCOVERY_MODULES.get(resource, resource)
            grouped.setdefault(module_key, []).append(PermissionDescriptor.for_key(key))

        return cls(_build_module(k, items) for k, items in grouped.items() if items)


# ============================================================================
# Default taxonomy
# ============================================================================

_CRUD = ("view", "create", "edit", "delete")

CATALOG_LAYOUT: tuple[tuple[str, tuple[tuple[str, tuple[str, ...]], ...]], ...] = (
    ("crm", (
        ("contacts", _CRUD + ("export",)),
        ("companies", _CRUD + ("export",)),
        ("segments", _CRUD),
        ("deals", _CRUD + ("export",)),
    )),
    ("campaigns", (("campaigns", _CRUD + ("send",)),)),
    ("conversations", (("conversations", ("view", "reply", "assign", "manage")),)),
    ("tickets", (("tickets", _CRUD + ("assign",)),)),
    ("analytics", (("analytics", ("view", "export")),)),
    ("settings", (
        ("tags", _CRUD),
        ("statuses", _CRUD),
        ("lead_sources", _CRUD),
    )),
    ("team", (
        ("users", ("view", "invite", "edit", "delete")),
        ("permissions", ("manage",)),
    )),
    ("organization", (("organization", ("view", "edit", "delete")),)),
)

DISCOVERY_MODULES: dict[str, str] = {
    "contacts": "crm",
    "companies": "crm",
    "segments": "crm",
    "deals": "crm",
    "pipelines": "crm",
    "tags": "settings",
    "statuses": "settings",
    "lead_sources": "settings",
    "users": "team",
    "permissions": "team",
}

DEFAULT_CATALOG = PermissionCatalog.from_layout(CATALOG_LAYOUT)


# System roles seeded into every new organization
_MEMBER = frozenset({
    "contacts.view", "companies.view", "segments.view", "deals.view",
    "conversations.view", "tickets.view",
    "tags.view", "statuses.view", "lead_sources.view",
    "users.view", "organization.view",
})

_AGENT = _MEMBER | {
    "contacts.create", "contacts.edit",
    "companies.create", "companies.edit",
    "deals.create", "deals.edit",
    "conversations.reply",
    "tickets.create", "tickets.edit",
}

_MANAGER = _AGENT | {
    "contacts.delete", "contacts.export",
    "companies.delete", "companies.export",
    "segments.create", "segments.edit", "segments.delete",
    "deals.delete", "deals.export",
    "campaigns.view", "campaigns.create", "campaigns.edit", "campaigns.delete", "campaigns.send",
    "conversations.assign", "conversations.manage",
    "tickets.assign",
    "analytics.view", "analytics.export",
    "users.invite",
}

SYSTEM_ROLES: dict[str, dict[str, Any]] = {
    ADMIN_ROLE: {
        "name": "Administrator",
        "description": "Full access to every module, including team and organization settings",
        "permissions": DEFAULT_CATALOG.keys,
    },
    "manager": {
        "name": "Manager",
        "description": "Manages CRM data, campaigns and conversations; may invite users",
        "permissions": frozenset(_MANAGER),
    },
    "agent": {
        "name": "Agent",
        "description": "Works contacts, deals and tickets without deleting them",
        "permissions": frozenset(_AGENT),
    },
    "member": {
        "name": "Member",
        "description": "Read-only access",
        "permissions": _MEMBER,
    },
}

DEFAULT_ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    slug: frozenset(definition["permissions"]) for slug, definition in SYSTEM_ROLES.items()
}
