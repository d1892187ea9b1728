"""Reference catalog of protected resources and their meaningful actions.

The catalog documents the permission model for administrators building
roles. It is never consulted when deciding a permission check.
"""

from collections import OrderedDict
from typing import Dict, List, Optional

from .models import Action, CatalogAction, PermissionCatalogEntry, ResourceGroup

_ACTION_LABELS = {
    Action.CREATE: "Create",
    Action.READ: "Read",
    Action.UPDATE: "Update",
    Action.DELETE: "Delete",
    Action.PUBLISH: "Publish",
    Action.MODERATE: "Moderate",
    Action.EXPORT: "Export",
    Action.IMPORT: "Import",
    Action.APPROVE: "Approve",
}

_CRUD = (Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE)


def _entry(
    resource: str,
    group: ResourceGroup,
    label: str,
    description: str,
    actions,
) -> PermissionCatalogEntry:
    return PermissionCatalogEntry(
        resource=resource,
        resource_group=group,
        label=label,
        description=description,
        available_actions=[
            CatalogAction(action=a, label=_ACTION_LABELS[a], description=f"{_ACTION_LABELS[a]} {label.lower()}")
            for a in actions
        ],
    )


PERMISSION_CATALOG: List[PermissionCatalogEntry] = [
    # Content
    _entry("blog-posts", ResourceGroup.CONTENT, "Blog posts", "Corporate blog articles",
           _CRUD + (Action.PUBLISH, Action.MODERATE)),
    _entry("posts", ResourceGroup.CONTENT, "Social posts", "Social network posts",
           _CRUD + (Action.MODERATE,)),
    _entry("comments", ResourceGroup.CONTENT, "Comments", "Comments on posts and articles",
           _CRUD + (Action.MODERATE,)),
    _entry("announcements", ResourceGroup.CONTENT, "Announcements", "User announcements",
           _CRUD + (Action.MODERATE,)),
    _entry("promotional-offers", ResourceGroup.CONTENT, "Promotional offers", "Featured offers",
           _CRUD + (Action.PUBLISH,)),
    # Business
    _entry("companies", ResourceGroup.BUSINESS, "Companies", "Partner companies",
           _CRUD + (Action.APPROVE,)),
    _entry("job-offers", ResourceGroup.BUSINESS, "Job offers", "Published job offers",
           _CRUD + (Action.MODERATE,)),
    _entry("advisories", ResourceGroup.BUSINESS, "Advisories", "Consulting services",
           _CRUD + (Action.MODERATE,)),
    # Users
    _entry("users", ResourceGroup.USERS, "Users", "Platform user accounts",
           _CRUD + (Action.MODERATE,)),
    _entry("groups", ResourceGroup.USERS, "Groups", "Groups and communities",
           _CRUD + (Action.MODERATE,)),
    _entry("forum-categories", ResourceGroup.USERS, "Forum categories", "Discussion forum categories",
           _CRUD),
    _entry("forum-threads", ResourceGroup.USERS, "Forum threads", "Discussion forum threads",
           _CRUD + (Action.MODERATE,)),
    # System
    _entry("categories", ResourceGroup.SYSTEM, "Categories", "Content categories", _CRUD),
    _entry("email-templates", ResourceGroup.SYSTEM, "Email templates", "Outbound email templates", _CRUD),
    _entry("email-config", ResourceGroup.SYSTEM, "Email configuration", "Mail delivery settings",
           (Action.READ, Action.UPDATE)),
    _entry("system-settings", ResourceGroup.SYSTEM, "System settings", "Platform configuration",
           (Action.READ, Action.UPDATE)),
    _entry("backups", ResourceGroup.SYSTEM, "Backups", "Database backups",
           (Action.CREATE, Action.READ, Action.DELETE, Action.EXPORT, Action.IMPORT)),
    # Admin
    _entry("roles", ResourceGroup.ADMIN, "Roles", "Roles and their permissions", _CRUD),
    _entry("permissions", ResourceGroup.ADMIN, "Permissions", "Permission catalog and user overrides",
           (Action.READ, Action.UPDATE)),
    _entry("audit-logs", ResourceGroup.ADMIN, "Audit logs", "Role change history",
           (Action.READ, Action.EXPORT)),
    _entry("analytics", ResourceGroup.ADMIN, "Analytics", "Platform statistics",
           (Action.READ, Action.EXPORT)),
]


def get_catalog(resource_group: Optional[ResourceGroup] = None) -> List[PermissionCatalogEntry]:
    """List catalog entries sorted by group then resource, optionally for one group."""
    entries = [
        e for e in PERMISSION_CATALOG
        if e.is_active and (resource_group is None or e.resource_group == resource_group)
    ]
    order = list(ResourceGroup)
    return sorted(entries, key=lambda e: (order.index(e.resource_group), e.resource))


def get_grouped_catalog() -> Dict[str, List[PermissionCatalogEntry]]:
    grouped: Dict[str, List[PermissionCatalogEntry]] = OrderedDict()
    for entry in get_catalog():
        grouped.setdefault(entry.resource_group.value, []).append(entry)
    return grouped
