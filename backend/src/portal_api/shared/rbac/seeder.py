"""Seeding of the built-in system roles."""

import logging
from datetime import datetime, timezone
from typing import List

from .catalog import PERMISSION_CATALOG
from .models import Action, ResourcePermission, Role, Scope
from .repository import RoleRepository

logger = logging.getLogger(__name__)

_ADMIN_EXCLUDED = {"roles", "permissions", "system-settings"}

_USER_PERMISSIONS = [
    ResourcePermission("blog-posts", frozenset({Action.READ}), Scope.ALL),
    ResourcePermission("posts", frozenset({Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE}), Scope.OWN),
    ResourcePermission("comments", frozenset({Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE}), Scope.OWN),
    ResourcePermission("announcements", frozenset({Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE}), Scope.OWN),
    ResourcePermission("promotional-offers", frozenset({Action.READ}), Scope.ALL),
    ResourcePermission("companies", frozenset({Action.READ}), Scope.ALL),
    ResourcePermission("job-offers", frozenset({Action.READ}), Scope.ALL),
    ResourcePermission("advisories", frozenset({Action.READ}), Scope.ALL),
    ResourcePermission("groups", frozenset({Action.CREATE, Action.READ}), Scope.ALL),
    ResourcePermission("forum-threads", frozenset({Action.CREATE, Action.READ, Action.UPDATE}), Scope.OWN),
]


def _full_access(exclude=frozenset()) -> List[ResourcePermission]:
    return [
        ResourcePermission(
            resource=entry.resource,
            actions=frozenset(a.action for a in entry.available_actions),
            scope=Scope.ALL,
        )
        for entry in PERMISSION_CATALOG
        if entry.resource not in exclude
    ]


def default_system_roles() -> List[Role]:
    """Built-in roles: superadmin (every catalog action), admin, and user."""
    return [
        Role(
            role_id="superadmin",
            name="Superadmin",
            slug="superadmin",
            description="Full access to the platform, including system roles",
            is_system_role=True,
            permissions=_full_access(),
            priority=100,
        ),
        Role(
            role_id="admin",
            name="Admin",
            slug="admin",
            description="Platform administration without role management",
            is_system_role=True,
            permissions=_full_access(exclude=_ADMIN_EXCLUDED),
            priority=90,
        ),
        Role(
            role_id="user",
            name="User",
            slug="user",
            description="Default role for registered users",
            is_system_role=True,
            permissions=list(_USER_PERMISSIONS),
            priority=10,
        ),
    ]


async def ensure_system_roles(repository: RoleRepository) -> int:
    """
    Create any missing system role. Existing roles are left untouched.

    Returns:
        Number of roles created
    """
    created = 0
    for role in default_system_roles():
        if await repository.get_role(role.role_id) or await repository.slug_exists(role.slug):
            continue
        now = datetime.now(timezone.utc).isoformat()
        role.created_at = now
        role.updated_at = now
        await repository.create_role(role)
        created += 1
        logger.info(f"Seeded system role: {role.slug}")
    return created
