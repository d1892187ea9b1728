"""Pytest configuration for test suite."""

import sys
from datetime import timedelta
from pathlib import Path

import pytest

# Add backend/src to Python path for imports
# This file is in backend/tests/, so we need to go up one level to backend/
BACKEND_DIR = Path(__file__).parent.parent
SRC_DIR = BACKEND_DIR / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from portal_api.shared.auth.models import User  # noqa: E402
from portal_api.shared.rbac.admin_service import RoleAdminService  # noqa: E402
from portal_api.shared.rbac.audit import AuditLogService, InMemoryAuditLogRepository  # noqa: E402
from portal_api.shared.rbac.cache import PermissionCache  # noqa: E402
from portal_api.shared.rbac.models import (  # noqa: E402
    Action,
    ResourcePermission,
    Role,
    Scope,
    UserRoleAssignment,
)
from portal_api.shared.rbac.repository import (  # noqa: E402
    InMemoryRoleRepository,
    InMemoryUserRoleRepository,
)
from portal_api.shared.rbac.resolver import PermissionResolver  # noqa: E402
from portal_api.shared.rbac.service import PermissionService  # noqa: E402


def _perm(resource, actions, scope="all", conditions=None):
    """Shorthand for a ResourcePermission from action names."""
    return ResourcePermission(
        resource=resource,
        actions=frozenset(Action(a) for a in actions),
        scope=Scope(scope),
        conditions=conditions,
    )


@pytest.fixture
def perm():
    return _perm


@pytest.fixture
def role_repository():
    return InMemoryRoleRepository()


@pytest.fixture
def user_repository():
    return InMemoryUserRoleRepository()


@pytest.fixture
def audit_repository():
    return InMemoryAuditLogRepository()


@pytest.fixture
def resolver(role_repository, user_repository):
    return PermissionResolver(role_repository, user_repository, lookup_timeout=1.0)


@pytest.fixture
def cache(resolver):
    return PermissionCache(resolver, ttl=timedelta(minutes=5))


@pytest.fixture
def permission_service(resolver, cache):
    return PermissionService(resolver, cache)


@pytest.fixture
def audit_service(audit_repository):
    return AuditLogService(audit_repository)


@pytest.fixture
def admin_service(role_repository, user_repository, permission_service, audit_service):
    return RoleAdminService(role_repository, user_repository, permission_service, audit_service)


@pytest.fixture
def make_role(role_repository):
    """Factory fixture: store a role and return it."""

    async def _make_role(slug, permissions=(), priority=1, is_system_role=False, active=True, name=None):
        role = Role(
            role_id=f"role-{slug}",
            name=name or slug.title(),
            slug=slug,
            is_system_role=is_system_role,
            status="active" if active else "inactive",
            permissions=list(permissions),
            priority=priority,
            created_at="2026-01-01T00:00:00+00:00",
            updated_at="2026-01-01T00:00:00+00:00",
        )
        return await role_repository.create_role(role)

    return _make_role


@pytest.fixture
def make_user(user_repository):
    """Factory fixture: store a user assignment and return it."""

    async def _make_user(user_id, base_role=None, custom_roles=(), overrides=(), email=None):
        assignment = UserRoleAssignment(
            user_id=user_id,
            email=email or f"{user_id}@example.com",
            base_role=base_role,
            custom_roles=list(custom_roles),
            role_overrides=list(overrides),
        )
        return await user_repository.save_assignment(assignment)

    return _make_user


@pytest.fixture
def admin_user():
    return User(user_id="admin-1", email="admin-1@example.com")


@pytest.fixture
async def admin_setup(make_role, make_user, admin_user, perm):
    """An actor holding full role and user administration rights."""
    await make_role(
        "role-manager",
        [
            perm("roles", ["create", "read", "update", "delete"]),
            perm("users", ["read", "update"]),
            perm("audit-logs", ["read"]),
        ],
        priority=90,
    )
    await make_user(admin_user.user_id, base_role="role-manager")
    return admin_user
