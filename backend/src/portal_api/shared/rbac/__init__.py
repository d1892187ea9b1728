"""RBAC (Role-Based Access Control) engine: roles, resolution, caching and audit."""

from .models import (
    Action,
    Scope,
    ResourcePermission,
    Role,
    RoleStatus,
    UserRoleAssignment,
    ResolvedPermission,
    PermissionMap,
)
from .exceptions import (
    RBACError,
    ActorNotFoundError,
    RoleNotFoundError,
    ForbiddenError,
    SystemRoleImmutableError,
    RoleInUseError,
    ValidationError,
    StoreTimeoutError,
)
from .resolver import PermissionResolver, merge_permissions, check_permission
from .cache import PermissionCache
from .service import PermissionService
from .audit import AuditLogService
from .admin_service import RoleAdminService, AuditContext
from .system_admin import SuperAdminConfig, require_permission, require_superadmin
from .seeder import ensure_system_roles

__all__ = [
    "Action",
    "Scope",
    "ResourcePermission",
    "Role",
    "RoleStatus",
    "UserRoleAssignment",
    "ResolvedPermission",
    "PermissionMap",
    "RBACError",
    "ActorNotFoundError",
    "RoleNotFoundError",
    "ForbiddenError",
    "SystemRoleImmutableError",
    "RoleInUseError",
    "ValidationError",
    "StoreTimeoutError",
    "PermissionResolver",
    "merge_permissions",
    "check_permission",
    "PermissionCache",
    "PermissionService",
    "AuditLogService",
    "RoleAdminService",
    "AuditContext",
    "SuperAdminConfig",
    "require_permission",
    "require_superadmin",
    "ensure_system_roles",
]
