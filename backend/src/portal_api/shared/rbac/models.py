"""Role and permission data models for the RBAC engine."""

import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from .exceptions import SystemRoleImmutableError, ValidationError

# Overrides attached directly to a user always win over any role.
OVERRIDE_PRIORITY = 1000

MIN_ROLE_PRIORITY = 1
MAX_ROLE_PRIORITY = 100

CONDITION_KEYS = {"status", "category", "customField"}


class Action(str, Enum):
    """Closed set of actions a permission can grant."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    PUBLISH = "publish"
    MODERATE = "moderate"
    EXPORT = "export"
    IMPORT = "import"
    APPROVE = "approve"

    @classmethod
    def parse(cls, value: Union["Action", str]) -> "Action":
        """Convert a string to an Action, rejecting anything outside the set."""
        if isinstance(value, Action):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown action '{value}'", field="action") from None


class Scope(str, Enum):
    """
    Breadth of resource instances an action applies to.

    Ordered ``none < own < department < all``; comparison operators follow
    that order rather than string order.
    """

    NONE = "none"
    OWN = "own"
    DEPARTMENT = "department"
    ALL = "all"

    @property
    def rank(self) -> int:
        return _SCOPE_RANK[self.value]

    @classmethod
    def parse(cls, value: Union["Scope", str, None]) -> "Scope":
        if value is None:
            return cls.NONE
        if isinstance(value, Scope):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown scope '{value}'", field="scope") from None

    def __lt__(self, other):
        if not isinstance(other, Scope):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Scope):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Scope):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Scope):
            return NotImplemented
        return self.rank >= other.rank


_SCOPE_RANK = {"none": 0, "own": 1, "department": 2, "all": 3}


class ResourceGroup(str, Enum):
    """Catalog grouping for resources."""

    CONTENT = "content"
    BUSINESS = "business"
    USERS = "users"
    SYSTEM = "system"
    ADMIN = "admin"


class RoleStatus(str, Enum):
    """Lifecycle state of a role. Roles are never hard-deleted."""

    ACTIVE = "active"
    INACTIVE = "inactive"


def _validate_conditions(conditions: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not conditions:
        return None
    unknown = set(conditions) - CONDITION_KEYS
    if unknown:
        raise ValidationError(
            f"Unsupported permission conditions: {sorted(unknown)}", field="conditions"
        )
    for key in ("status", "category"):
        value = conditions.get(key)
        if value is not None and (
            not isinstance(value, list) or not all(isinstance(v, str) for v in value)
        ):
            raise ValidationError(
                f"Condition '{key}' must be a list of strings", field="conditions"
            )
    return dict(conditions)


@dataclass(frozen=True)
class ResourcePermission:
    """
    Atomic authorization unit: which actions are enabled on a resource, and
    which instances of it (scope) they apply to.
    """

    resource: str
    actions: FrozenSet[Action] = frozenset()
    scope: Scope = Scope.NONE
    conditions: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        resource = (self.resource or "").strip().lower()
        if not resource:
            raise ValidationError("Permission resource is required", field="resource")
        object.__setattr__(self, "resource", resource)
        object.__setattr__(
            self, "actions", frozenset(Action.parse(a) for a in self.actions)
        )
        object.__setattr__(self, "scope", Scope.parse(self.scope))
        object.__setattr__(self, "conditions", _validate_conditions(self.conditions))

    def allows(self, action: Union[Action, str]) -> bool:
        return Action.parse(action) in self.actions

    def to_dict(self) -> dict:
        """Convert to the stored form, where actions are a flag map."""
        return {
            "resource": self.resource,
            "actions": {a.value: a in self.actions for a in Action},
            "scope": self.scope.value,
            "conditions": self.conditions or {},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ResourcePermission":
        """Create from a stored item. Accepts a flag map or a list of actions."""
        raw_actions = data.get("actions") or {}
        if isinstance(raw_actions, dict):
            actions = [name for name, enabled in raw_actions.items() if enabled is True]
            # Reject unknown flags even when they are false
            for name in raw_actions:
                Action.parse(name)
        else:
            actions = list(raw_actions)
        return cls(
            resource=data.get("resource", ""),
            actions=frozenset(actions),
            scope=data.get("scope", Scope.NONE.value),
            conditions=data.get("conditions") or None,
        )


def validate_permission_list(permissions: Iterable[ResourcePermission]) -> List[ResourcePermission]:
    """Ensure each resource appears at most once in a permission list."""
    seen = set()
    result = []
    for permission in permissions:
        if permission.resource in seen:
            raise ValidationError(
                f"Duplicate permission for resource '{permission.resource}'",
                field="permissions",
            )
        seen.add(permission.resource)
        result.append(permission)
    return result


def generate_slug(name: str) -> str:
    """Build a URL-safe slug from a role name, dropping accents."""
    normalized = unicodedata.normalize("NFD", (name or "").lower())
    without_marks = "".join(c for c in normalized if not unicodedata.combining(c))
    slug = re.sub(r"[^a-z0-9\s-]", "", without_marks)
    slug = re.sub(r"\s+", "-", slug.strip())
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


@dataclass
class Role:
    """
    A named, prioritized bundle of resource permissions.

    The lifecycle is the two-state ``RoleStatus``; the only way to change it
    is ``transition_to``, which refuses to deactivate a system role.
    """

    role_id: str
    name: str
    slug: str
    description: str = ""
    is_system_role: bool = False
    status: RoleStatus = RoleStatus.ACTIVE

    permissions: List[ResourcePermission] = field(default_factory=list)
    priority: int = MIN_ROLE_PRIORITY

    # Audit fields
    created_by: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self):
        self.status = RoleStatus(self.status)
        self.validate()

    @property
    def is_active(self) -> bool:
        return self.status is RoleStatus.ACTIVE

    def validate(self):
        """Check the invariants that must hold before a role is persisted."""
        if not (self.name or "").strip():
            raise ValidationError("Role name is required", field="name")
        if len(self.name) > 100:
            raise ValidationError("Role name must be at most 100 characters", field="name")
        if self.description and len(self.description) > 500:
            raise ValidationError(
                "Role description must be at most 500 characters", field="description"
            )
        if (
            isinstance(self.priority, bool)
            or not isinstance(self.priority, int)
            or not MIN_ROLE_PRIORITY <= self.priority <= MAX_ROLE_PRIORITY
        ):
            raise ValidationError(
                f"Role priority must be an integer between {MIN_ROLE_PRIORITY} "
                f"and {MAX_ROLE_PRIORITY}",
                field="priority",
            )
        self.permissions = validate_permission_list(self.permissions)
        if self.is_system_role and not self.is_active:
            raise SystemRoleImmutableError(
                f"System role '{self.name}' cannot be inactive"
            )

    def transition_to(self, status: Union[RoleStatus, str]) -> bool:
        """
        Move the role to ``status``.

        Returns:
            True if the status changed, False if it already had that status

        Raises:
            SystemRoleImmutableError: On an attempt to deactivate a system role
        """
        status = RoleStatus(status)
        if status is self.status:
            return False
        if status is RoleStatus.INACTIVE and self.is_system_role:
            raise SystemRoleImmutableError(
                f"System role '{self.name}' cannot be deactivated"
            )
        self.status = status
        return True

    def to_dict(self) -> dict:
        """Convert to dictionary for DynamoDB storage."""
        return {
            "roleId": self.role_id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "isSystemRole": self.is_system_role,
            "isActive": self.is_active,
            "permissions": [p.to_dict() for p in self.permissions],
            "priority": self.priority,
            "createdBy": self.created_by,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Role":
        """Create from dictionary (DynamoDB item)."""
        return cls(
            role_id=data.get("roleId", ""),
            name=data.get("name", ""),
            slug=data.get("slug", ""),
            description=data.get("description") or "",
            is_system_role=data.get("isSystemRole", False),
            status=RoleStatus.ACTIVE if data.get("isActive", True) else RoleStatus.INACTIVE,
            permissions=[
                ResourcePermission.from_dict(p) for p in data.get("permissions", [])
            ],
            # DynamoDB returns numbers as Decimal
            priority=int(data.get("priority", MIN_ROLE_PRIORITY)),
            created_by=data.get("createdBy"),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
        )


@dataclass
class UserRoleAssignment:
    """
    Role-related attributes of a user record.

    The user lifecycle is owned elsewhere; the engine reads and updates only
    these fields.
    """

    user_id: str
    email: str = ""
    base_role: Optional[str] = None
    custom_roles: List[str] = field(default_factory=list)
    role_overrides: List[ResourcePermission] = field(default_factory=list)

    def has_custom_role(self, role_id: str) -> bool:
        return role_id in self.custom_roles

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "email": self.email,
            "role": self.base_role,
            "customRoles": list(self.custom_roles),
            "roleOverrides": [p.to_dict() for p in self.role_overrides],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UserRoleAssignment":
        return cls(
            user_id=data.get("userId", ""),
            email=data.get("email", ""),
            base_role=data.get("role"),
            custom_roles=list(data.get("customRoles", [])),
            role_overrides=[
                ResourcePermission.from_dict(p) for p in data.get("roleOverrides", [])
            ],
        )


@dataclass(frozen=True)
class ResolvedPermission:
    """A merged permission annotated with the priority of the source that won."""

    permission: ResourcePermission
    priority: int

    @property
    def resource(self) -> str:
        return self.permission.resource

    @property
    def actions(self) -> FrozenSet[Action]:
        return self.permission.actions

    @property
    def scope(self) -> Scope:
        return self.permission.scope

    @property
    def conditions(self) -> Optional[Dict[str, Any]]:
        return self.permission.conditions


PermissionMap = Dict[str, ResolvedPermission]


@dataclass(frozen=True)
class CatalogAction:
    action: Action
    label: str
    description: str = ""


@dataclass(frozen=True)
class PermissionCatalogEntry:
    """Reference description of a resource and its meaningful actions."""

    resource: str
    resource_group: ResourceGroup
    label: str
    description: str = ""
    available_actions: List[CatalogAction] = field(default_factory=list)
    is_active: bool = True


class AuditAction(str, Enum):
    """Role lifecycle events recorded in the audit log."""

    ROLE_CREATED = "role_created"
    ROLE_UPDATED = "role_updated"
    ROLE_DELETED = "role_deleted"
    ROLE_ACTIVATED = "role_activated"
    ROLE_DEACTIVATED = "role_deactivated"
    PERMISSION_ADDED = "permission_added"
    PERMISSION_REMOVED = "permission_removed"
    PERMISSION_UPDATED = "permission_updated"
    ROLE_ASSIGNED_TO_USER = "role_assigned_to_user"
    ROLE_REMOVED_FROM_USER = "role_removed_from_user"
    ROLE_CLONED = "role_cloned"


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable record of a role mutation."""

    log_id: str
    action: AuditAction
    performed_by: str
    changes: Dict[str, Any]
    timestamp: str
    role_id: Optional[str] = None
    role_name: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for DynamoDB storage."""
        return {
            "logId": self.log_id,
            "action": self.action.value,
            "roleId": self.role_id,
            "roleName": self.role_name,
            "performedBy": self.performed_by,
            "changes": self.changes,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuditLogEntry":
        return cls(
            log_id=data.get("logId", ""),
            action=AuditAction(data["action"]),
            role_id=data.get("roleId"),
            role_name=data.get("roleName"),
            performed_by=data.get("performedBy", ""),
            changes=data.get("changes") or {},
            ip_address=data.get("ipAddress"),
            user_agent=data.get("userAgent"),
            timestamp=data.get("timestamp", ""),
        )


# =============================================================================
# Pydantic Models for API Request/Response
# =============================================================================


class ResourcePermissionModel(BaseModel):
    """A resource permission as sent and returned by the API."""

    resource: str = Field(..., min_length=1, max_length=100)
    actions: List[Action] = Field(default_factory=list)
    scope: Scope = Scope.NONE
    conditions: Optional[Dict[str, Any]] = None

    model_config = {"populate_by_name": True}

    @field_validator("actions", mode="before")
    @classmethod
    def coerce_action_flags(cls, v):
        """Accept the legacy ``{"read": true}`` flag map as well as a list."""
        if isinstance(v, dict):
            return [name for name, enabled in v.items() if enabled is True]
        return v

    def to_permission(self) -> ResourcePermission:
        return ResourcePermission(
            resource=self.resource,
            actions=frozenset(self.actions),
            scope=self.scope,
            conditions=self.conditions,
        )

    @classmethod
    def from_permission(cls, permission: ResourcePermission) -> "ResourcePermissionModel":
        return cls(
            resource=permission.resource,
            actions=sorted(permission.actions, key=lambda a: list(Action).index(a)),
            scope=permission.scope,
            conditions=permission.conditions,
        )


class RoleCreate(BaseModel):
    """Request body for creating a new role."""

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    permissions: List[ResourcePermissionModel] = Field(default_factory=list)
    priority: Optional[int] = Field(None, ge=MIN_ROLE_PRIORITY, le=MAX_ROLE_PRIORITY)

    model_config = {"populate_by_name": True}


class RoleUpdate(BaseModel):
    """Request body for updating a role (partial update)."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    permissions: Optional[List[ResourcePermissionModel]] = None
    priority: Optional[int] = Field(None, ge=MIN_ROLE_PRIORITY, le=MAX_ROLE_PRIORITY)
    is_active: Optional[bool] = Field(None, alias="isActive")

    model_config = {"populate_by_name": True}


class RoleClone(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class RoleAssign(BaseModel):
    role_id: str = Field(..., alias="roleId")

    model_config = {"populate_by_name": True}


class RoleOverridesUpdate(BaseModel):
    role_overrides: List[ResourcePermissionModel] = Field(
        default_factory=list, alias="roleOverrides"
    )

    model_config = {"populate_by_name": True}


class RoleResponse(BaseModel):
    """Response model for a role."""

    role_id: str = Field(..., alias="roleId")
    name: str
    slug: str
    description: str
    is_system_role: bool = Field(..., alias="isSystemRole")
    is_active: bool = Field(..., alias="isActive")
    permissions: List[ResourcePermissionModel]
    priority: int
    created_by: Optional[str] = Field(None, alias="createdBy")
    created_at: str = Field(..., alias="createdAt")
    updated_at: str = Field(..., alias="updatedAt")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        """Create response from Role dataclass."""
        return cls(
            role_id=role.role_id,
            name=role.name,
            slug=role.slug,
            description=role.description,
            is_system_role=role.is_system_role,
            is_active=role.is_active,
            permissions=[ResourcePermissionModel.from_permission(p) for p in role.permissions],
            priority=role.priority,
            created_by=role.created_by,
            created_at=role.created_at,
            updated_at=role.updated_at,
        )


class RoleListResponse(BaseModel):
    """Response model for listing roles."""

    roles: List[RoleResponse]
    total: int
    page: int
    pages: int


class AuditLogResponse(BaseModel):
    log_id: str = Field(..., alias="logId")
    action: AuditAction
    role_id: Optional[str] = Field(None, alias="roleId")
    role_name: Optional[str] = Field(None, alias="roleName")
    performed_by: str = Field(..., alias="performedBy")
    changes: Dict[str, Any]
    ip_address: Optional[str] = Field(None, alias="ipAddress")
    user_agent: Optional[str] = Field(None, alias="userAgent")
    timestamp: str

    model_config = {"populate_by_name": True}

    @classmethod
    def from_entry(cls, entry: AuditLogEntry) -> "AuditLogResponse":
        return cls(
            log_id=entry.log_id,
            action=entry.action,
            role_id=entry.role_id,
            role_name=entry.role_name,
            performed_by=entry.performed_by,
            changes=entry.changes,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            timestamp=entry.timestamp,
        )


class AuditLogListResponse(BaseModel):
    logs: List[AuditLogResponse]
    total: int
    page: int
    pages: int


class AuditStatsResponse(BaseModel):
    total: int
    by_action: Dict[str, int] = Field(..., alias="byAction")
    top_users: List[Dict[str, Any]] = Field(..., alias="topUsers")

    model_config = {"populate_by_name": True}


class AuditCleanupResponse(BaseModel):
    deleted: int
    retention_days: int = Field(..., alias="retentionDays")

    model_config = {"populate_by_name": True}


class PermissionCheckRequest(BaseModel):
    resource: str = Field(..., min_length=1)
    action: str = Field(..., min_length=1)
    owner_id: Optional[str] = Field(None, alias="ownerId")

    model_config = {"populate_by_name": True}


class PermissionCheckResponse(BaseModel):
    has_permission: bool = Field(..., alias="hasPermission")
    scope: Optional[Scope] = None
    resource: str
    action: str

    model_config = {"populate_by_name": True}


class UserPermissionsResponse(BaseModel):
    user_id: str = Field(..., alias="userId")
    permissions: Dict[str, ResourcePermissionModel]

    model_config = {"populate_by_name": True}

    @classmethod
    def from_permission_map(cls, user_id: str, permissions: PermissionMap) -> "UserPermissionsResponse":
        return cls(
            user_id=user_id,
            permissions={
                resource: ResourcePermissionModel.from_permission(resolved.permission)
                for resource, resolved in permissions.items()
            },
        )


class CatalogActionResponse(BaseModel):
    action: Action
    label: str
    description: str


class PermissionCatalogEntryResponse(BaseModel):
    resource: str
    resource_group: ResourceGroup = Field(..., alias="resourceGroup")
    label: str
    description: str
    available_actions: List[CatalogActionResponse] = Field(..., alias="availableActions")
    is_active: bool = Field(..., alias="isActive")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_entry(cls, entry: PermissionCatalogEntry) -> "PermissionCatalogEntryResponse":
        return cls(
            resource=entry.resource,
            resource_group=entry.resource_group,
            label=entry.label,
            description=entry.description,
            available_actions=[
                CatalogActionResponse(action=a.action, label=a.label, description=a.description)
                for a in entry.available_actions
            ],
            is_active=entry.is_active,
        )


class PermissionCatalogResponse(BaseModel):
    permissions: List[PermissionCatalogEntryResponse]
    total: int


class CacheStatsResponse(BaseModel):
    """Permission cache statistics response."""

    size: int
    expired: int
    hits: int
    misses: int
    in_flight: int = Field(..., alias="inFlight")
    ttl_seconds: float = Field(..., alias="ttlSeconds")

    model_config = {"populate_by_name": True}
