"""Permission resolution: merge a user's permission sources into one map."""

import os
import asyncio
import logging
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from .exceptions import ActorNotFoundError, StoreTimeoutError
from .models import (
    OVERRIDE_PRIORITY,
    Action,
    PermissionMap,
    ResolvedPermission,
    ResourcePermission,
    Role,
    Scope,
    UserRoleAssignment,
)
from .repository import RoleRepository, UserRoleRepository

logger = logging.getLogger(__name__)

# (resource, action) or (resource, action, owner_id)
PermissionCheck = Union[Tuple[str, str], Tuple[str, str, Optional[str]]]


def merge_permissions(
    target: PermissionMap,
    source: Iterable[ResourcePermission],
    priority: int,
) -> PermissionMap:
    """
    Merge one permission source into ``target`` in place.

    Merge rules, per resource:
    - No existing entry: insert
    - Existing entry has lower priority: replace wholesale
    - Existing entry has higher priority: keep existing
    - Equal priority: union of actions, most permissive scope; conditions
      are not merged, the later entry's conditions win

    Equal-priority merging is commutative and associative, so the result
    does not depend on the order equal-priority sources are visited in.
    """
    for permission in source:
        existing = target.get(permission.resource)

        if existing is None or priority > existing.priority:
            target[permission.resource] = ResolvedPermission(permission, priority)
        elif priority == existing.priority:
            merged = ResourcePermission(
                resource=permission.resource,
                actions=existing.actions | permission.actions,
                scope=max(existing.scope, permission.scope),
                conditions=permission.conditions,
            )
            target[permission.resource] = ResolvedPermission(merged, priority)

    return target


def check_permission(
    permissions: PermissionMap,
    user_id: str,
    resource: str,
    action: Union[Action, str],
    owner_id: Optional[str] = None,
) -> bool:
    """
    Decide a single check against an already-resolved permission map.

    The action flag is necessary but not sufficient; scope then decides
    which instances the action applies to.
    """
    action = Action.parse(action)
    resolved = permissions.get(resource.strip().lower())
    if resolved is None or not resolved.permission.allows(action):
        return False

    if resolved.scope is Scope.ALL:
        return True

    if resolved.scope is Scope.OWN:
        # No owner given: the caller is acting on their own resource
        if not owner_id:
            return True
        return owner_id == user_id

    # NONE is a hard gate. DEPARTMENT has no group model yet and always denies.
    return False


def permission_scope(
    permissions: PermissionMap, resource: str, action: Union[Action, str]
) -> Optional[Scope]:
    """Return the scope for an allowed action, or None if the action is not allowed."""
    action = Action.parse(action)
    resolved = permissions.get(resource.strip().lower())
    if resolved is None or not resolved.permission.allows(action):
        return None
    return resolved.scope


def unpack_check(check: PermissionCheck) -> Tuple[str, str, Optional[str]]:
    resource, action, *rest = check
    return resource, action, rest[0] if rest else None


class PermissionResolver:
    """
    Builds the resolved permission map for a user.

    Sources, in visiting order:
    1. The base role (by slug), at its stored priority, if it exists and is active
    2. Active custom roles, highest priority first, each at its stored priority
    3. The user's overrides, at OVERRIDE_PRIORITY

    Resolution is read-only; store lookups are bounded by ``lookup_timeout``.
    """

    def __init__(
        self,
        role_repository: RoleRepository,
        user_repository: UserRoleRepository,
        lookup_timeout: Optional[float] = None,
    ):
        self.role_repository = role_repository
        self.user_repository = user_repository
        self.lookup_timeout = (
            lookup_timeout
            if lookup_timeout is not None
            else float(os.environ.get("RBAC_STORE_TIMEOUT_SECONDS", "5"))
        )

    async def _bounded(self, operation: str, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.lookup_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"RBAC store lookup timed out: {operation} ({self.lookup_timeout}s)")
            raise StoreTimeoutError(operation, self.lookup_timeout) from None

    async def find_assignment(self, user_id: str) -> Optional[UserRoleAssignment]:
        return await self._bounded(
            f"get_assignment:{user_id}", self.user_repository.get_assignment(user_id)
        )

    async def get_assignment(self, user_id: str) -> UserRoleAssignment:
        assignment = await self.find_assignment(user_id)
        if assignment is None:
            raise ActorNotFoundError(user_id)
        return assignment

    async def collect_sources(
        self, assignment: UserRoleAssignment
    ) -> List[Tuple[str, int, Sequence[ResourcePermission]]]:
        """
        Gather the ordered permission sources for a user.

        Returns:
            List of (source label, priority, permissions)
        """
        sources: List[Tuple[str, int, Sequence[ResourcePermission]]] = []

        if assignment.base_role:
            base_role = await self._bounded(
                f"get_role_by_slug:{assignment.base_role}",
                self.role_repository.get_role_by_slug(assignment.base_role),
            )
            if base_role and base_role.is_active:
                sources.append((f"role:{base_role.slug}", base_role.priority, base_role.permissions))

        custom_roles: List[Role] = []
        for role_id in assignment.custom_roles:
            role = await self._bounded(
                f"get_role:{role_id}", self.role_repository.get_role(role_id)
            )
            if role and role.is_active:
                custom_roles.append(role)

        custom_roles.sort(key=lambda r: r.priority, reverse=True)
        for role in custom_roles:
            sources.append((f"role:{role.slug}", role.priority, role.permissions))

        if assignment.role_overrides:
            sources.append(("overrides", OVERRIDE_PRIORITY, assignment.role_overrides))

        return sources

    async def resolve(self, user_id: str) -> PermissionMap:
        """
        Resolve the effective permissions of a user.

        Raises:
            ActorNotFoundError: If the user does not exist
            StoreTimeoutError: If a store lookup exceeds the timeout
        """
        assignment = await self.get_assignment(user_id)
        sources = await self.collect_sources(assignment)

        permissions: PermissionMap = {}
        for _, priority, source in sources:
            merge_permissions(permissions, source, priority)

        logger.debug(
            f"Resolved permissions for {user_id}: "
            f"sources={[label for label, _, _ in sources]}, "
            f"resources={len(permissions)}"
        )
        return permissions

    async def can(
        self,
        user_id: str,
        resource: str,
        action: Union[Action, str],
        owner_id: Optional[str] = None,
    ) -> bool:
        permissions = await self.resolve(user_id)
        return check_permission(permissions, user_id, resource, action, owner_id)

    async def get_permission_scope(
        self, user_id: str, resource: str, action: Union[Action, str]
    ) -> Optional[Scope]:
        permissions = await self.resolve(user_id)
        return permission_scope(permissions, resource, action)

    async def can_all(self, user_id: str, checks: Iterable[PermissionCheck]) -> bool:
        permissions = await self.resolve(user_id)
        for check in checks:
            resource, action, owner_id = unpack_check(check)
            if not check_permission(permissions, user_id, resource, action, owner_id):
                return False
        return True

    async def can_any(self, user_id: str, checks: Iterable[PermissionCheck]) -> bool:
        permissions = await self.resolve(user_id)
        for check in checks:
            resource, action, owner_id = unpack_check(check)
            if check_permission(permissions, user_id, resource, action, owner_id):
                return True
        return False
