"""PermissionService: the authorization gate consulted by request handlers."""

import logging
from typing import Iterable, Optional, Union

from .cache import PermissionCache
from .exceptions import RBACError
from .models import Action, PermissionMap, Scope, UserRoleAssignment
from .resolver import (
    PermissionCheck,
    PermissionResolver,
    unpack_check,
    check_permission,
    permission_scope,
)

logger = logging.getLogger(__name__)


class PermissionService:
    """
    Service for checking RBAC permissions.

    This is the main entry point for authorization checks. A denial is a
    ``False`` result, never an exception.
    """

    def __init__(self, resolver: PermissionResolver, cache: PermissionCache):
        self.resolver = resolver
        self.cache = cache

    async def get_user_permissions(self, user_id: str) -> PermissionMap:
        """
        Get the resolved permission map for a user.

        Served from the cache when possible. If the cache layer itself fails,
        the permissions are resolved directly instead of failing the check.

        Raises:
            ActorNotFoundError: If the user does not exist
            StoreTimeoutError: If a store lookup timed out
        """
        try:
            return await self.cache.get(user_id)
        except RBACError:
            raise
        except Exception as e:
            logger.warning(
                f"Permission cache failed for user {user_id}: {e}. "
                "Falling back to direct resolution.",
                exc_info=True,
            )
            return await self.resolver.resolve(user_id)

    async def can(
        self,
        user_id: str,
        resource: str,
        action: Union[Action, str],
        owner_id: Optional[str] = None,
    ) -> bool:
        """Check if a user may perform ``action`` on ``resource`` (owned by ``owner_id``)."""
        permissions = await self.get_user_permissions(user_id)
        return check_permission(permissions, user_id, resource, action, owner_id)

    async def can_all(self, user_id: str, checks: Iterable[PermissionCheck]) -> bool:
        """Check that every (resource, action[, owner_id]) check passes."""
        permissions = await self.get_user_permissions(user_id)
        for check in checks:
            resource, action, owner_id = unpack_check(check)
            if not check_permission(permissions, user_id, resource, action, owner_id):
                return False
        return True

    async def can_any(self, user_id: str, checks: Iterable[PermissionCheck]) -> bool:
        """Check that at least one (resource, action[, owner_id]) check passes."""
        permissions = await self.get_user_permissions(user_id)
        for check in checks:
            resource, action, owner_id = unpack_check(check)
            if check_permission(permissions, user_id, resource, action, owner_id):
                return True
        return False

    async def get_permission_scope(
        self, user_id: str, resource: str, action: Union[Action, str]
    ) -> Optional[Scope]:
        """Get the scope of an allowed action, or None if it is not allowed."""
        permissions = await self.get_user_permissions(user_id)
        return permission_scope(permissions, resource, action)

    async def get_user_assignment(self, user_id: str) -> Optional[UserRoleAssignment]:
        """Get the role assignment of a user, or None if the user does not exist."""
        return await self.resolver.find_assignment(user_id)

    async def invalidate_user_cache(self, user_id: str):
        await self.cache.invalidate(user_id)

    async def invalidate_all_cache(self):
        await self.cache.invalidate_all()
