"""Superadministrator configuration and FastAPI access-control dependencies."""

import os
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from fastapi import Depends, HTTPException, Request, status

from portal_api.shared.auth.dependencies import get_current_user
from portal_api.shared.auth.models import User

from .models import Scope, UserRoleAssignment
from .service import PermissionService

logger = logging.getLogger(__name__)

DEFAULT_SUPERADMIN_ROLES = ["superadmin"]


class SuperAdminConfig:
    """
    Configuration for the top-privilege class of users.

    Superadmins are identified by their base role slug. Only they may modify
    system roles or flush the whole permission cache.
    """

    @staticmethod
    def get_superadmin_roles() -> List[str]:
        """
        Get the base role slugs that make a user a superadmin.

        Configured via the RBAC_SUPERADMIN_ROLES environment variable
        (JSON list). Defaults to ["superadmin"].
        """
        roles_json = os.getenv("RBAC_SUPERADMIN_ROLES", json.dumps(DEFAULT_SUPERADMIN_ROLES))
        try:
            roles = json.loads(roles_json)
            if isinstance(roles, list):
                return roles
        except json.JSONDecodeError:
            logger.warning(
                f"Invalid RBAC_SUPERADMIN_ROLES format: {roles_json}, using default"
            )
        return list(DEFAULT_SUPERADMIN_ROLES)

    @staticmethod
    def is_superadmin(assignment: Optional[UserRoleAssignment]) -> bool:
        """Check if a user's base role is one of the superadmin roles."""
        if assignment is None or not assignment.base_role:
            return False
        return assignment.base_role in SuperAdminConfig.get_superadmin_roles()


# =============================================================================
# Service lookup (instances are built in the app lifespan)
# =============================================================================


def get_permission_service(request: Request) -> PermissionService:
    return request.app.state.permission_service


def get_role_admin_service(request: Request):
    return request.app.state.role_admin_service


def get_audit_service(request: Request):
    return request.app.state.audit_service


# =============================================================================
# Guards
# =============================================================================


def require_permission(
    resource: str, action: str, owner_param: Optional[str] = None
) -> Callable:
    """
    FastAPI dependency that checks a single permission.

    If ``owner_param`` names a path or query parameter, its value is used as
    the owner of the resource instance for ``own``-scoped permissions. The
    resolved scope is stored on ``request.state.permission_scope``.

    Usage:
        @router.put("/posts/{post_id}")
        async def update_post(
            user: User = Depends(require_permission("posts", "update"))
        ):
            pass
    """

    async def checker(
        request: Request,
        user: User = Depends(get_current_user),
        service: PermissionService = Depends(get_permission_service),
    ) -> User:
        owner_id = None
        if owner_param:
            owner_id = request.path_params.get(owner_param) or request.query_params.get(owner_param)

        if not await service.can(user.user_id, resource, action, owner_id):
            logger.warning(f"User {user.user_id} denied {resource}:{action}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "message": "Insufficient permissions for this action",
                    "resource": resource,
                    "action": action,
                    "required": f"{resource}:{action}",
                },
            )

        request.state.permission_scope = await service.get_permission_scope(
            user.user_id, resource, action
        )
        return user

    return checker


def require_all_permissions(checks: Sequence[Tuple[str, str]]) -> Callable:
    """FastAPI dependency requiring every (resource, action) pair."""

    async def checker(
        user: User = Depends(get_current_user),
        service: PermissionService = Depends(get_permission_service),
    ) -> User:
        if not await service.can_all(user.user_id, checks):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "message": "Missing one or more required permissions",
                    "required": [f"{r}:{a}" for r, a in checks],
                },
            )
        return user

    return checker


def require_any_permission(checks: Sequence[Tuple[str, str]]) -> Callable:
    """FastAPI dependency requiring at least one (resource, action) pair."""

    async def checker(
        user: User = Depends(get_current_user),
        service: PermissionService = Depends(get_permission_service),
    ) -> User:
        if not await service.can_any(user.user_id, checks):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "message": "None of the required permissions are granted",
                    "required": [f"{r}:{a}" for r, a in checks],
                },
            )
        return user

    return checker


async def require_superadmin(
    user: User = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service),
) -> User:
    """
    Require superadministrator access.

    Raises:
        HTTPException: 403 if the user is not a superadmin
    """
    assignment = await service.get_user_assignment(user.user_id)
    if not SuperAdminConfig.is_superadmin(assignment):
        logger.warning(f"User {user.user_id} denied superadmin access")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Superadministrator access required",
        )
    return user


async def apply_scope_filter(
    service: PermissionService,
    user_id: str,
    resource: str,
    action: str,
    query: Dict[str, Any],
    owner_field: str = "userId",
) -> Optional[Dict[str, Any]]:
    """
    Narrow a list query to the instances the user may act on.

    Returns:
        The query with an owner filter for ``own`` scope, unchanged for
        ``all`` scope, or None when nothing is visible (no permission,
        ``none`` scope, or the unimplemented ``department`` scope)
    """
    scope = await service.get_permission_scope(user_id, resource, action)

    if scope is Scope.ALL:
        return query

    if scope is Scope.OWN:
        return {**query, owner_field: user_id}

    return None
