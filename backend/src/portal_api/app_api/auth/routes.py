"""Permission endpoints for the calling user."""

import logging

from fastapi import APIRouter, Depends

from portal_api.shared.auth import User, get_current_user
from portal_api.shared.rbac.models import (
    PermissionCheckRequest,
    PermissionCheckResponse,
    UserPermissionsResponse,
)
from portal_api.shared.rbac.service import PermissionService
from portal_api.shared.rbac.system_admin import get_permission_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/my-permissions", response_model=UserPermissionsResponse)
async def get_my_permissions(
    user: User = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service),
):
    """Get the resolved permissions of the current user."""
    permissions = await service.get_user_permissions(user.user_id)
    return UserPermissionsResponse.from_permission_map(user.user_id, permissions)


@router.post("/check-permission", response_model=PermissionCheckResponse)
async def check_permission(
    body: PermissionCheckRequest,
    user: User = Depends(get_current_user),
    service: PermissionService = Depends(get_permission_service),
):
    """
    Check one permission for the current user.

    A denial is a normal response with ``hasPermission: false``.
    """
    allowed = await service.can(user.user_id, body.resource, body.action, body.owner_id)
    scope = await service.get_permission_scope(user.user_id, body.resource, body.action)
    return PermissionCheckResponse(
        has_permission=allowed,
        scope=scope,
        resource=body.resource,
        action=body.action,
    )
