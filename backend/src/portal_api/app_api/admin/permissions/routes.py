"""Admin API routes for the permission catalog, user overrides and the permission cache."""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status

from portal_api.shared.auth import User, get_current_user
from portal_api.shared.rbac.admin_service import RoleAdminService
from portal_api.shared.rbac.catalog import get_catalog, get_grouped_catalog
from portal_api.shared.rbac.models import (
    CacheStatsResponse,
    PermissionCatalogEntryResponse,
    PermissionCatalogResponse,
    ResourceGroup,
    RoleOverridesUpdate,
    UserPermissionsResponse,
)
from portal_api.shared.rbac.service import PermissionService
from portal_api.shared.rbac.system_admin import (
    get_permission_service,
    get_role_admin_service,
    require_permission,
    require_superadmin,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/permissions", tags=["admin-permissions"])


@router.get("/catalog", response_model=PermissionCatalogResponse)
async def list_catalog(
    resource_group: Optional[ResourceGroup] = Query(None, alias="resourceGroup"),
    user: User = Depends(require_permission("permissions", "read")),
):
    """List the permission catalog, optionally for one resource group."""
    entries = get_catalog(resource_group)
    return PermissionCatalogResponse(
        permissions=[PermissionCatalogEntryResponse.from_entry(e) for e in entries],
        total=len(entries),
    )


@router.get("/catalog/grouped", response_model=Dict[str, List[PermissionCatalogEntryResponse]])
async def list_grouped_catalog(
    user: User = Depends(require_permission("permissions", "read")),
):
    return {
        group: [PermissionCatalogEntryResponse.from_entry(e) for e in entries]
        for group, entries in get_grouped_catalog().items()
    }


@router.get("/users/{user_id}", response_model=UserPermissionsResponse)
async def get_user_permissions(
    user_id: str,
    user: User = Depends(require_permission("users", "read")),
    service: PermissionService = Depends(get_permission_service),
):
    """
    Get the resolved permissions of any user.

    Raises:
        ActorNotFoundError: 404 if the user does not exist
    """
    permissions = await service.get_user_permissions(user_id)
    return UserPermissionsResponse.from_permission_map(user_id, permissions)


@router.put("/users/{user_id}/overrides", response_model=UserPermissionsResponse)
async def update_user_overrides(
    user_id: str,
    body: RoleOverridesUpdate,
    user: User = Depends(get_current_user),
    admin_service: RoleAdminService = Depends(get_role_admin_service),
    service: PermissionService = Depends(get_permission_service),
):
    """
    Replace a user's permission overrides and return the new resolution.

    The service checks users:update.
    """
    logger.info(f"User {user.user_id} updating overrides of {user_id}")

    await admin_service.update_user_overrides(
        user_id, [p.to_permission() for p in body.role_overrides], user
    )
    permissions = await service.get_user_permissions(user_id)
    return UserPermissionsResponse.from_permission_map(user_id, permissions)


@router.post("/cache/invalidate/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def invalidate_user_cache(
    user_id: str,
    user: User = Depends(require_permission("permissions", "update")),
    service: PermissionService = Depends(get_permission_service),
):
    await service.invalidate_user_cache(user_id)


@router.post("/cache/invalidate", status_code=status.HTTP_204_NO_CONTENT)
async def invalidate_all_cache(
    user: User = Depends(require_superadmin),
    service: PermissionService = Depends(get_permission_service),
):
    """
    Flush the permission cache for every user.

    Requires superadmin access.
    """
    logger.info(
        f"Superadmin {user.user_id} flushing the permission cache",
        extra={"event": "rbac_cache_flushed", "admin_user_id": user.user_id},
    )
    await service.invalidate_all_cache()


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def get_cache_stats(
    user: User = Depends(require_permission("permissions", "read")),
    service: PermissionService = Depends(get_permission_service),
):
    """Get permission cache statistics for monitoring."""
    return CacheStatsResponse(**service.cache.get_stats())
