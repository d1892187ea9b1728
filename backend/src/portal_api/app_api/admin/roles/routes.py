"""Admin API routes for role management."""

import logging

from fastapi import APIRouter, Depends, Query, status

from portal_api.shared.auth import User, get_current_user
from portal_api.shared.rbac.admin_service import AuditContext, RoleAdminService
from portal_api.shared.rbac.audit import AuditLogService
from portal_api.shared.rbac.models import (
    AuditLogListResponse,
    AuditLogResponse,
    RoleAssign,
    RoleClone,
    RoleCreate,
    RoleListResponse,
    RoleResponse,
    RoleUpdate,
)
from portal_api.shared.rbac.system_admin import (
    get_audit_service,
    get_role_admin_service,
    require_permission,
)

from ..dependencies import get_audit_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/roles", tags=["admin-roles"])


@router.get("/", response_model=RoleListResponse)
async def list_roles(
    include_inactive: bool = Query(False, alias="includeInactive"),
    include_system: bool = Query(True, alias="includeSystem"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(require_permission("roles", "read")),
    service: RoleAdminService = Depends(get_role_admin_service),
):
    """
    List roles, highest priority first.

    Requires roles:read.
    """
    logger.info(f"User {user.user_id} listing roles")

    result = await service.get_roles(
        include_inactive=include_inactive,
        include_system=include_system,
        page=page,
        limit=limit,
    )
    return RoleListResponse(
        roles=[RoleResponse.from_role(r) for r in result.roles],
        total=result.total,
        page=result.page,
        pages=result.pages,
    )


@router.get("/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: str,
    user: User = Depends(require_permission("roles", "read")),
    service: RoleAdminService = Depends(get_role_admin_service),
):
    """
    Get a role by ID.

    Raises:
        RoleNotFoundError: 404 if the role does not exist
    """
    return RoleResponse.from_role(await service.get_role(role_id))


@router.post("/", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role_data: RoleCreate,
    user: User = Depends(get_current_user),
    service: RoleAdminService = Depends(get_role_admin_service),
    context: AuditContext = Depends(get_audit_context),
):
    """
    Create a custom role.

    The service checks roles:create.
    """
    logger.info(f"User {user.user_id} creating role: {role_data.name}")

    role = await service.create_role(
        name=role_data.name,
        creator=user,
        description=role_data.description,
        permissions=[p.to_permission() for p in role_data.permissions],
        priority=role_data.priority,
        context=context,
    )
    return RoleResponse.from_role(role)


@router.patch("/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    updates: RoleUpdate,
    user: User = Depends(get_current_user),
    service: RoleAdminService = Depends(get_role_admin_service),
    context: AuditContext = Depends(get_audit_context),
):
    """
    Update a role.

    System roles may only be changed by a superadmin and can never be
    deactivated.
    """
    logger.info(f"User {user.user_id} updating role: {role_id}")

    role = await service.update_role(role_id, updates, user, context=context)
    return RoleResponse.from_role(role)


@router.delete("/{role_id}", response_model=RoleResponse)
async def delete_role(
    role_id: str,
    user: User = Depends(get_current_user),
    service: RoleAdminService = Depends(get_role_admin_service),
    context: AuditContext = Depends(get_audit_context),
):
    """
    Deactivate a role.

    Raises:
        RoleInUseError: 409 if any user still holds the role
    """
    logger.info(f"User {user.user_id} deleting role: {role_id}")

    role = await service.delete_role(role_id, user, context=context)
    return RoleResponse.from_role(role)


@router.post("/{role_id}/clone", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def clone_role(
    role_id: str,
    body: RoleClone,
    user: User = Depends(get_current_user),
    service: RoleAdminService = Depends(get_role_admin_service),
    context: AuditContext = Depends(get_audit_context),
):
    role = await service.clone_role(role_id, body.name, user, context=context)
    return RoleResponse.from_role(role)


@router.get("/{role_id}/audit-logs", response_model=AuditLogListResponse)
async def get_role_audit_logs(
    role_id: str,
    limit: int = Query(50, ge=1, le=500),
    skip: int = Query(0, ge=0),
    user: User = Depends(require_permission("audit-logs", "read")),
    audit_service: AuditLogService = Depends(get_audit_service),
):
    """Audit history of a single role, newest first."""
    result = await audit_service.get_role_logs(role_id, limit=limit, skip=skip)
    return AuditLogListResponse(
        logs=[AuditLogResponse.from_entry(e) for e in result.logs],
        total=result.total,
        page=result.page,
        pages=result.pages,
    )


@router.post("/users/{user_id}/assign", status_code=status.HTTP_204_NO_CONTENT)
async def assign_role(
    user_id: str,
    body: RoleAssign,
    user: User = Depends(get_current_user),
    service: RoleAdminService = Depends(get_role_admin_service),
    context: AuditContext = Depends(get_audit_context),
):
    """Add a custom role to a user. The service checks users:update."""
    logger.info(f"User {user.user_id} assigning role {body.role_id} to {user_id}")
    await service.assign_role_to_user(user_id, body.role_id, user, context=context)


@router.delete("/users/{user_id}/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_role(
    user_id: str,
    role_id: str,
    user: User = Depends(get_current_user),
    service: RoleAdminService = Depends(get_role_admin_service),
    context: AuditContext = Depends(get_audit_context),
):
    logger.info(f"User {user.user_id} removing role {role_id} from {user_id}")
    await service.remove_role_from_user(user_id, role_id, user, context=context)
