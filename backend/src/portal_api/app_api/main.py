"""Portal API application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from portal_api.shared.errors import create_error_response, http_status_to_error_code
from portal_api.shared.rbac.admin_service import RoleAdminService
from portal_api.shared.rbac.audit import (
    AuditLogRepository,
    AuditLogService,
    create_audit_log_repository,
)
from portal_api.shared.rbac.cache import PermissionCache
from portal_api.shared.rbac.exceptions import RBACError
from portal_api.shared.rbac.repository import (
    RoleRepository,
    UserRoleRepository,
    create_role_repository,
    create_user_role_repository,
)
from portal_api.shared.rbac.resolver import PermissionResolver
from portal_api.shared.rbac.seeder import ensure_system_roles
from portal_api.shared.rbac.service import PermissionService

from .admin.audit import router as audit_router
from .admin.permissions import router as permissions_router
from .admin.roles import router as roles_router
from .auth import router as auth_router

logger = logging.getLogger(__name__)


def create_app(
    role_repository: Optional[RoleRepository] = None,
    user_repository: Optional[UserRoleRepository] = None,
    audit_repository: Optional[AuditLogRepository] = None,
    seed_system_roles: bool = True,
) -> FastAPI:
    """
    Create the FastAPI application.

    Repositories default to the environment-selected implementations
    (DynamoDB when the table variables are set, in-memory otherwise).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        roles = role_repository or create_role_repository()
        users = user_repository or create_user_role_repository()
        audit_service = AuditLogService(audit_repository or create_audit_log_repository())

        resolver = PermissionResolver(roles, users)
        cache = PermissionCache(resolver)
        permission_service = PermissionService(resolver, cache)

        app.state.permission_service = permission_service
        app.state.audit_service = audit_service
        app.state.role_admin_service = RoleAdminService(
            roles, users, permission_service, audit_service
        )

        if seed_system_roles:
            created = await ensure_system_roles(roles)
            logger.info(f"System roles ready ({created} created)")

        try:
            yield
        finally:
            await cache.close()
            if audit_service.failed_entries:
                logger.warning(
                    f"Shutting down with {len(audit_service.failed_entries)} unwritten audit entries",
                    extra={"event": "rbac_audit_dead_letters", "count": len(audit_service.failed_entries)},
                )

    app = FastAPI(title="Portal API", lifespan=lifespan)

    @app.exception_handler(RBACError)
    async def rbac_error_handler(request: Request, exc: RBACError):
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content=create_error_response(
                code=exc.code,
                message=exc.message,
                status_code=exc.status_code,
                recoverable=exc.recoverable,
                metadata=exc.metadata,
                field=exc.field,
            ),
        )

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        if isinstance(exc.detail, dict):
            message = exc.detail.get("message", "Request failed")
            metadata = {k: v for k, v in exc.detail.items() if k != "message"}
        else:
            message = str(exc.detail)
            metadata = None
        return JSONResponse(
            status_code=exc.status_code,
            content=create_error_response(
                code=http_status_to_error_code(exc.status_code),
                message=message,
                status_code=exc.status_code,
                metadata=metadata,
            ),
            headers=exc.headers,
        )

    admin_prefix = "/admin"
    app.include_router(roles_router, prefix=admin_prefix)
    app.include_router(permissions_router, prefix=admin_prefix)
    app.include_router(audit_router, prefix=admin_prefix)
    app.include_router(auth_router)

    return app
