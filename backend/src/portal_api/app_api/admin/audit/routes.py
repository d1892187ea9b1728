"""Admin API routes for the role audit log."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from portal_api.shared.auth import User
from portal_api.shared.rbac.audit import AuditLogService
from portal_api.shared.rbac.models import (
    AuditAction,
    AuditCleanupResponse,
    AuditLogListResponse,
    AuditLogResponse,
    AuditStatsResponse,
)
from portal_api.shared.rbac.system_admin import (
    get_audit_service,
    require_permission,
    require_superadmin,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/audit", tags=["admin-audit"])


@router.get("/logs", response_model=AuditLogListResponse)
async def list_logs(
    action: Optional[AuditAction] = Query(None),
    performed_by: Optional[str] = Query(None, alias="performedBy"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    limit: int = Query(50, ge=1, le=500),
    skip: int = Query(0, ge=0),
    user: User = Depends(require_permission("audit-logs", "read")),
    audit_service: AuditLogService = Depends(get_audit_service),
):
    """List audit entries, newest first."""
    if performed_by:
        result = await audit_service.get_user_logs(
            performed_by,
            limit=limit,
            skip=skip,
            actions=[action] if action else None,
            start_date=start_date,
            end_date=end_date,
        )
    else:
        result = await audit_service.get_all_logs(
            limit=limit, skip=skip, action=action, start_date=start_date, end_date=end_date
        )
    return AuditLogListResponse(
        logs=[AuditLogResponse.from_entry(e) for e in result.logs],
        total=result.total,
        page=result.page,
        pages=result.pages,
    )


@router.get("/stats", response_model=AuditStatsResponse)
async def get_stats(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    user: User = Depends(require_permission("audit-logs", "read")),
    audit_service: AuditLogService = Depends(get_audit_service),
):
    return AuditStatsResponse(**await audit_service.get_stats(start_date, end_date))


@router.post("/cleanup", response_model=AuditCleanupResponse)
async def cleanup_logs(
    retention_days: int = Query(365, ge=1, alias="retentionDays"),
    user: User = Depends(require_superadmin),
    audit_service: AuditLogService = Depends(get_audit_service),
):
    """
    Purge entries older than the retention window.

    Requires superadmin access.
    """
    logger.info(f"Superadmin {user.user_id} purging audit logs older than {retention_days} days")
    deleted = await audit_service.cleanup_old_logs(retention_days)
    return AuditCleanupResponse(deleted=deleted, retention_days=retention_days)
