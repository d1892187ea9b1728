"""Request-scoped helpers shared by the admin routers."""

from fastapi import Request

from portal_api.shared.rbac.admin_service import AuditContext


def get_audit_context(request: Request) -> AuditContext:
    """Capture the caller's address and user agent for audit entries."""
    return AuditContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
