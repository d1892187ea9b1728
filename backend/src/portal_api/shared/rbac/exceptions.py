"""Typed failures raised by the RBAC engine.

Authorization denials are plain ``False`` results from the permission
service. The errors below are reserved for administrative operations that
cannot proceed and for store failures the caller must handle.
"""

from typing import Optional, Dict, Any

from portal_api.shared.errors import ErrorCode


class RBACError(Exception):
    """Base class for all RBAC engine errors."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500
    recoverable: bool = False
    field: Optional[str] = None

    def __init__(self, message: str, metadata: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.metadata = metadata


class ActorNotFoundError(RBACError):
    code = ErrorCode.ACTOR_NOT_FOUND
    status_code = 404

    def __init__(self, user_id: str):
        super().__init__(f"User '{user_id}' not found", {"userId": user_id})
        self.user_id = user_id


class RoleNotFoundError(RBACError):
    code = ErrorCode.ROLE_NOT_FOUND
    status_code = 404

    def __init__(self, role_id: str, message: Optional[str] = None):
        super().__init__(message or f"Role '{role_id}' not found", {"roleId": role_id})
        self.role_id = role_id


class ForbiddenError(RBACError):
    """The caller lacks the permission required for an administrative action."""

    code = ErrorCode.FORBIDDEN
    status_code = 403

    def __init__(self, message: str, required: Optional[str] = None):
        super().__init__(message, {"required": required} if required else None)
        self.required = required


class SystemRoleImmutableError(ForbiddenError):
    code = ErrorCode.SYSTEM_ROLE_IMMUTABLE

    def __init__(self, message: str):
        super().__init__(message)


class RoleInUseError(RBACError):
    code = ErrorCode.ROLE_IN_USE
    status_code = 409

    def __init__(self, role_id: str, user_count: int):
        super().__init__(
            f"Role cannot be deleted because {user_count} user(s) have it assigned",
            {"roleId": role_id, "userCount": user_count},
        )
        self.role_id = role_id
        self.user_count = user_count


class ValidationError(RBACError):
    code = ErrorCode.VALIDATION_ERROR
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class StoreTimeoutError(RBACError):
    """A role or user store lookup exceeded its time budget. Safe to retry."""

    code = ErrorCode.TIMEOUT
    status_code = 503
    recoverable = True

    def __init__(self, operation: str, timeout: Optional[float] = None):
        metadata: Dict[str, Any] = {"operation": operation}
        message = f"Store lookup '{operation}' timed out"
        if timeout is not None:
            message += f" after {timeout}s"
            metadata["timeoutSeconds"] = timeout
        super().__init__(message, metadata)
        self.operation = operation
        self.timeout = timeout
