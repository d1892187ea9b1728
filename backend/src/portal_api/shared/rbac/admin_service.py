"""Admin service for role management operations."""

import math
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from portal_api.shared.auth.models import User

from .audit import AuditLogService
from .exceptions import (
    ActorNotFoundError,
    ForbiddenError,
    RoleInUseError,
    RoleNotFoundError,
    SystemRoleImmutableError,
    ValidationError,
)
from .models import (
    MIN_ROLE_PRIORITY,
    AuditAction,
    ResourcePermission,
    Role,
    RoleStatus,
    RoleUpdate,
    UserRoleAssignment,
    generate_slug,
    validate_permission_list,
)
from .repository import RoleRepository, UserRoleRepository
from .service import PermissionService
from .system_admin import SuperAdminConfig

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50


@dataclass
class AuditContext:
    """Request metadata attached to audit entries."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class RolePage:
    roles: List[Role]
    total: int
    page: int
    pages: int


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _permissions_snapshot(permissions: List[ResourcePermission]) -> List[dict]:
    # Resources are unique within a role, so this order is canonical
    return [p.to_dict() for p in sorted(permissions, key=lambda p: p.resource)]


class RoleAdminService:
    """
    Service for administrative operations on roles.

    Handles:
    - CRUD operations for roles (deletion is a soft delete)
    - Role assignment and per-user overrides
    - Cache invalidation for every affected user
    - System role protection
    - Audit trail of every mutation

    Each mutation runs persist, then invalidate, then audit. The steps are
    not transactional; a concurrent read may see the old permissions until
    the cache TTL expires.
    """

    def __init__(
        self,
        role_repository: RoleRepository,
        user_repository: UserRoleRepository,
        permission_service: PermissionService,
        audit_service: AuditLogService,
        superadmin_config: Optional[SuperAdminConfig] = None,
    ):
        self.role_repository = role_repository
        self.user_repository = user_repository
        self.permission_service = permission_service
        self.audit_service = audit_service
        self.superadmin_config = superadmin_config or SuperAdminConfig()

    # =========================================================================
    # Guards and helpers
    # =========================================================================

    async def _require(self, actor: User, resource: str, action: str):
        if not await self.permission_service.can(actor.user_id, resource, action):
            logger.warning(
                f"User {actor.user_id} denied {resource}:{action}",
                extra={"event": "rbac_admin_denied", "user_id": actor.user_id},
            )
            raise ForbiddenError(
                f"No permission to {action} {resource}", required=f"{resource}:{action}"
            )

    async def _get_role_or_raise(self, role_id: str) -> Role:
        role = await self.role_repository.get_role(role_id)
        if role is None:
            raise RoleNotFoundError(role_id)
        return role

    async def _get_assignment_or_raise(self, user_id: str) -> UserRoleAssignment:
        assignment = await self.user_repository.get_assignment(user_id)
        if assignment is None:
            raise ActorNotFoundError(user_id)
        return assignment

    async def _unique_slug(self, name: str, exclude_role_id: Optional[str] = None) -> str:
        base = generate_slug(name)
        if not base:
            raise ValidationError("Role name must contain letters or digits", field="name")
        slug = base
        counter = 1
        while await self.role_repository.slug_exists(slug, exclude_role_id):
            slug = f"{base}-{counter}"
            counter += 1
        return slug

    async def _invalidate_role_users(self, role: Role, *slugs: str):
        user_ids = set()
        for slug in {role.slug, *slugs}:
            user_ids.update(await self.user_repository.find_users_with_role(role.role_id, slug))
        for user_id in user_ids:
            await self.permission_service.invalidate_user_cache(user_id)
        logger.debug(f"Invalidated permissions of {len(user_ids)} user(s) holding role {role.role_id}")

    async def _audit(
        self,
        action: AuditAction,
        actor: User,
        changes: Dict[str, Any],
        role: Optional[Role],
        context: Optional[AuditContext],
    ):
        context = context or AuditContext()
        await self.audit_service.log(
            action=action,
            performed_by=actor.user_id,
            changes=changes,
            role_id=role.role_id if role else None,
            role_name=role.name if role else None,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_roles(
        self,
        include_inactive: bool = False,
        include_system: bool = True,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> RolePage:
        """List roles, highest priority first, one page at a time."""
        page = max(1, page)
        limit = max(1, limit)
        roles = await self.role_repository.list_roles(
            include_inactive=include_inactive, include_system=include_system
        )
        total = len(roles)
        start = (page - 1) * limit
        return RolePage(
            roles=roles[start:start + limit],
            total=total,
            page=page,
            pages=math.ceil(total / limit),
        )

    async def get_role(self, role_id: str) -> Role:
        return await self._get_role_or_raise(role_id)

    # =========================================================================
    # Role CRUD
    # =========================================================================

    async def create_role(
        self,
        name: str,
        creator: User,
        description: Optional[str] = None,
        permissions: Optional[List[ResourcePermission]] = None,
        priority: Optional[int] = None,
        context: Optional[AuditContext] = None,
    ) -> Role:
        """
        Create a new custom role.

        Raises:
            ForbiddenError: If the creator lacks roles:create
            ValidationError: If the name, priority or permissions are invalid
        """
        await self._require(creator, "roles", "create")

        if not (name or "").strip():
            raise ValidationError("Role name is required", field="name")

        now = _now()
        role = Role(
            role_id=str(uuid.uuid4()),
            name=name.strip(),
            slug=await self._unique_slug(name),
            description=description or "",
            is_system_role=False,
            status=RoleStatus.ACTIVE,
            permissions=list(permissions or []),
            priority=priority if priority is not None else MIN_ROLE_PRIORITY,
            created_by=creator.user_id,
            created_at=now,
            updated_at=now,
        )

        try:
            created = await self.role_repository.create_role(role)
        except ValueError as e:
            raise ValidationError(str(e), field="slug") from e

        logger.info(
            f"User {creator.user_id} created role: {role.slug}",
            extra={
                "event": "rbac_role_created",
                "role_id": role.role_id,
                "admin_user_id": creator.user_id,
            },
        )

        await self._audit(
            AuditAction.ROLE_CREATED,
            creator,
            {
                "newValue": {
                    "name": role.name,
                    "description": role.description,
                    "permissions": _permissions_snapshot(role.permissions),
                    "priority": role.priority,
                }
            },
            created,
            context,
        )
        return created

    async def update_role(
        self,
        role_id: str,
        updates: RoleUpdate,
        updater: User,
        context: Optional[AuditContext] = None,
    ) -> Role:
        """
        Apply a partial update to a role.

        Raises:
            ForbiddenError: If the updater lacks roles:update
            RoleNotFoundError: If the role does not exist
            SystemRoleImmutableError: If a non-superadmin edits a system role,
                or anyone deactivates one
        """
        await self._require(updater, "roles", "update")

        role = await self._get_role_or_raise(role_id)

        if role.is_system_role:
            assignment = await self.user_repository.get_assignment(updater.user_id)
            if not self.superadmin_config.is_superadmin(assignment):
                raise SystemRoleImmutableError(
                    f"Only a superadmin can modify system role '{role.name}'"
                )

        old_value: Dict[str, Any] = {}
        new_value: Dict[str, Any] = {}
        old_slug = role.slug

        if updates.name is not None and updates.name.strip() != role.name:
            old_value["name"] = role.name
            new_value["name"] = updates.name.strip()
            role.name = updates.name.strip()
            if not role.is_system_role:
                role.slug = await self._unique_slug(role.name, exclude_role_id=role.role_id)

        if updates.description is not None and updates.description != role.description:
            old_value["description"] = role.description
            new_value["description"] = updates.description
            role.description = updates.description

        if updates.permissions is not None:
            permissions = validate_permission_list(p.to_permission() for p in updates.permissions)
            before = _permissions_snapshot(role.permissions)
            after = _permissions_snapshot(permissions)
            if after != before:
                old_value["permissions"] = before
                new_value["permissions"] = after
                role.permissions = permissions

        if updates.priority is not None and updates.priority != role.priority:
            old_value["priority"] = role.priority
            new_value["priority"] = updates.priority
            role.priority = updates.priority

        if updates.is_active is not None and updates.is_active != role.is_active:
            was_active = role.is_active
            role.transition_to(RoleStatus.ACTIVE if updates.is_active else RoleStatus.INACTIVE)
            old_value["isActive"] = was_active
            new_value["isActive"] = role.is_active

        if not new_value:
            return role

        role.validate()
        role.updated_at = _now()
        updated = await self.role_repository.update_role(role)
        await self._invalidate_role_users(role, old_slug)

        logger.info(
            f"User {updater.user_id} updated role: {role.slug}",
            extra={
                "event": "rbac_role_updated",
                "role_id": role.role_id,
                "admin_user_id": updater.user_id,
                "changes": list(new_value.keys()),
            },
        )

        await self._audit(
            AuditAction.ROLE_UPDATED,
            updater,
            {"oldValue": old_value, "newValue": new_value},
            updated,
            context,
        )
        return updated

    async def delete_role(
        self, role_id: str, deleter: User, context: Optional[AuditContext] = None
    ) -> Role:
        """
        Soft-delete a role by deactivating it.

        Raises:
            ForbiddenError: If the deleter lacks roles:delete
            RoleNotFoundError: If the role does not exist
            SystemRoleImmutableError: If the role is a system role
            RoleInUseError: If any user holds the role as a custom role
        """
        await self._require(deleter, "roles", "delete")

        role = await self._get_role_or_raise(role_id)
        if role.is_system_role:
            raise SystemRoleImmutableError(f"System role '{role.name}' cannot be deleted")

        user_count = await self.user_repository.count_users_with_custom_role(role_id)
        if user_count > 0:
            raise RoleInUseError(role_id, user_count)

        if not role.transition_to(RoleStatus.INACTIVE):
            logger.debug(f"Role {role.slug} is already inactive")
            return role

        role.updated_at = _now()
        await self.role_repository.update_role(role)
        await self._invalidate_role_users(role)

        logger.info(
            f"User {deleter.user_id} deleted role: {role.slug}",
            extra={"event": "rbac_role_deleted", "role_id": role.role_id, "admin_user_id": deleter.user_id},
        )

        await self._audit(
            AuditAction.ROLE_DELETED,
            deleter,
            {"oldValue": {"isActive": True}, "newValue": {"isActive": False}},
            role,
            context,
        )
        return role

    async def clone_role(
        self,
        role_id: str,
        new_name: str,
        cloner: User,
        context: Optional[AuditContext] = None,
    ) -> Role:
        """Create a custom copy of a role's permissions and priority under a new name."""
        await self._require(cloner, "roles", "create")

        source = await self._get_role_or_raise(role_id)
        if not (new_name or "").strip():
            raise ValidationError("Role name is required", field="name")

        now = _now()
        clone = Role(
            role_id=str(uuid.uuid4()),
            name=new_name.strip(),
            slug=await self._unique_slug(new_name),
            description=f"Cloned from {source.name}",
            is_system_role=False,
            status=RoleStatus.ACTIVE,
            permissions=list(source.permissions),
            priority=source.priority,
            created_by=cloner.user_id,
            created_at=now,
            updated_at=now,
        )
        try:
            created = await self.role_repository.create_role(clone)
        except ValueError as e:
            raise ValidationError(str(e), field="slug") from e

        logger.info(
            f"User {cloner.user_id} cloned role {source.slug} as {clone.slug}",
            extra={"event": "rbac_role_cloned", "role_id": clone.role_id, "source_role_id": source.role_id},
        )

        await self._audit(
            AuditAction.ROLE_CLONED,
            cloner,
            {"sourceRoleId": source.role_id, "sourceRoleName": source.name},
            created,
            context,
        )
        return created

    # =========================================================================
    # User assignments
    # =========================================================================

    async def assign_role_to_user(
        self,
        user_id: str,
        role_id: str,
        assigner: User,
        context: Optional[AuditContext] = None,
    ) -> UserRoleAssignment:
        """
        Add a custom role to a user.

        Raises:
            ForbiddenError: If the assigner lacks users:update
            RoleNotFoundError: If the role is missing or inactive
            ActorNotFoundError: If the user does not exist
            ValidationError: If the user already holds the role
        """
        await self._require(assigner, "users", "update")

        role = await self.role_repository.get_role(role_id)
        if role is None or not role.is_active:
            raise RoleNotFoundError(role_id, f"Role '{role_id}' not found or inactive")

        assignment = await self._get_assignment_or_raise(user_id)
        if assignment.has_custom_role(role_id):
            raise ValidationError(f"User already has role '{role.name}'", field="roleId")

        assignment.custom_roles.append(role_id)
        await self.user_repository.save_assignment(assignment)
        await self.permission_service.invalidate_user_cache(user_id)

        logger.info(
            f"User {assigner.user_id} assigned role {role.slug} to {user_id}",
            extra={"event": "rbac_role_assigned", "role_id": role_id, "user_id": user_id},
        )

        await self._audit(
            AuditAction.ROLE_ASSIGNED_TO_USER,
            assigner,
            {"userId": user_id, "userEmail": assignment.email},
            role,
            context,
        )
        return assignment

    async def remove_role_from_user(
        self,
        user_id: str,
        role_id: str,
        remover: User,
        context: Optional[AuditContext] = None,
    ) -> UserRoleAssignment:
        """
        Remove a custom role from a user. Removing a role the user does not
        hold is a no-op, but is still invalidated and audited.

        Raises:
            ForbiddenError: If the remover lacks users:update
            ActorNotFoundError: If the user does not exist
        """
        await self._require(remover, "users", "update")

        assignment = await self._get_assignment_or_raise(user_id)
        assignment.custom_roles = [r for r in assignment.custom_roles if r != role_id]
        await self.user_repository.save_assignment(assignment)
        await self.permission_service.invalidate_user_cache(user_id)

        role = await self.role_repository.get_role(role_id)

        logger.info(
            f"User {remover.user_id} removed role {role_id} from {user_id}",
            extra={"event": "rbac_role_removed", "role_id": role_id, "user_id": user_id},
        )

        await self.audit_service.log(
            action=AuditAction.ROLE_REMOVED_FROM_USER,
            performed_by=remover.user_id,
            changes={"userId": user_id, "userEmail": assignment.email},
            role_id=role_id,
            role_name=role.name if role else None,
            ip_address=(context or AuditContext()).ip_address,
            user_agent=(context or AuditContext()).user_agent,
        )
        return assignment

    async def update_user_overrides(
        self,
        user_id: str,
        overrides: List[ResourcePermission],
        updater: User,
    ) -> UserRoleAssignment:
        """
        Replace a user's permission overrides.

        Raises:
            ForbiddenError: If the updater lacks users:update
            ActorNotFoundError: If the user does not exist
            ValidationError: If a resource appears twice
        """
        await self._require(updater, "users", "update")

        assignment = await self._get_assignment_or_raise(user_id)
        assignment.role_overrides = validate_permission_list(overrides)
        await self.user_repository.save_assignment(assignment)
        await self.permission_service.invalidate_user_cache(user_id)

        logger.info(
            f"User {updater.user_id} updated permission overrides of {user_id}",
            extra={
                "event": "rbac_overrides_updated",
                "user_id": user_id,
                "resources": [p.resource for p in assignment.role_overrides],
            },
        )
        return assignment
