"""Tests for role administration."""

import pytest

from portal_api.shared.auth.models import User
from portal_api.shared.rbac.admin_service import AuditContext
from portal_api.shared.rbac.audit import AuditQuery
from portal_api.shared.rbac.exceptions import (
    ActorNotFoundError,
    ForbiddenError,
    RoleInUseError,
    RoleNotFoundError,
    SystemRoleImmutableError,
    ValidationError,
)
from portal_api.shared.rbac.models import (
    AuditAction,
    ResourcePermissionModel,
    RoleUpdate,
)


async def _audit_actions(audit_repository):
    return [e.action for e in await audit_repository.query(AuditQuery())]


class TestRoleCrud:
    @pytest.mark.asyncio
    async def test_create_role_requires_permission(self, admin_service, make_user):
        await make_user("nobody")
        with pytest.raises(ForbiddenError) as exc_info:
            await admin_service.create_role("Editors", User(user_id="nobody"))
        assert exc_info.value.required == "roles:create"

    @pytest.mark.asyncio
    async def test_create_role_defaults_and_audit(self, admin_service, admin_setup, audit_repository, perm):
        role = await admin_service.create_role(
            "Content Editors",
            admin_setup,
            permissions=[perm("posts", ["read", "update"], "all")],
            context=AuditContext(ip_address="10.0.0.1", user_agent="pytest"),
        )

        assert role.slug == "content-editors"
        assert role.priority == 1
        assert role.is_active
        assert not role.is_system_role
        assert role.created_by == admin_setup.user_id

        entries = await audit_repository.query(AuditQuery(role_id=role.role_id))
        assert len(entries) == 1
        assert entries[0].action is AuditAction.ROLE_CREATED
        assert entries[0].ip_address == "10.0.0.1"
        assert entries[0].changes["newValue"]["name"] == "Content Editors"

    @pytest.mark.asyncio
    async def test_slug_collisions_are_numbered(self, admin_service, admin_setup):
        first = await admin_service.create_role("Editors", admin_setup)
        second = await admin_service.create_role("editors", admin_setup)
        third = await admin_service.create_role("EDITORS!", admin_setup)

        assert [first.slug, second.slug, third.slug] == ["editors", "editors-1", "editors-2"]

    @pytest.mark.asyncio
    async def test_create_role_requires_name(self, admin_service, admin_setup):
        with pytest.raises(ValidationError):
            await admin_service.create_role("   ", admin_setup)

    @pytest.mark.asyncio
    async def test_update_records_only_changed_fields(self, admin_service, admin_setup, audit_repository):
        role = await admin_service.create_role("Editors", admin_setup, description="Edits", priority=20)

        updated = await admin_service.update_role(
            role.role_id,
            RoleUpdate(name="Senior Editors", description="Edits", priority=30),
            admin_setup,
        )

        assert updated.slug == "senior-editors"
        entries = await audit_repository.query(
            AuditQuery(role_id=role.role_id, actions=[AuditAction.ROLE_UPDATED])
        )
        assert len(entries) == 1
        assert entries[0].changes["oldValue"] == {"name": "Editors", "priority": 20}
        assert entries[0].changes["newValue"] == {"name": "Senior Editors", "priority": 30}

    @pytest.mark.asyncio
    async def test_noop_update_is_not_audited(self, admin_service, admin_setup, audit_repository, perm):
        role = await admin_service.create_role(
            "Editors",
            admin_setup,
            permissions=[perm("posts", ["read", "update"], "own"), perm("comments", ["read"], "all")],
        )
        resent = [
            ResourcePermissionModel(resource="comments", actions=["read"], scope="all"),
            ResourcePermissionModel(resource="posts", actions=["update", "read"], scope="own"),
        ]

        await admin_service.update_role(role.role_id, RoleUpdate(name="Editors"), admin_setup)
        await admin_service.update_role(role.role_id, RoleUpdate(permissions=resent), admin_setup)

        assert await _audit_actions(audit_repository) == [AuditAction.ROLE_CREATED]

    @pytest.mark.asyncio
    async def test_update_missing_role(self, admin_service, admin_setup):
        with pytest.raises(RoleNotFoundError):
            await admin_service.update_role("missing", RoleUpdate(name="X"), admin_setup)

    @pytest.mark.asyncio
    async def test_system_role_needs_superadmin(self, admin_service, admin_setup, make_role):
        await make_role("user", priority=10, is_system_role=True)

        with pytest.raises(SystemRoleImmutableError):
            await admin_service.update_role("role-user", RoleUpdate(description="changed"), admin_setup)

    @pytest.mark.asyncio
    async def test_superadmin_edits_system_role_but_cannot_deactivate(
        self, admin_service, make_role, make_user, perm
    ):
        await make_role("superadmin", [perm("roles", ["read", "update"])], priority=100, is_system_role=True)
        await make_user("root", base_role="superadmin")
        root = User(user_id="root")

        updated = await admin_service.update_role(
            "role-superadmin", RoleUpdate(name="Root", description="Top"), root
        )
        assert updated.description == "Top"
        # System role slugs are base-role keys
        assert updated.slug == "superadmin"

        with pytest.raises(SystemRoleImmutableError):
            await admin_service.update_role("role-superadmin", RoleUpdate(is_active=False), root)

    @pytest.mark.asyncio
    async def test_update_invalidates_affected_users(
        self, admin_service, admin_setup, permission_service, make_role, make_user, perm
    ):
        await make_role("writer", [perm("posts", ["read"], "all")], priority=10)
        await make_user("u1", custom_roles=["role-writer"])
        await make_user("u2", base_role="writer")
        assert await permission_service.can("u1", "posts", "delete") is False
        assert await permission_service.can("u2", "posts", "delete") is False

        await admin_service.update_role(
            "role-writer",
            RoleUpdate(permissions=[ResourcePermissionModel(resource="posts", actions=["read", "delete"], scope="all")]),
            admin_setup,
        )

        assert await permission_service.can("u1", "posts", "delete") is True
        assert await permission_service.can("u2", "posts", "delete") is True

    @pytest.mark.asyncio
    async def test_deactivation_via_update(self, admin_service, admin_setup, permission_service, make_role, make_user, perm):
        await make_role("writer", [perm("posts", ["read"], "all")])
        await make_user("u1", custom_roles=["role-writer"])
        assert await permission_service.can("u1", "posts", "read") is True

        updated = await admin_service.update_role("role-writer", RoleUpdate(is_active=False), admin_setup)

        assert not updated.is_active
        assert await permission_service.can("u1", "posts", "read") is False


class TestDeleteAndClone:
    @pytest.mark.asyncio
    async def test_delete_blocked_while_in_use(self, admin_service, admin_setup, audit_repository):
        role = await admin_service.create_role("Editors", admin_setup)
        await admin_service.assign_role_to_user(admin_setup.user_id, role.role_id, admin_setup)

        with pytest.raises(RoleInUseError) as exc_info:
            await admin_service.delete_role(role.role_id, admin_setup)
        assert exc_info.value.user_count == 1

        await admin_service.remove_role_from_user(admin_setup.user_id, role.role_id, admin_setup)
        deleted = await admin_service.delete_role(role.role_id, admin_setup)

        assert not deleted.is_active
        stored = await admin_service.get_role(role.role_id)
        assert not stored.is_active
        assert AuditAction.ROLE_DELETED in await _audit_actions(audit_repository)

    @pytest.mark.asyncio
    async def test_deleting_inactive_role_is_not_audited(self, admin_service, admin_setup, audit_repository):
        role = await admin_service.create_role("Editors", admin_setup)
        await admin_service.delete_role(role.role_id, admin_setup)

        again = await admin_service.delete_role(role.role_id, admin_setup)

        assert not again.is_active
        deletions = await audit_repository.query(
            AuditQuery(role_id=role.role_id, actions=[AuditAction.ROLE_DELETED])
        )
        assert len(deletions) == 1
        assert deletions[0].changes["oldValue"] == {"isActive": True}

    @pytest.mark.asyncio
    async def test_delete_system_role(self, admin_service, admin_setup, make_role):
        await make_role("user", is_system_role=True)

        with pytest.raises(SystemRoleImmutableError):
            await admin_service.delete_role("role-user", admin_setup)

    @pytest.mark.asyncio
    async def test_clone_copies_permissions_and_priority(self, admin_service, admin_setup, audit_repository, perm):
        source = await admin_service.create_role(
            "Editors", admin_setup, permissions=[perm("posts", ["read"], "own")], priority=25
        )

        clone = await admin_service.clone_role(source.role_id, "Editors Copy", admin_setup)

        assert clone.role_id != source.role_id
        assert clone.permissions == source.permissions
        assert clone.priority == 25
        assert clone.description == "Cloned from Editors"
        assert not clone.is_system_role

        entries = await audit_repository.query(AuditQuery(role_id=clone.role_id))
        assert entries[0].action is AuditAction.ROLE_CLONED
        assert entries[0].changes == {"sourceRoleId": source.role_id, "sourceRoleName": "Editors"}


class TestAssignments:
    @pytest.mark.asyncio
    async def test_assign_requires_users_update(self, admin_service, make_role, make_user, perm):
        await make_role("roles-only", [perm("roles", ["create", "read", "update", "delete"])])
        await make_user("half-admin", base_role="roles-only")
        await make_user("u1")

        with pytest.raises(ForbiddenError) as exc_info:
            await admin_service.assign_role_to_user("u1", "role-roles-only", User(user_id="half-admin"))
        assert exc_info.value.required == "users:update"

    @pytest.mark.asyncio
    async def test_assign_and_remove(self, admin_service, admin_setup, permission_service, make_role, make_user, perm):
        await make_role("writer", [perm("posts", ["create"], "own")])
        await make_user("u1")
        assert await permission_service.can("u1", "posts", "create") is False

        await admin_service.assign_role_to_user("u1", "role-writer", admin_setup)
        assert await permission_service.can("u1", "posts", "create") is True

        await admin_service.remove_role_from_user("u1", "role-writer", admin_setup)
        assert await permission_service.can("u1", "posts", "create") is False

    @pytest.mark.asyncio
    async def test_assign_twice_fails(self, admin_service, admin_setup, make_role, make_user):
        await make_role("writer")
        await make_user("u1", custom_roles=["role-writer"])

        with pytest.raises(ValidationError):
            await admin_service.assign_role_to_user("u1", "role-writer", admin_setup)

    @pytest.mark.asyncio
    async def test_assign_inactive_role_fails(self, admin_service, admin_setup, make_role, make_user):
        await make_role("retired", active=False)
        await make_user("u1")

        with pytest.raises(RoleNotFoundError):
            await admin_service.assign_role_to_user("u1", "role-retired", admin_setup)

    @pytest.mark.asyncio
    async def test_assign_to_unknown_user(self, admin_service, admin_setup, make_role):
        await make_role("writer")

        with pytest.raises(ActorNotFoundError):
            await admin_service.assign_role_to_user("ghost", "role-writer", admin_setup)

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self, admin_service, admin_setup, make_user, audit_repository):
        await make_user("u1")

        await admin_service.remove_role_from_user("u1", "role-never-held", admin_setup)
        await admin_service.remove_role_from_user("u1", "role-never-held", admin_setup)

        actions = await _audit_actions(audit_repository)
        assert actions == [AuditAction.ROLE_REMOVED_FROM_USER] * 2

    @pytest.mark.asyncio
    async def test_update_overrides(self, admin_service, admin_setup, permission_service, make_user, perm):
        await make_user("u1")

        await admin_service.update_user_overrides("u1", [perm("roles", ["read"], "all")], admin_setup)

        assert await permission_service.can("u1", "roles", "read") is True

    @pytest.mark.asyncio
    async def test_duplicate_overrides_rejected(self, admin_service, admin_setup, make_user, perm):
        await make_user("u1")

        with pytest.raises(ValidationError):
            await admin_service.update_user_overrides(
                "u1", [perm("roles", ["read"]), perm("roles", ["update"])], admin_setup
            )


class TestListing:
    @pytest.mark.asyncio
    async def test_get_roles_orders_and_paginates(self, admin_service, admin_setup, make_role):
        await make_role("low", priority=5)
        await make_role("high", priority=60)
        await make_role("hidden", priority=70, active=False)

        page = await admin_service.get_roles(page=1, limit=2)

        assert [r.slug for r in page.roles] == ["role-manager", "high"]
        assert page.total == 3
        assert page.pages == 2

        with_inactive = await admin_service.get_roles(include_inactive=True)
        assert [r.slug for r in with_inactive.roles] == ["role-manager", "hidden", "high", "low"]

    @pytest.mark.asyncio
    async def test_get_roles_excluding_system(self, admin_service, admin_setup, make_role):
        await make_role("user", priority=10, is_system_role=True)

        page = await admin_service.get_roles(include_system=False)

        assert all(not r.is_system_role for r in page.roles)
        assert page.total == 1
