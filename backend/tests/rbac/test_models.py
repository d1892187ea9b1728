"""Tests for RBAC domain models."""

import pytest

from portal_api.shared.rbac.exceptions import SystemRoleImmutableError, ValidationError
from portal_api.shared.rbac.models import (
    Action,
    ResourcePermission,
    ResourcePermissionModel,
    Role,
    RoleResponse,
    RoleStatus,
    Scope,
    UserRoleAssignment,
    generate_slug,
)


class TestScope:
    """Scope ordering follows breadth, not string order."""

    def test_ordering(self):
        assert Scope.NONE < Scope.OWN < Scope.DEPARTMENT < Scope.ALL
        assert max(Scope.OWN, Scope.DEPARTMENT) is Scope.DEPARTMENT
        assert max([Scope.ALL, Scope.NONE, Scope.OWN]) is Scope.ALL

    def test_parse_rejects_unknown(self):
        with pytest.raises(ValidationError):
            Scope.parse("team")

    def test_parse_none_is_none_scope(self):
        assert Scope.parse(None) is Scope.NONE


class TestAction:
    def test_parse_is_case_insensitive(self):
        assert Action.parse(" Read ") is Action.READ

    def test_unknown_action_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            Action.parse("fly")
        assert exc_info.value.field == "action"


class TestResourcePermission:
    def test_normalizes_resource_and_actions(self):
        permission = ResourcePermission(" Posts ", frozenset({"read", "update"}), "own")
        assert permission.resource == "posts"
        assert permission.actions == frozenset({Action.READ, Action.UPDATE})
        assert permission.scope is Scope.OWN

    def test_empty_resource_rejected(self):
        with pytest.raises(ValidationError):
            ResourcePermission("  ", frozenset({Action.READ}), Scope.ALL)

    def test_unknown_condition_rejected(self):
        with pytest.raises(ValidationError):
            ResourcePermission("posts", frozenset(), Scope.ALL, conditions={"region": ["eu"]})

    def test_to_dict_stores_flag_map(self):
        data = ResourcePermission("posts", frozenset({Action.READ}), Scope.ALL).to_dict()
        assert data["actions"]["read"] is True
        assert data["actions"]["delete"] is False
        assert set(data["actions"]) == {a.value for a in Action}

    def test_from_dict_accepts_flag_map(self):
        permission = ResourcePermission.from_dict(
            {"resource": "posts", "actions": {"read": True, "update": False}, "scope": "own"}
        )
        assert permission.actions == frozenset({Action.READ})
        assert permission.scope is Scope.OWN

    def test_from_dict_rejects_unknown_flag(self):
        with pytest.raises(ValidationError):
            ResourcePermission.from_dict({"resource": "posts", "actions": {"fly": False}})


class TestRole:
    def _role(self, **kwargs):
        defaults = dict(role_id="r1", name="Editors", slug="editors")
        defaults.update(kwargs)
        return Role(**defaults)

    def test_defaults(self):
        role = self._role()
        assert role.is_active
        assert role.priority == 1
        assert not role.is_system_role

    @pytest.mark.parametrize("priority", [0, 101, True])
    def test_priority_out_of_range(self, priority):
        with pytest.raises(ValidationError):
            self._role(priority=priority)

    def test_duplicate_resource_rejected(self):
        with pytest.raises(ValidationError):
            self._role(
                permissions=[
                    ResourcePermission("posts", frozenset({Action.READ}), Scope.ALL),
                    ResourcePermission("posts", frozenset({Action.UPDATE}), Scope.OWN),
                ]
            )

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            self._role(name="   ")

    def test_system_role_cannot_be_created_inactive(self):
        with pytest.raises(SystemRoleImmutableError):
            self._role(is_system_role=True, status=RoleStatus.INACTIVE)

    def test_transition(self):
        role = self._role()
        assert role.transition_to(RoleStatus.INACTIVE) is True
        assert not role.is_active
        assert role.transition_to(RoleStatus.INACTIVE) is False
        assert role.transition_to(RoleStatus.ACTIVE) is True

    def test_system_role_cannot_be_deactivated(self):
        role = self._role(is_system_role=True)
        with pytest.raises(SystemRoleImmutableError):
            role.transition_to(RoleStatus.INACTIVE)
        assert role.is_active

    def test_from_dict_reads_storage_form(self):
        role = Role.from_dict(
            {
                "roleId": "r1",
                "name": "Editors",
                "slug": "editors",
                "isActive": False,
                "priority": "40",
                "permissions": [{"resource": "posts", "actions": {"read": True}, "scope": "all"}],
            }
        )
        assert role.status is RoleStatus.INACTIVE
        assert role.priority == 40
        assert role.permissions[0].actions == frozenset({Action.READ})


class TestUserRoleAssignment:
    def test_from_dict_uses_role_as_base_role(self):
        assignment = UserRoleAssignment.from_dict(
            {"userId": "u1", "role": "user", "customRoles": ["r1"]}
        )
        assert assignment.base_role == "user"
        assert assignment.has_custom_role("r1")
        assert assignment.role_overrides == []


class TestSlug:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("Content Editors", "content-editors"),
            ("Gestión  de   Empresas", "gestion-de-empresas"),
            ("  --Admin!!  ", "admin"),
        ],
    )
    def test_generate_slug(self, name, expected):
        assert generate_slug(name) == expected


class TestApiModels:
    def test_permission_model_accepts_flag_map(self):
        model = ResourcePermissionModel(resource="posts", actions={"read": True, "delete": False})
        assert model.to_permission().actions == frozenset({Action.READ})

    def test_role_response_uses_camel_case(self):
        role = Role(role_id="r1", name="Editors", slug="editors", created_at="t", updated_at="t")
        data = RoleResponse.from_role(role).model_dump(by_alias=True)
        assert data["roleId"] == "r1"
        assert data["isActive"] is True
        assert data["isSystemRole"] is False
