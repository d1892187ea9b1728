"""Tests for the FastAPI permission guards and scope filtering."""

import asyncio
from datetime import timedelta

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from portal_api.shared.auth import User
from portal_api.shared.rbac.cache import PermissionCache
from portal_api.shared.rbac.models import Action, ResourcePermission, Role, Scope, UserRoleAssignment
from portal_api.shared.rbac.repository import InMemoryRoleRepository, InMemoryUserRoleRepository
from portal_api.shared.rbac.resolver import PermissionResolver
from portal_api.shared.rbac.service import PermissionService
from portal_api.shared.rbac.system_admin import (
    apply_scope_filter,
    require_all_permissions,
    require_any_permission,
    require_permission,
)


def _writer_role():
    return Role(
        role_id="writer",
        name="Writer",
        slug="writer",
        permissions=[
            ResourcePermission("posts", frozenset({Action.READ, Action.UPDATE}), Scope.OWN),
            ResourcePermission("comments", frozenset({Action.READ}), Scope.ALL),
        ],
        priority=10,
    )


@pytest.fixture
def guarded_client():
    roles = InMemoryRoleRepository()
    users = InMemoryUserRoleRepository()

    async def seed():
        await roles.create_role(_writer_role())
        await users.save_assignment(UserRoleAssignment(user_id="w1", base_role="writer"))

    asyncio.run(seed())

    resolver = PermissionResolver(roles, users)
    app = FastAPI()
    app.state.permission_service = PermissionService(
        resolver, PermissionCache(resolver, ttl=timedelta(minutes=5))
    )

    @app.put("/posts/{owner_id}")
    async def update_post(
        request: Request,
        user: User = Depends(require_permission("posts", "update", owner_param="owner_id")),
    ):
        return {"scope": request.state.permission_scope}

    @app.get("/all")
    async def needs_all(user: User = Depends(require_all_permissions([("posts", "read"), ("comments", "read")]))):
        return {"ok": True}

    @app.get("/all-strict")
    async def needs_all_strict(user: User = Depends(require_all_permissions([("posts", "read"), ("posts", "delete")]))):
        return {"ok": True}

    @app.get("/any")
    async def needs_any(user: User = Depends(require_any_permission([("posts", "delete"), ("comments", "read")]))):
        return {"ok": True}

    @app.get("/none")
    async def needs_none(user: User = Depends(require_any_permission([("posts", "delete"), ("roles", "read")]))):
        return {"ok": True}

    with TestClient(app) as client:
        yield client


class TestGuards:
    def test_owner_param_controls_own_scope(self, guarded_client):
        headers = {"X-User-Id": "w1"}

        own = guarded_client.put("/posts/w1", headers=headers)
        other = guarded_client.put("/posts/w2", headers=headers)

        assert own.status_code == 200
        assert own.json() == {"scope": "own"}
        assert other.status_code == 403
        assert other.json()["detail"]["required"] == "posts:update"

    def test_require_all(self, guarded_client):
        assert guarded_client.get("/all", headers={"X-User-Id": "w1"}).status_code == 200
        assert guarded_client.get("/all-strict", headers={"X-User-Id": "w1"}).status_code == 403

    def test_require_any(self, guarded_client):
        assert guarded_client.get("/any", headers={"X-User-Id": "w1"}).status_code == 200
        assert guarded_client.get("/none", headers={"X-User-Id": "w1"}).status_code == 403


class TestScopeFilter:
    @pytest.mark.asyncio
    async def test_filters_by_scope(self, permission_service, make_role, make_user, perm):
        await make_role(
            "writer",
            [
                perm("posts", ["read"], "own"),
                perm("comments", ["read"], "all"),
                perm("groups", ["read"], "department"),
            ],
        )
        await make_user("w1", custom_roles=["role-writer"])

        base = {"status": "published"}
        assert await apply_scope_filter(permission_service, "w1", "comments", "read", base) == base
        assert await apply_scope_filter(
            permission_service, "w1", "posts", "read", base, owner_field="authorId"
        ) == {"status": "published", "authorId": "w1"}
        assert await apply_scope_filter(permission_service, "w1", "groups", "read", base) is None
        assert await apply_scope_filter(permission_service, "w1", "posts", "delete", base) is None
