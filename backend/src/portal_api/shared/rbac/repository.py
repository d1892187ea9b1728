"""Role and user-assignment stores for the RBAC engine."""

import os
import copy
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .exceptions import StoreTimeoutError
from .models import Role, UserRoleAssignment

logger = logging.getLogger(__name__)


def _sort_roles(roles: List[Role]) -> List[Role]:
    """Order by descending priority, then newest first (ISO timestamps sort lexically)."""
    roles.sort(key=lambda r: r.created_at or "", reverse=True)
    roles.sort(key=lambda r: r.priority, reverse=True)
    return roles


class RoleRepository(ABC):
    """Abstract interface for role storage."""

    @abstractmethod
    async def get_role(self, role_id: str) -> Optional[Role]:
        """Get a role by ID, or None if it does not exist."""

    @abstractmethod
    async def get_role_by_slug(self, slug: str) -> Optional[Role]:
        """Get a role by its unique slug, or None."""

    @abstractmethod
    async def list_roles(
        self, include_inactive: bool = False, include_system: bool = True
    ) -> List[Role]:
        """
        List roles ordered by descending priority, then newest first.

        Args:
            include_inactive: Include soft-deleted roles
            include_system: Include system roles
        """

    @abstractmethod
    async def create_role(self, role: Role) -> Role:
        """Persist a new role. Raises ValueError if the ID or slug is taken."""

    @abstractmethod
    async def update_role(self, role: Role) -> Role:
        """Persist changes to an existing role."""

    async def find_active(self) -> List[Role]:
        """List active roles only."""
        return await self.list_roles(include_inactive=False)

    async def slug_exists(self, slug: str, exclude_role_id: Optional[str] = None) -> bool:
        """Check whether a slug is used by a role other than ``exclude_role_id``."""
        role = await self.get_role_by_slug(slug)
        return role is not None and role.role_id != exclude_role_id


class UserRoleRepository(ABC):
    """Abstract interface for the role attributes of user records."""

    @abstractmethod
    async def get_assignment(self, user_id: str) -> Optional[UserRoleAssignment]:
        """Get a user's role assignment, or None if the user does not exist."""

    @abstractmethod
    async def save_assignment(self, assignment: UserRoleAssignment) -> UserRoleAssignment:
        """Persist a user's role assignment."""

    @abstractmethod
    async def count_users_with_custom_role(self, role_id: str) -> int:
        """Count users holding ``role_id`` as a custom role."""

    @abstractmethod
    async def find_users_with_role(self, role_id: str, slug: Optional[str] = None) -> List[str]:
        """
        Find users referencing a role, either as a custom role or as their
        base role by slug.

        Returns:
            List of user IDs
        """


# =============================================================================
# In-memory implementations (single instance / local development / tests)
# =============================================================================


class InMemoryRoleRepository(RoleRepository):
    """Dict-backed role storage."""

    def __init__(self):
        self._roles: Dict[str, Role] = {}

    async def get_role(self, role_id: str) -> Optional[Role]:
        role = self._roles.get(role_id)
        return copy.deepcopy(role) if role else None

    async def get_role_by_slug(self, slug: str) -> Optional[Role]:
        for role in self._roles.values():
            if role.slug == slug:
                return copy.deepcopy(role)
        return None

    async def list_roles(
        self, include_inactive: bool = False, include_system: bool = True
    ) -> List[Role]:
        roles = [
            copy.deepcopy(r)
            for r in self._roles.values()
            if (include_inactive or r.is_active) and (include_system or not r.is_system_role)
        ]
        return _sort_roles(roles)

    async def create_role(self, role: Role) -> Role:
        if role.role_id in self._roles:
            raise ValueError(f"Role '{role.role_id}' already exists")
        if await self.slug_exists(role.slug):
            raise ValueError(f"Role slug '{role.slug}' already exists")
        self._roles[role.role_id] = copy.deepcopy(role)
        logger.info(f"Created role: {role.role_id}")
        return role

    async def update_role(self, role: Role) -> Role:
        if role.role_id not in self._roles:
            raise ValueError(f"Role '{role.role_id}' not found")
        self._roles[role.role_id] = copy.deepcopy(role)
        logger.info(f"Updated role: {role.role_id}")
        return role


class InMemoryUserRoleRepository(UserRoleRepository):
    """Dict-backed user assignment storage."""

    def __init__(self):
        self._assignments: Dict[str, UserRoleAssignment] = {}

    async def get_assignment(self, user_id: str) -> Optional[UserRoleAssignment]:
        assignment = self._assignments.get(user_id)
        return copy.deepcopy(assignment) if assignment else None

    async def save_assignment(self, assignment: UserRoleAssignment) -> UserRoleAssignment:
        self._assignments[assignment.user_id] = copy.deepcopy(assignment)
        return assignment

    async def count_users_with_custom_role(self, role_id: str) -> int:
        return sum(1 for a in self._assignments.values() if role_id in a.custom_roles)

    async def find_users_with_role(self, role_id: str, slug: Optional[str] = None) -> List[str]:
        return [
            a.user_id
            for a in self._assignments.values()
            if role_id in a.custom_roles or (slug is not None and a.base_role == slug)
        ]


# =============================================================================
# DynamoDB implementations
# =============================================================================


async def run_store_call(operation: str, fn, *args, **kwargs):
    """
    Run a blocking boto3 call in a worker thread.

    Keeping the event loop free lets callers bound the call with
    ``asyncio.wait_for``. Network timeouts from botocore surface as
    ``StoreTimeoutError``.
    """
    from botocore.exceptions import ConnectTimeoutError, EndpointConnectionError, ReadTimeoutError

    try:
        return await asyncio.to_thread(fn, *args, **kwargs)
    except (ReadTimeoutError, ConnectTimeoutError, EndpointConnectionError) as e:
        logger.warning(f"DynamoDB call timed out: {operation}: {e}")
        raise StoreTimeoutError(operation) from e


def _dynamodb_resource(region: Optional[str] = None):
    """Create a DynamoDB resource honouring AWS_PROFILE and AWS_REGION."""
    import boto3

    region = region or os.getenv("AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-west-2"))
    profile = os.getenv("AWS_PROFILE")
    if profile:
        session = boto3.Session(profile_name=profile)
        return session.resource("dynamodb", region_name=region)
    return boto3.resource("dynamodb", region_name=region)


class DynamoDBRoleRepository(RoleRepository):
    """
    Role storage in a DynamoDB single table.

    Items:
    - ``PK=ROLE#<id>, SK=DEFINITION``: the role itself
    - ``PK=SLUG#<slug>, SK=ROLE``: slug uniqueness guard and lookup
    """

    def __init__(self, table_name: Optional[str] = None, region: Optional[str] = None):
        from botocore.exceptions import ClientError

        self.table_name = table_name or os.environ.get("DYNAMODB_RBAC_TABLE_NAME", "rbac")
        self._dynamodb = _dynamodb_resource(region)
        self._table = self._dynamodb.Table(self.table_name)
        self._client_error = ClientError

        logger.info(f"Initialized DynamoDB role repository: table={self.table_name}")

    async def get_role(self, role_id: str) -> Optional[Role]:
        try:
            response = await run_store_call(
                f"get_role:{role_id}",
                self._table.get_item,
                Key={"PK": f"ROLE#{role_id}", "SK": "DEFINITION"},
            )
            item = response.get("Item")
            if not item:
                return None
            return Role.from_dict(item)
        except self._client_error as e:
            logger.error(f"Error getting role {role_id}: {e}")
            raise

    async def get_role_by_slug(self, slug: str) -> Optional[Role]:
        try:
            response = await run_store_call(
                f"get_role_by_slug:{slug}", self._table.get_item, Key={"PK": f"SLUG#{slug}", "SK": "ROLE"}
            )
            item = response.get("Item")
            if not item:
                return None
            return await self.get_role(item["roleId"])
        except self._client_error as e:
            logger.error(f"Error getting role by slug {slug}: {e}")
            raise

    async def list_roles(
        self, include_inactive: bool = False, include_system: bool = True
    ) -> List[Role]:
        try:
            scan_kwargs = {
                "FilterExpression": "SK = :sk",
                "ExpressionAttributeValues": {":sk": "DEFINITION"},
            }
            response = await run_store_call("scan", self._table.scan, **scan_kwargs)
            items = response.get("Items", [])

            # Handle pagination
            while "LastEvaluatedKey" in response:
                response = await run_store_call(
                    "scan", self._table.scan, ExclusiveStartKey=response["LastEvaluatedKey"], **scan_kwargs
                )
                items.extend(response.get("Items", []))

            roles = [Role.from_dict(item) for item in items]
            roles = [
                r
                for r in roles
                if (include_inactive or r.is_active) and (include_system or not r.is_system_role)
            ]
            return _sort_roles(roles)

        except self._client_error as e:
            logger.error(f"Error listing roles: {e}")
            raise

    async def create_role(self, role: Role) -> Role:
        try:
            await run_store_call(
                f"create_role:{role.role_id}",
                self._dynamodb.meta.client.transact_write_items,
                TransactItems=[
                    {
                        "Put": {
                            "TableName": self.table_name,
                            "Item": {"PK": f"ROLE#{role.role_id}", "SK": "DEFINITION", **role.to_dict()},
                            "ConditionExpression": "attribute_not_exists(PK)",
                        }
                    },
                    {
                        "Put": {
                            "TableName": self.table_name,
                            "Item": {"PK": f"SLUG#{role.slug}", "SK": "ROLE", "roleId": role.role_id},
                            "ConditionExpression": "attribute_not_exists(PK)",
                        }
                    },
                ],
            )
            logger.info(f"Created role: {role.role_id}")
            return role
        except self._client_error as e:
            if e.response["Error"]["Code"] == "TransactionCanceledException":
                raise ValueError(f"Role '{role.role_id}' or slug '{role.slug}' already exists")
            logger.error(f"Error creating role {role.role_id}: {e}")
            raise

    async def update_role(self, role: Role) -> Role:
        try:
            existing = await self.get_role(role.role_id)
            if not existing:
                raise ValueError(f"Role '{role.role_id}' not found")

            transact_items = [
                {
                    "Put": {
                        "TableName": self.table_name,
                        "Item": {"PK": f"ROLE#{role.role_id}", "SK": "DEFINITION", **role.to_dict()},
                    }
                }
            ]
            if existing.slug != role.slug:
                transact_items.append(
                    {"Delete": {"TableName": self.table_name, "Key": {"PK": f"SLUG#{existing.slug}", "SK": "ROLE"}}}
                )
                transact_items.append(
                    {
                        "Put": {
                            "TableName": self.table_name,
                            "Item": {"PK": f"SLUG#{role.slug}", "SK": "ROLE", "roleId": role.role_id},
                            "ConditionExpression": "attribute_not_exists(PK)",
                        }
                    }
                )

            await run_store_call(
                f"update_role:{role.role_id}",
                self._dynamodb.meta.client.transact_write_items,
                TransactItems=transact_items,
            )
            logger.info(f"Updated role: {role.role_id}")
            return role
        except self._client_error as e:
            logger.error(f"Error updating role {role.role_id}: {e}")
            raise


class DynamoDBUserRoleRepository(UserRoleRepository):
    """
    User role assignments in the RBAC table (``PK=USER#<id>, SK=ROLES``).

    Reference queries scan the assignment items; the user population of the
    platform keeps this within a few pages.
    """

    def __init__(self, table_name: Optional[str] = None, region: Optional[str] = None):
        from botocore.exceptions import ClientError

        self.table_name = table_name or os.environ.get("DYNAMODB_RBAC_TABLE_NAME", "rbac")
        self._table = _dynamodb_resource(region).Table(self.table_name)
        self._client_error = ClientError

    async def get_assignment(self, user_id: str) -> Optional[UserRoleAssignment]:
        try:
            response = await run_store_call(
                f"get_assignment:{user_id}", self._table.get_item, Key={"PK": f"USER#{user_id}", "SK": "ROLES"}
            )
            item = response.get("Item")
            return UserRoleAssignment.from_dict(item) if item else None
        except self._client_error as e:
            logger.error(f"Error getting role assignment for user {user_id}: {e}")
            raise

    async def save_assignment(self, assignment: UserRoleAssignment) -> UserRoleAssignment:
        try:
            await run_store_call(
                f"save_assignment:{assignment.user_id}",
                self._table.put_item,
                Item={"PK": f"USER#{assignment.user_id}", "SK": "ROLES", **assignment.to_dict()},
            )
            return assignment
        except self._client_error as e:
            logger.error(f"Error saving role assignment for user {assignment.user_id}: {e}")
            raise

    async def _scan_assignments(self) -> List[UserRoleAssignment]:
        scan_kwargs = {
            "FilterExpression": "SK = :sk",
            "ExpressionAttributeValues": {":sk": "ROLES"},
        }
        response = await run_store_call("scan", self._table.scan, **scan_kwargs)
        items = response.get("Items", [])
        while "LastEvaluatedKey" in response:
            response = await run_store_call(
                "scan", self._table.scan, ExclusiveStartKey=response["LastEvaluatedKey"], **scan_kwargs
            )
            items.extend(response.get("Items", []))
        return [UserRoleAssignment.from_dict(item) for item in items]

    async def count_users_with_custom_role(self, role_id: str) -> int:
        try:
            return sum(1 for a in await self._scan_assignments() if role_id in a.custom_roles)
        except self._client_error as e:
            logger.error(f"Error counting users with role {role_id}: {e}")
            raise

    async def find_users_with_role(self, role_id: str, slug: Optional[str] = None) -> List[str]:
        try:
            return [
                a.user_id
                for a in await self._scan_assignments()
                if role_id in a.custom_roles or (slug is not None and a.base_role == slug)
            ]
        except self._client_error as e:
            logger.error(f"Error finding users with role {role_id}: {e}")
            raise


def create_role_repository() -> RoleRepository:
    """
    Create the role repository based on environment configuration.

    Returns:
        DynamoDB repository if DYNAMODB_RBAC_TABLE_NAME is set, otherwise in-memory
    """
    table_name = os.getenv("DYNAMODB_RBAC_TABLE_NAME")
    if table_name:
        return DynamoDBRoleRepository(table_name=table_name)
    logger.info(
        "DYNAMODB_RBAC_TABLE_NAME not set. Using in-memory role storage. "
        "Roles will not survive a restart."
    )
    return InMemoryRoleRepository()


def create_user_role_repository() -> UserRoleRepository:
    """Create the user assignment repository based on environment configuration."""
    table_name = os.getenv("DYNAMODB_RBAC_TABLE_NAME")
    if table_name:
        return DynamoDBUserRoleRepository(table_name=table_name)
    logger.info("DYNAMODB_RBAC_TABLE_NAME not set. Using in-memory user role storage.")
    return InMemoryUserRoleRepository()
