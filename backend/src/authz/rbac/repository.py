"""Role/Permission Store backed by a DynamoDB single table."""

import os
import time
import uuid
import logging
from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta

import boto3
from botocore.exceptions import ClientError

from authz.errors import RoleStoreError

from .hierarchy import highest_role, sort_roles
from .models import (
    DEFAULT_ROLE,
    PermissionLog,
    Role,
    UserPermissions,
    UserRoleAssignment,
    to_iso,
    utc_now,
)
from .permissions import has_permission, merge_permissions
from .store import DEFAULT_IP_ADDRESS, RoleStore

logger = logging.getLogger(__name__)


class DynamoDBRoleStore(RoleStore):
    """
    Role/Permission Store in DynamoDB.

    Single-table layout:
    - ROLE#<role_id> / DEFINITION                 role definition (GSI1 by name)
    - USER#<user_id> / ROLE#<role_id>             user-role assignment
    - RATE#<user>#<action>#<resource> / <ip>#<ts>  rate-limit request marker
    - LOG#<user_id> / <ts>#<log_id>               permission / denial log

    Rate-limit markers and logs carry a ``ttl`` attribute so DynamoDB expires
    them on its own.
    """

    LOG_RETENTION_DAYS = 90

    def __init__(
        self,
        table_name: Optional[str] = None,
        region: Optional[str] = None,
        default_role: str = DEFAULT_ROLE,
        table: Any = None,
    ):
        """Initialize store with DynamoDB table."""
        self.table_name = table_name or os.environ.get(
            "DYNAMODB_AUTHZ_TABLE_NAME", "authz-roles"
        )
        self.default_role = default_role
        if table is not None:
            self._table = table
        else:
            region = region or os.environ.get("AWS_REGION", "us-west-2")
            self._dynamodb = boto3.resource("dynamodb", region_name=region)
            self._table = self._dynamodb.Table(self.table_name)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _query_all(self, **kwargs) -> List[Dict]:
        response = self._table.query(**kwargs)
        items = response.get("Items", [])
        while "LastEvaluatedKey" in response:
            response = self._table.query(
                ExclusiveStartKey=response["LastEvaluatedKey"], **kwargs
            )
            items.extend(response.get("Items", []))
        return items

    def _count(self, **kwargs) -> int:
        response = self._table.query(Select="COUNT", **kwargs)
        count = response.get("Count", 0)
        while "LastEvaluatedKey" in response:
            response = self._table.query(
                Select="COUNT",
                ExclusiveStartKey=response["LastEvaluatedKey"],
                **kwargs,
            )
            count += response.get("Count", 0)
        return count

    @staticmethod
    def _rate_pk(user_id: str, action: str, resource: str) -> str:
        return f"RATE#{user_id}#{action}#{resource}"

    async def _effective_roles(self, user_id: str) -> List[Role]:
        now = utc_now()
        roles = []
        for assignment in await self.list_user_roles(user_id, active_only=False):
            if assignment.is_effective(now) and assignment.role and assignment.role.is_active:
                roles.append(assignment.role)

        if not roles:
            default = await self.get_role_by_name(self.default_role)
            if default and default.is_active:
                roles = [default]
        return sort_roles(roles)

    # =========================================================================
    # Authorization primitives
    # =========================================================================

    async def get_user_role(self, user_id: str) -> str:
        top = highest_role(await self._effective_roles(user_id))
        return top.name if top else self.default_role

    async def get_user_permissions(self, user_id: str) -> UserPermissions:
        roles = await self._effective_roles(user_id)
        return UserPermissions(
            permissions=merge_permissions(r.permissions for r in roles),
            roles=[r.name for r in roles],
            checked_at=to_iso(utc_now()),
        )

    async def check_user_permission(
        self, user_id: str, resource: str, action: str
    ) -> bool:
        permissions = await self.get_user_permissions(user_id)
        return has_permission(permissions.permissions, resource, action)

    async def authorize_operation(
        self,
        resource: str,
        action: str,
        user_id: str,
        rate_limit_check: bool = False,
        max_requests: int = 100,
        window_minutes: int = 60,
        ip_address: Optional[str] = None,
    ) -> bool:
        if rate_limit_check:
            try:
                used = self._count_window(
                    user_id, action, resource, window_minutes, ip_address
                )
            except ClientError as e:
                logger.error(f"Error counting rate window for {user_id}: {e}")
                raise RoleStoreError(str(e), operation="authorize_operation") from e

            # The current request is already counted by check_rate_limit.
            if used > max_requests:
                return False

        return await self.check_user_permission(user_id, resource, action)

    async def check_rate_limit(
        self,
        user_id: str,
        ip_address: str,
        action: str,
        resource: str,
        max_requests: int,
        window_minutes: int,
    ) -> bool:
        """
        Count requests for (user, action, resource, ip) inside the window.

        Count and insert are two round-trips, so concurrent callers can
        overshoot the budget slightly.
        """
        ip_address = ip_address or DEFAULT_IP_ADDRESS
        now = utc_now()

        try:
            used = self._count_window(
                user_id, action, resource, window_minutes, ip_address, now=now
            )
            if used >= max_requests:
                return False

            self._table.put_item(
                Item={
                    "PK": self._rate_pk(user_id, action, resource),
                    "SK": f"{ip_address}#{to_iso(now)}#{uuid.uuid4().hex[:8]}",
                    "requestedAt": to_iso(now),
                    "ttl": int(time.time()) + window_minutes * 60 + 60,
                }
            )
            return True

        except ClientError as e:
            logger.error(f"Error checking rate limit for {user_id}: {e}")
            raise RoleStoreError(str(e), operation="check_rate_limit") from e

    def _count_window(
        self,
        user_id: str,
        action: str,
        resource: str,
        window_minutes: int,
        ip_address: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """Count markers newer than the window start, for one IP or all of them."""
        window_start = to_iso((now or utc_now()) - timedelta(minutes=window_minutes))
        key_condition = "PK = :pk"
        values = {
            ":pk": self._rate_pk(user_id, action, resource),
            ":start": window_start,
        }
        if ip_address is not None:
            key_condition += " AND begins_with(SK, :ip)"
            values[":ip"] = f"{ip_address}#"

        return self._count(
            KeyConditionExpression=key_condition,
            FilterExpression="requestedAt > :start",
            ExpressionAttributeValues=values,
        )

    async def _put_log(self, log: PermissionLog):
        created = to_iso(log.created_at)
        try:
            self._table.put_item(
                Item={
                    "PK": f"LOG#{log.user_id or 'anonymous'}",
                    "SK": f"{created}#{log.id}",
                    "GSI2PK": "LOG",
                    "GSI2SK": f"{created}#{log.id}",
                    "ttl": int(time.time()) + self.LOG_RETENTION_DAYS * 86400,
                    **log.to_dict(),
                }
            )
        except ClientError as e:
            logger.error(f"Error writing permission log: {e}")
            raise RoleStoreError(str(e), operation="log") from e

    async def log_access_denied(
        self,
        user_id: Optional[str],
        action: str,
        resource: str,
        resource_id: Optional[str] = None,
        reason: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ):
        await self._put_log(
            PermissionLog(
                user_id=user_id,
                action=action,
                resource=resource,
                resource_id=resource_id,
                granted=False,
                reason=reason,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )

    async def log_permission_check(
        self,
        user_id: Optional[str],
        action: str,
        resource: str,
        granted: bool,
        resource_id: Optional[str] = None,
        role_used: Optional[str] = None,
    ):
        await self._put_log(
            PermissionLog(
                user_id=user_id,
                action=action,
                resource=resource,
                resource_id=resource_id,
                granted=granted,
                role_used=role_used,
            )
        )

    async def list_permission_logs(
        self,
        user_id: Optional[str] = None,
        resource: Optional[str] = None,
        action: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[PermissionLog]:
        try:
            if user_id:
                items = self._query_all(
                    KeyConditionExpression="PK = :pk",
                    ExpressionAttributeValues={":pk": f"LOG#{user_id}"},
                    ScanIndexForward=False,
                )
            else:
                items = self._query_all(
                    IndexName="PermissionLogIndex",
                    KeyConditionExpression="GSI2PK = :pk",
                    ExpressionAttributeValues={":pk": "LOG"},
                    ScanIndexForward=False,
                )
        except ClientError as e:
            logger.error(f"Error listing permission logs: {e}")
            raise RoleStoreError(str(e), operation="list_permission_logs") from e

        logs = [
            PermissionLog.from_dict(item) for item in items
            if (resource is None or item.get("resource") == resource)
            and (action is None or item.get("action") == action)
        ]
        return logs[:limit] if limit else logs

    # =========================================================================
    # Role CRUD
    # =========================================================================

    async def list_roles(self, active_only: bool = False) -> List[Role]:
        try:
            response = self._table.scan(
                FilterExpression="SK = :sk",
                ExpressionAttributeValues={":sk": "DEFINITION"},
            )
            items = response.get("Items", [])

            while "LastEvaluatedKey" in response:
                response = self._table.scan(
                    FilterExpression="SK = :sk",
                    ExpressionAttributeValues={":sk": "DEFINITION"},
                    ExclusiveStartKey=response["LastEvaluatedKey"],
                )
                items.extend(response.get("Items", []))

        except ClientError as e:
            logger.error(f"Error listing roles: {e}")
            raise RoleStoreError(str(e), operation="list_roles") from e

        roles = [Role.from_dict(item) for item in items]
        if active_only:
            roles = [r for r in roles if r.is_active]
        return sort_roles(roles)

    async def get_role(self, role_id: str) -> Optional[Role]:
        try:
            response = self._table.get_item(
                Key={"PK": f"ROLE#{role_id}", "SK": "DEFINITION"}
            )
        except ClientError as e:
            logger.error(f"Error getting role {role_id}: {e}")
            raise RoleStoreError(str(e), operation="get_role") from e

        item = response.get("Item")
        return Role.from_dict(item) if item else None

    async def get_role_by_name(self, name: str) -> Optional[Role]:
        try:
            response = self._table.query(
                IndexName="RoleNameIndex",
                KeyConditionExpression="GSI1PK = :pk",
                ExpressionAttributeValues={":pk": f"ROLE_NAME#{name}"},
            )
        except ClientError as e:
            logger.error(f"Error querying role by name {name}: {e}")
            raise RoleStoreError(str(e), operation="get_role_by_name") from e

        items = response.get("Items", [])
        return Role.from_dict(items[0]) if items else None

    def _role_item(self, role: Role) -> Dict:
        return {
            "PK": f"ROLE#{role.id}",
            "SK": "DEFINITION",
            "GSI1PK": f"ROLE_NAME#{role.name}",
            "GSI1SK": "DEFINITION",
            **role.to_dict(),
        }

    async def create_role(self, role: Role) -> Role:
        if await self.get_role_by_name(role.name):
            raise ValueError(f"Role '{role.name}' already exists")

        now = to_iso(utc_now())
        role.created_at = now
        role.updated_at = now

        try:
            self._table.put_item(
                Item=self._role_item(role),
                ConditionExpression="attribute_not_exists(PK)",
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                raise ValueError(f"Role '{role.id}' already exists")
            logger.error(f"Error creating role {role.name}: {e}")
            raise RoleStoreError(str(e), operation="create_role") from e

        logger.info(f"Created role: {role.name}")
        return role

    async def update_role(self, role: Role) -> Role:
        existing = await self.get_role(role.id)
        if not existing:
            raise ValueError(f"Role '{role.id}' not found")

        role.created_at = existing.created_at
        role.updated_at = to_iso(utc_now())

        try:
            self._table.put_item(Item=self._role_item(role))
        except ClientError as e:
            logger.error(f"Error updating role {role.id}: {e}")
            raise RoleStoreError(str(e), operation="update_role") from e

        logger.info(f"Updated role: {role.name}")
        return role

    async def delete_role(self, role_id: str) -> bool:
        existing = await self.get_role(role_id)
        if not existing:
            return False
        if existing.is_system_role:
            raise ValueError(f"Cannot delete system role '{existing.name}'")

        existing.is_active = False
        await self.update_role(existing)
        logger.info(f"Deleted role: {existing.name}")
        return True

    # =========================================================================
    # Assignments
    # =========================================================================

    async def list_user_roles(
        self, user_id: str, active_only: bool = True
    ) -> List[UserRoleAssignment]:
        try:
            items = self._query_all(
                KeyConditionExpression="PK = :pk AND begins_with(SK, :sk)",
                ExpressionAttributeValues={":pk": f"USER#{user_id}", ":sk": "ROLE#"},
            )
        except ClientError as e:
            logger.error(f"Error listing roles for user {user_id}: {e}")
            raise RoleStoreError(str(e), operation="list_user_roles") from e

        now = utc_now()
        assignments = []
        for item in items:
            assignment = UserRoleAssignment.from_dict(item)
            if active_only and not assignment.is_effective(now):
                continue
            assignment.role = await self.get_role(assignment.role_id)
            assignments.append(assignment)

        return sorted(
            assignments,
            key=lambda a: (a.role.hierarchy_level if a.role else 999, a.role_id),
        )

    async def assign_role(
        self,
        user_id: str,
        role_id: str,
        assigned_by: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> UserRoleAssignment:
        role = await self.get_role(role_id)
        if not role or not role.is_active:
            raise ValueError(f"Role '{role_id}' not found or inactive")

        assignment = UserRoleAssignment(
            user_id=user_id,
            role_id=role_id,
            assigned_by=assigned_by,
            expires_at=expires_at,
            role=role,
        )
        try:
            # One item per (user, role): re-assigning overwrites and reactivates.
            self._table.put_item(
                Item={
                    "PK": f"USER#{user_id}",
                    "SK": f"ROLE#{role_id}",
                    **assignment.to_dict(),
                }
            )
        except ClientError as e:
            logger.error(f"Error assigning role {role_id} to {user_id}: {e}")
            raise RoleStoreError(str(e), operation="assign_role") from e

        return assignment

    async def revoke_role(self, user_id: str, role_id: str) -> bool:
        try:
            self._table.update_item(
                Key={"PK": f"USER#{user_id}", "SK": f"ROLE#{role_id}"},
                UpdateExpression="SET isActive = :inactive",
                ConditionExpression="attribute_exists(PK) AND isActive = :active",
                ExpressionAttributeValues={":inactive": False, ":active": True},
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                return False
            logger.error(f"Error revoking role {role_id} from {user_id}: {e}")
            raise RoleStoreError(str(e), operation="revoke_role") from e
        return True
