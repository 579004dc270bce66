"""Role/Permission Store contract and in-memory implementation."""

import logging
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional, Tuple

from .hierarchy import highest_role, sort_roles
from .models import (
    DEFAULT_ROLE,
    PermissionLog,
    Role,
    UserPermissions,
    UserRoleAssignment,
    as_utc,
    to_iso,
    utc_now,
)
from .permissions import PermissionMap, has_permission, merge_permissions

logger = logging.getLogger(__name__)

DEFAULT_IP_ADDRESS = "0.0.0.0"


class RoleStore(ABC):
    """
    Durable storage of roles and user-role assignments plus the remote
    primitives the authorization engine relies on.

    authorize_operation is the authoritative check. Everything the engine
    evaluates locally before calling it is an optimization.

    Implementations raise RoleStoreError when the backend fails.
    """

    # =========================================================================
    # Authorization primitives
    # =========================================================================

    @abstractmethod
    async def get_user_role(self, user_id: str) -> str:
        """Highest-privilege active role name, or the default role."""

    @abstractmethod
    async def get_user_permissions(self, user_id: str) -> UserPermissions:
        """Merged permission map across the user's active assignments."""

    @abstractmethod
    async def check_user_permission(
        self, user_id: str, resource: str, action: str
    ) -> bool:
        pass

    @abstractmethod
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
        """
        Authoritative composite permission (and optional rate) check.

        With ip_address the rate window is the same (user, action, resource,
        ip) window check_rate_limit records into; without it every IP counts.
        """

    @abstractmethod
    async def check_rate_limit(
        self,
        user_id: str,
        ip_address: str,
        action: str,
        resource: str,
        max_requests: int,
        window_minutes: int,
    ) -> bool:
        """Count this request and report whether it is within budget."""

    @abstractmethod
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
        pass

    @abstractmethod
    async def log_permission_check(
        self,
        user_id: Optional[str],
        action: str,
        resource: str,
        granted: bool,
        resource_id: Optional[str] = None,
        role_used: Optional[str] = None,
    ):
        pass

    @abstractmethod
    async def list_permission_logs(
        self,
        user_id: Optional[str] = None,
        resource: Optional[str] = None,
        action: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[PermissionLog]:
        """Newest first."""

    # =========================================================================
    # Role and assignment management
    # =========================================================================

    @abstractmethod
    async def list_roles(self, active_only: bool = False) -> List[Role]:
        """Roles ordered by hierarchy level."""

    @abstractmethod
    async def get_role(self, role_id: str) -> Optional[Role]:
        pass

    @abstractmethod
    async def get_role_by_name(self, name: str) -> Optional[Role]:
        pass

    @abstractmethod
    async def create_role(self, role: Role) -> Role:
        """Raises ValueError if a role with the same name exists."""

    @abstractmethod
    async def update_role(self, role: Role) -> Role:
        """Raises ValueError if the role does not exist."""

    @abstractmethod
    async def delete_role(self, role_id: str) -> bool:
        """Deactivate a role. Raises ValueError for system roles."""

    @abstractmethod
    async def list_user_roles(
        self, user_id: str, active_only: bool = True
    ) -> List[UserRoleAssignment]:
        """Assignments with their role attached, most privileged first."""

    @abstractmethod
    async def assign_role(
        self,
        user_id: str,
        role_id: str,
        assigned_by: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> UserRoleAssignment:
        """Raises ValueError if the role does not exist or is inactive."""

    @abstractmethod
    async def revoke_role(self, user_id: str, role_id: str) -> bool:
        pass


class InMemoryRoleStore(RoleStore):
    """
    In-memory store (for single-instance/local development and tests).

    Methods contain no await points, so each one runs atomically on the
    event loop.
    """

    def __init__(
        self,
        default_role: str = DEFAULT_ROLE,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.default_role = default_role
        self._clock = clock or utc_now
        self._roles: Dict[str, Role] = {}
        self._assignments: Dict[str, UserRoleAssignment] = {}
        # (user_id, action, resource, ip) -> request timestamps
        self._windows: Dict[Tuple[str, str, str, str], Deque[datetime]] = {}
        self._logs: List[PermissionLog] = []

    # =========================================================================
    # Resolution helpers
    # =========================================================================

    def _effective_roles(self, user_id: str) -> List[Role]:
        now = self._clock()
        roles = []
        for assignment in self._assignments.values():
            if assignment.user_id != user_id or not assignment.is_effective(now):
                continue
            role = self._roles.get(assignment.role_id)
            if role and role.is_active:
                roles.append(role)

        if not roles:
            default = self._find_role_by_name(self.default_role)
            if default and default.is_active:
                roles = [default]
        return sort_roles(roles)

    def _merged_permissions(self, user_id: str) -> PermissionMap:
        return merge_permissions(r.permissions for r in self._effective_roles(user_id))

    def _find_role_by_name(self, name: str) -> Optional[Role]:
        for role in self._roles.values():
            if role.name == name:
                return role
        return None

    def _pruned_window(
        self, key: Tuple[str, str, str, str], window_minutes: int, now: datetime
    ) -> Deque[datetime]:
        """Drop timestamps outside the window; empty windows are removed."""
        window = self._windows.get(key)
        if window is None:
            return deque()
        cutoff = now - timedelta(minutes=window_minutes)
        while window and window[0] <= cutoff:
            window.popleft()
        if not window:
            del self._windows[key]
        return window

    # =========================================================================
    # Authorization primitives
    # =========================================================================

    async def get_user_role(self, user_id: str) -> str:
        top = highest_role(self._effective_roles(user_id))
        return top.name if top else self.default_role

    async def get_user_permissions(self, user_id: str) -> UserPermissions:
        roles = self._effective_roles(user_id)
        return UserPermissions(
            permissions=merge_permissions(r.permissions for r in roles),
            roles=[r.name for r in roles],
            checked_at=to_iso(self._clock()),
        )

    async def check_user_permission(
        self, user_id: str, resource: str, action: str
    ) -> bool:
        return has_permission(self._merged_permissions(user_id), resource, action)

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
            # The current request was already counted by check_rate_limit,
            # so the budget is exceeded only when the count goes past the max.
            now = self._clock()
            used = 0
            for key in list(self._windows):
                uid, act, res, ip = key
                if (uid, act, res) != (user_id, action, resource):
                    continue
                if ip_address is not None and ip != ip_address:
                    continue
                used += len(self._pruned_window(key, window_minutes, now))
            if used > max_requests:
                logger.info(
                    f"authorize_operation rate budget exceeded for {user_id} "
                    f"on {resource}.{action}: {used}/{max_requests}"
                )
                return False

        return has_permission(self._merged_permissions(user_id), resource, action)

    async def check_rate_limit(
        self,
        user_id: str,
        ip_address: str,
        action: str,
        resource: str,
        max_requests: int,
        window_minutes: int,
    ) -> bool:
        now = self._clock()
        key = (user_id, action, resource, ip_address or DEFAULT_IP_ADDRESS)
        window = self._pruned_window(key, window_minutes, now)
        if len(window) >= max_requests:
            return False
        window.append(now)
        self._windows[key] = window
        return True

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
        self._logs.append(
            PermissionLog(
                user_id=user_id,
                action=action,
                resource=resource,
                resource_id=resource_id,
                granted=False,
                reason=reason,
                ip_address=ip_address,
                user_agent=user_agent,
                created_at=self._clock(),
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
        self._logs.append(
            PermissionLog(
                user_id=user_id,
                action=action,
                resource=resource,
                resource_id=resource_id,
                granted=granted,
                role_used=role_used,
                created_at=self._clock(),
            )
        )

    async def list_permission_logs(
        self,
        user_id: Optional[str] = None,
        resource: Optional[str] = None,
        action: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[PermissionLog]:
        logs = [
            log for log in reversed(self._logs)
            if (user_id is None or log.user_id == user_id)
            and (resource is None or log.resource == resource)
            and (action is None or log.action == action)
        ]
        return logs[:limit] if limit else logs

    # =========================================================================
    # Role and assignment management
    # =========================================================================

    async def list_roles(self, active_only: bool = False) -> List[Role]:
        roles = [r for r in self._roles.values() if r.is_active or not active_only]
        return sort_roles(roles)

    async def get_role(self, role_id: str) -> Optional[Role]:
        return self._roles.get(role_id)

    async def get_role_by_name(self, name: str) -> Optional[Role]:
        return self._find_role_by_name(name)

    async def create_role(self, role: Role) -> Role:
        if role.id in self._roles or self._find_role_by_name(role.name):
            raise ValueError(f"Role '{role.name}' already exists")
        now = to_iso(self._clock())
        role.created_at = now
        role.updated_at = now
        self._roles[role.id] = role
        logger.info(f"Created role: {role.name}")
        return role

    async def update_role(self, role: Role) -> Role:
        existing = self._roles.get(role.id)
        if not existing:
            raise ValueError(f"Role '{role.id}' not found")
        role.created_at = existing.created_at
        role.updated_at = to_iso(self._clock())
        self._roles[role.id] = role
        logger.info(f"Updated role: {role.name}")
        return role

    async def delete_role(self, role_id: str) -> bool:
        existing = self._roles.get(role_id)
        if not existing:
            return False
        if existing.is_system_role:
            raise ValueError(f"Cannot delete system role '{existing.name}'")
        existing.is_active = False
        existing.updated_at = to_iso(self._clock())
        logger.info(f"Deleted role: {existing.name}")
        return True

    async def list_user_roles(
        self, user_id: str, active_only: bool = True
    ) -> List[UserRoleAssignment]:
        now = self._clock()
        assignments = []
        for assignment in self._assignments.values():
            if assignment.user_id != user_id:
                continue
            if active_only and not assignment.is_effective(now):
                continue
            assignment.role = self._roles.get(assignment.role_id)
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
        role = self._roles.get(role_id)
        if not role or not role.is_active:
            raise ValueError(f"Role '{role_id}' not found or inactive")

        for assignment in self._assignments.values():
            if assignment.user_id == user_id and assignment.role_id == role_id:
                assignment.is_active = True
                assignment.assigned_by = assigned_by
                assignment.assigned_at = self._clock()
                assignment.expires_at = as_utc(expires_at)
                assignment.role = role
                return assignment

        assignment = UserRoleAssignment(
            user_id=user_id,
            role_id=role_id,
            assigned_by=assigned_by,
            assigned_at=self._clock(),
            expires_at=expires_at,
            role=role,
        )
        self._assignments[assignment.id] = assignment
        return assignment

    async def revoke_role(self, user_id: str, role_id: str) -> bool:
        revoked = False
        for assignment in self._assignments.values():
            if (
                assignment.user_id == user_id
                and assignment.role_id == role_id
                and assignment.is_active
            ):
                assignment.is_active = False
                revoked = True
        return revoked
