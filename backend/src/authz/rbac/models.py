"""Role, assignment and authorization-context models for the RBAC system."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field, field_validator

from .permissions import PermissionMap, normalize_permissions, permissions_to_dict

DEFAULT_ROLE = "user"
ADMIN_ROLES = frozenset({"admin", "super_admin"})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """
    Serialize a datetime as ISO-8601 with a trailing Z.

    Microseconds are always written so that values sort lexicographically
    in time order (store sort keys and window filters compare strings).
    """
    if value is None:
        return None
    return as_utc(value).isoformat(timespec="microseconds").replace("+00:00", "Z")


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Read naive datetimes as UTC; convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


@dataclass
class Role:
    """
    A named bundle of resource -> action grants plus a hierarchy level.

    hierarchy_level orders roles for display and "highest role" selection
    (1 = most privileged). It never grants permissions by itself: a role
    only allows what its own permission map lists.
    """

    name: str
    display_name: str
    permissions: PermissionMap = field(default_factory=dict)
    hierarchy_level: int = 4
    description: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    is_system_role: bool = False
    is_active: bool = True
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self):
        if self.hierarchy_level < 1:
            raise ValueError(
                f"hierarchy_level must be >= 1, got {self.hierarchy_level}"
            )
        self.permissions = normalize_permissions(self.permissions)

    def to_dict(self) -> dict:
        """Convert to dictionary for store persistence."""
        return {
            "roleId": self.id,
            "name": self.name,
            "displayName": self.display_name,
            "description": self.description,
            "permissions": permissions_to_dict(self.permissions),
            "hierarchyLevel": self.hierarchy_level,
            "isSystemRole": self.is_system_role,
            "isActive": self.is_active,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Role":
        """Create from dictionary (store item)."""
        return cls(
            id=data.get("roleId", ""),
            name=data.get("name", ""),
            display_name=data.get("displayName", ""),
            description=data.get("description"),
            permissions=data.get("permissions") or {},
            hierarchy_level=int(data.get("hierarchyLevel", 4)),
            is_system_role=data.get("isSystemRole", False),
            is_active=data.get("isActive", True),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
        )


@dataclass
class UserRoleAssignment:
    """Links a user to a role. Expired or inactive assignments grant nothing."""

    user_id: str
    role_id: str
    assigned_by: Optional[str] = None
    assigned_at: datetime = field(default_factory=utc_now)
    expires_at: Optional[datetime] = None
    is_active: bool = True
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    role: Optional[Role] = None

    def __post_init__(self):
        self.assigned_at = as_utc(self.assigned_at)
        self.expires_at = as_utc(self.expires_at)

    def is_effective(self, now: Optional[datetime] = None) -> bool:
        if not self.is_active:
            return False
        if self.expires_at is None:
            return True
        return as_utc(now or utc_now()) < self.expires_at

    def to_dict(self) -> dict:
        return {
            "assignmentId": self.id,
            "userId": self.user_id,
            "roleId": self.role_id,
            "assignedBy": self.assigned_by,
            "assignedAt": to_iso(self.assigned_at),
            "expiresAt": to_iso(self.expires_at),
            "isActive": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UserRoleAssignment":
        return cls(
            id=data.get("assignmentId", ""),
            user_id=data.get("userId", ""),
            role_id=data.get("roleId", ""),
            assigned_by=data.get("assignedBy"),
            assigned_at=parse_iso(data.get("assignedAt")) or utc_now(),
            expires_at=parse_iso(data.get("expiresAt")),
            is_active=data.get("isActive", True),
        )


@dataclass
class UserPermissions:
    """Merged permissions across a user's effective assignments."""

    permissions: PermissionMap
    roles: List[str]
    checked_at: str

    def to_dict(self) -> dict:
        return {
            "permissions": permissions_to_dict(self.permissions),
            "roles": self.roles,
            "checkedAt": self.checked_at,
        }


@dataclass
class PermissionLog:
    """A durable record of a permission check or an access denial."""

    user_id: Optional[str]
    action: str
    resource: str
    granted: bool
    resource_id: Optional[str] = None
    reason: Optional[str] = None
    role_used: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "logId": self.id,
            "userId": self.user_id,
            "action": self.action,
            "resource": self.resource,
            "resourceId": self.resource_id,
            "granted": self.granted,
            "reason": self.reason,
            "roleUsed": self.role_used,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "createdAt": to_iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PermissionLog":
        return cls(
            id=data.get("logId", ""),
            user_id=data.get("userId"),
            action=data.get("action", ""),
            resource=data.get("resource", ""),
            resource_id=data.get("resourceId"),
            granted=data.get("granted", False),
            reason=data.get("reason"),
            role_used=data.get("roleUsed"),
            ip_address=data.get("ipAddress"),
            user_agent=data.get("userAgent"),
            created_at=parse_iso(data.get("createdAt")) or utc_now(),
        )


@dataclass(frozen=True)
class AuthorizationContext:
    """
    Resolved identity used for authorization decisions.

    user_role is the highest-privilege role; roles holds every active role
    name so admin checks see all of them. Lives only in process memory.
    """

    user_id: str
    user_role: str = DEFAULT_ROLE
    roles: FrozenSet[str] = frozenset()
    permissions: PermissionMap = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    resolved_at: str = ""

    @property
    def role_set(self) -> FrozenSet[str]:
        return self.roles | {self.user_role}

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "userRole": self.user_role,
            "roles": sorted(self.role_set),
            "permissions": permissions_to_dict(self.permissions),
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "resolvedAt": self.resolved_at,
        }


# =============================================================================
# Pydantic Models for API Request/Response
# =============================================================================


class RoleCreate(BaseModel):
    """Request body for creating a new role."""

    name: str = Field(..., pattern=r"^[a-z][a-z0-9_]{2,49}$")
    display_name: str = Field(..., min_length=1, max_length=100, alias="displayName")
    description: Optional[str] = Field(None, max_length=500)
    permissions: Dict[str, List[str]] = Field(default_factory=dict)
    hierarchy_level: int = Field(4, ge=1, le=99, alias="hierarchyLevel")
    is_active: bool = Field(True, alias="isActive")

    model_config = {"populate_by_name": True}

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, value: Dict[str, List[str]]) -> Dict[str, List[str]]:
        return permissions_to_dict(normalize_permissions(value))


class RoleUpdate(BaseModel):
    """Request body for updating a role (partial update)."""

    display_name: Optional[str] = Field(
        None, min_length=1, max_length=100, alias="displayName"
    )
    description: Optional[str] = Field(None, max_length=500)
    permissions: Optional[Dict[str, List[str]]] = None
    hierarchy_level: Optional[int] = Field(None, ge=1, le=99, alias="hierarchyLevel")
    is_active: Optional[bool] = Field(None, alias="isActive")

    model_config = {"populate_by_name": True}

    @field_validator("permissions")
    @classmethod
    def validate_permissions(
        cls, value: Optional[Dict[str, List[str]]]
    ) -> Optional[Dict[str, List[str]]]:
        if value is None:
            return None
        return permissions_to_dict(normalize_permissions(value))


class RoleResponse(BaseModel):
    """Response model for a role."""

    id: str
    name: str
    display_name: str = Field(..., alias="displayName")
    description: Optional[str] = None
    permissions: Dict[str, List[str]]
    hierarchy_level: int = Field(..., alias="hierarchyLevel")
    is_system_role: bool = Field(..., alias="isSystemRole")
    is_active: bool = Field(..., alias="isActive")
    created_at: str = Field(..., alias="createdAt")
    updated_at: str = Field(..., alias="updatedAt")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(
            id=role.id,
            name=role.name,
            display_name=role.display_name,
            description=role.description,
            permissions=permissions_to_dict(role.permissions),
            hierarchy_level=role.hierarchy_level,
            is_system_role=role.is_system_role,
            is_active=role.is_active,
            created_at=role.created_at,
            updated_at=role.updated_at,
        )


class RoleListResponse(BaseModel):
    """Response model for listing roles."""

    roles: List[RoleResponse]
    total: int


class AssignRoleRequest(BaseModel):
    """Request body for assigning a role to a user."""

    role_id: str = Field(..., alias="roleId")
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")

    model_config = {"populate_by_name": True}

    @field_validator("expires_at")
    @classmethod
    def validate_expires_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class UserRoleResponse(BaseModel):
    """Response model for a user-role assignment."""

    id: str
    user_id: str = Field(..., alias="userId")
    role_id: str = Field(..., alias="roleId")
    role_name: Optional[str] = Field(None, alias="roleName")
    assigned_by: Optional[str] = Field(None, alias="assignedBy")
    assigned_at: str = Field(..., alias="assignedAt")
    expires_at: Optional[str] = Field(None, alias="expiresAt")
    is_active: bool = Field(..., alias="isActive")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_assignment(cls, assignment: UserRoleAssignment) -> "UserRoleResponse":
        return cls(
            id=assignment.id,
            user_id=assignment.user_id,
            role_id=assignment.role_id,
            role_name=assignment.role.name if assignment.role else None,
            assigned_by=assignment.assigned_by,
            assigned_at=to_iso(assignment.assigned_at),
            expires_at=to_iso(assignment.expires_at),
            is_active=assignment.is_active,
        )


class CacheStatsResponse(BaseModel):
    """Permission cache statistics response."""

    user_cache_size: int = Field(..., alias="userCacheSize")
    user_cache_expired: int = Field(..., alias="userCacheExpired")
    hits: int
    misses: int
    invalidations: int

    model_config = {"populate_by_name": True}
