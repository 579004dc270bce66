"""Role-based access control: roles, assignments, resolution and caching."""

from .admin_service import RoleAdminService
from .cache import PermissionCache
from .hierarchy import highest_role, is_admin, is_super_admin, sort_roles
from .models import (
    ADMIN_ROLES,
    DEFAULT_ROLE,
    AssignRoleRequest,
    AuthorizationContext,
    CacheStatsResponse,
    PermissionLog,
    Role,
    RoleCreate,
    RoleListResponse,
    RoleResponse,
    RoleUpdate,
    UserPermissions,
    UserRoleAssignment,
    UserRoleResponse,
)
from .permissions import (
    Action,
    PermissionMap,
    Resource,
    format_permission,
    has_permission,
    merge_permissions,
    normalize_identifier,
    normalize_permissions,
)
from .repository import DynamoDBRoleStore
from .seeder import SYSTEM_ROLES, ensure_system_roles, seed_system_roles
from .service import PermissionService
from .store import InMemoryRoleStore, RoleStore

__all__ = [
    "RoleAdminService",
    "PermissionCache",
    "highest_role",
    "is_admin",
    "is_super_admin",
    "sort_roles",
    "ADMIN_ROLES",
    "DEFAULT_ROLE",
    "AssignRoleRequest",
    "AuthorizationContext",
    "CacheStatsResponse",
    "PermissionLog",
    "Role",
    "RoleCreate",
    "RoleListResponse",
    "RoleResponse",
    "RoleUpdate",
    "UserPermissions",
    "UserRoleAssignment",
    "UserRoleResponse",
    "Action",
    "PermissionMap",
    "Resource",
    "format_permission",
    "has_permission",
    "merge_permissions",
    "normalize_identifier",
    "normalize_permissions",
    "DynamoDBRoleStore",
    "SYSTEM_ROLES",
    "ensure_system_roles",
    "seed_system_roles",
    "PermissionService",
    "InMemoryRoleStore",
    "RoleStore",
]
