"""Admin service for role and assignment management."""

import logging
from datetime import datetime
from typing import List, Optional

from authz.auth.models import User

from .cache import PermissionCache
from .models import Role, RoleCreate, RoleUpdate, UserRoleAssignment
from .store import RoleStore

logger = logging.getLogger(__name__)

# Fields that may still change on a system role.
SYSTEM_ROLE_EDITABLE_FIELDS = {"display_name", "description", "permissions"}
# Fields an explicit null in a PATCH body resets.
CLEARABLE_FIELDS = {"description"}


class RoleAdminService:
    """
    Service for administrative operations on roles and assignments.

    Handles:
    - CRUD operations for roles
    - Assigning and revoking roles
    - Cache invalidation on every mutation
    - System role protection

    Invalidation runs right after the store write succeeds, before the
    method returns: per-user for assignment changes, global for role
    definition changes since those affect every holder of the role.
    """

    def __init__(self, store: RoleStore, cache: PermissionCache):
        self.store = store
        self.cache = cache

    # =========================================================================
    # Role CRUD
    # =========================================================================

    async def list_roles(self, active_only: bool = False) -> List[Role]:
        return await self.store.list_roles(active_only=active_only)

    async def get_role(self, role_id: str) -> Optional[Role]:
        return await self.store.get_role(role_id)

    async def create_role(self, role_data: RoleCreate, admin: User) -> Role:
        """
        Create a new role.

        Args:
            role_data: Role creation data
            admin: Admin user performing the action

        Returns:
            Created Role

        Raises:
            ValueError: If a role with the same name already exists
        """
        role = Role(
            name=role_data.name,
            display_name=role_data.display_name,
            description=role_data.description,
            permissions=role_data.permissions,
            hierarchy_level=role_data.hierarchy_level,
            is_active=role_data.is_active,
            is_system_role=False,
        )

        created = await self.store.create_role(role)

        # New roles have no holders yet, nothing to invalidate.
        logger.info(
            f"Admin {admin.email or admin.user_id} created role: {role.name}",
            extra={
                "event": "role_created",
                "role_id": created.id,
                "role_name": created.name,
                "admin_user_id": admin.user_id,
            },
        )
        return created

    async def update_role(
        self, role_id: str, updates: RoleUpdate, admin: User
    ) -> Optional[Role]:
        """
        Update a role.

        Returns:
            Updated Role or None if not found

        Raises:
            ValueError: If trying to modify protected fields of a system role
        """
        existing = await self.store.get_role(role_id)
        if not existing:
            return None

        update_dict = updates.model_dump(exclude_unset=True, by_alias=False)

        if existing.is_system_role:
            invalid_fields = set(update_dict.keys()) - SYSTEM_ROLE_EDITABLE_FIELDS
            if invalid_fields:
                raise ValueError(
                    f"Cannot modify protected fields on system role "
                    f"'{existing.name}': {sorted(invalid_fields)}"
                )

        # Rebuild through the dataclass so permissions and level get validated.
        data = {
            "id": existing.id,
            "name": existing.name,
            "display_name": existing.display_name,
            "description": existing.description,
            "permissions": existing.permissions,
            "hierarchy_level": existing.hierarchy_level,
            "is_system_role": existing.is_system_role,
            "is_active": existing.is_active,
            "created_at": existing.created_at,
        }
        data.update(
            {k: v for k, v in update_dict.items() if v is not None or k in CLEARABLE_FIELDS}
        )
        updated = await self.store.update_role(Role(**data))

        self.cache.invalidate_all()

        logger.info(
            f"Admin {admin.email or admin.user_id} updated role: {existing.name}",
            extra={
                "event": "role_updated",
                "role_id": role_id,
                "admin_user_id": admin.user_id,
                "changes": sorted(update_dict.keys()),
            },
        )
        return updated

    async def delete_role(self, role_id: str, admin: User) -> bool:
        """
        Deactivate a role.

        Returns:
            True if deleted, False if not found

        Raises:
            ValueError: If trying to delete a system role
        """
        existing = await self.store.get_role(role_id)
        if not existing:
            return False

        if existing.is_system_role:
            raise ValueError(f"Cannot delete system role: {existing.name}")

        deleted = await self.store.delete_role(role_id)

        if deleted:
            self.cache.invalidate_all()
            logger.info(
                f"Admin {admin.email or admin.user_id} deleted role: {existing.name}",
                extra={
                    "event": "role_deleted",
                    "role_id": role_id,
                    "admin_user_id": admin.user_id,
                },
            )

        return deleted

    # =========================================================================
    # Assignments
    # =========================================================================

    async def list_user_roles(
        self, user_id: str, active_only: bool = True
    ) -> List[UserRoleAssignment]:
        return await self.store.list_user_roles(user_id, active_only=active_only)

    async def assign_role(
        self,
        user_id: str,
        role_id: str,
        admin: User,
        expires_at: Optional[datetime] = None,
    ) -> UserRoleAssignment:
        """
        Assign a role to a user.

        Raises:
            ValueError: If the role does not exist or is inactive
        """
        assignment = await self.store.assign_role(
            user_id, role_id, assigned_by=admin.user_id, expires_at=expires_at
        )
        self.cache.invalidate(user_id)

        logger.info(
            f"Admin {admin.email or admin.user_id} assigned role {role_id} to {user_id}",
            extra={
                "event": "role_assigned",
                "role_id": role_id,
                "user_id": user_id,
                "admin_user_id": admin.user_id,
                "expires_at": expires_at.isoformat() if expires_at else None,
            },
        )
        return assignment

    async def revoke_role(self, user_id: str, role_id: str, admin: User) -> bool:
        """Revoke a role from a user. Returns False if nothing was active."""
        revoked = await self.store.revoke_role(user_id, role_id)

        # Invalidate even when nothing changed: the caller expects fresh state.
        self.cache.invalidate(user_id)

        if revoked:
            logger.info(
                f"Admin {admin.email or admin.user_id} revoked role {role_id} from {user_id}",
                extra={
                    "event": "role_revoked",
                    "role_id": role_id,
                    "user_id": user_id,
                    "admin_user_id": admin.user_id,
                },
            )
        return revoked
