"""Admin API routes for role and assignment management."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from authz.auth.models import User
from authz.engine import AuthorizationEngine
from authz.rate_limit.models import RateLimitProfile
from authz.rbac.admin_service import RoleAdminService
from authz.rbac.models import (
    AssignRoleRequest,
    CacheStatsResponse,
    RoleCreate,
    RoleListResponse,
    RoleResponse,
    RoleUpdate,
    UserRoleResponse,
)
from authz.rbac.permissions import Action, Resource

from .dependencies import (
    get_authorization_engine,
    get_role_admin_service,
    require_authorized_user,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/roles", tags=["admin-roles"])

require_role_reader = require_authorized_user(
    Resource.SYSTEM, Action.MANAGE_ALL, RateLimitProfile.GENERAL
)
require_role_manager = require_authorized_user(
    Resource.SYSTEM, Action.MANAGE_ALL, RateLimitProfile.SENSITIVE
)
require_user_reader = require_authorized_user(
    Resource.USERS, Action.READ, RateLimitProfile.GENERAL
)
require_user_manager = require_authorized_user(
    Resource.USERS, Action.UPDATE, RateLimitProfile.SENSITIVE
)


@router.get("/", response_model=RoleListResponse)
async def list_roles(
    active_only: bool = Query(False, description="Only return active roles"),
    admin: User = Depends(require_role_reader),
    service: RoleAdminService = Depends(get_role_admin_service),
):
    """
    List all roles, most privileged first.

    Requires system.manage_all.
    """
    logger.info(f"Admin {admin.email or admin.user_id} listing roles")

    roles = await service.list_roles(active_only=active_only)
    return RoleListResponse(
        roles=[RoleResponse.from_role(r) for r in roles],
        total=len(roles),
    )


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def get_cache_stats(
    admin: User = Depends(require_role_reader),
    engine: AuthorizationEngine = Depends(get_authorization_engine),
):
    """Get permission cache statistics."""
    logger.info(f"Admin {admin.email or admin.user_id} getting cache stats")
    return CacheStatsResponse(**engine.cache.get_stats())


@router.post("/cache/invalidate", status_code=status.HTTP_204_NO_CONTENT)
async def invalidate_cache(
    admin: User = Depends(require_role_manager),
    engine: AuthorizationEngine = Depends(get_authorization_engine),
):
    """Force invalidation of every cached authorization context."""
    logger.info(f"Admin {admin.email or admin.user_id} invalidating all caches")
    engine.invalidate_all()


@router.get("/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: str,
    admin: User = Depends(require_role_reader),
    service: RoleAdminService = Depends(get_role_admin_service),
):
    """
    Get a role by ID.

    Raises:
        HTTPException: 404 if role not found
    """
    logger.info(f"Admin {admin.email or admin.user_id} getting role: {role_id}")

    role = await service.get_role(role_id)
    if not role:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Role '{role_id}' not found",
        )
    return RoleResponse.from_role(role)


@router.post("/", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role_data: RoleCreate,
    admin: User = Depends(require_role_manager),
    service: RoleAdminService = Depends(get_role_admin_service),
):
    """
    Create a new role.

    Raises:
        HTTPException: 400 if role already exists or validation fails
    """
    logger.info(f"Admin {admin.email or admin.user_id} creating role: {role_data.name}")

    try:
        role = await service.create_role(role_data, admin)
        return RoleResponse.from_role(role)

    except ValueError as e:
        logger.warning(f"Role creation failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )


@router.patch("/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    updates: RoleUpdate,
    admin: User = Depends(require_role_manager),
    service: RoleAdminService = Depends(get_role_admin_service),
):
    """
    Update a role. System roles only accept display, description and
    permission changes.

    Raises:
        HTTPException:
            - 400 if validation fails
            - 404 if role not found
    """
    logger.info(f"Admin {admin.email or admin.user_id} updating role: {role_id}")

    try:
        role = await service.update_role(role_id, updates, admin)
    except ValueError as e:
        logger.warning(f"Role update failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    if not role:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Role '{role_id}' not found",
        )
    return RoleResponse.from_role(role)


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    admin: User = Depends(require_role_manager),
    service: RoleAdminService = Depends(get_role_admin_service),
):
    """
    Deactivate a role. System roles cannot be deleted.

    Raises:
        HTTPException:
            - 400 if trying to delete a system role
            - 404 if role not found
    """
    logger.info(f"Admin {admin.email or admin.user_id} deleting role: {role_id}")

    try:
        success = await service.delete_role(role_id, admin)
    except ValueError as e:
        logger.warning(f"Role deletion failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    if not success:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Role '{role_id}' not found",
        )


# =============================================================================
# User role assignments
# =============================================================================


@router.get("/users/{user_id}", response_model=List[UserRoleResponse])
async def list_user_roles(
    user_id: str,
    active_only: bool = Query(True, description="Only return effective assignments"),
    admin: User = Depends(require_user_reader),
    service: RoleAdminService = Depends(get_role_admin_service),
):
    """List a user's role assignments, most privileged first."""
    logger.info(f"Admin {admin.email or admin.user_id} listing roles of user: {user_id}")

    assignments = await service.list_user_roles(user_id, active_only=active_only)
    return [UserRoleResponse.from_assignment(a) for a in assignments]


@router.post(
    "/users/{user_id}",
    response_model=UserRoleResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_role(
    user_id: str,
    assign_data: AssignRoleRequest,
    admin: User = Depends(require_user_manager),
    service: RoleAdminService = Depends(get_role_admin_service),
):
    """
    Assign a role to a user.

    Raises:
        HTTPException: 400 if the role does not exist or is inactive
    """
    logger.info(
        f"Admin {admin.email or admin.user_id} assigning role {assign_data.role_id} to {user_id}"
    )

    try:
        assignment = await service.assign_role(
            user_id, assign_data.role_id, admin, expires_at=assign_data.expires_at
        )
    except ValueError as e:
        logger.warning(f"Role assignment failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    return UserRoleResponse.from_assignment(assignment)


@router.delete("/users/{user_id}/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_role(
    user_id: str,
    role_id: str,
    admin: User = Depends(require_user_manager),
    service: RoleAdminService = Depends(get_role_admin_service),
):
    """
    Revoke a role from a user.

    Raises:
        HTTPException: 404 if the user does not hold the role
    """
    logger.info(f"Admin {admin.email or admin.user_id} revoking role {role_id} from {user_id}")

    if not await service.revoke_role(user_id, role_id, admin):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User '{user_id}' has no active role '{role_id}'",
        )
