"""PermissionService for resolving contexts and answering permission queries."""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from .cache import PermissionCache
from .hierarchy import highest_role
from .models import (
    DEFAULT_ROLE,
    AuthorizationContext,
    PermissionLog,
    Role,
    UserRoleAssignment,
    to_iso,
    utc_now,
)
from .permissions import normalize_permissions
from .store import RoleStore

logger = logging.getLogger(__name__)

PermissionCheck = Tuple[str, str]


class PermissionService:
    """
    Resolves a user's AuthorizationContext and answers permission queries.

    Context resolution goes through the PermissionCache; point checks always
    ask the store.
    """

    def __init__(
        self,
        store: RoleStore,
        cache: Optional[PermissionCache] = None,
        default_role: str = DEFAULT_ROLE,
    ):
        self.store = store
        self.cache = cache if cache is not None else PermissionCache()
        self.default_role = default_role

    async def resolve_context(
        self, user_id: str, force_refresh: bool = False
    ) -> Optional[AuthorizationContext]:
        """
        Resolve the authorization context for a user.

        Algorithm:
        1. Check cache (skipped with force_refresh)
        2. Ask the store for the highest role and the merged permission map
        3. Cache and return

        Returns:
            The context, or None if the store could not resolve it
        """
        if force_refresh:
            self.cache.invalidate(user_id)
        return await self.cache.get_or_load(user_id, lambda: self._load_context(user_id))

    async def _load_context(self, user_id: str) -> Optional[AuthorizationContext]:
        try:
            user_role = await self.store.get_user_role(user_id)
            user_permissions = await self.store.get_user_permissions(user_id)
        except Exception as e:
            logger.error(f"Erro ao obter contexto do usuário {user_id}: {e}")
            return None

        if user_permissions is None:
            return None

        try:
            permissions = normalize_permissions(user_permissions.permissions)
        except ValueError as e:
            logger.error(f"Malformed permission map for user {user_id}: {e}")
            return None

        context = AuthorizationContext(
            user_id=user_id,
            user_role=user_role or self.default_role,
            roles=frozenset(user_permissions.roles or ()),
            permissions=permissions,
            resolved_at=to_iso(utc_now()),
        )
        logger.debug(
            f"Resolved context for {user_id}: role={context.user_role}, "
            f"roles={sorted(context.roles)}, resources={len(permissions)}"
        )
        return context

    # =========================================================================
    # Permission queries
    # =========================================================================

    async def check_permission(
        self, user_id: str, resource: str, action: str, log_check: bool = True
    ) -> bool:
        """Point check against the store. Store errors answer False."""
        try:
            granted = bool(await self.store.check_user_permission(user_id, resource, action))
        except Exception as e:
            logger.error(f"Erro ao verificar permissão {resource}.{action}: {e}")
            return False

        if log_check:
            try:
                await self.store.log_permission_check(user_id, action, resource, granted)
            except Exception as e:
                logger.warning(f"Erro ao registrar log de permissão: {e}")

        return granted

    async def check_multiple_permissions(
        self, user_id: str, checks: Iterable[PermissionCheck]
    ) -> Dict[str, bool]:
        """Run several checks concurrently; keys are ``resource.action``."""
        checks = list(checks)
        results = await asyncio.gather(
            *(self.check_permission(user_id, r, a, log_check=False) for r, a in checks)
        )
        return {f"{r}.{a}": granted for (r, a), granted in zip(checks, results)}

    async def has_any_permission(self, user_id: str, checks: Iterable[PermissionCheck]) -> bool:
        results = await self.check_multiple_permissions(user_id, checks)
        return any(results.values())

    async def has_all_permissions(self, user_id: str, checks: Iterable[PermissionCheck]) -> bool:
        results = await self.check_multiple_permissions(user_id, checks)
        return all(results.values())

    # =========================================================================
    # Roles
    # =========================================================================

    async def get_user_roles(self, user_id: str) -> List[UserRoleAssignment]:
        return await self.store.list_user_roles(user_id)

    async def get_highest_role(self, user_id: str) -> Optional[Role]:
        assignments = await self.store.list_user_roles(user_id)
        return highest_role(a.role for a in assignments if a.role and a.role.is_active)

    async def get_permission_logs(
        self,
        user_id: Optional[str] = None,
        resource: Optional[str] = None,
        action: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[PermissionLog]:
        return await self.store.list_permission_logs(
            user_id=user_id, resource=resource, action=action, limit=limit
        )
