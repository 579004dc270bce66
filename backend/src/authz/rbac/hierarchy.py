"""Role hierarchy resolution over already-resolved data (no store calls)."""

from typing import Iterable, List, Optional

from .models import ADMIN_ROLES, AuthorizationContext, Role

SUPER_ADMIN_ROLE = "super_admin"


def _sort_key(role: Role):
    return (role.hierarchy_level, role.id)


def sort_roles(roles: Iterable[Role]) -> List[Role]:
    """Most privileged first; equal levels ordered by role id."""
    return sorted(roles, key=_sort_key)


def highest_role(roles: Iterable[Role]) -> Optional[Role]:
    """Return the role with the lowest hierarchy_level, or None."""
    return min(roles, key=_sort_key, default=None)


def is_admin(context: AuthorizationContext) -> bool:
    """True if any of the user's active roles is admin or super_admin."""
    return bool(context.role_set & ADMIN_ROLES)


def is_super_admin(context: AuthorizationContext) -> bool:
    return SUPER_ADMIN_ROLE in context.role_set
