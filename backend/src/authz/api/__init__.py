"""HTTP surface for the authorization engine."""

from .app import create_app
from .dependencies import (
    denial_to_http,
    get_authorization_engine,
    get_role_admin_service,
    require_authorization,
    require_authorized_user,
)
from .roles import router as roles_router

__all__ = [
    "create_app",
    "denial_to_http",
    "get_authorization_engine",
    "get_role_admin_service",
    "require_authorization",
    "require_authorized_user",
    "roles_router",
]
