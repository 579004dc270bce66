"""Authorization and permission resolution engine."""

from .errors import (
    AuthenticationMissing,
    AuthorizationDenied,
    AuthorizationError,
    ContextUnavailable,
    DenialCode,
    InsufficientPermissions,
    RateLimitExceeded,
    RoleStoreError,
)
from .engine import AuthorizationDecision, AuthorizationEngine, AuthorizationOptions
from .settings import AuthzSettings, build_authorization_engine

__all__ = [
    "AuthenticationMissing",
    "AuthorizationDenied",
    "AuthorizationError",
    "ContextUnavailable",
    "DenialCode",
    "InsufficientPermissions",
    "RateLimitExceeded",
    "RoleStoreError",
    "AuthorizationDecision",
    "AuthorizationEngine",
    "AuthorizationOptions",
    "AuthzSettings",
    "build_authorization_engine",
]
