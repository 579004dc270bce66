"""Environment-driven configuration and default wiring for the engine."""

import os
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from authz.audit.emitter import AuditEmitter
from authz.audit.sinks import (
    AuditSink,
    CompositeAuditSink,
    InMemoryAuditSink,
    LoggingAuditSink,
    RoleStoreAuditSink,
)
from authz.auth.session import ContextVarSessionProvider, SessionProvider
from authz.engine import AuthorizationEngine
from authz.rate_limit.limiter import LocalRateCounter, RateLimiter
from authz.rbac.cache import PermissionCache
from authz.rbac.models import DEFAULT_ROLE
from authz.rbac.repository import DynamoDBRoleStore
from authz.rbac.store import InMemoryRoleStore, RoleStore

logger = logging.getLogger(__name__)

STORE_BACKENDS = ("memory", "dynamodb")
AUDIT_SINKS = ("logging", "memory", "store")


@dataclass
class AuthzSettings:
    """
    Settings for the authorization engine.

    ENABLE_AUTHENTICATION is not part of this object; the auth dependency
    reads it per request.
    """

    cache_ttl_minutes: int = 5
    store_backend: str = "memory"
    table_name: str = "authz-roles"
    aws_region: str = "us-west-2"
    audit_sink: str = "logging"
    local_rate_limit: bool = False
    default_role: str = DEFAULT_ROLE

    def __post_init__(self):
        if self.store_backend not in STORE_BACKENDS:
            raise ValueError(
                f"Unknown AUTHZ_STORE_BACKEND '{self.store_backend}', "
                f"expected one of {STORE_BACKENDS}"
            )
        if self.audit_sink not in AUDIT_SINKS:
            raise ValueError(
                f"Unknown AUTHZ_AUDIT_SINK '{self.audit_sink}', "
                f"expected one of {AUDIT_SINKS}"
            )
        if self.cache_ttl_minutes < 0:
            raise ValueError("AUTHZ_USER_CACHE_TTL_MINUTES must not be negative")

    @classmethod
    def from_env(cls) -> "AuthzSettings":
        return cls(
            cache_ttl_minutes=int(os.environ.get("AUTHZ_USER_CACHE_TTL_MINUTES", "5")),
            store_backend=os.environ.get("AUTHZ_STORE_BACKEND", "memory").lower(),
            table_name=os.environ.get("DYNAMODB_AUTHZ_TABLE_NAME", "authz-roles"),
            aws_region=os.environ.get("AWS_REGION", "us-west-2"),
            audit_sink=os.environ.get("AUTHZ_AUDIT_SINK", "logging").lower(),
            local_rate_limit=os.environ.get("AUTHZ_LOCAL_RATE_LIMIT", "false").lower() == "true",
            default_role=os.environ.get("AUTHZ_DEFAULT_ROLE", DEFAULT_ROLE),
        )


def build_store(settings: AuthzSettings) -> RoleStore:
    if settings.store_backend == "dynamodb":
        return DynamoDBRoleStore(
            table_name=settings.table_name,
            region=settings.aws_region,
            default_role=settings.default_role,
        )
    return InMemoryRoleStore(default_role=settings.default_role)


def build_audit_sink(settings: AuthzSettings, store: RoleStore) -> AuditSink:
    if settings.audit_sink == "memory":
        return InMemoryAuditSink()
    if settings.audit_sink == "store":
        # Keep a log line even when the store write fails.
        return CompositeAuditSink([RoleStoreAuditSink(store), LoggingAuditSink()])
    return LoggingAuditSink()


def build_authorization_engine(
    settings: Optional[AuthzSettings] = None,
    store: Optional[RoleStore] = None,
    sessions: Optional[SessionProvider] = None,
    audit_sink: Optional[AuditSink] = None,
) -> AuthorizationEngine:
    """
    Wire an AuthorizationEngine from settings.

    Args:
        settings: Defaults to AuthzSettings.from_env()
        store: Overrides the configured store backend
        sessions: Defaults to a ContextVarSessionProvider
        audit_sink: Overrides the configured audit sink

    Returns:
        A ready engine. System roles are not seeded here; call
        ensure_system_roles(engine.store) during startup.
    """
    settings = settings or AuthzSettings.from_env()
    store = store if store is not None else build_store(settings)
    sink = audit_sink if audit_sink is not None else build_audit_sink(settings, store)
    local_counter = LocalRateCounter() if settings.local_rate_limit else None

    engine = AuthorizationEngine(
        store=store,
        sessions=sessions or ContextVarSessionProvider(),
        cache=PermissionCache(ttl=timedelta(minutes=settings.cache_ttl_minutes)),
        audit=AuditEmitter(sink),
        rate_limiter=RateLimiter(store, local_counter=local_counter),
        default_role=settings.default_role,
    )

    logger.info(
        f"Authorization engine ready: store={type(store).__name__}, "
        f"audit={type(sink).__name__}, cache_ttl={settings.cache_ttl_minutes}m, "
        f"local_rate_limit={settings.local_rate_limit}"
    )
    return engine
