"""Authorization decision engine: one verdict per sensitive operation."""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from authz.audit.emitter import AuditEmitter
from authz.audit.sinks import LoggingAuditSink
from authz.auth.models import Session
from authz.auth.session import SessionProvider
from authz.errors import (
    AuthenticationMissing,
    AuthorizationDenied,
    AuthorizationError,
    AuthorizationStoreError,
    AuthorizationSystemError,
    ContextUnavailable,
    DenialCode,
    InsufficientPermissions,
    RateLimitExceeded,
)
from authz.rate_limit.limiter import RateLimiter, RateLimitSpec, resolve_config
from authz.rbac.cache import PermissionCache
from authz.rbac.hierarchy import is_admin
from authz.rbac.models import DEFAULT_ROLE, AuthorizationContext
from authz.rbac.permissions import normalize_identifier
from authz.rbac.service import PermissionService
from authz.rbac.store import DEFAULT_IP_ADDRESS, RoleStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

ADMIN_BYPASS = "admin_bypass"
RBAC_CHECK = "rbac_check"

# Store-side defaults when the caller supplies no rate-limit profile.
DEFAULT_MAX_REQUESTS = 100
DEFAULT_WINDOW_MINUTES = 60


@dataclass
class AuthorizationOptions:
    """What the caller wants to do, and how strictly to check it."""

    resource: str
    action: str
    rate_limit: RateLimitSpec = None
    bypass_for_admin: bool = True
    log_attempt: bool = True


@dataclass
class AuthorizationDecision:
    """Verdict returned to the caller; never stored."""

    authorized: bool
    reason: Optional[str] = None
    context: Optional[AuthorizationContext] = None
    code: Optional[DenialCode] = None
    method: Optional[str] = None

    def __bool__(self) -> bool:
        return self.authorized


def _raw_identifier(value) -> str:
    return value.value if isinstance(value, Enum) else str(value)


class AuthorizationEngine:
    """
    Composes authentication, context resolution, admin bypass, rate limiting
    and the store's authoritative permission check into a single verdict.

    Pipeline (early exit on the first denial):
    1. Authenticate the active session
    2. Resolve the context (cache, then store)
    3. Admin bypass (optional)
    4. Rate limit (optional)
    5. Authoritative check via RoleStore.authorize_operation
    6. Grant

    Fails closed: every error becomes a denial, nothing is raised to the
    caller and nothing is retried. Steps 2-4 run locally for speed; step 5
    is the security boundary.
    """

    def __init__(
        self,
        store: RoleStore,
        sessions: SessionProvider,
        cache: Optional[PermissionCache] = None,
        audit: Optional[AuditEmitter] = None,
        rate_limiter: Optional[RateLimiter] = None,
        default_role: str = DEFAULT_ROLE,
    ):
        self.store = store
        self.sessions = sessions
        self.permissions = PermissionService(store, cache, default_role=default_role)
        self.audit = audit or AuditEmitter(LoggingAuditSink())
        self.rate_limiter = rate_limiter or RateLimiter(store)

    @property
    def cache(self) -> PermissionCache:
        return self.permissions.cache

    # =========================================================================
    # Public API
    # =========================================================================

    async def authorize(self, options: AuthorizationOptions) -> AuthorizationDecision:
        """
        Decide whether the current session may perform options.action on
        options.resource.

        Args:
            options: Resource, action, optional rate-limit profile, admin
                bypass flag and audit flag

        Returns:
            AuthorizationDecision; emits at most one audit event
        """
        user_id: Optional[str] = None
        context: Optional[AuthorizationContext] = None

        try:
            # 1. Authenticate
            session = await self.sessions.get_current_session()
            if session is None:
                raise AuthenticationMissing()
            user_id = session.user_id

            resource = normalize_identifier(options.resource, "resource")
            action = normalize_identifier(options.action, "action")

            # 2. Resolve context
            context = await self._resolve_context(session)

            # 3. Admin bypass
            if options.bypass_for_admin and is_admin(context):
                return self._grant(options, resource, action, context, ADMIN_BYPASS)

            # 4. Rate limit
            if not await self.rate_limiter.check(context, action, resource, options.rate_limit):
                raise RateLimitExceeded()

            # 5. Authoritative permission check
            await self._check_operation(resource, action, context, options.rate_limit)

            # 6. Grant
            return self._grant(options, resource, action, context, RBAC_CHECK)

        except AuthorizationError as e:
            return self._deny(e, options, user_id, context)

        except Exception as e:
            logger.exception(f"Erro no middleware de autorização: {e}")
            return self._deny(AuthorizationSystemError(str(e)), options, user_id, context)

    async def authorize_or_raise(self, options: AuthorizationOptions) -> AuthorizationContext:
        """Like authorize(), but raises AuthorizationDenied on denial."""
        decision = await self.authorize(options)
        if not decision.authorized:
            raise AuthorizationDenied(decision)
        return decision.context

    async def execute_authorized(
        self,
        operation: Callable[[], Awaitable[T]],
        resource: str,
        action: str,
        rate_limit: RateLimitSpec = None,
    ) -> T:
        """
        Authorize, then run the operation.

        Raises:
            AuthorizationDenied: If the operation is not authorized
        """
        await self.authorize_or_raise(
            AuthorizationOptions(resource=resource, action=action, rate_limit=rate_limit)
        )
        try:
            return await operation()
        except Exception as e:
            logger.error(f"Erro na operação {resource}.{action}: {e}")
            raise

    async def get_user_context(self, user_id: str) -> Optional[AuthorizationContext]:
        """Cached or freshly resolved context for a user (no session needed)."""
        return await self.permissions.resolve_context(user_id)

    def invalidate_user(self, user_id: str):
        self.cache.invalidate(user_id)

    def invalidate_all(self):
        self.cache.invalidate_all()

    # =========================================================================
    # Pipeline steps
    # =========================================================================

    async def _resolve_context(self, session: Session) -> AuthorizationContext:
        context = await self.get_user_context(session.user_id)
        if context is None:
            raise ContextUnavailable()
        # Client details change per request; the cached entry never holds them.
        return replace(
            context, ip_address=session.ip_address, user_agent=session.user_agent
        )

    async def _check_operation(
        self,
        resource: str,
        action: str,
        context: AuthorizationContext,
        rate_limit: RateLimitSpec,
    ):
        config = resolve_config(rate_limit)
        try:
            allowed = await self.store.authorize_operation(
                resource,
                action,
                context.user_id,
                rate_limit_check=bool(config and config.enabled),
                max_requests=config.max_requests if config else DEFAULT_MAX_REQUESTS,
                window_minutes=config.window_minutes if config else DEFAULT_WINDOW_MINUTES,
                ip_address=context.ip_address or DEFAULT_IP_ADDRESS,
            )
        except Exception as e:
            logger.error(f"Erro na verificação de autorização: {e}")
            raise AuthorizationStoreError(str(e)) from e

        if not allowed:
            raise InsufficientPermissions()

    # =========================================================================
    # Outcomes
    # =========================================================================

    def _grant(
        self,
        options: AuthorizationOptions,
        resource: str,
        action: str,
        context: AuthorizationContext,
        method: str,
    ) -> AuthorizationDecision:
        if options.log_attempt:
            try:
                self.audit.log_authorized_access(resource, action, context, method)
            except Exception:
                logger.exception("Erro ao logar acesso autorizado")
        logger.debug(f"Granted {resource}.{action} to {context.user_id} via {method}")
        return AuthorizationDecision(authorized=True, context=context, method=method)

    def _deny(
        self,
        error: AuthorizationError,
        options: AuthorizationOptions,
        user_id: Optional[str],
        context: Optional[AuthorizationContext],
    ) -> AuthorizationDecision:
        resource = _raw_identifier(getattr(options, "resource", ""))
        action = _raw_identifier(getattr(options, "action", ""))
        logger.info(f"Denied {resource}.{action} for {user_id or 'anonymous'}: {error.code.value}")

        if getattr(options, "log_attempt", True):
            try:
                self.audit.log_unauthorized_attempt(
                    error.code.value, resource, action, user_id=user_id, context=context
                )
            except Exception:
                logger.exception("Erro ao logar tentativa não autorizada")

        return AuthorizationDecision(authorized=False, reason=error.reason, code=error.code)
