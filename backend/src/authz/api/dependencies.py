"""FastAPI dependencies that put the authorization engine in front of routes."""

import logging
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status

from authz.auth.dependencies import get_current_session
from authz.auth.models import Session, User
from authz.auth.session import ContextVarSessionProvider
from authz.engine import AuthorizationDecision, AuthorizationEngine, AuthorizationOptions
from authz.errors import DenialCode
from authz.rate_limit.limiter import RateLimitSpec
from authz.rbac.admin_service import RoleAdminService
from authz.rbac.models import AuthorizationContext

logger = logging.getLogger(__name__)

DENIAL_STATUS = {
    DenialCode.AUTHENTICATION_REQUIRED: status.HTTP_401_UNAUTHORIZED,
    DenialCode.RATE_LIMIT_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
}


def get_authorization_engine(request: Request) -> AuthorizationEngine:
    engine = getattr(request.app.state, "authz_engine", None)
    if engine is None:
        logger.error("No authorization engine configured on app.state")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authorization service misconfigured.",
        )
    return engine


def get_role_admin_service(
    engine: AuthorizationEngine = Depends(get_authorization_engine),
) -> RoleAdminService:
    return RoleAdminService(engine.store, engine.cache)


def denial_to_http(decision: AuthorizationDecision) -> HTTPException:
    """Map a denied decision to 401, 429 or 403."""
    code = decision.code or DenialCode.SYSTEM_ERROR
    status_code = DENIAL_STATUS.get(code, status.HTTP_403_FORBIDDEN)
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return HTTPException(
        status_code=status_code,
        detail={"code": code.value, "message": decision.reason},
        headers=headers,
    )


def require_authorization(
    resource: str,
    action: str,
    rate_limit: RateLimitSpec = None,
    bypass_for_admin: bool = True,
    log_attempt: bool = True,
) -> Callable:
    """
    Build a dependency that authorizes the request before the route runs.

    Usage:
        @router.get("/documents")
        async def list_documents(
            context: AuthorizationContext = Depends(
                require_authorization("documents", "read", RateLimitProfile.GENERAL)
            ),
        ):
            ...

    The engine must be built with a ContextVarSessionProvider; the request's
    session is bound to it for the duration of the check.
    """
    options = AuthorizationOptions(
        resource=resource,
        action=action,
        rate_limit=rate_limit,
        bypass_for_admin=bypass_for_admin,
        log_attempt=log_attempt,
    )

    async def dependency(
        session: Optional[Session] = Depends(get_current_session),
        engine: AuthorizationEngine = Depends(get_authorization_engine),
    ) -> AuthorizationContext:
        with ContextVarSessionProvider.bound(session):
            decision = await engine.authorize(options)

        if not decision.authorized:
            raise denial_to_http(decision)
        return decision.context

    return dependency


def require_authorized_user(
    resource: str,
    action: str,
    rate_limit: RateLimitSpec = None,
) -> Callable:
    """Like require_authorization, but hands the route the calling User."""
    check = require_authorization(resource, action, rate_limit)

    async def dependency(
        context: AuthorizationContext = Depends(check),
        session: Optional[Session] = Depends(get_current_session),
    ) -> User:
        if session is None:
            return User(user_id=context.user_id)
        return session.user

    return dependency
