"""FastAPI dependencies for authentication."""

import logging
import os
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .models import Session, User
from .validator import TokenValidator

logger = logging.getLogger(__name__)

# HTTP Bearer token security scheme with auto_error=False to handle missing tokens manually
security = HTTPBearer(auto_error=False)


def authentication_enabled() -> bool:
    # Defaults to true for security
    return os.environ.get("ENABLE_AUTHENTICATION", "true").lower() == "true"


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


async def get_current_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[Session]:
    """
    FastAPI dependency returning the caller's session, or None.

    A missing token yields None so the authorization engine can deny with
    its own reason and audit trail. An invalid token is rejected with 401.

    When ENABLE_AUTHENTICATION=false, returns an anonymous session. This
    should only be used in development/testing.
    """
    ip_address = _client_ip(request)
    user_agent = request.headers.get("user-agent")

    if not authentication_enabled():
        logger.warning("Authentication is DISABLED via ENABLE_AUTHENTICATION=false - using anonymous session")
        return Session(
            user=User(user_id="anonymous", email="anonymous@local.dev", name="Anonymous User"),
            ip_address=ip_address,
            user_agent=user_agent,
        )

    if credentials is None:
        return None

    validator: Optional[TokenValidator] = getattr(request.app.state, "token_validator", None)
    if validator is None:
        logger.error("No token validator configured but authentication is enabled")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication service misconfigured.",
        )

    try:
        user = validator.validate_token(credentials.credentials)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Unexpected error in authentication: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication failed.",
        )

    return Session(user=user, ip_address=ip_address, user_agent=user_agent)
