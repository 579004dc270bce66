"""Bearer token validation."""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from fastapi import HTTPException, status

from .models import User

logger = logging.getLogger(__name__)


class TokenValidator(ABC):
    """Turns a bearer token into a User, or raises HTTPException 401."""

    @abstractmethod
    def validate_token(self, token: str) -> User:
        pass


class StaticTokenValidator(TokenValidator):
    """
    Validates tokens against a fixed token -> user table.

    Meant for local development and tests; production deployments plug in
    the identity provider's validator.
    """

    def __init__(self, tokens: Optional[Dict[str, User]] = None):
        self.tokens: Dict[str, User] = dict(tokens or {})

    def validate_token(self, token: str) -> User:
        user = self.tokens.get(token)
        if user is None:
            logger.info("Rejected unknown bearer token")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired token.",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return user
