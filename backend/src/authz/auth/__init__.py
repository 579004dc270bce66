"""Authentication: who is calling."""

from .dependencies import get_current_session, security
from .models import Session, User
from .session import ContextVarSessionProvider, SessionProvider, StaticSessionProvider
from .validator import StaticTokenValidator, TokenValidator

__all__ = [
    "get_current_session",
    "security",
    "Session",
    "User",
    "SessionProvider",
    "StaticSessionProvider",
    "ContextVarSessionProvider",
    "TokenValidator",
    "StaticTokenValidator",
]
