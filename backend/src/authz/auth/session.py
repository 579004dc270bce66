"""Session providers: how the authorization engine learns who is calling."""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

from .models import Session

logger = logging.getLogger(__name__)


class SessionProvider(ABC):
    """Abstract source of the active session."""

    @abstractmethod
    async def get_current_session(self) -> Optional[Session]:
        """
        Return the active session, or None when nobody is signed in.

        May raise if the identity backend is unreachable; the engine turns
        that into a denial.
        """
        pass


class StaticSessionProvider(SessionProvider):
    """Always returns the same session (scripts, tests)."""

    def __init__(self, session: Optional[Session] = None):
        self.session = session

    async def get_current_session(self) -> Optional[Session]:
        return self.session


_current_session: ContextVar[Optional[Session]] = ContextVar(
    "authz_current_session", default=None
)


class ContextVarSessionProvider(SessionProvider):
    """
    Session bound to the current asyncio context.

    Each request handler runs in its own context, so a session bound in a
    FastAPI dependency is visible to the engine for that request only.
    """

    async def get_current_session(self) -> Optional[Session]:
        return _current_session.get()

    @staticmethod
    def bind(session: Optional[Session]):
        return _current_session.set(session)

    @staticmethod
    def reset(token):
        _current_session.reset(token)

    @staticmethod
    @contextmanager
    def bound(session: Optional[Session]) -> Iterator[None]:
        token = _current_session.set(session)
        try:
            yield
        finally:
            _current_session.reset(token)
