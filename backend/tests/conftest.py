"""Pytest configuration for test suite."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

# Add backend/src to Python path for imports
# This file is in backend/tests/, so we need to go up one level to backend/
BACKEND_DIR = Path(__file__).parent.parent
SRC_DIR = BACKEND_DIR / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from authz.audit.emitter import AuditEmitter  # noqa: E402
from authz.audit.sinks import InMemoryAuditSink  # noqa: E402
from authz.auth.models import Session, User  # noqa: E402
from authz.auth.session import StaticSessionProvider  # noqa: E402
from authz.engine import AuthorizationEngine  # noqa: E402
from authz.rbac.cache import PermissionCache  # noqa: E402
from authz.rbac.seeder import seed_system_roles  # noqa: E402
from authz.rbac.store import InMemoryRoleStore  # noqa: E402


class FakeClock:
    """Manually advanced UTC clock shared by the store and the cache."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_session(user_id: str, ip_address: str = "10.0.0.1") -> Session:
    return Session(
        user=User(user_id=user_id, email=f"{user_id}@example.com"),
        ip_address=ip_address,
        user_agent="pytest",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def store(clock):
    """In-memory store seeded with the system roles."""
    store = InMemoryRoleStore(clock=clock)
    await seed_system_roles(store)
    return store


@pytest.fixture
def cache(clock):
    return PermissionCache(ttl=timedelta(minutes=5), clock=clock)


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def audit(audit_sink):
    return AuditEmitter(audit_sink)


@pytest.fixture
def sessions():
    """Session provider with nobody signed in; tests set .session."""
    return StaticSessionProvider(None)


@pytest.fixture
def engine(store, sessions, cache, audit):
    return AuthorizationEngine(store=store, sessions=sessions, cache=cache, audit=audit)
