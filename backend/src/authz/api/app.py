"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from authz.auth.validator import TokenValidator
from authz.engine import AuthorizationEngine
from authz.rbac.seeder import ensure_system_roles, seed_system_roles
from authz.settings import AuthzSettings, build_authorization_engine

from .roles import router as roles_router

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[AuthzSettings] = None,
    engine: Optional[AuthorizationEngine] = None,
    token_validator: Optional[TokenValidator] = None,
) -> FastAPI:
    """
    Build the admin API.

    The engine's session provider must be a ContextVarSessionProvider (the
    default from build_authorization_engine) so route dependencies can
    bind the request session.
    """
    engine = engine or build_authorization_engine(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await seed_system_roles(engine.store)
        if not await ensure_system_roles(engine.store):
            logger.warning("Starting with incomplete system roles")
        yield
        await engine.audit.drain()

    app = FastAPI(title="Authorization API", lifespan=lifespan)
    app.state.authz_engine = engine
    app.state.token_validator = token_validator
    app.include_router(roles_router)
    return app
