"""
Tests for the AuthorizationEngine decision pipeline.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from authz.audit.emitter import AuditEmitter
from authz.audit.models import AUTHORIZED_ACCESS, UNAUTHORIZED_ACCESS_ATTEMPT
from authz.audit.sinks import InMemoryAuditSink
from authz.auth.models import User
from authz.engine import (
    ADMIN_BYPASS,
    RBAC_CHECK,
    AuthorizationEngine,
    AuthorizationOptions,
)
from authz.errors import AuthorizationDenied, DenialCode
from authz.rate_limit.models import RateLimitConfig, RateLimitProfile
from authz.rbac.admin_service import RoleAdminService
from authz.rbac.models import AssignRoleRequest, UserPermissions

from conftest import make_session


class FailingSink(InMemoryAuditSink):
    async def record(self, event):
        raise ConnectionError("audit store down")


def _options(resource="documents", action="read", **kwargs):
    return AuthorizationOptions(resource=resource, action=action, **kwargs)


class TestScenarios:
    """End-to-end decisions against the seeded in-memory store."""

    @pytest.mark.asyncio
    async def test_unauthenticated_is_denied(self, engine, audit, audit_sink):
        decision = await engine.authorize(_options("users", "read"))

        assert decision.authorized is False
        assert decision.reason == "Usuário não autenticado"
        assert decision.code is DenialCode.AUTHENTICATION_REQUIRED

        await audit.drain()
        [event] = audit_sink.events
        assert event.event_name == UNAUTHORIZED_ACCESS_ATTEMPT
        assert event.reason == "authentication_required"
        assert event.user_id is None

    @pytest.mark.asyncio
    async def test_admin_bypass_grants_anything(self, engine, store, sessions):
        await store.assign_role("admin-1", "admin")
        sessions.session = make_session("admin-1")

        decision = await engine.authorize(_options("billing", "refund"))

        assert decision.authorized is True
        assert decision.context.user_role == "admin"
        assert decision.method == ADMIN_BYPASS

    @pytest.mark.asyncio
    async def test_missing_permission_is_denied(self, engine, sessions):
        sessions.session = make_session("alice")

        decision = await engine.authorize(_options("documents", "create"))

        assert decision.authorized is False
        assert decision.reason == "Permissões insuficientes"
        assert decision.code is DenialCode.INSUFFICIENT_PERMISSIONS

    @pytest.mark.asyncio
    async def test_eleventh_bulk_request_is_rate_limited(self, engine, sessions):
        sessions.session = make_session("alice")
        options = _options("documents", "read", rate_limit=RateLimitProfile.BULK_OPERATIONS)

        for _ in range(10):
            assert (await engine.authorize(options)).authorized is True

        decision = await engine.authorize(options)

        assert decision.authorized is False
        assert decision.reason == "Limite de requisições excedido"
        assert decision.code is DenialCode.RATE_LIMIT_EXCEEDED

    @pytest.mark.asyncio
    async def test_bulk_budget_is_per_ip(self, engine, sessions):
        options = _options("documents", "read", rate_limit=RateLimitProfile.BULK_OPERATIONS)

        sessions.session = make_session("alice", ip_address="10.0.0.1")
        for _ in range(10):
            assert (await engine.authorize(options)).authorized is True

        sessions.session = make_session("alice", ip_address="10.0.0.2")
        decision = await engine.authorize(options)

        assert decision.authorized is True
        assert decision.method == RBAC_CHECK

    @pytest.mark.asyncio
    async def test_assignment_with_naive_expiry_grants(self, engine, store, sessions):
        admins = RoleAdminService(store, engine.cache)
        request = AssignRoleRequest.model_validate(
            {"roleId": "moderator", "expiresAt": "2030-01-01T00:00:00"}
        )
        await admins.assign_role(
            "dave", request.role_id, User(user_id="root"), expires_at=request.expires_at
        )
        sessions.session = make_session("dave")

        decision = await engine.authorize(_options("chat", "moderate"))

        assert decision.authorized is True
        assert decision.context.user_role == "moderator"
        [assignment] = await store.list_user_roles("dave")
        assert assignment.expires_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_revocation_reflected_immediately(self, engine, store, sessions):
        await store.assign_role("carol", "admin")
        sessions.session = make_session("carol")
        options = _options("system", "manage_all")
        admins = RoleAdminService(store, engine.cache)

        assert (await engine.authorize(options)).method == ADMIN_BYPASS

        await admins.revoke_role("carol", "admin", User(user_id="root"))
        decision = await engine.authorize(options)

        assert decision.authorized is False
        assert decision.code is DenialCode.INSUFFICIENT_PERMISSIONS


class TestPipeline:
    """Tests for step ordering and short-circuits."""

    @pytest.mark.asyncio
    async def test_granted_via_rbac_check(self, engine, sessions, audit, audit_sink):
        sessions.session = make_session("alice")

        decision = await engine.authorize(_options("documents", "read"))

        assert decision.authorized is True
        assert decision.method == RBAC_CHECK
        assert bool(decision) is True

        await audit.drain()
        [event] = audit_sink.events
        assert event.event_name == AUTHORIZED_ACCESS
        assert event.method == RBAC_CHECK

    @pytest.mark.asyncio
    async def test_admin_bypass_skips_rate_and_permission_checks(self, engine, store, sessions):
        await store.assign_role("admin-1", "admin")
        sessions.session = make_session("admin-1")
        store.authorize_operation = AsyncMock(return_value=False)
        store.check_rate_limit = AsyncMock(return_value=False)

        decision = await engine.authorize(
            _options("users", "delete", rate_limit=RateLimitProfile.SENSITIVE)
        )

        assert decision.authorized is True
        store.authorize_operation.assert_not_called()
        store.check_rate_limit.assert_not_called()

    @pytest.mark.asyncio
    async def test_bypass_disabled_for_admin(self, engine, store, sessions):
        await store.assign_role("admin-1", "admin")
        sessions.session = make_session("admin-1")

        # admin's own map has no system.manage_all
        decision = await engine.authorize(
            _options("system", "manage_all", bypass_for_admin=False)
        )

        assert decision.authorized is False
        assert decision.code is DenialCode.INSUFFICIENT_PERMISSIONS

    @pytest.mark.asyncio
    async def test_rate_limit_denial_skips_permission_check(self, engine, store, sessions):
        sessions.session = make_session("alice")
        store.check_rate_limit = AsyncMock(return_value=False)
        store.authorize_operation = AsyncMock(return_value=True)

        decision = await engine.authorize(
            _options(rate_limit=RateLimitConfig(max_requests=5, window_minutes=1))
        )

        assert decision.code is DenialCode.RATE_LIMIT_EXCEEDED
        store.authorize_operation.assert_not_called()

    @pytest.mark.asyncio
    async def test_rate_budget_forwarded_to_store(self, engine, store, sessions):
        sessions.session = make_session("alice")
        store.authorize_operation = AsyncMock(return_value=True)

        await engine.authorize(_options(rate_limit=RateLimitProfile.SENSITIVE))

        store.authorize_operation.assert_awaited_once_with(
            "documents",
            "read",
            "alice",
            rate_limit_check=True,
            max_requests=20,
            window_minutes=60,
            ip_address="10.0.0.1",
        )

    @pytest.mark.asyncio
    async def test_no_rate_limit_uses_defaults(self, engine, store, sessions):
        sessions.session = make_session("alice")
        store.authorize_operation = AsyncMock(return_value=True)
        store.check_rate_limit = AsyncMock(return_value=True)

        await engine.authorize(_options())

        store.check_rate_limit.assert_not_called()
        assert store.authorize_operation.await_args.kwargs == {
            "rate_limit_check": False,
            "max_requests": 100,
            "window_minutes": 60,
            "ip_address": "10.0.0.1",
        }

    @pytest.mark.asyncio
    async def test_identifiers_normalized(self, engine, sessions):
        sessions.session = make_session("alice")

        decision = await engine.authorize(_options(" Documents ", "READ"))

        assert decision.authorized is True

    @pytest.mark.asyncio
    async def test_client_details_not_cached(self, engine, sessions):
        sessions.session = make_session("alice", ip_address="10.0.0.1")
        first = await engine.authorize(_options())

        sessions.session = make_session("alice", ip_address="10.0.0.2")
        second = await engine.authorize(_options())

        assert first.context.ip_address == "10.0.0.1"
        assert second.context.ip_address == "10.0.0.2"
        assert engine.cache.get("alice").ip_address is None


class TestCaching:
    """Tests for context reuse across decisions."""

    @pytest.mark.asyncio
    async def test_context_reused_within_ttl(self, engine, store, sessions, clock):
        calls = []
        original = store.get_user_permissions

        async def counting(user_id):
            calls.append(user_id)
            return await original(user_id)

        store.get_user_permissions = counting
        sessions.session = make_session("alice")

        await engine.authorize(_options())
        clock.advance(minutes=4, seconds=59)
        await engine.authorize(_options())
        assert calls == ["alice"]

        clock.advance(seconds=2)
        await engine.authorize(_options())
        assert calls == ["alice", "alice"]

    @pytest.mark.asyncio
    async def test_invalidate_user_forces_reload(self, engine, store, sessions):
        sessions.session = make_session("bob")
        assert (await engine.authorize(_options("chat", "moderate"))).authorized is False

        await store.assign_role("bob", "moderator")
        engine.invalidate_user("bob")

        decision = await engine.authorize(_options("chat", "moderate"))
        assert decision.authorized is True
        assert decision.context.user_role == "moderator"


class TestFailClosed:
    """Every failure resolves to a denial; authorize() never raises."""

    @pytest.mark.asyncio
    async def test_context_store_error(self, engine, store, sessions):
        sessions.session = make_session("alice")
        store.get_user_permissions = AsyncMock(side_effect=ConnectionError("timeout"))

        decision = await engine.authorize(_options())

        assert decision.authorized is False
        assert decision.reason == "Contexto do usuário indisponível"

    @pytest.mark.asyncio
    async def test_context_store_returns_nothing(self, engine, store, sessions):
        sessions.session = make_session("alice")
        store.get_user_permissions = AsyncMock(return_value=None)

        decision = await engine.authorize(_options())

        assert decision.code is DenialCode.CONTEXT_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_malformed_permission_map(self, engine, store, sessions):
        sessions.session = make_session("alice")
        store.get_user_permissions = AsyncMock(
            return_value=UserPermissions(
                permissions=["documents"], roles=["user"], checked_at="2024-01-15T12:00:00Z"
            )
        )

        decision = await engine.authorize(_options())

        assert decision.code is DenialCode.CONTEXT_UNAVAILABLE
        assert len(engine.cache) == 0

    @pytest.mark.asyncio
    async def test_authoritative_check_error(self, engine, store, sessions):
        sessions.session = make_session("alice")
        store.authorize_operation = AsyncMock(side_effect=RuntimeError("rpc failed"))

        decision = await engine.authorize(_options())

        assert decision.authorized is False
        assert decision.reason == "Erro na verificação de autorização"
        assert decision.code is DenialCode.AUTHORIZATION_ERROR

    @pytest.mark.asyncio
    async def test_session_provider_error(self, engine, sessions):
        sessions.get_current_session = AsyncMock(side_effect=RuntimeError("idp down"))

        decision = await engine.authorize(_options())

        assert decision.authorized is False
        assert decision.reason == "Erro do sistema"
        assert decision.code is DenialCode.SYSTEM_ERROR

    @pytest.mark.asyncio
    @pytest.mark.parametrize("resource,action", [(None, "read"), ("", "read"), ("documents", 7)])
    async def test_malformed_options(self, engine, sessions, resource, action):
        sessions.session = make_session("alice")

        decision = await engine.authorize(AuthorizationOptions(resource=resource, action=action))

        assert decision.authorized is False
        assert decision.code is DenialCode.SYSTEM_ERROR

    @pytest.mark.asyncio
    async def test_malformed_options_without_session(self, engine):
        decision = await engine.authorize(AuthorizationOptions(resource=None, action="read"))

        assert decision.authorized is False
        assert decision.code is DenialCode.AUTHENTICATION_REQUIRED

    @pytest.mark.asyncio
    async def test_options_missing_entirely(self, engine, sessions):
        sessions.session = make_session("alice")

        decision = await engine.authorize(None)

        assert decision.authorized is False

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_change_verdict(self, store, sessions, cache):
        emitter = AuditEmitter(FailingSink())
        engine = AuthorizationEngine(store=store, sessions=sessions, cache=cache, audit=emitter)
        sessions.session = make_session("alice")

        granted = await engine.authorize(_options("documents", "read"))
        denied = await engine.authorize(_options("documents", "delete"))
        await emitter.drain()

        assert granted.authorized is True
        assert denied.authorized is False

    @pytest.mark.asyncio
    async def test_audit_emit_raising_still_grants(self, engine, sessions):
        engine.audit = MagicMock()
        engine.audit.log_authorized_access.side_effect = RuntimeError("boom")
        sessions.session = make_session("alice")

        decision = await engine.authorize(_options("documents", "read"))

        assert decision.authorized is True

    @pytest.mark.asyncio
    async def test_audit_emit_raising_still_denies(self, engine, sessions):
        engine.audit = MagicMock()
        engine.audit.log_unauthorized_attempt.side_effect = RuntimeError("boom")

        decision = await engine.authorize(_options())

        assert decision.code is DenialCode.AUTHENTICATION_REQUIRED


class TestAuditFlag:
    """Tests for log_attempt."""

    @pytest.mark.asyncio
    async def test_log_attempt_false_emits_nothing(self, engine, sessions, audit, audit_sink):
        await engine.authorize(_options(log_attempt=False))
        sessions.session = make_session("alice")
        await engine.authorize(_options(log_attempt=False))
        await audit.drain()

        assert audit_sink.events == []

    @pytest.mark.asyncio
    async def test_one_event_per_decision(self, engine, sessions, audit, audit_sink):
        sessions.session = make_session("alice")

        await engine.authorize(_options("documents", "read"))
        await engine.authorize(_options("documents", "delete"))
        await audit.drain()

        assert [e.granted for e in audit_sink.events] == [True, False]


class TestRaisingHelpers:
    """Tests for authorize_or_raise and execute_authorized."""

    @pytest.mark.asyncio
    async def test_authorize_or_raise(self, engine, sessions):
        sessions.session = make_session("alice")

        context = await engine.authorize_or_raise(_options("documents", "read"))
        assert context.user_id == "alice"

        with pytest.raises(AuthorizationDenied) as exc_info:
            await engine.authorize_or_raise(_options("documents", "delete"))
        assert exc_info.value.code is DenialCode.INSUFFICIENT_PERMISSIONS
        assert "Permissões insuficientes" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_execute_authorized_runs_operation(self, engine, sessions):
        sessions.session = make_session("alice")
        operation = AsyncMock(return_value=["doc-1"])

        result = await engine.execute_authorized(operation, "documents", "read")

        assert result == ["doc-1"]
        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_execute_authorized_skips_operation_on_denial(self, engine, sessions):
        sessions.session = make_session("alice")
        operation = AsyncMock()

        with pytest.raises(AuthorizationDenied):
            await engine.execute_authorized(operation, "documents", "delete")

        operation.assert_not_called()

    @pytest.mark.asyncio
    async def test_execute_authorized_propagates_operation_error(self, engine, sessions):
        sessions.session = make_session("alice")
        operation = AsyncMock(side_effect=KeyError("doc-1"))

        with pytest.raises(KeyError):
            await engine.execute_authorized(operation, "documents", "read")
