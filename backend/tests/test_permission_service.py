"""
Tests for PermissionService queries.
"""

from unittest.mock import AsyncMock

import pytest

from authz.rbac.service import PermissionService


@pytest.fixture
def service(store, cache):
    return PermissionService(store, cache)


class TestResolveContext:
    """Tests for context resolution through the cache."""

    @pytest.mark.asyncio
    async def test_resolves_default_user(self, service):
        context = await service.resolve_context("alice")

        assert context.user_role == "user"
        assert context.roles == frozenset({"user"})
        assert "read" in context.permissions["documents"]
        assert context.resolved_at.endswith("Z")

    @pytest.mark.asyncio
    async def test_force_refresh(self, service, store):
        await service.resolve_context("bob")
        await store.assign_role("bob", "moderator")

        assert (await service.resolve_context("bob")).user_role == "user"
        assert (await service.resolve_context("bob", force_refresh=True)).user_role == "moderator"

    @pytest.mark.asyncio
    async def test_injected_empty_cache_is_used(self, store, cache):
        service = PermissionService(store, cache)
        await service.resolve_context("alice")
        assert len(cache) == 1


class TestPermissionChecks:
    """Tests for point checks against the store."""

    @pytest.mark.asyncio
    async def test_check_permission_logs_result(self, service, store):
        assert await service.check_permission("alice", "documents", "read") is True
        assert await service.check_permission("alice", "documents", "delete") is False

        logs = await store.list_permission_logs(user_id="alice")
        assert [log.granted for log in logs] == [False, True]

    @pytest.mark.asyncio
    async def test_check_permission_without_log(self, service, store):
        await service.check_permission("alice", "documents", "read", log_check=False)
        assert await store.list_permission_logs() == []

    @pytest.mark.asyncio
    async def test_store_error_is_false(self, service, store):
        store.check_user_permission = AsyncMock(side_effect=ConnectionError("down"))
        assert await service.check_permission("alice", "documents", "read") is False

    @pytest.mark.asyncio
    async def test_log_failure_keeps_answer(self, service, store):
        store.log_permission_check = AsyncMock(side_effect=ConnectionError("down"))
        assert await service.check_permission("alice", "documents", "read") is True

    @pytest.mark.asyncio
    async def test_check_multiple(self, service):
        results = await service.check_multiple_permissions(
            "alice", [("documents", "read"), ("documents", "delete"), ("chat", "create")]
        )

        assert results == {
            "documents.read": True,
            "documents.delete": False,
            "chat.create": True,
        }

    @pytest.mark.asyncio
    async def test_any_and_all(self, service):
        checks = [("documents", "read"), ("users", "delete")]

        assert await service.has_any_permission("alice", checks) is True
        assert await service.has_all_permissions("alice", checks) is False


class TestRoleQueries:
    """Tests for role lookups."""

    @pytest.mark.asyncio
    async def test_highest_role(self, service, store):
        await store.assign_role("bob", "user")
        await store.assign_role("bob", "moderator")

        role = await service.get_highest_role("bob")

        assert role.name == "moderator"
        assert [a.role_id for a in await service.get_user_roles("bob")] == ["moderator", "user"]

    @pytest.mark.asyncio
    async def test_highest_role_without_assignments(self, service):
        assert await service.get_highest_role("nobody") is None

    @pytest.mark.asyncio
    async def test_permission_logs_filtered(self, service):
        await service.check_permission("alice", "documents", "read")
        await service.check_permission("alice", "chat", "read")

        logs = await service.get_permission_logs(user_id="alice", resource="chat")

        assert len(logs) == 1
        assert logs[0].action == "read"
