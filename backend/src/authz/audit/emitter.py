"""Best-effort, non-blocking recording of authorization outcomes."""

import asyncio
import logging
from typing import Optional, Set

from authz.rbac.models import AuthorizationContext

from .models import (
    AUTHORIZED_ACCESS,
    UNAUTHORIZED_ACCESS_ATTEMPT,
    AuditEvent,
    Severity,
)
from .sinks import AuditSink

logger = logging.getLogger(__name__)


class AuditEmitter:
    """
    Emits audit events to a sink without blocking the caller.

    Each write runs in its own task. A failed write is logged and dropped;
    it never changes a verdict that was already computed.
    """

    def __init__(self, sink: AuditSink):
        self.sink = sink
        self._pending: Set[asyncio.Task] = set()

    def log_unauthorized_attempt(
        self,
        reason: str,
        resource: str,
        action: str,
        user_id: Optional[str] = None,
        context: Optional[AuthorizationContext] = None,
    ):
        """Record a denied attempt (high severity)."""
        self._emit(
            AuditEvent(
                event_name=UNAUTHORIZED_ACCESS_ATTEMPT,
                resource=resource,
                action=action,
                granted=False,
                severity=Severity.HIGH,
                user_id=user_id or (context.user_id if context else None),
                reason=reason,
                user_role=context.user_role if context else None,
                ip_address=context.ip_address if context else None,
                user_agent=context.user_agent if context else None,
            )
        )

    def log_authorized_access(
        self,
        resource: str,
        action: str,
        context: AuthorizationContext,
        method: Optional[str] = None,
    ):
        """Record a granted access (low severity usage event)."""
        self._emit(
            AuditEvent(
                event_name=AUTHORIZED_ACCESS,
                resource=resource,
                action=action,
                granted=True,
                severity=Severity.LOW,
                user_id=context.user_id,
                user_role=context.user_role,
                method=method or "rbac_check",
                ip_address=context.ip_address,
                user_agent=context.user_agent,
            )
        )

    def _emit(self, event: AuditEvent):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, dropping audit event {event.event_name}")
            return

        task = loop.create_task(self._write(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, event: AuditEvent):
        try:
            await self.sink.record(event)
        except Exception:
            logger.exception(
                f"Erro ao registrar evento de auditoria {event.event_name} "
                f"({event.resource}.{event.action})"
            )

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self):
        """Wait for in-flight audit writes (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
