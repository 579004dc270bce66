"""Audit sinks: where authorization events end up."""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from authz.rbac.store import RoleStore

from .models import AuditEvent, Severity

logger = logging.getLogger(__name__)

# Separate logger name so deployments can route audit records on their own.
audit_logger = logging.getLogger("authz.audit.events")


class AuditSink(ABC):
    """Durable destination for audit events."""

    @abstractmethod
    async def record(self, event: AuditEvent) -> None:
        pass


class InMemoryAuditSink(AuditSink):
    """Keeps events in a list (local development and tests)."""

    def __init__(self):
        self.events: List[AuditEvent] = []

    async def record(self, event: AuditEvent) -> None:
        self.events.append(event)

    def list_events(
        self,
        user_id: Optional[str] = None,
        resource: Optional[str] = None,
        action: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[AuditEvent]:
        """Filtered events, newest first."""
        events = [
            e for e in reversed(self.events)
            if (user_id is None or e.user_id == user_id)
            and (resource is None or e.resource == resource)
            and (action is None or e.action == action)
        ]
        return events[:limit] if limit else events

    def clear(self):
        self.events.clear()


class LoggingAuditSink(AuditSink):
    """Writes each event as a structured log record."""

    async def record(self, event: AuditEvent) -> None:
        level = logging.WARNING if event.severity in (Severity.HIGH, Severity.CRITICAL) else logging.INFO
        if event.granted:
            message = f"Authorized access: {event.resource}.{event.action} ({event.method})"
        else:
            message = f"Tentativa de acesso negada: {event.reason}"
        audit_logger.log(level, message, extra={"event": event.event_name, "audit": event.to_dict()})


class RoleStoreAuditSink(AuditSink):
    """Persists events through the Role/Permission Store's log procedures."""

    def __init__(self, store: RoleStore):
        self.store = store

    async def record(self, event: AuditEvent) -> None:
        if event.granted:
            await self.store.log_permission_check(
                event.user_id,
                event.action,
                event.resource,
                granted=True,
                role_used=event.user_role,
            )
        else:
            await self.store.log_access_denied(
                event.user_id,
                event.action,
                event.resource,
                reason=event.reason,
                ip_address=event.ip_address,
                user_agent=event.user_agent,
            )


class CompositeAuditSink(AuditSink):
    """Fans an event out to several sinks; one failure does not stop the rest."""

    def __init__(self, sinks: Sequence[AuditSink]):
        self.sinks = list(sinks)

    async def record(self, event: AuditEvent) -> None:
        errors = []
        for sink in self.sinks:
            try:
                await sink.record(event)
            except Exception as e:
                logger.error(f"Audit sink {type(sink).__name__} failed: {e}")
                errors.append(e)
        if errors and len(errors) == len(self.sinks):
            raise errors[0]
