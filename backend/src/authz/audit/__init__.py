"""Audit trail for authorization outcomes."""

from .emitter import AuditEmitter
from .models import AUTHORIZED_ACCESS, UNAUTHORIZED_ACCESS_ATTEMPT, AuditEvent, Severity
from .sinks import (
    AuditSink,
    CompositeAuditSink,
    InMemoryAuditSink,
    LoggingAuditSink,
    RoleStoreAuditSink,
)

__all__ = [
    "AuditEmitter",
    "AUTHORIZED_ACCESS",
    "UNAUTHORIZED_ACCESS_ATTEMPT",
    "AuditEvent",
    "Severity",
    "AuditSink",
    "CompositeAuditSink",
    "InMemoryAuditSink",
    "LoggingAuditSink",
    "RoleStoreAuditSink",
]
