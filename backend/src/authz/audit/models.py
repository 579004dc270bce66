"""Audit event model."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from authz.rbac.models import to_iso, utc_now

UNAUTHORIZED_ACCESS_ATTEMPT = "unauthorized_access_attempt"
AUTHORIZED_ACCESS = "authorized_access"
SECURITY_CATEGORY = "security"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class AuditEvent:
    """One authorization outcome, as written to an audit sink."""

    event_name: str
    resource: str
    action: str
    granted: bool
    severity: Severity
    user_id: Optional[str] = None
    reason: Optional[str] = None
    user_role: Optional[str] = None
    method: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    category: str = SECURITY_CATEGORY
    timestamp: str = field(default_factory=lambda: to_iso(utc_now()))

    @property
    def label(self) -> str:
        """reason for denials, resource.action for grants."""
        if self.granted:
            return f"{self.resource}.{self.action}"
        return self.reason or ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eventName": self.event_name,
            "eventCategory": self.category,
            "eventLabel": self.label,
            "severity": self.severity.value,
            "granted": self.granted,
            "userId": self.user_id,
            "resource": self.resource,
            "action": self.action,
            "reason": self.reason,
            "userRole": self.user_role,
            "method": self.method,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "timestamp": self.timestamp,
        }
