"""Error taxonomy for authorization decisions."""

from enum import Enum
from typing import Any, Dict, Optional


class DenialCode(str, Enum):
    """Machine-readable denial causes, also used as audit event labels."""

    AUTHENTICATION_REQUIRED = "authentication_required"
    CONTEXT_UNAVAILABLE = "context_unavailable"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
    AUTHORIZATION_ERROR = "authorization_error"
    SYSTEM_ERROR = "system_error"


DENIAL_MESSAGES: Dict[DenialCode, str] = {
    DenialCode.AUTHENTICATION_REQUIRED: "Usuário não autenticado",
    DenialCode.CONTEXT_UNAVAILABLE: "Contexto do usuário indisponível",
    DenialCode.RATE_LIMIT_EXCEEDED: "Limite de requisições excedido",
    DenialCode.INSUFFICIENT_PERMISSIONS: "Permissões insuficientes",
    DenialCode.AUTHORIZATION_ERROR: "Erro na verificação de autorização",
    DenialCode.SYSTEM_ERROR: "Erro do sistema",
}


class RoleStoreError(Exception):
    """Raised by Role/Permission Store implementations on backend failure."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


class AuthorizationError(Exception):
    """Base class for a pipeline failure that resolves to a denial."""

    code: DenialCode = DenialCode.SYSTEM_ERROR

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or self.reason)
        self.detail = detail

    @property
    def reason(self) -> str:
        return DENIAL_MESSAGES[self.code]


class AuthenticationMissing(AuthorizationError):
    code = DenialCode.AUTHENTICATION_REQUIRED


class ContextUnavailable(AuthorizationError):
    code = DenialCode.CONTEXT_UNAVAILABLE


class RateLimitExceeded(AuthorizationError):
    code = DenialCode.RATE_LIMIT_EXCEEDED


class InsufficientPermissions(AuthorizationError):
    code = DenialCode.INSUFFICIENT_PERMISSIONS


class AuthorizationStoreError(AuthorizationError):
    code = DenialCode.AUTHORIZATION_ERROR


class AuthorizationSystemError(AuthorizationError):
    code = DenialCode.SYSTEM_ERROR


class AuthorizationDenied(Exception):
    """
    Raised by ``AuthorizationEngine.authorize_or_raise`` for callers that
    prefer exceptions over inspecting a decision.
    """

    def __init__(self, decision: Any):
        reason = getattr(decision, "reason", None) or "Acesso negado"
        super().__init__(f"Autorização negada: {reason}")
        self.decision = decision

    @property
    def code(self) -> Optional[DenialCode]:
        return getattr(self.decision, "code", None)

    @property
    def reason(self) -> Optional[str]:
        return getattr(self.decision, "reason", None)
