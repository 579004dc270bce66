"""Typed permission maps: resource -> set of allowed actions."""

import logging
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Mapping, Union

logger = logging.getLogger(__name__)


class Resource(str, Enum):
    """Known protected resources."""

    USERS = "users"
    ROLES = "roles"
    AGENTS = "agents"
    DOCUMENTS = "documents"
    CHAT = "chat"
    WHATSAPP = "whatsapp"
    EMAIL_MARKETING = "email_marketing"
    INTEGRATIONS = "integrations"
    ANALYTICS = "analytics"
    SYSTEM = "system"
    FLOW_BUILDER = "flow_builder"


class Action(str, Enum):
    """Known actions on resources."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    MANAGE_ROLES = "manage_roles"
    MANAGE_PUBLIC = "manage_public"
    MANAGE_ALL = "manage_all"
    MODERATE = "moderate"
    MANAGE_INSTANCES = "manage_instances"
    SEND_CAMPAIGNS = "send_campaigns"
    CONFIGURE = "configure"
    EXPORT = "export"
    MAINTAIN = "maintain"
    BACKUP = "backup"
    LOGS = "logs"
    EXECUTE = "execute"
    MANAGE_TEMPLATES = "manage_templates"
    MANAGE_TRIGGERS = "manage_triggers"
    IMPORT = "import"


KNOWN_RESOURCES = frozenset(r.value for r in Resource)
KNOWN_ACTIONS = frozenset(a.value for a in Action)

# Resources and actions outside the enums are kept as opaque strings.
PermissionMap = Dict[str, FrozenSet[str]]
Identifier = Union[str, Resource, Action]


RESOURCE_LABELS: Dict[str, str] = {
    "users": "Usuários",
    "roles": "Papéis",
    "agents": "Agentes de IA",
    "documents": "Documentos",
    "chat": "Chat",
    "whatsapp": "WhatsApp",
    "email_marketing": "Email Marketing",
    "integrations": "Integrações",
    "analytics": "Analytics",
    "system": "Sistema",
    "flow_builder": "Flow Builder",
}

ACTION_LABELS: Dict[str, str] = {
    "create": "Criar",
    "read": "Visualizar",
    "update": "Editar",
    "delete": "Deletar",
    "manage_roles": "Gerenciar Papéis",
    "manage_public": "Gerenciar Públicos",
    "manage_all": "Gerenciar Todos",
    "moderate": "Moderar",
    "manage_instances": "Gerenciar Instâncias",
    "send_campaigns": "Enviar Campanhas",
    "configure": "Configurar",
    "export": "Exportar",
    "maintain": "Manter",
    "backup": "Backup",
    "logs": "Logs",
    "execute": "Executar",
    "manage_templates": "Gerenciar Templates",
    "manage_triggers": "Gerenciar Triggers",
    "import": "Importar",
}


def normalize_identifier(value: Identifier, kind: str = "identifier") -> str:
    """
    Normalize a resource or action identifier.

    Enum members collapse to their value; strings are stripped and lowercased.

    Raises:
        ValueError: If the value is not a string or is empty
    """
    if isinstance(value, Enum):
        return value.value
    if not isinstance(value, str):
        raise ValueError(f"Invalid {kind}: {value!r}")
    normalized = value.strip().lower()
    if not normalized:
        raise ValueError(f"Empty {kind}")
    return normalized


def normalize_permissions(
    raw: Mapping[Identifier, Iterable[Identifier]],
) -> PermissionMap:
    """
    Validate a raw permission mapping coming from the store.

    Unknown resources and actions pass through unchanged so that newer
    store data keeps working with older code.

    Args:
        raw: Mapping of resource -> iterable of actions

    Returns:
        PermissionMap with frozen action sets

    Raises:
        ValueError: If the mapping or any identifier is malformed
    """
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ValueError(f"Permission map must be a mapping, got {type(raw).__name__}")

    permissions: PermissionMap = {}
    for resource, actions in raw.items():
        resource_id = normalize_identifier(resource, "resource")
        if isinstance(actions, (str, bytes)) or not isinstance(actions, Iterable):
            raise ValueError(f"Actions for '{resource_id}' must be a list of names")

        action_ids = frozenset(
            normalize_identifier(action, "action") for action in actions
        )

        if resource_id not in KNOWN_RESOURCES:
            logger.debug(f"Passing through unknown resource: {resource_id}")
        unknown_actions = action_ids - KNOWN_ACTIONS
        if unknown_actions:
            logger.debug(
                f"Passing through unknown actions on {resource_id}: "
                f"{sorted(unknown_actions)}"
            )

        permissions[resource_id] = permissions.get(resource_id, frozenset()) | action_ids
    return permissions


def merge_permissions(maps: Iterable[PermissionMap]) -> PermissionMap:
    """Union several permission maps."""
    merged: Dict[str, set] = {}
    for permission_map in maps:
        for resource, actions in permission_map.items():
            merged.setdefault(resource, set()).update(actions)
    return {resource: frozenset(actions) for resource, actions in merged.items()}


def has_permission(
    permissions: PermissionMap, resource: Identifier, action: Identifier
) -> bool:
    """Check whether a permission map grants an action on a resource."""
    try:
        resource_id = normalize_identifier(resource, "resource")
        action_id = normalize_identifier(action, "action")
    except ValueError:
        return False
    return action_id in permissions.get(resource_id, frozenset())


def permissions_to_dict(permissions: PermissionMap) -> Dict[str, list]:
    """Convert to a JSON-friendly dict with sorted action lists."""
    return {
        resource: sorted(actions) for resource, actions in sorted(permissions.items())
    }


def get_resource_label(resource: str) -> str:
    return RESOURCE_LABELS.get(resource, resource)


def get_action_label(action: str) -> str:
    return ACTION_LABELS.get(action, action)


def format_permission(resource: Identifier, action: Identifier) -> str:
    """Human-readable label, e.g. ``Criar Documentos``."""
    resource_id = normalize_identifier(resource, "resource")
    action_id = normalize_identifier(action, "action")
    return f"{get_action_label(action_id)} {get_resource_label(resource_id)}"
