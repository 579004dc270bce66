"""Default system roles and seeding helpers."""

import logging
from typing import Dict, List

from .models import Role
from .permissions import Action, Resource
from .store import RoleStore

logger = logging.getLogger(__name__)

_CRUD = ["create", "read", "update", "delete"]

SYSTEM_ROLES: List[Dict] = [
    {
        "name": "super_admin",
        "display_name": "Super Administrador",
        "description": "Acesso total ao sistema",
        "hierarchy_level": 1,
        "permissions": {r.value: [a.value for a in Action] for r in Resource},
    },
    {
        "name": "admin",
        "display_name": "Administrador",
        "description": "Administração da organização",
        "hierarchy_level": 2,
        "permissions": {
            "users": _CRUD + ["manage_roles"],
            "roles": ["read"],
            "agents": _CRUD + ["manage_all"],
            "documents": _CRUD + ["manage_all"],
            "chat": _CRUD + ["moderate"],
            "whatsapp": _CRUD + ["manage_instances"],
            "email_marketing": _CRUD + ["send_campaigns", "manage_templates"],
            "integrations": _CRUD + ["configure"],
            "analytics": ["read", "export"],
            "system": ["read", "logs"],
            "flow_builder": _CRUD + ["execute", "manage_templates", "manage_triggers"],
        },
    },
    {
        "name": "moderator",
        "display_name": "Moderador",
        "description": "Moderação de conteúdo e conversas",
        "hierarchy_level": 3,
        "permissions": {
            "users": ["read"],
            "agents": ["read", "update"],
            "documents": ["create", "read", "update"],
            "chat": ["create", "read", "update", "moderate"],
            "whatsapp": ["read"],
            "email_marketing": ["read"],
            "analytics": ["read"],
            "flow_builder": ["read", "execute"],
        },
    },
    {
        "name": "user",
        "display_name": "Usuário",
        "description": "Acesso básico",
        "hierarchy_level": 4,
        "permissions": {
            "agents": ["read"],
            "documents": ["read"],
            "chat": ["create", "read", "update"],
            "flow_builder": ["read"],
        },
    },
]


def build_system_roles() -> List[Role]:
    return [
        Role(id=spec["name"], is_system_role=True, **spec) for spec in SYSTEM_ROLES
    ]


async def seed_system_roles(store: RoleStore) -> List[Role]:
    """Create any missing system role. Existing roles are left untouched."""
    created = []
    for role in build_system_roles():
        if await store.get_role_by_name(role.name):
            continue
        created.append(await store.create_role(role))

    if created:
        logger.info(f"Seeded system roles: {[r.name for r in created]}")
    return created


async def ensure_system_roles(store: RoleStore) -> bool:
    """Return True if every system role exists and is active."""
    for spec in SYSTEM_ROLES:
        role = await store.get_role_by_name(spec["name"])
        if not role or not role.is_active:
            logger.warning(f"System role missing or inactive: {spec['name']}")
            return False
    return True
