"""Authentication models."""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class User:
    """Authenticated user model."""
    user_id: str
    email: str = ""
    name: str = ""
    roles: List[str] = field(default_factory=list)


@dataclass
class Session:
    """The calling identity plus client details used for audit correlation."""
    user: User
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def user_id(self) -> str:
        return self.user.user_id
