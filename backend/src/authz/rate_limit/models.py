"""Rate-limit budgets per operation class."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict


@dataclass(frozen=True)
class RateLimitConfig:
    """Request budget: at most max_requests per window_minutes."""

    max_requests: int
    window_minutes: int = 60
    enabled: bool = True

    def __post_init__(self):
        if self.max_requests < 1:
            raise ValueError("max_requests must be positive")
        if self.window_minutes < 1:
            raise ValueError("window_minutes must be positive")


class RateLimitProfile(str, Enum):
    """Canonical operation classes. Call sites pick one explicitly."""

    GENERAL = "general"
    SENSITIVE = "sensitive"
    BULK_OPERATIONS = "bulk_operations"
    FILE_UPLOAD = "file_upload"
    API_CALLS = "api_calls"

    @property
    def config(self) -> RateLimitConfig:
        return RATE_LIMITS[self.name]


RATE_LIMITS: Dict[str, RateLimitConfig] = {
    "GENERAL": RateLimitConfig(max_requests=100, window_minutes=60),
    "SENSITIVE": RateLimitConfig(max_requests=20, window_minutes=60),
    "BULK_OPERATIONS": RateLimitConfig(max_requests=10, window_minutes=60),
    "FILE_UPLOAD": RateLimitConfig(max_requests=50, window_minutes=60),
    "API_CALLS": RateLimitConfig(max_requests=1000, window_minutes=60),
}
