"""Request budgets for authorization checks."""

from .limiter import LocalRateCounter, RateLimiter, RateLimitSpec, resolve_config
from .models import RATE_LIMITS, RateLimitConfig, RateLimitProfile

__all__ = [
    "LocalRateCounter",
    "RateLimiter",
    "RateLimitSpec",
    "resolve_config",
    "RATE_LIMITS",
    "RateLimitConfig",
    "RateLimitProfile",
]
