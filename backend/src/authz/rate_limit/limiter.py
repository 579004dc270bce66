"""
Rate limiter for authorization checks.

Two tiers:
- LocalRateCounter: optional in-process sliding window. It only saves a
  store round-trip when a caller is obviously over budget and is never
  trusted to grant anything on its own.
- RoleStore.check_rate_limit: the counter that actually decides.
"""

import time
import logging
from collections import deque
from typing import Callable, Deque, Dict, Optional, Tuple, Union

from authz.rbac.models import AuthorizationContext
from authz.rbac.store import DEFAULT_IP_ADDRESS, RoleStore

from .models import RateLimitConfig, RateLimitProfile

logger = logging.getLogger(__name__)

RateLimitSpec = Union[RateLimitConfig, RateLimitProfile, None]


def resolve_config(spec: RateLimitSpec) -> Optional[RateLimitConfig]:
    """Accept a profile or an explicit config."""
    if isinstance(spec, RateLimitProfile):
        return spec.config
    return spec


class LocalRateCounter:
    """
    Sliding-window request counter kept in process memory.

    Each request is stored as a timestamp; the count is the number of
    timestamps inside the window.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._requests: Dict[Tuple[str, str, str], Deque[float]] = {}

    def _prune(self, key: Tuple[str, str, str], window_seconds: float) -> Deque[float]:
        """Drop timestamps outside the window; empty windows are removed."""
        window = self._requests.get(key)
        if window is None:
            return deque()
        cutoff = self._clock() - window_seconds
        while window and window[0] <= cutoff:
            window.popleft()
        if not window:
            del self._requests[key]
        return window

    def hit(self, user_id: str, action: str, resource: str, config: RateLimitConfig) -> bool:
        """Record a request and return False if the budget is already used up."""
        key = (user_id, action, resource)
        window = self._prune(key, config.window_minutes * 60)
        if len(window) >= config.max_requests:
            return False
        window.append(self._clock())
        self._requests[key] = window
        return True

    def get_remaining(
        self, user_id: str, action: str, resource: str, config: RateLimitConfig
    ) -> int:
        window = self._prune((user_id, action, resource), config.window_minutes * 60)
        return max(0, config.max_requests - len(window))

    def reset(self, user_id: Optional[str] = None):
        """Clear counters for one user, or all of them."""
        if user_id is None:
            self._requests.clear()
            return
        for key in [k for k in self._requests if k[0] == user_id]:
            del self._requests[key]


class RateLimiter:
    """Evaluates a request budget for (user, action, resource)."""

    def __init__(self, store: RoleStore, local_counter: Optional[LocalRateCounter] = None):
        self.store = store
        self.local_counter = local_counter

    async def check(
        self,
        context: AuthorizationContext,
        action: str,
        resource: str,
        rate_limit: RateLimitSpec,
    ) -> bool:
        """
        Return True if the request is within budget.

        A missing or disabled config skips the check entirely. Store
        errors count as over budget.
        """
        config = resolve_config(rate_limit)
        if config is None or not config.enabled:
            return True

        if self.local_counter and not self.local_counter.hit(
            context.user_id, action, resource, config
        ):
            logger.info(
                f"Local rate budget exhausted for {context.user_id} "
                f"on {resource}.{action}"
            )
            return False

        try:
            allowed = await self.store.check_rate_limit(
                context.user_id,
                context.ip_address or DEFAULT_IP_ADDRESS,
                action,
                resource,
                config.max_requests,
                config.window_minutes,
            )
        except Exception as e:
            logger.error(f"Rate limit check failed for {context.user_id}: {e}")
            return False

        return bool(allowed)
