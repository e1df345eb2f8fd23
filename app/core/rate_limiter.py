"""
In-memory sliding-window rate limiter for the public auth endpoints.

Complements account lockout: lockout protects one account, this protects
the endpoints from a single client spraying many accounts. State is per
process; multi-instance deployments need a shared store instead.
"""

import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict, List, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int
    window_seconds: int


DEFAULT_LIMITS: Dict[str, RateLimitConfig] = {
    "login_ip": RateLimitConfig(max_requests=30, window_seconds=900),
    "login_identifier": RateLimitConfig(max_requests=15, window_seconds=900),
    "password_reset_ip": RateLimitConfig(max_requests=5, window_seconds=900),
    "password_reset_email": RateLimitConfig(max_requests=3, window_seconds=3600),
}


class RateLimiter:
    """Thread-safe sliding-window counter keyed by ``limit_type:identifier``."""

    def __init__(self, configs: Dict[str, RateLimitConfig] = None):
        self.configs = dict(configs or DEFAULT_LIMITS)
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._lock = Lock()

    def is_allowed(self, limit_type: str, identifier: str) -> Tuple[bool, int]:
        """
        Record a request if it fits in the window.

        Returns:
            (allowed, retry_after_seconds)
        """
        config = self.configs.get(limit_type)
        if config is None:
            logger.warning(f"Unknown rate limit type: {limit_type}")
            return True, 0

        key = f"{limit_type}:{identifier}"
        with self._lock:
            now = time.time()
            window = [ts for ts in self._requests[key] if ts > now - config.window_seconds]
            if len(window) >= config.max_requests:
                self._requests[key] = window
                retry_after = int(window[0] + config.window_seconds - now) + 1
                return False, max(retry_after, 1)

            window.append(now)
            self._requests[key] = window
            return True, 0

    def reset(self, limit_type: str, identifier: str) -> None:
        with self._lock:
            self._requests.pop(f"{limit_type}:{identifier}", None)

    def clear(self) -> None:
        with self._lock:
            self._requests.clear()


rate_limiter = RateLimiter()


def get_client_ip(request) -> str:
    """Extract client IP from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"
