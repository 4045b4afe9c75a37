"""
Short-window rate limiter for mutation endpoints.

Uses the same ``limits`` storage backends as Flask-Limiter: ``memory://`` for
a single instance, ``redis://`` when several workers must share counters.
"""
import logging
import math
import time
from dataclasses import dataclass
from typing import Union

from limits import RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter, MovingWindowRateLimiter

logger = logging.getLogger(__name__)

STRATEGIES = {
    'fixed-window': FixedWindowRateLimiter,
    'moving-window': MovingWindowRateLimiter,
}


@dataclass(frozen=True)
class RateAllowed:
    remaining: int
    reset_at: int


@dataclass(frozen=True)
class RateDenied:
    limit: int
    reset_at: int

    @property
    def retry_after(self):
        return max(0, self.reset_at - int(time.time()))


RateResult = Union[RateAllowed, RateDenied]


class RateLimiter:
    """Window counters keyed by (bucket, identity)."""

    def __init__(self, storage_uri='memory://', strategy='fixed-window'):
        try:
            strategy_class = STRATEGIES[strategy]
        except KeyError:
            raise ValueError(f'Unsupported rate limit strategy: {strategy}')
        self.storage_uri = storage_uri
        self.storage = storage_from_string(storage_uri)
        self.limiter = strategy_class(self.storage)

    def allow(self, identity: str, bucket: str, limit: int, window_seconds: int) -> RateResult:
        """Count one request and report whether it fits in the window.

        A storage outage lets the request through: the daily quota still
        guards metered work.
        """
        item = RateLimitItemPerSecond(limit, window_seconds)
        try:
            admitted = self.limiter.hit(item, bucket, identity)
            reset_time, remaining = self.limiter.get_window_stats(item, bucket, identity)
        except Exception:
            logger.exception('Rate limit storage %s unavailable; allowing %s/%s',
                             self.storage_uri, bucket, identity)
            return RateAllowed(remaining=limit, reset_at=int(time.time()) + window_seconds)

        reset_at = math.ceil(reset_time)
        if admitted:
            return RateAllowed(remaining=remaining, reset_at=reset_at)
        return RateDenied(limit=limit, reset_at=reset_at)

    def reset(self):
        """Clear every counter (tests, maintenance)."""
        self.storage.reset()
