# =============================================================================
# Billing Engine - Rate Limiter Tests
# =============================================================================

import time
from unittest.mock import patch

import pytest

from billing_engine.services.rate_limiter import RateAllowed, RateDenied, RateLimiter


class TestRateLimiter:
    """Tests for the per-identity window limiter (memory storage)."""

    def test_allows_up_to_limit(self):
        limiter = RateLimiter('memory://')
        results = [limiter.allow('user:1', 'checkout', 30, 60) for _ in range(30)]

        assert all(isinstance(r, RateAllowed) for r in results)
        assert results[0].remaining == 29
        assert results[-1].remaining == 0

    def test_thirty_first_call_denied(self):
        """31st request inside the window is refused with a reset under 60s away."""
        limiter = RateLimiter('memory://')
        for _ in range(30):
            limiter.allow('user:1', 'checkout', 30, 60)

        now = time.time()
        result = limiter.allow('user:1', 'checkout', 30, 60)

        assert isinstance(result, RateDenied)
        assert result.limit == 30
        assert now < result.reset_at <= now + 61
        assert 0 <= result.retry_after <= 61

    def test_identities_are_independent(self):
        limiter = RateLimiter('memory://')
        for _ in range(2):
            limiter.allow('user:1', 'portal', 2, 60)

        assert isinstance(limiter.allow('user:1', 'portal', 2, 60), RateDenied)
        assert isinstance(limiter.allow('user:2', 'portal', 2, 60), RateAllowed)

    def test_buckets_are_independent(self):
        limiter = RateLimiter('memory://')
        for _ in range(2):
            limiter.allow('user:1', 'portal', 2, 60)

        assert isinstance(limiter.allow('user:1', 'checkout', 2, 60), RateAllowed)

    def test_moving_window_strategy(self):
        limiter = RateLimiter('memory://', 'moving-window')
        limiter.allow('ip:1.2.3.4', 'checkout', 1, 60)
        assert isinstance(limiter.allow('ip:1.2.3.4', 'checkout', 1, 60), RateDenied)

    def test_unknown_strategy_rejected(self):
        with pytest.raises(ValueError):
            RateLimiter('memory://', 'token-bucket')

    def test_reset_clears_counters(self):
        limiter = RateLimiter('memory://')
        limiter.allow('user:1', 'checkout', 1, 60)
        limiter.reset()
        assert isinstance(limiter.allow('user:1', 'checkout', 1, 60), RateAllowed)

    def test_storage_outage_fails_open(self):
        """Counter storage errors let the request through."""
        limiter = RateLimiter('memory://')
        with patch.object(limiter.limiter, 'hit', side_effect=ConnectionError('redis down')):
            result = limiter.allow('user:1', 'checkout', 30, 60)

        assert isinstance(result, RateAllowed)
        assert result.remaining == 30
