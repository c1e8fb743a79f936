"""
Tests for FixedWindowRateLimiter.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from companion_memory.models.core import Admission
from companion_memory.services.rate_limiter import FixedWindowRateLimiter
from companion_memory.utils.config import RateLimitConfig


class TestWindowBoundary:
    """Capacity and reset behaviour for one identity."""

    def test_exactly_capacity_admissions_then_throttled(self, clock):
        limiter = FixedWindowRateLimiter(max_requests=3, window_seconds=10, clock=clock)

        decisions = [limiter.admit('u1-c1') for _ in range(3)]

        assert decisions == [Admission.ALLOWED] * 3
        assert limiter.admit('u1-c1') == Admission.THROTTLED

    def test_throttle_does_not_consume_budget(self, clock):
        limiter = FixedWindowRateLimiter(max_requests=2, window_seconds=10, clock=clock)
        limiter.admit('id')
        limiter.admit('id')

        for _ in range(5):
            assert limiter.admit('id') == Admission.THROTTLED
        assert limiter.remaining('id') == 0

        clock.advance(10)
        assert limiter.remaining('id') == 2

    def test_window_elapsing_resets_budget(self, clock):
        limiter = FixedWindowRateLimiter(max_requests=2, window_seconds=10, clock=clock)
        limiter.admit('id')
        limiter.admit('id')
        assert limiter.admit('id') == Admission.THROTTLED

        clock.advance(9)
        assert limiter.admit('id') == Admission.THROTTLED

        clock.advance(1)
        assert limiter.admit('id') == Admission.ALLOWED
        assert limiter.admit('id') == Admission.ALLOWED
        assert limiter.admit('id') == Admission.THROTTLED

    def test_identities_have_independent_budgets(self, clock):
        limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=10, clock=clock)

        assert limiter.admit('a') == Admission.ALLOWED
        assert limiter.admit('a') == Admission.THROTTLED
        assert limiter.admit('b') == Admission.ALLOWED

    def test_remaining_for_unknown_identity_is_full(self, clock):
        limiter = FixedWindowRateLimiter(max_requests=4, window_seconds=10, clock=clock)

        assert limiter.remaining('nobody') == 4


class TestConfiguration:

    @pytest.mark.parametrize('max_requests,window', [(0, 10), (5, 0), (5, -1)])
    def test_invalid_budget_rejected(self, max_requests, window):
        with pytest.raises(ValueError):
            FixedWindowRateLimiter(max_requests=max_requests, window_seconds=window)

    def test_from_config(self):
        limiter = FixedWindowRateLimiter.from_config(RateLimitConfig(max_requests=7, window_seconds=30))

        assert limiter.max_requests == 7
        assert limiter.window_seconds == 30


class TestPurge:

    def test_purge_drops_only_closed_windows(self, clock):
        limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=10, clock=clock)
        limiter.admit('old')
        clock.advance(5)
        limiter.admit('new')
        clock.advance(6)

        assert limiter.purge_expired() == 1
        assert limiter.admit('new') == Admission.THROTTLED
        assert limiter.admit('old') == Admission.ALLOWED


class TestConcurrency:

    def test_concurrent_admissions_never_exceed_capacity(self):
        limiter = FixedWindowRateLimiter(max_requests=10, window_seconds=60)
        barrier = threading.Barrier(50)

        def admit():
            barrier.wait()
            return limiter.admit('shared')

        with ThreadPoolExecutor(max_workers=50) as pool:
            decisions = list(pool.map(lambda _: admit(), range(50)))

        assert decisions.count(Admission.ALLOWED) == 10
        assert decisions.count(Admission.THROTTLED) == 40

    def test_held_identity_does_not_block_others(self):
        limiter = FixedWindowRateLimiter(max_requests=5, window_seconds=60)
        limiter.admit('busy')
        busy_window = limiter._windows['busy']

        with busy_window.lock:
            result = []
            worker = threading.Thread(target=lambda: result.append(limiter.admit('other')))
            worker.start()
            worker.join(timeout=2)

        assert result == [Admission.ALLOWED]
