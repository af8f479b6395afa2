#!/usr/bin/env python3
"""
Rate limit guard tests - admission, window rollover and backoff hints
"""
import asyncio

from scripts.keyword_scanner.rate_limit import RateLimitGuard


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestRateLimitGuard:
    """Fixed-window counting with a safety margin"""

    def setup_method(self):
        self.clock = FakeClock()
        self.guard = RateLimitGuard({'search': (450, 900)}, safety_margin=10, clock=self.clock)

    def test_denies_inside_safety_margin(self):
        self.guard.record_usage('search', 441)
        assert self.guard.can_admit('search', 1) is False

    def test_admits_below_safety_margin(self):
        self.guard.record_usage('search', 439)
        assert self.guard.can_admit('search', 1) is True

    def test_boundary_is_limit_minus_margin(self):
        self.guard.record_usage('search', 440)
        assert self.guard.can_admit('search', 1) is False
        assert self.guard.can_admit('search', 0) is True

    def test_window_rolls_over_strictly_after_window(self):
        self.guard.record_usage('search', 441)

        self.clock.now += 900
        assert self.guard.can_admit('search') is False

        self.clock.now += 0.001
        assert self.guard.can_admit('search') is True
        assert self.guard.usage('search') == 0

    def test_try_acquire_records_only_when_admitted(self):
        self.guard.record_usage('search', 439)
        assert self.guard.try_acquire('search') is True
        assert self.guard.usage('search') == 440
        assert self.guard.try_acquire('search') is False
        assert self.guard.usage('search') == 440

    def test_unknown_endpoint_is_admitted(self, caplog):
        assert self.guard.can_admit('trends') is True
        self.guard.record_usage('trends', 5)
        assert self.guard.usage('trends') == 0
        assert 'unknown endpoint' in caplog.text

    def test_backoff_stages(self):
        assert self.guard.suggested_backoff('search') == 0.0

        self.guard.record_usage('search', 250)
        assert self.guard.suggested_backoff('search') == 2.0

        self.guard.record_usage('search', 120)
        assert self.guard.suggested_backoff('search') == 5.0

    def test_high_usage_near_reset_only_moderate_delay(self):
        self.guard.record_usage('search', 400)
        self.clock.now += 870
        assert self.guard.suggested_backoff('search') == 2.0

    def test_status_and_reset(self):
        self.guard.record_usage('search', 12)
        self.clock.now += 100
        status = self.guard.status()
        assert status['search'] == {'used': 12, 'limit': 450, 'reset_in': 800}

        self.guard.reset('search')
        assert self.guard.usage('search') == 0
        assert self.guard.time_until_reset('search') == 900

    def test_wait_for_reset_sleeps_then_clears(self, monkeypatch):
        slept = []

        async def fake_sleep(seconds):
            slept.append(seconds)

        monkeypatch.setattr(asyncio, 'sleep', fake_sleep)
        self.guard.record_usage('search', 445)
        self.clock.now += 300

        asyncio.run(self.guard.wait_for_reset('search'))

        assert slept == [600]
        assert self.guard.usage('search') == 0


class TestRateLimitConfig:

    def test_from_config_overrides_endpoints_and_margin(self):
        guard = RateLimitGuard.from_config({
            'safety_margin': 0,
            'endpoints': {'search': {'requests': 2, 'window_s': 60}},
        })
        assert guard.try_acquire('search') is True
        assert guard.try_acquire('search') is True
        assert guard.try_acquire('search') is False
        # Untouched endpoints keep their default limits
        assert guard.status()['users']['limit'] == 900

    def test_defaults_when_section_missing(self):
        guard = RateLimitGuard.from_config(None)
        assert guard.safety_margin == 10
        assert guard.status()['search']['limit'] == 450
