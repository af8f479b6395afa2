#!/usr/bin/env python3
"""
Rate limit guard for quota-constrained endpoints
Fixed-window counters per endpoint class with a safety margin and staged backoff hints
"""
import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Any

logger = logging.getLogger(__name__)

DEFAULT_SAFETY_MARGIN = 10
DEFAULT_WINDOW_S = 15 * 60

# X API v2 limits per 15 minute window
DEFAULT_LIMITS = {
    'search': (450, DEFAULT_WINDOW_S),
    'tweets': (300, DEFAULT_WINDOW_S),
    'users': (900, DEFAULT_WINDOW_S),
}

HIGH_USAGE_RATIO = 0.8
MODERATE_USAGE_RATIO = 0.5
HIGH_USAGE_MIN_REMAINING_S = 60.0


@dataclass
class RateLimitBucket:
    endpoint: str
    limit: int
    window_s: float
    window_start: float
    count: int = 0

    def expired(self, now: float) -> bool:
        return now > self.window_start + self.window_s

    def remaining_s(self, now: float) -> float:
        return max(0.0, self.window_start + self.window_s - now)


class RateLimitGuard:
    """Admits or denies requests per endpoint class.

    One instance is shared by every fetcher dispatched in a run; the
    check-then-act pair runs under a lock.
    """

    def __init__(self, limits: Optional[Dict[str, tuple]] = None,
                 safety_margin: int = DEFAULT_SAFETY_MARGIN,
                 high_usage_delay_s: float = 5.0,
                 moderate_usage_delay_s: float = 2.0,
                 clock: Callable[[], float] = time.monotonic):
        self.safety_margin = safety_margin
        self.high_usage_delay_s = high_usage_delay_s
        self.moderate_usage_delay_s = moderate_usage_delay_s
        self._clock = clock
        self._lock = threading.Lock()
        self._limits = dict(limits or DEFAULT_LIMITS)
        self._buckets: Dict[str, RateLimitBucket] = {}
        now = self._clock()
        for endpoint, (limit, window_s) in self._limits.items():
            self._buckets[endpoint] = RateLimitBucket(endpoint, int(limit), float(window_s), now)

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]] = None, **kwargs) -> 'RateLimitGuard':
        """Build from the ``rate_limits`` section of config.json"""
        cfg = cfg or {}
        limits = dict(DEFAULT_LIMITS)
        for endpoint, limit in (cfg.get('endpoints') or {}).items():
            limits[endpoint] = (int(limit['requests']), float(limit.get('window_s', DEFAULT_WINDOW_S)))
        return cls(
            limits=limits,
            safety_margin=int(cfg.get('safety_margin', DEFAULT_SAFETY_MARGIN)),
            high_usage_delay_s=float(cfg.get('high_usage_delay_s', 5.0)),
            moderate_usage_delay_s=float(cfg.get('moderate_usage_delay_s', 2.0)),
            **kwargs,
        )

    def _bucket(self, endpoint: str) -> Optional[RateLimitBucket]:
        bucket = self._buckets.get(endpoint)
        if bucket is None:
            logger.warning(f"[RATE_LIMIT] unknown endpoint class '{endpoint}', not tracked")
            return None
        now = self._clock()
        if bucket.expired(now):
            logger.debug(f"[RATE_LIMIT] window rollover for {endpoint} ({bucket.count}/{bucket.limit} used)")
            bucket.count = 0
            bucket.window_start = now
        return bucket

    def _admits(self, bucket: RateLimitBucket, n: int) -> bool:
        return bucket.count + n <= bucket.limit - self.safety_margin

    def can_admit(self, endpoint: str, n: int = 1) -> bool:
        with self._lock:
            bucket = self._bucket(endpoint)
            if bucket is None:
                return True
            return self._admits(bucket, n)

    def record_usage(self, endpoint: str, n: int = 1) -> None:
        with self._lock:
            bucket = self._bucket(endpoint)
            if bucket is None:
                return
            bucket.count += n
            logger.info(f"Rate limit {endpoint}: {bucket.count}/{bucket.limit} used")

    def try_acquire(self, endpoint: str, n: int = 1) -> bool:
        """Atomic admit-and-record"""
        with self._lock:
            bucket = self._bucket(endpoint)
            if bucket is None:
                return True
            if not self._admits(bucket, n):
                return False
            bucket.count += n
            return True

    def reset(self, endpoint: str) -> None:
        with self._lock:
            bucket = self._buckets.get(endpoint)
            if bucket is not None:
                bucket.count = 0
                bucket.window_start = self._clock()

    def usage(self, endpoint: str) -> int:
        with self._lock:
            bucket = self._bucket(endpoint)
            return bucket.count if bucket else 0

    def time_until_reset(self, endpoint: str) -> float:
        with self._lock:
            bucket = self._buckets.get(endpoint)
            if bucket is None:
                return 0.0
            return bucket.remaining_s(self._clock())

    def suggested_backoff(self, endpoint: str) -> float:
        """Congestion-avoidance delay in seconds; not a closed-loop controller"""
        with self._lock:
            bucket = self._bucket(endpoint)
            if bucket is None or bucket.limit <= 0:
                return 0.0
            usage = bucket.count / bucket.limit
            remaining = bucket.remaining_s(self._clock())
        if usage > HIGH_USAGE_RATIO and remaining > HIGH_USAGE_MIN_REMAINING_S:
            return self.high_usage_delay_s
        if usage > MODERATE_USAGE_RATIO:
            return self.moderate_usage_delay_s
        return 0.0

    def status(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            now = self._clock()
            return {
                endpoint: {
                    'used': bucket.count,
                    'limit': bucket.limit,
                    'reset_in': int(round(bucket.remaining_s(now))),
                }
                for endpoint, bucket in self._buckets.items()
            }

    async def wait_for_reset(self, endpoint: str) -> None:
        wait_s = self.time_until_reset(endpoint)
        if wait_s > 0:
            logger.info(f"Waiting {wait_s:.0f}s for {endpoint} rate limit reset")
            await asyncio.sleep(wait_s)
            self.reset(endpoint)
