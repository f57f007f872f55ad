"""
Rate Limiter - token-bucket admission control per external API

One RateLimiter instance is shared by every run in the process. Each named
bucket owns its state behind its own lock; callers only ever go through
acquire()/wait().
"""
import math
import threading
import time
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

MUSICBRAINZ = "musicbrainz"
LASTFM = "lastfm"

# (capacity, refill tokens per second)
DEFAULT_BUCKETS: Dict[str, Tuple[float, float]] = {
    MUSICBRAINZ: (1.0, 1.0),
    LASTFM: (5.0, 5.0),
}


@dataclass(frozen=True)
class Admission:
    """Result of an acquire attempt."""
    allowed: bool
    retry_after_ms: int = 0


class TokenBucket:
    """
    Continuously refilled token bucket.

    Tokens refill from elapsed monotonic time, capped at capacity; each
    successful acquire consumes exactly one token.
    """

    def __init__(self, capacity: float, refill_per_second: float,
                 clock: Callable[[], float] = time.monotonic):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if refill_per_second <= 0:
            raise ValueError("refill_per_second must be positive")

        self.capacity = float(capacity)
        self.refill_per_second = float(refill_per_second)
        self._clock = clock
        self._tokens = float(capacity)
        self._last_refill = clock()
        self._lock = threading.Lock()

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_per_second)
        self._last_refill = now

    def acquire(self) -> Admission:
        with self._lock:
            self._refill(self._clock())
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return Admission(allowed=True)
            missing = 1.0 - self._tokens
            retry_after_ms = max(1, math.ceil(missing / self.refill_per_second * 1000))
            return Admission(allowed=False, retry_after_ms=retry_after_ms)

    @property
    def tokens(self) -> float:
        with self._lock:
            self._refill(self._clock())
            return self._tokens


class RateLimiter:
    """
    Registry of named token buckets.

    Usage:
        limiter = RateLimiter()

        limiter.wait("musicbrainz")  # Sleeps until a token is available
        make_api_call()
    """

    def __init__(
        self,
        buckets: Optional[Dict[str, Tuple[float, float]]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize rate limiter

        Args:
            buckets: Mapping of api name -> (capacity, refill per second)
            clock: Monotonic clock (injectable for tests)
            sleep: Sleep function used by wait()
        """
        config = dict(DEFAULT_BUCKETS)
        config.update(buckets or {})
        self._buckets = {
            name: TokenBucket(capacity, rate, clock=clock)
            for name, (capacity, rate) in config.items()
        }
        self._sleep = sleep
        self._stats_lock = threading.Lock()
        self.total_waits = 0
        self.total_wait_time = 0.0

        for name, bucket in self._buckets.items():
            logger.debug(
                f"Rate bucket '{name}': capacity {bucket.capacity:g}, "
                f"refill {bucket.refill_per_second:g}/sec"
            )

    def acquire(self, api_name: str) -> Admission:
        """Try to take one token from the named bucket (KeyError if unknown)."""
        return self._buckets[api_name].acquire()

    def wait(self, api_name: str) -> None:
        """Block until the named bucket admits one request."""
        while True:
            admission = self.acquire(api_name)
            if admission.allowed:
                return
            delay = admission.retry_after_ms / 1000.0
            with self._stats_lock:
                self.total_waits += 1
                self.total_wait_time += delay
            logger.debug(f"Rate limited on {api_name}, sleeping {admission.retry_after_ms}ms")
            self._sleep(delay)

    def get_stats(self) -> dict:
        """Get statistics about rate limiting"""
        with self._stats_lock:
            return {
                'total_waits': self.total_waits,
                'total_wait_time': self.total_wait_time,
                'avg_wait_time': self.total_wait_time / self.total_waits if self.total_waits > 0 else 0
            }
