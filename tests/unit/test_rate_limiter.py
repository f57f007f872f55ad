"""Unit tests for the token-bucket rate limiter."""

import threading

import pytest

from seedmix.rate_limiter import DEFAULT_BUCKETS, LASTFM, MUSICBRAINZ, RateLimiter, TokenBucket

from helpers import FakeClock


# =============================================================================
# TokenBucket
# =============================================================================

class TestTokenBucket:
    """Admission and refill behaviour of a single bucket."""

    def test_capacity_requests_then_denial(self):
        """C immediate acquires succeed; the next is denied with retry_after ~ 1000/R."""
        clock = FakeClock()
        bucket = TokenBucket(capacity=5, refill_per_second=5, clock=clock)

        results = [bucket.acquire() for _ in range(5)]
        assert all(r.allowed for r in results)

        denied = bucket.acquire()
        assert not denied.allowed
        assert denied.retry_after_ms == 200

    def test_acquire_succeeds_after_retry_after(self):
        clock = FakeClock()
        bucket = TokenBucket(capacity=1, refill_per_second=1, clock=clock)

        assert bucket.acquire().allowed
        denied = bucket.acquire()
        assert denied.retry_after_ms == 1000

        clock.advance(denied.retry_after_ms / 1000)
        assert bucket.acquire().allowed

    def test_partial_refill_shortens_retry_after(self):
        clock = FakeClock()
        bucket = TokenBucket(capacity=1, refill_per_second=2, clock=clock)
        bucket.acquire()

        clock.advance(0.25)  # half a token back
        denied = bucket.acquire()
        assert not denied.allowed
        assert denied.retry_after_ms == 250

    def test_refill_capped_at_capacity(self):
        clock = FakeClock()
        bucket = TokenBucket(capacity=3, refill_per_second=1, clock=clock)
        clock.advance(3600)
        assert bucket.tokens == pytest.approx(3.0)

    def test_clock_going_backwards_adds_nothing(self):
        clock = FakeClock()
        bucket = TokenBucket(capacity=1, refill_per_second=1, clock=clock)
        bucket.acquire()
        clock.advance(-10)
        assert not bucket.acquire().allowed

    @pytest.mark.parametrize("capacity,rate", [(0, 1), (1, 0), (1, -2)])
    def test_invalid_parameters(self, capacity, rate):
        with pytest.raises(ValueError):
            TokenBucket(capacity=capacity, refill_per_second=rate)


# =============================================================================
# RateLimiter
# =============================================================================

class TestRateLimiter:
    """Named buckets, blocking wait and statistics."""

    def test_default_buckets(self):
        assert DEFAULT_BUCKETS[MUSICBRAINZ] == (1.0, 1.0)
        assert DEFAULT_BUCKETS[LASTFM] == (5.0, 5.0)

    def test_buckets_are_independent(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)

        assert limiter.acquire(MUSICBRAINZ).allowed
        assert not limiter.acquire(MUSICBRAINZ).allowed
        # Last.fm still has its own tokens
        assert limiter.acquire(LASTFM).allowed

    def test_unknown_api_raises_key_error(self):
        limiter = RateLimiter()
        with pytest.raises(KeyError):
            limiter.acquire("discogs")

    def test_configured_bucket_overrides_default(self):
        clock = FakeClock()
        limiter = RateLimiter(buckets={MUSICBRAINZ: (3, 1)}, clock=clock)
        assert all(limiter.acquire(MUSICBRAINZ).allowed for _ in range(3))
        assert not limiter.acquire(MUSICBRAINZ).allowed

    def test_wait_sleeps_until_admitted(self):
        """wait() sleeps retry_after and records the wait."""
        clock = FakeClock()
        sleeps = []

        def sleep(seconds):
            sleeps.append(seconds)
            clock.advance(seconds)

        limiter = RateLimiter(clock=clock, sleep=sleep)
        limiter.wait(MUSICBRAINZ)
        limiter.wait(MUSICBRAINZ)

        assert sleeps == [pytest.approx(1.0)]
        stats = limiter.get_stats()
        assert stats["total_waits"] == 1
        assert stats["total_wait_time"] == pytest.approx(1.0)
        assert stats["avg_wait_time"] == pytest.approx(1.0)

    def test_stats_start_empty(self):
        assert RateLimiter().get_stats() == {
            "total_waits": 0,
            "total_wait_time": 0.0,
            "avg_wait_time": 0,
        }

    def test_concurrent_acquires_never_exceed_capacity(self):
        clock = FakeClock()
        limiter = RateLimiter(buckets={LASTFM: (5, 5)}, clock=clock)
        admitted = []
        lock = threading.Lock()

        def worker():
            for _ in range(10):
                if limiter.acquire(LASTFM).allowed:
                    with lock:
                        admitted.append(1)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # Frozen clock: no refill, so exactly the capacity is admitted
        assert len(admitted) == 5
