"""Tests for the SQLite TTL response cache."""

from seedmix.response_cache import ResponseCache

from helpers import FakeClock


class TestResponseCache:

    def test_set_then_get(self):
        cache = ResponseCache(":memory:")
        cache.set("lastfm:track:abc", {"tags": ["rock"]}, ttl_seconds=60)
        assert cache.get("lastfm:track:abc") == {"tags": ["rock"]}

    def test_miss(self):
        cache = ResponseCache(":memory:")
        assert cache.get("nothing") is None
        assert cache.get_cache_stats() == {"hits": 0, "misses": 1, "hit_rate": 0.0}

    def test_expiry(self):
        clock = FakeClock()
        cache = ResponseCache(":memory:", clock=clock)
        cache.set("k", [1, 2, 3], ttl_seconds=10)

        clock.advance(9)
        assert cache.get("k") == [1, 2, 3]
        clock.advance(1)
        assert cache.get("k") is None

    def test_last_writer_wins(self):
        cache = ResponseCache(":memory:")
        cache.set("k", "first", 60)
        cache.set("k", "second", 60)
        assert cache.get("k") == "second"

    def test_purge_expired(self):
        clock = FakeClock()
        cache = ResponseCache(":memory:", clock=clock)
        cache.set("short", 1, ttl_seconds=5)
        cache.set("long", 2, ttl_seconds=500)

        clock.advance(10)
        assert cache.purge_expired() == 1
        assert cache.get("long") == 2

    def test_unserializable_value_not_stored(self):
        cache = ResponseCache(":memory:")
        cache.set("k", object(), 60)
        assert cache.get("k") is None

    def test_file_backed_cache_persists(self, tmp_path):
        path = str(tmp_path / "nested" / "cache.db")
        ResponseCache(path).set("mb:recording:x", {"id": "x"}, 60)
        assert ResponseCache(path).get("mb:recording:x") == {"id": "x"}

    def test_stats_hit_rate(self):
        cache = ResponseCache(":memory:")
        cache.set("k", 1, 60)
        cache.get("k")
        cache.get("missing")
        stats = cache.get_cache_stats()
        assert stats["hits"] == 1
        assert stats["hit_rate"] == 0.5
