"""Tests for wiring services and the manager from config."""

import sqlite3

from seedmix.pipeline.factory import build_manager, build_services, load_vector_index
from seedmix.response_cache import ResponseCache


def _cache_keys(path):
    conn = sqlite3.connect(path)
    try:
        return sorted(row[0] for row in conn.execute("SELECT cache_key FROM response_cache"))
    finally:
        conn.close()


class TestBuildServices:

    def test_purges_expired_cache_rows(self, config):
        ResponseCache(config.cache_db_path, clock=lambda: 0).set("stale", {"v": 1}, ttl_seconds=10)
        ResponseCache(config.cache_db_path).set("fresh", {"v": 2}, ttl_seconds=3600)

        services = build_services(config)

        assert _cache_keys(config.cache_db_path) == ["fresh"]
        assert services.cache is not None
        assert services.cache.db_path == config.cache_db_path

    def test_clients_share_the_cache(self, config):
        services = build_services(config)
        assert services.resolver.musicbrainz.cache is services.cache
        assert services.resolver.lastfm.cache is services.cache
        assert services.enricher.musicbrainz is services.resolver.musicbrainz

    def test_no_llm_when_disabled(self, config):
        assert build_services(config).explainer.llm is None


class TestBuildManager:

    def test_stores_from_config(self, config):
        manager = build_manager(config)
        assert manager.state_store.db_path == config.state_db_path
        assert manager.archive is not None


def test_missing_vector_index_disables_it(tmp_path):
    assert load_vector_index(None) is None
    assert load_vector_index(str(tmp_path / "absent.npz")) is None
