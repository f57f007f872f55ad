"""Test configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add repo root (for seedmix/api) and this directory (for helpers) to path
TESTS_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(TESTS_DIR.parent))
sys.path.insert(0, str(TESTS_DIR))

from seedmix.config_loader import Config
from seedmix.pipeline.orchestrator import PipelineManager
from seedmix.pipeline.state_store import ArchiveStore, RunRecordStore, StateStore

from helpers import make_services


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep developer secrets and log overrides out of the tests."""
    for name in ("LASTFM_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY", "LOG_LEVEL", "LOG_FILE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def config_data(tmp_path):
    return {
        "lastfm": {"api_key": "test-lastfm-key"},
        "musicbrainz": {"user_agent": "SeedMixTests/0.1", "contact": "tests@example.com"},
        "llm": {"provider": "none"},
        "pipeline": {"stage_timeout_seconds": 5, "status_poll_interval_seconds": 0.01},
        "storage": {
            "state_db_path": str(tmp_path / "pipeline.db"),
            "cache_db_path": str(tmp_path / "cache.db"),
            "archive_dir": str(tmp_path / "archive"),
        },
    }


@pytest.fixture()
def config(config_data):
    return Config.from_dict(config_data)


@pytest.fixture()
def state_store():
    return StateStore(":memory:")


@pytest.fixture()
def run_store():
    return RunRecordStore(":memory:")


@pytest.fixture()
def archive(tmp_path):
    return ArchiveStore(str(tmp_path / "archive"))


@pytest.fixture()
def manager(state_store, run_store, archive):
    """Manager over the fake catalog with in-memory stores."""
    return PipelineManager(
        services=make_services(),
        state_store=state_store,
        run_store=run_store,
        archive=archive,
        stage_timeout=5,
        poll_interval=0.01,
    )
