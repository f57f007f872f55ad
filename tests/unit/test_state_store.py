"""Tests for run persistence: state snapshots, run records and the archive."""

import pytest

from seedmix.errors import RunAlreadyStartedError
from seedmix.models import (
    PipelineErrorInfo,
    PipelineState,
    PipelineStatus,
    PlaylistTrack,
    ResolvedTrack,
    SeedTrackInput,
    Preferences,
)
from seedmix.pipeline.state_store import ArchiveStore, RunRecordStore, StateStore


def _state(run_id="run-1", status=PipelineStatus.RESOLVING):
    return PipelineState(
        run_id=run_id,
        user_id="user-1",
        seed_track=SeedTrackInput("Karma Police by Radiohead", 15),
        status=status,
        progress=status.progress or 0,
        started_at=1_700_000_000_000,
    )


# =============================================================================
# StateStore
# =============================================================================

class TestStateStore:

    def test_save_and_load(self, state_store):
        state = _state()
        state_store.save(state)
        assert state_store.load("run-1") == state

    def test_load_unknown(self, state_store):
        assert state_store.load("nope") is None

    def test_save_replaces_snapshot(self, state_store):
        state = _state()
        state_store.save(state)
        state.status = PipelineStatus.ENRICHING
        state.progress = 25
        state_store.save(state)
        loaded = state_store.load("run-1")
        assert loaded.status == PipelineStatus.ENRICHING
        assert loaded.progress == 25

    def test_list_unfinished(self, state_store):
        state_store.save(_state("a", PipelineStatus.RESOLVING))
        state_store.save(_state("b", PipelineStatus.COMPLETE))
        state_store.save(_state("c", PipelineStatus.FAILED))
        state_store.save(_state("d", PipelineStatus.PENDING))
        assert sorted(s.run_id for s in state_store.list_unfinished()) == ["a", "d"]

    def test_file_backed(self, tmp_path):
        path = tmp_path / "nested" / "pipeline.db"
        StateStore(str(path)).save(_state())
        # A second instance reads what the first wrote
        assert StateStore(str(path)).load("run-1").run_id == "run-1"


# =============================================================================
# RunRecordStore
# =============================================================================

class TestRunRecordStore:

    def test_create_pending_record(self, run_store):
        seed = SeedTrackInput("Karma Police", 30, Preferences(mood_bias="chill"))
        run_store.create("run-1", "user-1", seed, credits=2)
        record = run_store.get("run-1")
        assert record["status"] == "pending"
        assert record["userId"] == "user-1"
        assert record["seedQuery"] == "Karma Police"
        assert record["playlistSize"] == 30
        assert record["preferences"] == {"moodBias": "chill"}
        assert record["creditsUsed"] == 2
        assert record["seedTrack"] is None
        assert record["playlist"] == []
        assert record["completedAt"] is None

    def test_duplicate_create(self, run_store):
        run_store.create("run-1", "user-1", SeedTrackInput("q", 15), credits=1)
        with pytest.raises(RunAlreadyStartedError):
            run_store.create("run-1", "user-2", SeedTrackInput("q", 15), credits=1)

    def test_get_unknown(self, run_store):
        assert run_store.get("missing") is None

    def test_finalize_complete(self, run_store):
        run_store.create("run-1", "user-1", SeedTrackInput("q", 15), credits=1)
        playlist = [PlaylistTrack(id="p1", title="Lucky", artist="Radiohead", position=1)]
        run_store.finalize(
            "run-1",
            status=PipelineStatus.COMPLETE,
            resolved_track=ResolvedTrack(id="mb-1", title="Karma Police", artist="Radiohead"),
            playlist=playlist,
            processing_time_ms=1234,
            completed_at_ms=1_700_000_000_000,
        )
        record = run_store.get("run-1")
        assert record["status"] == "complete"
        assert record["seedTrack"] == {"id": "mb-1", "title": "Karma Police", "artist": "Radiohead"}
        assert record["trackCount"] == 1
        assert record["playlist"][0]["title"] == "Lucky"
        assert record["processingTimeMs"] == 1234
        # Unchanged when credits_used is not given
        assert record["creditsUsed"] == 1
        assert record["completedAt"].startswith("2023-11-14")

    def test_finalize_failure_redacts_message(self, run_store):
        run_store.create("run-1", "user-1", SeedTrackInput("q", 15), credits=1)
        run_store.finalize(
            "run-1",
            status=PipelineStatus.FAILED,
            resolved_track=None,
            playlist=[],
            processing_time_ms=5,
            completed_at_ms=1_700_000_000_000,
            error_message="upstream said api_key=abc123 is invalid",
            credits_used=0,
        )
        record = run_store.get("run-1")
        assert record["status"] == "failed"
        assert "abc123" not in record["errorMessage"]
        assert record["creditsUsed"] == 0
        assert record["trackCount"] == 0

    def test_set_archive_key(self, run_store):
        run_store.create("run-1", "user-1", SeedTrackInput("q", 15), credits=1)
        run_store.set_archive_key("run-1", "runs/2023/11/14/run-1.json")
        assert run_store.get("run-1")["archiveKey"] == "runs/2023/11/14/run-1.json"


class TestRunHistory:

    @pytest.fixture()
    def history(self, run_store):
        for i in range(5):
            run_store.create(f"run-{i}", "user-1", SeedTrackInput(f"query {i}", 15), credits=1)
        run_store.create("other", "user-2", SeedTrackInput("someone else", 15), credits=1)
        return run_store

    def test_newest_first(self, history):
        runs, total = history.list_for_user("user-1")
        assert [r["id"] for r in runs] == ["run-4", "run-3", "run-2", "run-1", "run-0"]
        assert total == 5

    def test_only_own_runs(self, history):
        runs, total = history.list_for_user("user-2")
        assert [r["id"] for r in runs] == ["other"]
        assert total == 1
        assert history.list_for_user("nobody") == ([], 0)

    def test_pagination(self, history):
        runs, total = history.list_for_user("user-1", limit=2, offset=2)
        assert [r["id"] for r in runs] == ["run-2", "run-1"]
        assert total == 5

    def test_offset_past_end(self, history):
        runs, total = history.list_for_user("user-1", limit=10, offset=10)
        assert runs == []
        assert total == 5

    def test_summaries_omit_playlist(self, history):
        runs, _ = history.list_for_user("user-1", limit=1)
        assert "playlist" not in runs[0]
        assert runs[0]["seedQuery"] == "query 4"
        assert runs[0]["status"] == "pending"


# =============================================================================
# ArchiveStore
# =============================================================================

class TestArchiveStore:

    def test_key_is_utc_date_partitioned(self):
        # 2023-11-14T22:13:20Z
        assert ArchiveStore.key_for("run-1", 1_700_000_000_000) == "runs/2023/11/14/run-1.json"

    def test_put_and_get(self, archive):
        key = ArchiveStore.key_for("run-1", 1_700_000_000_000)
        path = archive.put(key, {"runId": "run-1", "error": None})
        assert path.exists()
        assert not path.with_suffix(".json.tmp").exists()
        assert archive.get(key) == {"runId": "run-1", "error": None}

    def test_get_missing(self, archive):
        assert archive.get("runs/2000/01/01/none.json") is None

    def test_archives_failed_state_payload(self, archive):
        state = _state(status=PipelineStatus.FAILED)
        state.error = PipelineErrorInfo("TRACK_NOT_FOUND", "nothing", "resolving", False)
        key = ArchiveStore.key_for(state.run_id, state.started_at)
        archive.put(key, state.to_dict())
        assert PipelineState.from_dict(archive.get(key)).error.code == "TRACK_NOT_FOUND"
