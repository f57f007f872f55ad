"""
Persistence for playlist runs.

    StateStore      full PipelineState per run (written after every transition)
    RunRecordStore  the run record callers list and fetch (written at start/finish)
    ArchiveStore    cold-storage JSON copy of a finished run, time-partitioned

Both SQLite stores open a short-lived connection per call; ":memory:" keeps a
single shared connection instead so tests can run without files.
"""
from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from seedmix.errors import RunAlreadyStartedError
from seedmix.logging_utils import redact
from seedmix.models import PipelineState, PipelineStatus, PlaylistTrack, ResolvedTrack, SeedTrackInput

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class _SqliteStore:
    """Connection handling shared by the SQLite-backed stores."""

    SCHEMA = ""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.Lock()
        if db_path == ":memory:":
            self._shared_conn: Optional[sqlite3.Connection] = sqlite3.connect(
                ":memory:", check_same_thread=False
            )
        else:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            self._shared_conn = None
        with self._lock:
            conn = self._connect()
            try:
                conn.executescript(self.SCHEMA)
                conn.commit()
            finally:
                self._close(conn)

    def _connect(self) -> sqlite3.Connection:
        if self._shared_conn is not None:
            return self._shared_conn
        return sqlite3.connect(self.db_path, timeout=10)

    def _close(self, conn: sqlite3.Connection) -> None:
        if conn is not self._shared_conn:
            conn.close()

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        with self._lock:
            conn = self._connect()
            try:
                cur = conn.execute(sql, params)
                conn.commit()
                return cur.rowcount
            finally:
                self._close(conn)

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            conn = self._connect()
            try:
                conn.row_factory = sqlite3.Row
                return conn.execute(sql, params).fetchall()
            finally:
                conn.row_factory = None
                self._close(conn)


class StateStore(_SqliteStore):
    """Durable PipelineState keyed by run id."""

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS pipeline_state (
        run_id TEXT PRIMARY KEY,
        status TEXT NOT NULL,
        progress INTEGER NOT NULL,
        payload TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    """

    def save(self, state: PipelineState) -> None:
        """Persist the full state (replaces the previous snapshot)."""
        payload = json.dumps(state.to_dict(), ensure_ascii=False)
        self._execute(
            "REPLACE INTO pipeline_state (run_id, status, progress, payload, updated_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (state.run_id, state.status.value, state.progress, payload,
             datetime.now(timezone.utc).isoformat()),
        )

    def load(self, run_id: str) -> Optional[PipelineState]:
        rows = self._query("SELECT payload FROM pipeline_state WHERE run_id=?", (run_id,))
        if not rows:
            return None
        return PipelineState.from_dict(json.loads(rows[0]["payload"]))

    def list_unfinished(self) -> List[PipelineState]:
        """States persisted in a non-terminal status."""
        rows = self._query(
            "SELECT payload FROM pipeline_state WHERE status NOT IN (?, ?) ORDER BY updated_at",
            (PipelineStatus.COMPLETE.value, PipelineStatus.FAILED.value),
        )
        return [PipelineState.from_dict(json.loads(row["payload"])) for row in rows]


class RunRecordStore(_SqliteStore):
    """Run records: one row per run, created at start and finalized at the end."""

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS runs (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        seed_query TEXT NOT NULL,
        playlist_size INTEGER NOT NULL,
        preferences TEXT,
        status TEXT NOT NULL,
        seed_track_id TEXT,
        seed_title TEXT,
        seed_artist TEXT,
        playlist_json TEXT,
        track_count INTEGER,
        credits_used INTEGER NOT NULL DEFAULT 0,
        processing_time_ms INTEGER,
        error_message TEXT,
        archive_key TEXT,
        created_at TEXT NOT NULL,
        completed_at TEXT
    );
    CREATE INDEX IF NOT EXISTS idx_runs_user ON runs(user_id, created_at);
    """

    def create(self, run_id: str, user_id: str, seed: SeedTrackInput, credits: int) -> None:
        """Insert a pending run record; a duplicate id means a double start."""
        try:
            self._execute(
                "INSERT INTO runs (id, user_id, seed_query, playlist_size, preferences, status, "
                "credits_used, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (run_id, user_id, seed.query, seed.playlist_size,
                 json.dumps(seed.preferences.to_dict()), PipelineStatus.PENDING.value, credits,
                 datetime.now(timezone.utc).isoformat()),
            )
        except sqlite3.IntegrityError as e:
            raise RunAlreadyStartedError(f"Run {run_id} already exists") from e

    def get(self, run_id: str) -> Optional[Dict[str, Any]]:
        rows = self._query("SELECT * FROM runs WHERE id=?", (run_id,))
        if not rows:
            return None
        return self._to_record(rows[0])

    def list_for_user(self, user_id: str, limit: int = 20, offset: int = 0) -> Tuple[List[Dict[str, Any]], int]:
        """
        A user's run history, newest first.

        Returns:
            (records without playlists, total number of runs for the user)
        """
        limit = max(1, min(int(limit), MAX_PAGE_SIZE))
        offset = max(0, int(offset))
        rows = self._query(
            "SELECT * FROM runs WHERE user_id=? ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
            (user_id, limit, offset),
        )
        total = self._query("SELECT COUNT(*) AS count FROM runs WHERE user_id=?", (user_id,))[0]["count"]
        records = []
        for row in rows:
            record = self._to_record(row)
            del record["playlist"]
            records.append(record)
        return records, total

    @staticmethod
    def _to_record(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "userId": row["user_id"],
            "seedQuery": row["seed_query"],
            "playlistSize": row["playlist_size"],
            "preferences": json.loads(row["preferences"]) if row["preferences"] else {},
            "status": row["status"],
            "seedTrack": {
                "id": row["seed_track_id"],
                "title": row["seed_title"],
                "artist": row["seed_artist"],
            } if row["seed_title"] else None,
            "playlist": json.loads(row["playlist_json"]) if row["playlist_json"] else [],
            "trackCount": row["track_count"] or 0,
            "creditsUsed": row["credits_used"],
            "processingTimeMs": row["processing_time_ms"],
            "errorMessage": row["error_message"],
            "archiveKey": row["archive_key"],
            "createdAt": row["created_at"],
            "completedAt": row["completed_at"],
        }

    def finalize(
        self,
        run_id: str,
        *,
        status: PipelineStatus,
        resolved_track: Optional[ResolvedTrack],
        playlist: Sequence[PlaylistTrack],
        processing_time_ms: int,
        completed_at_ms: int,
        error_message: Optional[str] = None,
        credits_used: Optional[int] = None,
    ) -> None:
        """Write the terminal outcome of a run."""
        completed_at = datetime.fromtimestamp(completed_at_ms / 1000, tz=timezone.utc).isoformat()
        self._execute(
            "UPDATE runs SET status=?, seed_track_id=?, seed_title=?, seed_artist=?, playlist_json=?, "
            "track_count=?, processing_time_ms=?, error_message=?, completed_at=?, "
            "credits_used=COALESCE(?, credits_used) WHERE id=?",
            (
                status.value,
                resolved_track.id if resolved_track else None,
                resolved_track.title if resolved_track else None,
                resolved_track.artist if resolved_track else None,
                json.dumps([t.to_dict() for t in playlist], ensure_ascii=False),
                len(playlist),
                processing_time_ms,
                redact(error_message) if error_message else None,
                completed_at,
                credits_used,
                run_id,
            ),
        )

    def set_archive_key(self, run_id: str, key: str) -> None:
        self._execute("UPDATE runs SET archive_key=? WHERE id=?", (key, run_id))


class ArchiveStore:
    """Cold storage for finished runs under runs/YYYY/MM/DD/<run_id>.json"""

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)

    @staticmethod
    def key_for(run_id: str, timestamp_ms: int) -> str:
        when = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
        return f"runs/{when:%Y/%m/%d}/{run_id}.json"

    def put(self, key: str, payload: Dict[str, Any]) -> Path:
        """Write payload atomically (temp file + rename)."""
        path = self.base_dir / key
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        os.replace(tmp, path)
        logger.debug(f"Archived run payload to {key}")
        return path

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        path = self.base_dir / key
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
