import json
import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from seedmix.config_loader import Config  # type: ignore
from seedmix.credits import credit_cost  # type: ignore
from seedmix.errors import PipelineError, RunAlreadyStartedError, ValidationError  # type: ignore
from seedmix.logging_utils import configure_logging  # type: ignore
from seedmix.models import Preferences, SeedTrackInput  # type: ignore
from seedmix.pipeline.factory import build_manager  # type: ignore
from seedmix.pipeline.orchestrator import PipelineManager  # type: ignore
from seedmix.pipeline.state_store import MAX_PAGE_SIZE  # type: ignore

CONFIG_PATH = Path(os.getenv("SEEDMIX_CONFIG_PATH", ROOT_DIR / "config.yaml"))

logger = logging.getLogger(__name__)

config: Optional[Config] = None
manager: Optional[PipelineManager] = None


def _init_services() -> None:
    """Initialize shared services once for the API process."""
    global config, manager
    if manager is not None:
        return

    config = Config(str(CONFIG_PATH))
    configure_logging(level=config.log_level, log_file=config.log_file)
    manager = build_manager(config)
    manager.recover_interrupted()


def _get_manager() -> PipelineManager:
    _init_services()
    if manager is None:
        raise HTTPException(status_code=500, detail="Pipeline unavailable")
    return manager


@asynccontextmanager
async def lifespan(_: FastAPI):
    _init_services()
    yield


app = FastAPI(title="SeedMix API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class PreferencesModel(BaseModel):
    eraRange: Optional[List[int]] = Field(default=None, min_length=2, max_length=2)
    moodBias: Optional[Literal["upbeat", "melancholy", "energetic", "chill"]] = None
    popularityBias: Optional[Literal["popular", "deep-cuts", "hidden-gems", "balanced"]] = None


class RunRequest(BaseModel):
    query: str
    playlistSize: int = 15
    preferences: Optional[PreferencesModel] = None


class RunCreatedResponse(BaseModel):
    runId: str
    status: str
    creditsReserved: int
    streamUrl: str


def _error_detail(exc: PipelineError) -> Dict[str, Any]:
    return {"code": exc.code, "message": exc.message, "retryable": exc.retryable}


def _sse(payload: Dict[str, Any], event: str = "status") -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


@app.get("/api/health")
def health() -> Dict[str, Any]:
    body: Dict[str, Any] = {"status": "ok"}
    if manager is not None and manager.services.cache is not None:
        body["cache"] = manager.services.cache.get_cache_stats()
    return body


@app.post("/api/runs", response_model=RunCreatedResponse, status_code=201)
def create_run(
    payload: RunRequest,
    x_user_id: Optional[str] = Header(default=None),
) -> RunCreatedResponse:
    """Validate the seed request, reserve credits and start the pipeline."""
    prefs = payload.preferences
    seed = SeedTrackInput(
        query=payload.query.strip(),
        playlist_size=payload.playlistSize,
        preferences=Preferences(
            era_range=tuple(prefs.eraRange) if prefs and prefs.eraRange else None,
            mood_bias=prefs.moodBias if prefs else None,
            popularity_bias=prefs.popularityBias if prefs else None,
        ),
    )
    pipeline = _get_manager()
    try:
        state = pipeline.start_run(seed, user_id=x_user_id or "anonymous")
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=_error_detail(exc))
    except RunAlreadyStartedError as exc:
        raise HTTPException(status_code=409, detail=_error_detail(exc))

    return RunCreatedResponse(
        runId=state.run_id,
        status=state.status.value,
        creditsReserved=credit_cost(seed.playlist_size),
        streamUrl=f"/api/runs/{state.run_id}/status?stream=true",
    )


@app.get("/api/runs")
def list_runs(
    limit: int = Query(20, ge=1),
    offset: int = Query(0, ge=0),
    x_user_id: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    """The caller's run history, newest first (limit is capped at 100)."""
    limit = min(limit, MAX_PAGE_SIZE)
    runs, total = _get_manager().run_store.list_for_user(x_user_id or "anonymous", limit, offset)
    return {"runs": runs, "pagination": {"total": total, "limit": limit, "offset": offset}}


@app.get("/api/runs/{run_id}/status")
def run_status(run_id: str, stream: bool = Query(False)):
    """Poll-once status, or a server-sent event stream until the run finishes."""
    pipeline = _get_manager()
    if pipeline.get_status(run_id) is None:
        raise HTTPException(status_code=404, detail="Run not found")

    if not stream:
        return pipeline.get_status(run_id)

    def events():
        for view in pipeline.stream_status(run_id):
            yield _sse(view)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.post("/api/runs/{run_id}/cancel")
def cancel_run(run_id: str) -> Dict[str, Any]:
    pipeline = _get_manager()
    if pipeline.get_status(run_id) is None:
        raise HTTPException(status_code=404, detail="Run not found")
    cancelled = pipeline.cancel(run_id)
    return {"runId": run_id, "cancelled": cancelled, **(pipeline.get_status(run_id) or {})}


@app.get("/api/runs/{run_id}")
def get_run(run_id: str) -> Dict[str, Any]:
    """Persisted run record (status, seed summary, playlist, timings)."""
    record = _get_manager().run_store.get(run_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return record


@app.get("/api/runs/{run_id}/archive")
def get_run_archive(run_id: str) -> Dict[str, Any]:
    """Full final pipeline state as archived when the run finished."""
    payload = _get_manager().get_archived(run_id)
    if payload is None:
        raise HTTPException(status_code=404, detail="Archive not found")
    return payload
