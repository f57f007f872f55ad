"""
Data model for playlist runs.

Track records form a chain, each stage adding to what the previous produced:

    ResolvedTrack -> EnrichedTrack -> ScoredTrack -> PlaylistTrack

Track records are frozen; stages derive new records with dataclasses.replace().
PipelineState is the one mutable record and belongs to the orchestrator.

All to_dict()/from_dict() pairs use the camelCase keys of the status surface.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import ValidationError

VALID_PLAYLIST_SIZES = (15, 30, 50, 75, 100)
MOOD_BIASES = ("upbeat", "melancholy", "energetic", "chill")
POPULARITY_BIASES = ("popular", "deep-cuts", "hidden-gems", "balanced")
TAG_SOURCES = ("lastfm", "musicbrainz", "user")

CATEGORY_POPULAR = "popular"
CATEGORY_DEEP_CUT = "deep-cut"
CATEGORY_HIDDEN_GEM = "hidden-gem"
CATEGORIES = (CATEGORY_POPULAR, CATEGORY_DEEP_CUT, CATEGORY_HIDDEN_GEM)

FLOW_ROLES = ("opener", "builder", "peak", "valley", "closer", "transition")


class PipelineStatus(str, Enum):
    """State machine for playlist runs."""

    PENDING = "pending"
    RESOLVING = "resolving"
    ENRICHING = "enriching"
    GENERATING = "generating"
    SCORING = "scoring"
    CURATING = "curating"
    EXPLAINING = "explaining"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def progress(self) -> Optional[int]:
        """Progress percentage associated with entering this state (None for failed)."""
        return STATUS_PROGRESS.get(self)

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineStatus.COMPLETE, PipelineStatus.FAILED)


# Strict forward order; failed is reachable from any non-terminal state
STATUS_ORDER: Tuple[PipelineStatus, ...] = (
    PipelineStatus.PENDING,
    PipelineStatus.RESOLVING,
    PipelineStatus.ENRICHING,
    PipelineStatus.GENERATING,
    PipelineStatus.SCORING,
    PipelineStatus.CURATING,
    PipelineStatus.EXPLAINING,
    PipelineStatus.COMPLETE,
)

STATUS_PROGRESS: Dict[PipelineStatus, int] = {
    PipelineStatus.PENDING: 0,
    PipelineStatus.RESOLVING: 10,
    PipelineStatus.ENRICHING: 25,
    PipelineStatus.GENERATING: 40,
    PipelineStatus.SCORING: 60,
    PipelineStatus.CURATING: 75,
    PipelineStatus.EXPLAINING: 90,
    PipelineStatus.COMPLETE: 100,
}


def next_status(status: PipelineStatus) -> Optional[PipelineStatus]:
    """Immediate successor in the forward order, or None for terminal states."""
    if status.is_terminal:
        return None
    return STATUS_ORDER[STATUS_ORDER.index(status) + 1]


def _opt_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Preferences:
    era_range: Optional[Tuple[int, int]] = None
    mood_bias: Optional[str] = None
    popularity_bias: Optional[str] = None

    def validate(self) -> None:
        if self.era_range is not None:
            if len(self.era_range) != 2:
                raise ValidationError("eraRange must be [startYear, endYear]")
            start, end = self.era_range
            if start > end:
                raise ValidationError(f"eraRange start {start} is after end {end}")
        if self.mood_bias is not None and self.mood_bias not in MOOD_BIASES:
            raise ValidationError(f"Unknown moodBias: {self.mood_bias}")
        if self.popularity_bias is not None and self.popularity_bias not in POPULARITY_BIASES:
            raise ValidationError(f"Unknown popularityBias: {self.popularity_bias}")

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.era_range is not None:
            out["eraRange"] = list(self.era_range)
        if self.mood_bias is not None:
            out["moodBias"] = self.mood_bias
        if self.popularity_bias is not None:
            out["popularityBias"] = self.popularity_bias
        return out

    @staticmethod
    def from_dict(payload: Optional[Dict[str, Any]]) -> "Preferences":
        payload = payload or {}
        era = payload.get("eraRange")
        return Preferences(
            era_range=(int(era[0]), int(era[1])) if era else None,
            mood_bias=payload.get("moodBias"),
            popularity_bias=payload.get("popularityBias"),
        )


@dataclass(frozen=True)
class SeedTrackInput:
    """User request; immutable once a run starts."""

    query: str
    playlist_size: int = 15
    preferences: Preferences = field(default_factory=Preferences)

    def validate(self) -> None:
        """Raise ValidationError for malformed input."""
        if not self.query or not self.query.strip():
            raise ValidationError("query must not be empty")
        if self.playlist_size not in VALID_PLAYLIST_SIZES:
            raise ValidationError(
                f"playlistSize must be one of {', '.join(str(s) for s in VALID_PLAYLIST_SIZES)}"
            )
        self.preferences.validate()

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"query": self.query, "playlistSize": self.playlist_size}
        prefs = self.preferences.to_dict()
        if prefs:
            out["preferences"] = prefs
        return out

    @staticmethod
    def from_dict(payload: Dict[str, Any]) -> "SeedTrackInput":
        return SeedTrackInput(
            query=payload.get("query", ""),
            playlist_size=int(payload.get("playlistSize", 15)),
            preferences=Preferences.from_dict(payload.get("preferences")),
        )


# ---------------------------------------------------------------------------
# Tracks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Tag:
    name: str
    count: int = 0
    source: str = "lastfm"

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "count": self.count, "source": self.source}

    @staticmethod
    def from_dict(payload: Dict[str, Any]) -> "Tag":
        return Tag(
            name=payload.get("name", ""),
            count=int(payload.get("count") or 0),
            source=payload.get("source", "lastfm"),
        )


@dataclass(frozen=True)
class ResolvedTrack:
    """Canonical identity of a track (id is the MusicBrainz MBID when known)."""

    id: str
    title: str
    artist: str
    artist_id: str = ""
    album: Optional[str] = None
    album_id: Optional[str] = None
    release_year: Optional[int] = None
    duration_ms: Optional[int] = None
    url: Optional[str] = None

    def identity_key(self) -> str:
        """Dedup key: canonical id, else case-folded title."""
        if self.id:
            return f"id:{self.id}"
        return f"title:{(self.title or '').casefold().strip()}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist,
            "artistId": self.artist_id,
            "album": self.album,
            "albumId": self.album_id,
            "releaseYear": self.release_year,
            "durationMs": self.duration_ms,
            "url": self.url,
        }

    @staticmethod
    def _fields_from(payload: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": payload.get("id") or "",
            "title": payload.get("title") or "",
            "artist": payload.get("artist") or "",
            "artist_id": payload.get("artistId") or "",
            "album": payload.get("album"),
            "album_id": payload.get("albumId"),
            "release_year": _opt_int(payload.get("releaseYear")),
            "duration_ms": _opt_int(payload.get("durationMs")),
            "url": payload.get("url"),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ResolvedTrack":
        return ResolvedTrack(**ResolvedTrack._fields_from(payload))


@dataclass(frozen=True)
class EnrichedTrack(ResolvedTrack):
    tags: Tuple[Tag, ...] = ()
    similar_tracks: Tuple[str, ...] = ()
    similar_artists: Tuple[str, ...] = ()
    listeners: Optional[int] = None
    playcount: Optional[int] = None

    @staticmethod
    def from_resolved(track: ResolvedTrack, **extra: Any) -> "EnrichedTrack":
        base = base_fields(track, ResolvedTrack)
        base.update(extra)
        return EnrichedTrack(**base)

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out.update({
            "tags": [t.to_dict() for t in self.tags],
            "similarTracks": list(self.similar_tracks),
            "similarArtists": list(self.similar_artists),
            "listeners": self.listeners,
            "playcount": self.playcount,
        })
        return out

    @staticmethod
    def _fields_from(payload: Dict[str, Any]) -> Dict[str, Any]:
        fields = ResolvedTrack._fields_from(payload)
        fields.update({
            "tags": tuple(Tag.from_dict(t) for t in payload.get("tags") or []),
            "similar_tracks": tuple(payload.get("similarTracks") or []),
            "similar_artists": tuple(payload.get("similarArtists") or []),
            "listeners": _opt_int(payload.get("listeners")),
            "playcount": _opt_int(payload.get("playcount")),
        })
        return fields

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "EnrichedTrack":
        return EnrichedTrack(**EnrichedTrack._fields_from(payload))


@dataclass(frozen=True)
class Scores:
    """Per-dimension similarity (each 0-1) and the weighted overall (0-10)."""

    tag_overlap: float = 0.0
    artist_similarity: float = 0.0
    temporal_proximity: float = 0.0
    vector_similarity: float = 0.0
    popularity_fit: float = 0.0
    overall: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "tagOverlap": self.tag_overlap,
            "artistSimilarity": self.artist_similarity,
            "temporalProximity": self.temporal_proximity,
            "vectorSimilarity": self.vector_similarity,
            "popularityFit": self.popularity_fit,
            "overall": self.overall,
        }

    @staticmethod
    def from_dict(payload: Optional[Dict[str, Any]]) -> "Scores":
        payload = payload or {}
        return Scores(
            tag_overlap=float(payload.get("tagOverlap", 0.0)),
            artist_similarity=float(payload.get("artistSimilarity", 0.0)),
            temporal_proximity=float(payload.get("temporalProximity", 0.0)),
            vector_similarity=float(payload.get("vectorSimilarity", 0.0)),
            popularity_fit=float(payload.get("popularityFit", 0.0)),
            overall=float(payload.get("overall", 0.0)),
        )


@dataclass(frozen=True)
class ScoredTrack(EnrichedTrack):
    scores: Scores = field(default_factory=Scores)
    category: str = CATEGORY_HIDDEN_GEM

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["scores"] = self.scores.to_dict()
        out["category"] = self.category
        return out

    @staticmethod
    def _fields_from(payload: Dict[str, Any]) -> Dict[str, Any]:
        fields = EnrichedTrack._fields_from(payload)
        fields["scores"] = Scores.from_dict(payload.get("scores"))
        fields["category"] = payload.get("category") or CATEGORY_HIDDEN_GEM
        return fields

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ScoredTrack":
        return ScoredTrack(**ScoredTrack._fields_from(payload))


@dataclass(frozen=True)
class PlaylistTrack(ScoredTrack):
    position: int = 0
    reason: str = ""
    flow_role: str = "transition"
    similarity_score: int = 1

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out.update({
            "position": self.position,
            "reason": self.reason,
            "flowRole": self.flow_role,
            "similarityScore": self.similarity_score,
        })
        return out

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "PlaylistTrack":
        fields = ScoredTrack._fields_from(payload)
        fields.update({
            "position": int(payload.get("position") or 0),
            "reason": payload.get("reason") or "",
            "flow_role": payload.get("flowRole") or "transition",
            "similarity_score": int(payload.get("similarityScore") or 1),
        })
        return PlaylistTrack(**fields)


def base_fields(track: ResolvedTrack, upto: type) -> Dict[str, Any]:
    """Copy the fields of ``upto`` (a track class) from a richer or equal record."""
    return {name: getattr(track, name) for name in upto.__dataclass_fields__}


# ---------------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------------


@dataclass
class PipelineErrorInfo:
    """Typed failure recorded on a run."""

    code: str
    message: str
    stage: str
    retryable: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "stage": self.stage,
            "retryable": self.retryable,
        }

    @staticmethod
    def from_dict(payload: Optional[Dict[str, Any]]) -> Optional["PipelineErrorInfo"]:
        if not payload:
            return None
        return PipelineErrorInfo(
            code=payload.get("code", "INTERNAL_ERROR"),
            message=payload.get("message", ""),
            stage=payload.get("stage", PipelineStatus.PENDING.value),
            retryable=bool(payload.get("retryable", False)),
        )


@dataclass
class PipelineState:
    """Full durable record of one run (timestamps are epoch milliseconds)."""

    run_id: str
    user_id: str
    seed_track: SeedTrackInput
    status: PipelineStatus = PipelineStatus.PENDING
    resolved_track: Optional[ResolvedTrack] = None
    candidate_pool: List[EnrichedTrack] = field(default_factory=list)
    scored_candidates: List[ScoredTrack] = field(default_factory=list)
    final_playlist: List[PlaylistTrack] = field(default_factory=list)
    progress: int = 0
    error: Optional[PipelineErrorInfo] = None
    started_at: int = 0
    completed_at: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-safe dict."""
        return {
            "runId": self.run_id,
            "userId": self.user_id,
            "status": self.status.value,
            "seedTrack": self.seed_track.to_dict(),
            "resolvedTrack": self.resolved_track.to_dict() if self.resolved_track else None,
            "candidatePool": [t.to_dict() for t in self.candidate_pool],
            "scoredCandidates": [t.to_dict() for t in self.scored_candidates],
            "finalPlaylist": [t.to_dict() for t in self.final_playlist],
            "progress": self.progress,
            "error": self.error.to_dict() if self.error else None,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
        }

    @staticmethod
    def from_dict(payload: Dict[str, Any]) -> "PipelineState":
        """Deserialize from dict."""
        status = payload.get("status", PipelineStatus.PENDING.value)
        try:
            status = PipelineStatus(status)
        except ValueError:
            status = PipelineStatus.FAILED

        resolved = payload.get("resolvedTrack")
        return PipelineState(
            run_id=payload.get("runId", ""),
            user_id=payload.get("userId", ""),
            seed_track=SeedTrackInput.from_dict(payload.get("seedTrack") or {}),
            status=status,
            resolved_track=ResolvedTrack.from_dict(resolved) if resolved else None,
            candidate_pool=[EnrichedTrack.from_dict(t) for t in payload.get("candidatePool") or []],
            scored_candidates=[ScoredTrack.from_dict(t) for t in payload.get("scoredCandidates") or []],
            final_playlist=[PlaylistTrack.from_dict(t) for t in payload.get("finalPlaylist") or []],
            progress=int(payload.get("progress") or 0),
            error=PipelineErrorInfo.from_dict(payload.get("error")),
            started_at=int(payload.get("startedAt") or 0),
            completed_at=_opt_int(payload.get("completedAt")),
        )

    def status_view(self) -> Dict[str, Any]:
        """Poll/stream shape: runId, status, progress, playlist?, error?"""
        view: Dict[str, Any] = {
            "runId": self.run_id,
            "status": self.status.value,
            "progress": self.progress,
        }
        if self.status == PipelineStatus.COMPLETE:
            view["playlist"] = [t.to_dict() for t in self.final_playlist]
        if self.error is not None:
            view["error"] = self.error.to_dict()
        return view
