"""Fakes and builders shared by the SeedMix tests (no network, no sleeping)."""
import threading
from typing import Dict, List, Optional, Sequence

from seedmix.lastfm_client import ArtistRef, TrackInfo, TrackRef
from seedmix.models import (
    EnrichedTrack,
    ResolvedTrack,
    Scores,
    ScoredTrack,
    Tag,
)
from seedmix.pipeline.candidate_generator import CandidateConfig, CandidateGenerator
from seedmix.pipeline.enricher import TrackEnricher
from seedmix.pipeline.explainer import Explainer
from seedmix.pipeline.orchestrator import PipelineServices
from seedmix.pipeline.resolver import TrackResolver
from seedmix.pipeline.scoring import SimilarityScorer
from seedmix.rate_limiter import LASTFM, MUSICBRAINZ, RateLimiter


# ---------------------------------------------------------------------------
# Clock / HTTP
# ---------------------------------------------------------------------------

class FakeClock:
    """Manually advanced clock; pass ``clock.advance`` as a sleep function."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, text: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeSession:
    """Stands in for requests.Session; replays queued responses or exceptions."""

    def __init__(self, responses: Sequence = ()):
        self.responses = list(responses)
        self.calls: List[Dict] = []
        self.headers: Dict[str, str] = {}

    def _next(self):
        if not self.responses:
            raise AssertionError("FakeSession ran out of responses")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, params=None, timeout=None):
        self.calls.append({"method": "GET", "url": url, "params": dict(params or {}), "timeout": timeout})
        return self._next()

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"method": "POST", "url": url, "json": json, "headers": headers, "timeout": timeout})
        return self._next()


def fast_limiter() -> RateLimiter:
    return RateLimiter(buckets={MUSICBRAINZ: (1000, 1000), LASTFM: (1000, 1000)})


# ---------------------------------------------------------------------------
# Track builders
# ---------------------------------------------------------------------------

def make_tags(*names: str, count: int = 50) -> tuple:
    return tuple(Tag(name=n, count=count) for n in names)


def make_enriched(
    id: str = "",
    title: str = "Song",
    artist: str = "Artist",
    tags: Sequence[str] = (),
    playcount: Optional[int] = None,
    release_year: Optional[int] = None,
    similar_artists: Sequence[str] = (),
) -> EnrichedTrack:
    return EnrichedTrack(
        id=id,
        title=title,
        artist=artist,
        release_year=release_year,
        tags=make_tags(*tags),
        similar_artists=tuple(similar_artists),
        playcount=playcount,
    )


def make_scored(id: str, category: str, overall: float, **kwargs) -> ScoredTrack:
    return ScoredTrack(
        id=id,
        title=kwargs.pop("title", f"Track {id}"),
        artist=kwargs.pop("artist", f"Artist {id}"),
        scores=Scores(overall=overall, **kwargs),
        category=category,
    )


def make_info(title: str, artist: str, tags: Sequence[str] = ("rock",),
              playcount: Optional[int] = 500_000, id: str = "") -> TrackInfo:
    return TrackInfo(
        track=ResolvedTrack(id=id, title=title, artist=artist),
        tags=make_tags(*tags),
        playcount=playcount,
        listeners=(playcount or 0) // 10,
    )


# ---------------------------------------------------------------------------
# Source fakes
# ---------------------------------------------------------------------------

def _key(artist: str, title: str):
    return ((artist or "").casefold(), (title or "").casefold())


class FakeLastFM:
    """
    In-memory Last.fm double.

    Unknown tracks get a default TrackInfo when ``auto_info`` is set, unless
    their title is listed in ``missing``. ``failing`` maps a method name to
    the exception it raises.
    """

    def __init__(
        self,
        infos: Optional[Dict] = None,
        similar: Sequence[TrackRef] = (),
        similar_artists: Sequence[ArtistRef] = (),
        artist_top: Optional[Dict[str, List[TrackRef]]] = None,
        artist_infos: Optional[Dict[str, dict]] = None,
        tag_top: Optional[Dict[str, List[TrackRef]]] = None,
        search: Sequence[ResolvedTrack] = (),
        missing: Sequence[str] = (),
        failing: Optional[Dict[str, Exception]] = None,
        auto_info: bool = True,
    ):
        self.infos = {_key(a, t): info for (a, t), info in (infos or {}).items()}
        self.similar = list(similar)
        self.similar_artists = list(similar_artists)
        self.artist_top = artist_top or {}
        self.artist_infos = artist_infos or {}
        self.tag_top = tag_top or {}
        self.search = list(search)
        self.missing = set(missing)
        self.failing = failing or {}
        self.auto_info = auto_info
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def _record(self, name: str, *args) -> None:
        with self._lock:
            self.calls.append((name,) + args)
        if name in self.failing:
            raise self.failing[name]

    def called(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    def search_track(self, query, artist=None, limit=10, raise_on_error=False):
        self._record("search_track", query, artist)
        return list(self.search)[:limit]

    def get_artist_info(self, artist, mbid=None):
        self._record("get_artist_info", artist, mbid)
        return self.artist_infos.get(artist)

    def get_track_info(self, title, artist, mbid=None):
        self._record("get_track_info", title, artist, mbid)
        if title in self.missing:
            return None
        info = self.infos.get(_key(artist, title))
        if info is None and self.auto_info:
            info = make_info(title, artist, id=mbid or "")
        return info

    def get_similar_tracks(self, title, artist, mbid=None, limit=50):
        self._record("get_similar_tracks", title, artist, mbid, limit)
        return list(self.similar)[:limit]

    def get_similar_artists(self, artist, mbid=None, limit=20):
        self._record("get_similar_artists", artist, mbid, limit)
        return list(self.similar_artists)[:limit]

    def get_artist_top_tracks(self, artist, mbid=None, limit=5):
        self._record("get_artist_top_tracks", artist)
        return list(self.artist_top.get(artist, []))[:limit]

    def get_tag_top_tracks(self, tag, limit=20):
        self._record("get_tag_top_tracks", tag)
        return list(self.tag_top.get(tag, []))[:limit]


class FakeMusicBrainz:
    def __init__(self, targeted: Optional[Dict] = None, general: Optional[Dict] = None,
                 error: Optional[Exception] = None, recordings: Optional[Dict] = None,
                 isrcs: Optional[Dict] = None, artists: Optional[Dict] = None):
        self.recordings = recordings or {}
        self.isrcs = isrcs or {}
        self.artists = artists or {}
        self.targeted = {_key(a, t): v for (t, a), v in (targeted or {}).items()}
        self.general = {q.casefold(): v for q, v in (general or {}).items()}
        self.error = error
        self.calls: List[tuple] = []

    def search_recording_by_metadata(self, title, artist, duration_ms=None, raise_on_error=False):
        self.calls.append(("targeted", title, artist, duration_ms))
        if self.error:
            raise self.error
        return list(self.targeted.get(_key(artist, title), []))

    def search_recording(self, query, limit=10, raise_on_error=False):
        self.calls.append(("general", query, limit))
        if self.error:
            raise self.error
        return list(self.general.get(query.casefold(), []))[:limit]

    def get_recording(self, mbid):
        self.calls.append(("recording", mbid))
        if self.error:
            raise self.error
        return self.recordings.get(mbid)

    def lookup_by_isrc(self, isrc):
        self.calls.append(("isrc", isrc))
        return self.isrcs.get(isrc)

    def get_artist(self, mbid):
        self.calls.append(("artist", mbid))
        return self.artists.get(mbid)


class FakeLLM:
    def __init__(self, response: str = "", error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.prompts: List[str] = []

    def complete(self, prompt, system=None):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.response


# ---------------------------------------------------------------------------
# Catalog / services
# ---------------------------------------------------------------------------

SEED = ResolvedTrack(
    id="mb-paranoid-android",
    title="Paranoid Android",
    artist="Radiohead",
    artist_id="mb-radiohead",
    album="OK Computer",
    release_year=1997,
)


def similar_refs(n: int, prefix: str = "sim") -> List[TrackRef]:
    return [
        TrackRef(id=f"{prefix}-{i}", title=f"Similar {prefix} {i}", artist=f"Band {i % 7}", match=1 - i / 100)
        for i in range(n)
    ]


def catalog_sources(n_similar: int = 40):
    """MusicBrainz/Last.fm doubles that resolve and expand the Radiohead seed."""
    musicbrainz = FakeMusicBrainz(targeted={("Paranoid Android", "Radiohead"): [SEED]})
    infos = {
        ("Radiohead", "Paranoid Android"): make_info(
            "Paranoid Android", "Radiohead", tags=("alternative", "rock", "90s"),
            playcount=9_000_000, id=SEED.id,
        ),
    }
    # Spread playcounts across the three popularity categories
    for i, ref in enumerate(similar_refs(n_similar)):
        playcount = (5_000_000, 400_000, 20_000)[i % 3]
        infos[(ref.artist, ref.title)] = make_info(
            ref.title, ref.artist, tags=("rock", "alternative") if i % 2 else ("indie",),
            playcount=playcount, id=ref.id,
        )
    lastfm = FakeLastFM(
        infos=infos,
        similar=similar_refs(n_similar),
        similar_artists=[ArtistRef(name="Muse"), ArtistRef(name="Portishead")],
    )
    return musicbrainz, lastfm


def make_services(musicbrainz=None, lastfm=None, llm=None, **overrides) -> PipelineServices:
    if musicbrainz is None or lastfm is None:
        default_mb, default_lfm = catalog_sources()
        musicbrainz = musicbrainz or default_mb
        lastfm = lastfm or default_lfm
    enricher = TrackEnricher(lastfm)
    services = dict(
        resolver=TrackResolver(musicbrainz, lastfm),
        enricher=enricher,
        generator=CandidateGenerator(lastfm, enricher, config=CandidateConfig(enrich_workers=2)),
        scorer=SimilarityScorer(),
        explainer=Explainer(llm),
    )
    services.update(overrides)
    return PipelineServices(**services)
