"""
Last.FM API Client - Track info, tags and similarity data (lenient 5 req/sec source)
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .models import ResolvedTrack, Tag
from .rate_limiter import LASTFM
from .response_cache import (
    TTL_ARTIST_INFO,
    TTL_RESOLVED_QUERY,
    TTL_SIMILAR_TRACKS,
    TTL_TOP_TRACKS,
    TTL_TRACK_INFO,
)
from .source_client import SourceClient
from .string_utils import query_hash

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackRef:
    """Lightweight track reference returned by list endpoints."""
    id: str
    title: str
    artist: str
    artist_id: str = ""
    match: Optional[float] = None
    playcount: Optional[int] = None

    def to_resolved(self) -> ResolvedTrack:
        return ResolvedTrack(id=self.id, title=self.title, artist=self.artist, artist_id=self.artist_id)


@dataclass(frozen=True)
class ArtistRef:
    name: str
    id: str = ""
    match: Optional[float] = None


@dataclass(frozen=True)
class TrackInfo:
    """Result of track.getInfo."""
    track: ResolvedTrack
    tags: Tuple[Tag, ...] = ()
    playcount: Optional[int] = None
    listeners: Optional[int] = None


def _as_list(value: Any) -> List[Any]:
    """Last.fm collapses one-element lists into a bare object."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _artist_name(artist: Any) -> Tuple[str, str]:
    if isinstance(artist, dict):
        return artist.get('name') or artist.get('#text') or '', artist.get('mbid') or ''
    return str(artist or ''), ''


def _track_ref(item: Dict[str, Any]) -> TrackRef:
    artist, artist_id = _artist_name(item.get('artist'))
    return TrackRef(
        id=item.get('mbid') or '',
        title=item.get('name') or '',
        artist=artist,
        artist_id=artist_id,
        match=_to_float(item.get('match')),
        playcount=_to_int(item.get('playcount')),
    )


def _ref_to_dict(ref: TrackRef) -> Dict[str, Any]:
    return {
        'id': ref.id, 'title': ref.title, 'artist': ref.artist,
        'artistId': ref.artist_id, 'match': ref.match, 'playcount': ref.playcount,
    }


def _ref_from_dict(row: Dict[str, Any]) -> TrackRef:
    return TrackRef(
        id=row.get('id', ''), title=row.get('title', ''), artist=row.get('artist', ''),
        artist_id=row.get('artistId', ''), match=row.get('match'), playcount=row.get('playcount'),
    )


class LastFMClient(SourceClient):
    """Client for interacting with Last.FM API"""

    API_NAME = LASTFM
    SOURCE_NAME = "Last.FM"
    BASE_URL = "https://ws.audioscrobbler.com/2.0/"
    THROTTLE_RETRY_DELAY = 1.0

    def __init__(self, api_key: str, *args, **kwargs):
        """
        Initialize Last.FM client

        Args:
            api_key: Last.FM API key
            *args, **kwargs: Passed to SourceClient (rate limiter, cache, ...)
        """
        super().__init__(*args, **kwargs)
        self.api_key = api_key
        logger.info("Initialized Last.FM client")

    def _make_request(self, method: str, params: Dict[str, Any], raise_on_error: bool = False) -> Optional[Dict]:
        """
        Make a request to Last.FM API

        Args:
            method: API method name
            params: Additional parameters
            raise_on_error: Raise UpstreamUnavailableError on network/5xx failures

        Returns:
            JSON response or None on error (including Last.FM in-body errors)
        """
        request_params = {
            'method': method,
            'api_key': self.api_key,
            'format': 'json',
            **{k: v for k, v in params.items() if v not in (None, '')},
        }
        data = self._get_json(self.BASE_URL, request_params, raise_on_error=raise_on_error)
        if data and data.get('error'):
            logger.debug(f"Last.FM {method} error {data.get('error')}: {data.get('message')}")
            return None
        return data

    @staticmethod
    def _key(kind: str, mbid: Optional[str], *parts: str) -> str:
        if mbid:
            return f"lastfm:{kind}:{mbid}"
        return f"lastfm:{kind}:{query_hash(':'.join(parts))}"

    def search_track(self, query: str, artist: Optional[str] = None, limit: int = 10,
                     raise_on_error: bool = False) -> List[ResolvedTrack]:
        """
        Search for tracks by name

        Args:
            query: Track title or free text
            artist: Optional artist name to narrow the search
            limit: Maximum results
            raise_on_error: Raise UpstreamUnavailableError on network/5xx failures

        Returns:
            Matching tracks (empty if none)
        """
        def fetch():
            data = self._make_request(
                'track.search', {'track': query, 'artist': artist, 'limit': limit},
                raise_on_error=raise_on_error,
            )
            matches = ((data or {}).get('results') or {}).get('trackmatches') or {}
            return [
                ResolvedTrack(
                    id=item.get('mbid') or '',
                    title=item.get('name') or '',
                    artist=_artist_name(item.get('artist'))[0],
                    url=item.get('url'),
                ).to_dict()
                for item in _as_list(matches.get('track'))
            ]

        key_text = f"{artist or ''}:{query}"
        cache_key = f"resolved:lastfm:{query_hash(key_text)}:{limit}"
        rows = self._cached(cache_key, TTL_RESOLVED_QUERY, fetch) or []
        return [ResolvedTrack.from_dict(row) for row in rows]

    def get_track_info(self, title: str, artist: str, mbid: Optional[str] = None) -> Optional[TrackInfo]:
        """Tags, playcount and listeners for a track, or None if unknown."""
        def fetch():
            params = {'mbid': mbid} if mbid else {'track': title, 'artist': artist}
            data = self._make_request('track.getInfo', params)
            track = (data or {}).get('track')
            if not track:
                return None
            artist_name, artist_id = _artist_name(track.get('artist'))
            album = track.get('album') or {}
            duration = _to_int(track.get('duration'))
            return {
                'track': ResolvedTrack(
                    id=track.get('mbid') or '',
                    title=track.get('name') or title,
                    artist=artist_name or artist,
                    artist_id=artist_id,
                    album=album.get('title'),
                    album_id=album.get('mbid') or None,
                    duration_ms=duration or None,
                    url=track.get('url'),
                ).to_dict(),
                'tags': [
                    {'name': t.get('name', ''), 'count': _to_int(t.get('count')) or 0, 'source': 'lastfm'}
                    for t in _as_list((track.get('toptags') or {}).get('tag'))
                ],
                'playcount': _to_int(track.get('playcount')),
                'listeners': _to_int(track.get('listeners')),
            }

        row = self._cached(self._key('track', mbid, artist, title), TTL_TRACK_INFO, fetch)
        if not row:
            return None
        return TrackInfo(
            track=ResolvedTrack.from_dict(row['track']),
            tags=tuple(Tag.from_dict(t) for t in row.get('tags') or []),
            playcount=row.get('playcount'),
            listeners=row.get('listeners'),
        )

    def get_similar_tracks(self, title: str, artist: str, mbid: Optional[str] = None,
                           limit: int = 50) -> List[TrackRef]:
        """Similar tracks ordered by Last.FM match score."""
        def fetch():
            params = {'mbid': mbid} if mbid else {'track': title, 'artist': artist}
            params['limit'] = limit
            data = self._make_request('track.getSimilar', params)
            items = _as_list(((data or {}).get('similartracks') or {}).get('track'))
            return [_ref_to_dict(_track_ref(item)) for item in items]

        key = f"{self._key('similar', mbid, artist, title)}:{limit}"
        return [_ref_from_dict(row) for row in self._cached(key, TTL_SIMILAR_TRACKS, fetch) or []]

    def get_artist_info(self, artist: str, mbid: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Artist summary: {name, mbid, tags, similarArtists, listeners, playcount}"""
        def fetch():
            data = self._make_request('artist.getInfo', {'mbid': mbid} if mbid else {'artist': artist})
            info = (data or {}).get('artist')
            if not info:
                return None
            stats = info.get('stats') or {}
            return {
                'name': info.get('name') or artist,
                'mbid': info.get('mbid') or '',
                'tags': [
                    {'name': t.get('name', ''), 'count': 0, 'source': 'lastfm'}
                    for t in _as_list((info.get('tags') or {}).get('tag'))
                ],
                'similarArtists': [
                    a.get('name') for a in _as_list((info.get('similar') or {}).get('artist')) if a.get('name')
                ],
                'listeners': _to_int(stats.get('listeners')),
                'playcount': _to_int(stats.get('playcount')),
            }

        return self._cached(self._key('artist', mbid, artist), TTL_ARTIST_INFO, fetch)

    def get_similar_artists(self, artist: str, mbid: Optional[str] = None, limit: int = 20) -> List[ArtistRef]:
        def fetch():
            params = {'mbid': mbid} if mbid else {'artist': artist}
            params['limit'] = limit
            data = self._make_request('artist.getSimilar', params)
            items = _as_list(((data or {}).get('similarartists') or {}).get('artist'))
            return [
                {'name': a.get('name', ''), 'id': a.get('mbid') or '', 'match': _to_float(a.get('match'))}
                for a in items if a.get('name')
            ]

        key = f"{self._key('similar-artists', mbid, artist)}:{limit}"
        rows = self._cached(key, TTL_ARTIST_INFO, fetch) or []
        return [ArtistRef(name=r['name'], id=r.get('id', ''), match=r.get('match')) for r in rows]

    def get_artist_top_tracks(self, artist: str, mbid: Optional[str] = None, limit: int = 5) -> List[TrackRef]:
        def fetch():
            params = {'mbid': mbid} if mbid else {'artist': artist}
            params['limit'] = limit
            data = self._make_request('artist.getTopTracks', params)
            items = _as_list(((data or {}).get('toptracks') or {}).get('track'))
            return [_ref_to_dict(_track_ref(item)) for item in items[:limit]]

        key = f"{self._key('top', mbid, artist)}:{limit}"
        return [_ref_from_dict(row) for row in self._cached(key, TTL_TOP_TRACKS, fetch) or []]

    def get_tag_top_tracks(self, tag: str, limit: int = 20) -> List[TrackRef]:
        """Most popular tracks carrying a tag."""
        def fetch():
            data = self._make_request('tag.getTopTracks', {'tag': tag, 'limit': limit})
            items = _as_list(((data or {}).get('tracks') or {}).get('track'))
            return [_ref_to_dict(_track_ref(item)) for item in items[:limit]]

        key = f"lastfm:tag-top:{query_hash(tag)}:{limit}"
        return [_ref_from_dict(row) for row in self._cached(key, TTL_TOP_TRACKS, fetch) or []]
