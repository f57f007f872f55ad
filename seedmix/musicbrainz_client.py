"""
MusicBrainz API Client - recording search and lookups (strict 1 req/sec source)
"""
import logging
from typing import Any, Dict, List, Optional

from .models import ResolvedTrack
from .rate_limiter import MUSICBRAINZ
from .response_cache import TTL_MB_LOOKUP, TTL_RESOLVED_QUERY
from .source_client import SourceClient
from .string_utils import query_hash

logger = logging.getLogger(__name__)

# Candidates whose duration differs by this much or more are dropped
DURATION_TOLERANCE_MS = 5000


def _lucene_escape(value: str) -> str:
    return value.replace('\\', '\\\\').replace('"', '\\"')


def _release_year(date: Optional[str]) -> Optional[int]:
    if not date:
        return None
    try:
        return int(date.split('-')[0])
    except ValueError:
        return None


def recording_to_track(rec: Dict[str, Any]) -> ResolvedTrack:
    """Map a MusicBrainz recording JSON object to a ResolvedTrack."""
    credits = rec.get('artist-credit') or []
    first_credit = credits[0] if credits else {}
    releases = rec.get('releases') or []
    first_release = releases[0] if releases else {}
    return ResolvedTrack(
        id=rec.get('id', ''),
        title=rec.get('title', ''),
        artist=first_credit.get('name') or 'Unknown Artist',
        artist_id=(first_credit.get('artist') or {}).get('id', ''),
        album=first_release.get('title'),
        album_id=first_release.get('id'),
        release_year=_release_year(rec.get('first-release-date')),
        duration_ms=rec.get('length'),
        url=f"https://musicbrainz.org/recording/{rec['id']}" if rec.get('id') else None,
    )


class MusicBrainzClient(SourceClient):
    """Client for the MusicBrainz web service"""

    API_NAME = MUSICBRAINZ
    SOURCE_NAME = "MusicBrainz"
    BASE_URL = "https://musicbrainz.org/ws/2/"
    THROTTLE_RETRY_DELAY = 2.0

    def _request(self, endpoint: str, params: Dict[str, Any], raise_on_error: bool = False):
        return self._get_json(
            self.BASE_URL + endpoint,
            {**params, 'fmt': 'json'},
            raise_on_error=raise_on_error,
        )

    def search_recording(self, query: str, limit: int = 10, raise_on_error: bool = False) -> List[ResolvedTrack]:
        """
        Search recordings with a Lucene query string

        Args:
            query: Free text or Lucene query
            limit: Maximum results
            raise_on_error: Raise UpstreamUnavailableError on network/5xx failures

        Returns:
            Matching tracks in MusicBrainz rank order (empty if none)
        """
        def fetch():
            data = self._request('recording', {'query': query, 'limit': limit}, raise_on_error=raise_on_error)
            if not data:
                return []
            return [recording_to_track(rec).to_dict() for rec in data.get('recordings') or []]

        cache_key = f"resolved:mb:{query_hash(query)}:{limit}"
        rows = self._cached(cache_key, TTL_RESOLVED_QUERY, fetch) or []
        return [ResolvedTrack.from_dict(row) for row in rows]

    def search_recording_by_metadata(
        self,
        title: str,
        artist: str,
        duration_ms: Optional[int] = None,
        raise_on_error: bool = False,
    ) -> List[ResolvedTrack]:
        """Targeted title/artist search, filtered to a known duration when given."""
        query = f'recording:"{_lucene_escape(title)}"'
        if artist:
            query += f' AND artist:"{_lucene_escape(artist)}"'

        results = self.search_recording(query, limit=5, raise_on_error=raise_on_error)

        if duration_ms and results:
            results = [
                r for r in results
                if not r.duration_ms or abs(r.duration_ms - duration_ms) < DURATION_TOLERANCE_MS
            ]
        return results

    def get_recording(self, mbid: str) -> Optional[ResolvedTrack]:
        """
        Resolve a recording by MBID.

        Raises:
            UpstreamUnavailableError: network failure or 5xx
            RateLimitedError: throttled after retry
        """
        def fetch():
            data = self._request(
                f'recording/{mbid}', {'inc': 'artists+releases+isrcs'}, raise_on_error=True
            )
            return recording_to_track(data).to_dict() if data else None

        row = self._cached(f"mb:recording:{mbid}", TTL_MB_LOOKUP, fetch)
        return ResolvedTrack.from_dict(row) if row else None

    def lookup_by_isrc(self, isrc: str) -> Optional[ResolvedTrack]:
        """First recording carrying the given ISRC, or None."""
        def fetch():
            data = self._request(f'isrc/{isrc}', {'inc': 'artists+releases'})
            recordings = (data or {}).get('recordings') or []
            return recording_to_track(recordings[0]).to_dict() if recordings else None

        row = self._cached(f"mb:isrc:{isrc.upper()}", TTL_MB_LOOKUP, fetch)
        return ResolvedTrack.from_dict(row) if row else None

    def get_artist(self, mbid: str) -> Optional[Dict[str, Any]]:
        """Artist summary with community tags: {id, name, type, country, tags}"""
        def fetch():
            data = self._request(f'artist/{mbid}', {'inc': 'tags'})
            if not data:
                return None
            return {
                'id': data.get('id', mbid),
                'name': data.get('name', ''),
                'type': data.get('type'),
                'country': data.get('country'),
                'tags': [
                    {'name': t.get('name', ''), 'count': int(t.get('count') or 0)}
                    for t in data.get('tags') or []
                ],
            }

        return self._cached(f"mb:artist:{mbid}", TTL_MB_LOOKUP, fetch)
