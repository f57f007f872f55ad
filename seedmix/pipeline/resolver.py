"""
Track resolution: free-text seed query -> canonical ResolvedTrack.

Lookup order (first non-empty result wins):
    0. a bare MusicBrainz recording id or ISRC is looked up directly
    1. targeted MusicBrainz search on parsed (track, artist), duration-filtered
    2. general MusicBrainz search on the raw query
    3. Last.fm track.search

A source that fails in transit does not stop the chain. If no source finds a
match and at least one of them was unreachable, the failure is reported as
UpstreamUnavailableError (retryable) rather than NotFoundError.
"""
from __future__ import annotations

import logging
import re
from typing import Callable, List, Optional

from seedmix.errors import NotFoundError, UpstreamUnavailableError, ValidationError
from seedmix.lastfm_client import LastFMClient
from seedmix.models import ResolvedTrack
from seedmix.musicbrainz_client import MusicBrainzClient
from seedmix.query_parser import parse_query

logger = logging.getLogger(__name__)

_MBID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
_ISRC_RE = re.compile(r"^[A-Z]{2}-?[A-Z0-9]{3}-?\d{2}-?\d{5}$", re.IGNORECASE)


class TrackResolver:
    """Resolves a seed query against MusicBrainz, falling back to Last.fm."""

    def __init__(self, musicbrainz: MusicBrainzClient, lastfm: Optional[LastFMClient] = None):
        self.musicbrainz = musicbrainz
        self.lastfm = lastfm

    def resolve(self, query: str, duration_ms: Optional[int] = None) -> ResolvedTrack:
        """
        Resolve a query to the top-ranked matching track.

        Args:
            query: Free text such as "Paranoid Android by Radiohead"
            duration_ms: Known duration used to filter targeted results

        Returns:
            The first result from the first source that returns any

        Raises:
            ValidationError: blank query
            NotFoundError: every source answered and none matched
            UpstreamUnavailableError: no match and at least one source was unreachable
            RateLimitedError: a source kept throttling
        """
        query = (query or "").strip()
        if not query:
            raise ValidationError("Seed query is empty")

        failures: List[UpstreamUnavailableError] = []

        def attempt(source: str, lookup: Callable[[], List[ResolvedTrack]]) -> Optional[ResolvedTrack]:
            try:
                results = lookup()
            except UpstreamUnavailableError as e:
                logger.warning(f"{source} unavailable while resolving '{query}': {e.message}")
                failures.append(e)
                return None
            return self._pick(results[0], source) if results else None

        if _MBID_RE.match(query):
            found = attempt("MusicBrainz (id)", lambda: [t for t in [self.musicbrainz.get_recording(query)] if t])
            if found:
                return found
        elif _ISRC_RE.match(query):
            isrc = query.replace("-", "").upper()
            found = attempt("MusicBrainz (isrc)", lambda: [t for t in [self.musicbrainz.lookup_by_isrc(isrc)] if t])
            if found:
                return found

        parsed = parse_query(query)
        if parsed:
            logger.debug(f"Parsed query: track='{parsed.track}' artist='{parsed.artist}'")
            found = attempt("MusicBrainz (targeted)", lambda: self.musicbrainz.search_recording_by_metadata(
                parsed.track, parsed.artist, duration_ms=duration_ms, raise_on_error=True
            ))
            if found:
                return found

        found = attempt("MusicBrainz", lambda: self.musicbrainz.search_recording(
            query, limit=5, raise_on_error=True
        ))
        if found:
            return found

        if self.lastfm is not None:
            if parsed:
                found = attempt("Last.FM", lambda: self.lastfm.search_track(
                    parsed.track, artist=parsed.artist, limit=5, raise_on_error=True
                ))
            else:
                found = attempt("Last.FM", lambda: self.lastfm.search_track(
                    query, limit=5, raise_on_error=True
                ))
            if found:
                return found

        if failures:
            raise UpstreamUnavailableError(
                f"Could not resolve '{query}': {len(failures)} source lookup(s) failed ({failures[-1].message})"
            )
        logger.info(f"No match for query '{query}'")
        raise NotFoundError(f"Could not find a track matching '{query}'")

    @staticmethod
    def _pick(track: ResolvedTrack, source: str) -> ResolvedTrack:
        logger.info(f"Resolved seed via {source}: {track.artist} - {track.title} ({track.id or 'no id'})")
        return track
