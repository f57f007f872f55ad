"""
Track enrichment: tags, popularity and similarity lists from Last.fm.

A seed whose track carries no tags falls back to artist tags (Last.fm, then
MusicBrainz community tags).

This is the only stage that absorbs source failures: a lookup that fails
leaves its field empty instead of failing the run.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from seedmix.errors import PipelineError
from seedmix.lastfm_client import LastFMClient
from seedmix.logging_utils import propagate_run_id, truncate_list
from seedmix.models import EnrichedTrack, ResolvedTrack, Tag
from seedmix.musicbrainz_client import MusicBrainzClient

logger = logging.getLogger(__name__)

SIMILAR_TRACKS_LIMIT = 100
SIMILAR_ARTISTS_LIMIT = 20


class TrackEnricher:
    """Builds EnrichedTrack records for the seed and for candidates."""

    def __init__(self, lastfm: LastFMClient, musicbrainz: Optional[MusicBrainzClient] = None):
        self.lastfm = lastfm
        self.musicbrainz = musicbrainz

    def enrich(self, track: ResolvedTrack) -> EnrichedTrack:
        """
        Full enrichment for the seed: track info, similar tracks and similar
        artists, fetched concurrently and joined before returning.
        """
        mbid = track.id or None
        artist_mbid = track.artist_id or None

        with ThreadPoolExecutor(max_workers=3, thread_name_prefix="enrich") as pool:
            info_f = pool.submit(propagate_run_id(self.lastfm.get_track_info), track.title, track.artist, mbid)
            similar_f = pool.submit(
                propagate_run_id(self.lastfm.get_similar_tracks), track.title, track.artist, mbid,
                SIMILAR_TRACKS_LIMIT,
            )
            artists_f = pool.submit(
                propagate_run_id(self.lastfm.get_similar_artists), track.artist, artist_mbid,
                SIMILAR_ARTISTS_LIMIT,
            )
            info = self._settle(info_f, "track info", track, None)
            similar = self._settle(similar_f, "similar tracks", track, [])
            artists = self._settle(artists_f, "similar artists", track, [])

        tags = info.tags if info else ()
        if not tags:
            tags = self._artist_tags(track)

        enriched = EnrichedTrack.from_resolved(
            track,
            tags=tuple(tags),
            similar_tracks=tuple(t.id for t in similar if t.id),
            similar_artists=tuple(a.name for a in artists),
            listeners=info.listeners if info else None,
            playcount=info.playcount if info else None,
        )
        logger.info(
            f"Enriched seed: {len(enriched.tags)} tags, {len(similar)} similar tracks, "
            f"{len(enriched.similar_artists)} similar artists"
        )
        logger.debug(f"Seed tags: {truncate_list([t.name for t in enriched.tags], max_items=5)}")
        return enriched

    def enrich_light(self, track: ResolvedTrack) -> Optional[EnrichedTrack]:
        """Tags and playcount only; None when the lookup fails or finds nothing."""
        try:
            info = self.lastfm.get_track_info(track.title, track.artist, track.id or None)
        except PipelineError as e:
            logger.debug(f"Light enrichment failed for {track.artist} - {track.title}: {e}")
            return None
        if info is None:
            return None

        return EnrichedTrack.from_resolved(
            track,
            title=track.title or info.track.title,
            artist=track.artist or info.track.artist,
            artist_id=track.artist_id or info.track.artist_id,
            album=track.album or info.track.album,
            duration_ms=track.duration_ms or info.track.duration_ms,
            url=track.url or info.track.url,
            tags=info.tags,
            listeners=info.listeners,
            playcount=info.playcount,
        )

    def _artist_tags(self, track: ResolvedTrack) -> List[Tag]:
        """Artist-level tags for a seed whose track has none: Last.fm first, then MusicBrainz."""
        try:
            info = self.lastfm.get_artist_info(track.artist, track.artist_id or None)
        except PipelineError as e:
            logger.warning(f"Artist info lookup failed for {track.artist}: {e}")
            info = None
        tags = [Tag.from_dict(t) for t in (info or {}).get("tags") or [] if t.get("name")]
        if tags or self.musicbrainz is None or not track.artist_id:
            return tags

        try:
            artist = self.musicbrainz.get_artist(track.artist_id)
        except PipelineError as e:
            logger.warning(f"MusicBrainz artist lookup failed for {track.artist}: {e}")
            return []
        ranked = sorted((artist or {}).get("tags") or [], key=lambda t: t.get("count", 0), reverse=True)
        return [Tag(name=t["name"], count=t.get("count", 0), source="musicbrainz") for t in ranked if t.get("name")]

    @staticmethod
    def _settle(future, label: str, track: ResolvedTrack, default):
        try:
            result = future.result()
        except Exception as e:
            logger.warning(f"Enrichment lookup '{label}' failed for {track.artist} - {track.title}: {e}")
            return default
        return default if result is None else result
