"""
Candidate pool generation for playlist building.

Strategies run in fixed priority order, each adding newly discovered tracks
until the pool reaches its target or the strategy runs dry:
    1. similar tracks of the seed
    2. top tracks of similar artists
    3. top tracks of the seed's strongest tag
    4. nearest neighbours in the vector index (when one is configured)

The seed always sits at pool index 0 and counts toward the target.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Set

from seedmix.lastfm_client import LastFMClient
from seedmix.logging_utils import format_count, propagate_run_id
from seedmix.models import EnrichedTrack, ResolvedTrack
from seedmix.pipeline.enricher import TrackEnricher
from seedmix.vector_index import VectorIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateConfig:
    """Configuration for candidate generation."""
    pool_multiplier: int = 4  # Pool target = playlist size x multiplier
    similar_tracks_fetch: int = 100  # Similar tracks requested from Last.fm
    similar_tracks_take: int = 50  # ...of which this many are considered
    similar_artists: int = 10  # Similar artists mined for top tracks
    tracks_per_artist: int = 5
    tag_tracks: int = 20  # Top tracks fetched for the strongest tag
    enrich_workers: int = 5


def strongest_tag(seed: EnrichedTrack) -> Optional[str]:
    """Name of the highest-count tag (first one wins on ties), or None."""
    best = None
    for tag in seed.tags:
        if not tag.name:
            continue
        if best is None or tag.count > best.count:
            best = tag
    return best.name if best else None


class CandidateGenerator:
    """Builds a deduplicated, light-enriched candidate pool around a seed."""

    def __init__(
        self,
        lastfm: LastFMClient,
        enricher: TrackEnricher,
        vector_index: Optional[VectorIndex] = None,
        config: Optional[CandidateConfig] = None,
    ):
        self.lastfm = lastfm
        self.enricher = enricher
        self.vector_index = vector_index
        self.config = config or CandidateConfig()

    def generate(self, seed: EnrichedTrack, target_size: int) -> List[EnrichedTrack]:
        """
        Build the candidate pool.

        Args:
            seed: Enriched seed track (pool index 0)
            target_size: Requested playlist length

        Returns:
            [seed, candidate, ...] with at most target_size x multiplier entries
        """
        target = max(1, target_size * self.config.pool_multiplier)
        pool: List[EnrichedTrack] = [seed]
        seen: Set[str] = {seed.identity_key(), _title_key(seed)}

        strategies = (
            ("similar tracks", self._similar_tracks),
            ("similar artists", self._similar_artist_tracks),
            ("tag discovery", self._tag_tracks),
            ("vector search", self._vector_tracks),
        )

        with ThreadPoolExecutor(max_workers=self.config.enrich_workers,
                                thread_name_prefix="candidates") as executor:
            for label, strategy in strategies:
                if len(pool) >= target:
                    break
                before = len(pool)
                self._admit(executor, pool, seen, strategy(seed, target - len(pool)), target)
                logger.debug(f"Strategy '{label}' added {format_count(len(pool) - before, 'candidate')}")

        logger.info(
            f"Candidate pool: {format_count(len(pool) - 1, 'candidate')} "
            f"(target {target - 1}) for {seed.artist} - {seed.title}"
        )
        return pool

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def _admit(self, executor, pool: List[EnrichedTrack], seen: Set[str],
               discovered: Iterable[ResolvedTrack], target: int) -> None:
        """Dedup, enrich in batches and append until the target is reached."""
        pending = iter(discovered)
        while len(pool) < target:
            batch: List[ResolvedTrack] = []
            for track in pending:
                key = track.identity_key()
                if key in seen or not (track.title or track.id):
                    continue
                # Failed candidates stay in seen: they are skipped, not retried
                seen.add(key)
                batch.append(track)
                if len(batch) >= target - len(pool):
                    break
            if not batch:
                return

            enriched = list(executor.map(propagate_run_id(self.enricher.enrich_light), batch))
            for track, result in zip(batch, enriched):
                if result is None:
                    logger.debug(f"Skipping candidate {track.artist} - {track.title}: enrichment failed")
                    continue
                pool.append(result)

    # ------------------------------------------------------------------
    # Strategies (lazy: later lookups only happen if the pool still needs them)
    # ------------------------------------------------------------------

    def _similar_tracks(self, seed: EnrichedTrack, remaining: int) -> Iterator[ResolvedTrack]:
        refs = self.lastfm.get_similar_tracks(
            seed.title, seed.artist, seed.id or None, limit=self.config.similar_tracks_fetch
        )
        for ref in refs[:self.config.similar_tracks_take]:
            yield ref.to_resolved()

    def _similar_artist_tracks(self, seed: EnrichedTrack, remaining: int) -> Iterator[ResolvedTrack]:
        for artist in list(seed.similar_artists)[:self.config.similar_artists]:
            for ref in self.lastfm.get_artist_top_tracks(artist, limit=self.config.tracks_per_artist):
                yield ref.to_resolved()

    def _tag_tracks(self, seed: EnrichedTrack, remaining: int) -> Iterator[ResolvedTrack]:
        tag = strongest_tag(seed)
        if not tag:
            return
        logger.debug(f"Tag discovery using '{tag}'")
        for ref in self.lastfm.get_tag_top_tracks(tag, limit=self.config.tag_tracks):
            yield ref.to_resolved()

    def _vector_tracks(self, seed: EnrichedTrack, remaining: int) -> Iterator[ResolvedTrack]:
        if self.vector_index is None or not seed.id:
            return
        vector = self.vector_index.get_vector(seed.id)
        if vector is None:
            logger.debug(f"No feature vector for seed {seed.id}")
            return
        # One extra slot: the seed usually matches itself first
        for match in self.vector_index.query(vector, top_k=remaining + 1):
            if match.id == seed.id:
                continue
            yield ResolvedTrack(
                id=match.id,
                title=match.metadata.get("title", ""),
                artist=match.metadata.get("artist", ""),
            )


def _title_key(track: ResolvedTrack) -> str:
    return f"title:{(track.title or '').casefold().strip()}"
