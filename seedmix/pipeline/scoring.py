"""
Similarity scoring module for playlist generation.

Each candidate gets five dimension scores in [0, 1] and a weighted overall
score in [0, 10]:

    overall = 10 x (0.25 tag + 0.20 artist + 0.15 temporal + 0.25 vector + 0.15 popularity)

Candidates are returned sorted by overall, descending; ties keep discovery
order (Python's sort is stable).
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from seedmix.models import (
    CATEGORY_DEEP_CUT,
    CATEGORY_HIDDEN_GEM,
    CATEGORY_POPULAR,
    EnrichedTrack,
    Preferences,
    Scores,
    ScoredTrack,
    base_fields,
)
from seedmix.string_utils import normalize_text, same_artist, tag_name_set
from seedmix.vector_index import VectorIndex, cosine_similarity

logger = logging.getLogger(__name__)

# Playcount thresholds for popularity categories
POPULAR_PLAYCOUNT = 1_000_000
DEEP_CUT_PLAYCOUNT = 100_000

TEMPORAL_SIGMA_YEARS = 10.0
ERA_PENALTY = 0.2
NEUTRAL = 0.5


@dataclass(frozen=True)
class ScoringWeights:
    """Weights of the overall score; they sum to 1."""
    tag_overlap: float = 0.25
    artist_similarity: float = 0.20
    temporal_proximity: float = 0.15
    vector_similarity: float = 0.25
    popularity_fit: float = 0.15


DEFAULT_WEIGHTS = ScoringWeights()


def tag_overlap(seed: EnrichedTrack, candidate: EnrichedTrack) -> float:
    """Jaccard index of case-folded tag names (0 if either side has none)."""
    a = tag_name_set(t.name for t in seed.tags)
    b = tag_name_set(t.name for t in candidate.tags)
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def artist_similarity(seed: EnrichedTrack, candidate: EnrichedTrack) -> float:
    if same_artist(seed.artist, candidate.artist):
        return 1.0
    cand_artist = normalize_text(candidate.artist)
    if cand_artist and cand_artist in {normalize_text(a) for a in seed.similar_artists}:
        return 0.8
    seed_artist = normalize_text(seed.artist)
    if seed_artist and seed_artist in {normalize_text(a) for a in candidate.similar_artists}:
        return 0.6
    return 0.0


def temporal_proximity(seed: EnrichedTrack, candidate: EnrichedTrack,
                       preferences: Optional[Preferences] = None) -> float:
    """
    Era-range penalty first, then unknown years, then Gaussian decay.

    A candidate outside the preferred era scores 0.2 (penalised, not excluded).
    """
    year = candidate.release_year
    if preferences is not None and preferences.era_range is not None and year is not None:
        start, end = preferences.era_range
        if year < start or year > end:
            return ERA_PENALTY
    if year is None or seed.release_year is None:
        return NEUTRAL
    delta = year - seed.release_year
    return math.exp(-(delta ** 2) / (2 * TEMPORAL_SIGMA_YEARS ** 2))


def normalized_playcount(playcount: Optional[int]) -> float:
    return min(1.0, math.log10(max(0, playcount or 0) + 1) / 8)


def popularity_fit(candidate: EnrichedTrack, preferences: Optional[Preferences] = None) -> float:
    normalized = normalized_playcount(candidate.playcount)
    bias = preferences.popularity_bias if preferences is not None else None
    if bias == "popular":
        return normalized
    if bias == "deep-cuts":
        return 0.3 + (1 - normalized) * 0.4
    if bias == "hidden-gems":
        return 1 - normalized if normalized < 0.3 else 0.2
    return NEUTRAL


def popularity_category(playcount: Optional[int]) -> str:
    if playcount is not None and playcount > POPULAR_PLAYCOUNT:
        return CATEGORY_POPULAR
    if playcount is not None and playcount > DEEP_CUT_PLAYCOUNT:
        return CATEGORY_DEEP_CUT
    return CATEGORY_HIDDEN_GEM


def overall_score(scores: Dict[str, float], weights: ScoringWeights = DEFAULT_WEIGHTS) -> float:
    """Weighted composite in [0, 10] from the five dimension scores."""
    return 10 * (
        weights.tag_overlap * scores["tag_overlap"]
        + weights.artist_similarity * scores["artist_similarity"]
        + weights.temporal_proximity * scores["temporal_proximity"]
        + weights.vector_similarity * scores["vector_similarity"]
        + weights.popularity_fit * scores["popularity_fit"]
    )


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


class SimilarityScorer:
    """Scores candidates against the seed."""

    def __init__(self, vector_index: Optional[VectorIndex] = None,
                 weights: ScoringWeights = DEFAULT_WEIGHTS):
        self.vector_index = vector_index
        self.weights = weights

    def _vector_similarity(self, seed_vector, candidate: EnrichedTrack) -> float:
        if seed_vector is None or not candidate.id:
            return NEUTRAL
        cand_vector = self.vector_index.get_vector(candidate.id)
        if cand_vector is None:
            return NEUTRAL
        return _clamp01(cosine_similarity(seed_vector, cand_vector))

    def score(
        self,
        seed: EnrichedTrack,
        candidates: Sequence[EnrichedTrack],
        preferences: Optional[Preferences] = None,
    ) -> List[ScoredTrack]:
        """
        Score and rank candidates (the seed itself must not be included).

        Returns:
            ScoredTrack list, non-increasing in overall, stable on ties
        """
        seed_vector = None
        if self.vector_index is not None and seed.id:
            seed_vector = self.vector_index.get_vector(seed.id)

        scored: List[ScoredTrack] = []
        for candidate in candidates:
            dims = {
                "tag_overlap": _clamp01(tag_overlap(seed, candidate)),
                "artist_similarity": artist_similarity(seed, candidate),
                "temporal_proximity": _clamp01(temporal_proximity(seed, candidate, preferences)),
                "vector_similarity": self._vector_similarity(seed_vector, candidate),
                "popularity_fit": _clamp01(popularity_fit(candidate, preferences)),
            }
            scores = Scores(overall=overall_score(dims, self.weights), **dims)
            scored.append(ScoredTrack(
                **base_fields(candidate, EnrichedTrack),
                scores=scores,
                category=popularity_category(candidate.playcount),
            ))

        scored.sort(key=lambda t: -t.scores.overall)

        if scored:
            logger.info(
                f"Scored {len(scored)} candidates: top {scored[0].scores.overall:.2f}, "
                f"bottom {scored[-1].scores.overall:.2f}"
            )
        return scored
