"""
Quota-based curation: ranked candidates -> ordered playlist.
"""
from __future__ import annotations

import logging
import math
from typing import Dict, List, Sequence

from seedmix.models import (
    CATEGORY_DEEP_CUT,
    CATEGORY_HIDDEN_GEM,
    CATEGORY_POPULAR,
    PlaylistTrack,
    ScoredTrack,
    base_fields,
)

logger = logging.getLogger(__name__)

POPULAR_SHARE = 0.35
DEEP_CUT_SHARE = 0.50
HIDDEN_GEM_SHARE = 0.15


def category_quotas(target_size: int) -> Dict[str, int]:
    """Slots per popularity category for a playlist of target_size."""
    return {
        CATEGORY_POPULAR: math.floor(POPULAR_SHARE * target_size),
        CATEGORY_DEEP_CUT: math.floor(DEEP_CUT_SHARE * target_size),
        CATEGORY_HIDDEN_GEM: math.ceil(HIDDEN_GEM_SHARE * target_size),
    }


def flow_role(index: int, total: int) -> str:
    """Narrative role by normalized position p = index / (total - 1)."""
    if index == 0:
        return "opener"
    if index == total - 1:
        return "closer"
    p = index / (total - 1)
    if p < 0.25:
        return "builder"
    if p < 0.5:
        return "peak"
    if p < 0.75:
        return "valley"
    return "transition"


def display_score(overall: float) -> int:
    """Overall (0-10) rounded half-up to an integer in 1..10."""
    return max(1, min(10, math.floor(overall + 0.5)))


def curate(scored: Sequence[ScoredTrack], target_size: int) -> List[PlaylistTrack]:
    """
    Select and order the final playlist.

    Each category is filled highest-overall-first up to its quota; leftover
    slots go to the best unselected tracks regardless of category.

    Args:
        scored: Candidates sorted by overall, descending (seed excluded)
        target_size: Requested playlist length

    Returns:
        Up to target_size PlaylistTrack records, positions 1..N
    """
    if target_size <= 0 or not scored:
        return []

    quotas = category_quotas(target_size)
    selected: List[int] = []
    taken = set()

    for category in (CATEGORY_POPULAR, CATEGORY_DEEP_CUT, CATEGORY_HIDDEN_GEM):
        quota = quotas[category]
        for idx, track in enumerate(scored):
            if quota <= 0:
                break
            if track.category == category:
                selected.append(idx)
                taken.add(idx)
                quota -= 1

    if len(selected) < target_size:
        for idx in range(len(scored)):
            if len(selected) >= target_size:
                break
            if idx not in taken:
                selected.append(idx)
                taken.add(idx)

    selected = selected[:target_size]
    total = len(selected)

    playlist = [
        PlaylistTrack(
            **base_fields(scored[idx], ScoredTrack),
            position=i + 1,
            reason="",
            flow_role=flow_role(i, total),
            similarity_score=display_score(scored[idx].scores.overall),
        )
        for i, idx in enumerate(selected)
    ]

    counts = {c: sum(1 for t in playlist if t.category == c) for c in quotas}
    logger.info(
        f"Curated {total}/{target_size} tracks "
        f"(popular {counts[CATEGORY_POPULAR]}, deep-cut {counts[CATEGORY_DEEP_CUT]}, "
        f"hidden-gem {counts[CATEGORY_HIDDEN_GEM]})"
    )
    return playlist
