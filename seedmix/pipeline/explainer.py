"""
Playlist explanations: one short reason and a flow role per track.

One batched LLM call covers the whole playlist. Entries the model gets wrong
fall back per track to a deterministic template; if the call itself fails (or
no LLM is configured) every track uses the template.
"""
from __future__ import annotations

import json
import logging
from dataclasses import replace
from typing import Any, List, Optional, Sequence

from seedmix.llm_client import LLMClient
from seedmix.models import FLOW_ROLES, EnrichedTrack, PlaylistTrack
from seedmix.string_utils import normalize_tag_name

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a music curator creating personalized playlist explanations.
Your task is to explain why each track connects to the seed track.
Be concise (2-3 sentences per track), insightful, and focus on musical connections.
Output valid JSON only."""


def build_prompt(seed: EnrichedTrack, playlist: Sequence[PlaylistTrack]) -> str:
    seed_tags = ", ".join(t.name for t in list(seed.tags)[:5]) or "none"
    lines = []
    for track in playlist:
        tags = ", ".join(t.name for t in list(track.tags)[:3]) or "none"
        lines.append(
            f'{track.position}. "{track.title}" by {track.artist} '
            f"(similarity: {track.scores.overall:.1f}/10, suggested role: {track.flow_role})\n"
            f"   Tags: {tags}"
        )
    track_list = "\n".join(lines)

    return f"""Given this seed track:
- "{seed.title}" by {seed.artist}
- Tags: {seed_tags}

Explain why each of these tracks belongs in the playlist. For each track, provide:
1. A 2-3 sentence "reason" explaining the musical connection
2. A "flowRole" (one of: {", ".join(FLOW_ROLES)})

Tracks to explain:
{track_list}

Respond with a JSON array with exactly one object per track, in the same order, with keys: reason, flowRole
Example: [{{"reason": "This track shares...", "flowRole": "builder"}}]"""


def extract_json_array(text: str) -> Optional[List[Any]]:
    """First JSON array embedded in text (code fences and prose tolerated)."""
    if not text:
        return None
    decoder = json.JSONDecoder()
    idx = text.find("[")
    while idx != -1:
        try:
            value, _ = decoder.raw_decode(text, idx)
        except ValueError:
            value = None
        if isinstance(value, list):
            return value
        idx = text.find("[", idx + 1)
    return None


def fallback_reason(seed: EnrichedTrack, track: PlaylistTrack) -> str:
    """Deterministic one-sentence reason; never empty."""
    track_tags = {normalize_tag_name(t.name) for t in track.tags}
    shared = []
    seen = set()
    for tag in seed.tags:
        key = normalize_tag_name(tag.name)
        if key and key in track_tags and key not in seen:
            seen.add(key)
            shared.append(tag.name)
        if len(shared) == 2:
            break

    if shared:
        return (
            f'Shares the {" and ".join(shared)} aesthetic with "{seed.title}", '
            f"creating a natural sonic connection."
        )
    if track.scores.artist_similarity > 0.5:
        return f"From an artist in {seed.artist}'s musical orbit, bringing familiar creative sensibilities."
    return f'Complements the mood of "{seed.title}" with similar energy and production style.'


class Explainer:
    """Fills PlaylistTrack.reason (and optionally refines flow_role)."""

    def __init__(self, llm: Optional[LLMClient] = None):
        self.llm = llm

    def explain(self, seed: EnrichedTrack, playlist: Sequence[PlaylistTrack]) -> List[PlaylistTrack]:
        if not playlist:
            return []

        entries = self._ask_llm(seed, playlist)
        if entries is None:
            return [replace(t, reason=fallback_reason(seed, t)) for t in playlist]

        explained = []
        fallbacks = 0
        for i, track in enumerate(playlist):
            entry = entries[i] if i < len(entries) else None
            reason = entry.get("reason") if isinstance(entry, dict) else None
            if not isinstance(reason, str) or not reason.strip():
                fallbacks += 1
                explained.append(replace(track, reason=fallback_reason(seed, track)))
                continue
            role = entry.get("flowRole")
            explained.append(replace(
                track,
                reason=reason.strip(),
                flow_role=role if role in FLOW_ROLES else track.flow_role,
            ))

        if fallbacks:
            logger.info(f"LLM explanations missing for {fallbacks}/{len(playlist)} tracks; used templates")
        return explained

    def _ask_llm(self, seed: EnrichedTrack, playlist: Sequence[PlaylistTrack]) -> Optional[List[Any]]:
        if self.llm is None:
            logger.info("No LLM configured; using template explanations")
            return None

        try:
            response = self.llm.complete(build_prompt(seed, playlist), system=SYSTEM_PROMPT)
        except Exception as e:
            logger.warning(f"LLM explanation call failed, using templates: {e}")
            return None

        entries = extract_json_array(response)
        if entries is None:
            logger.warning("LLM response contained no JSON array; using templates")
        return entries
