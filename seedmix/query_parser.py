"""
Free-text seed query parsing.

Recognised shapes, tried in order:
    "Paranoid Android by Radiohead"
    "Radiohead - Paranoid Android"   (hyphen, en or em dash)
    "Paranoid Android, Radiohead"
Anything else is a track-only search term.
"""
import re
from dataclasses import dataclass
from typing import Optional

_BY_RE = re.compile(r"^(.+?)\s+by\s+(.+)$", re.IGNORECASE)
# A bare hyphen needs surrounding spaces so names like "Jay-Z" survive
_DASH_RE = re.compile(r"^(.+?)(?:\s+-\s+|\s*[–—]\s*)(.+)$")
_COMMA_RE = re.compile(r"^(.+?),\s*(.+)$")


@dataclass(frozen=True)
class ParsedQuery:
    track: str
    artist: str


def parse_query(text: str) -> Optional[ParsedQuery]:
    """Split a query into (track, artist), or None for a track-only search."""
    query = (text or "").strip()
    if not query:
        return None

    match = _BY_RE.match(query)
    if match:
        return _build(match.group(1), match.group(2))

    match = _DASH_RE.match(query)
    if match:
        # Artist comes first in the dash form
        return _build(match.group(2), match.group(1))

    match = _COMMA_RE.match(query)
    if match:
        return _build(match.group(1), match.group(2))

    return None


def _build(track: str, artist: str) -> Optional[ParsedQuery]:
    track, artist = track.strip(), artist.strip()
    if not track or not artist:
        return None
    return ParsedQuery(track=track, artist=artist)
