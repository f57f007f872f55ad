"""
Shared string normalization utilities used across the pipeline stages.

Tag names, artist names and titles coming back from MusicBrainz and Last.fm
disagree on case, Unicode form and typography; everything that compares them
goes through these helpers.
"""
import hashlib
import unicodedata
from typing import Iterable, Set

# Typography normalization for artist names and query separators
_TYPOGRAPHY_TRANSLATION = {
    ord("‘"): "'",  # left single quotation mark
    ord("’"): "'",  # right single quotation mark
    ord("‚"): "'",  # single low-9 quotation mark
    ord("′"): "'",  # prime
    ord("“"): '"',  # left double quotation mark
    ord("”"): '"',  # right double quotation mark
    ord("„"): '"',  # double low-9 quotation mark
    ord("″"): '"',  # double prime
    ord("‐"): "-",  # hyphen
    ord("‑"): "-",  # non-breaking hyphen
    ord("‒"): "-",  # figure dash
    ord("−"): "-",  # minus sign
}


def normalize_text(text: str, lowercase: bool = True, strip: bool = True) -> str:
    """
    Normalize text for consistent comparisons.

    Handles Unicode normalization (NFC), optional case folding, and whitespace.

    Args:
        text: Text to normalize
        lowercase: Apply case folding (uses casefold() for better Unicode support)
        strip: Remove leading/trailing whitespace

    Returns:
        Normalized text string
    """
    if text is None:
        return ""

    text = unicodedata.normalize('NFC', str(text))
    text = text.translate(_TYPOGRAPHY_TRANSLATION)

    if lowercase:
        text = text.casefold()

    if strip:
        text = text.strip()

    # Collapse internal whitespace
    return " ".join(text.split())


def normalize_tag_name(name: str) -> str:
    """Case-folded tag name; tags are compared by name only."""
    return normalize_text(name)


def tag_name_set(names: Iterable[str]) -> Set[str]:
    """Build the case-folded set of tag names, dropping blanks."""
    result = {normalize_tag_name(n) for n in names}
    result.discard("")
    return result


def same_artist(a: str, b: str) -> bool:
    """Case-insensitive artist comparison (blank names never match)."""
    left = normalize_text(a)
    return bool(left) and left == normalize_text(b)


def query_hash(query: str) -> str:
    """Stable short hash of a logical query, used in cache keys."""
    digest = hashlib.sha1(normalize_text(query).encode("utf-8")).hexdigest()
    return digest[:16]
