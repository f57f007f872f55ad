"""Tests for string normalization helpers."""

from seedmix.string_utils import normalize_text, query_hash, same_artist, tag_name_set


def test_normalize_text_casefold_and_whitespace():
    assert normalize_text("  Sigur   Rós ") == "sigur rós"
    assert normalize_text("STRASSE") == normalize_text("straße")


def test_normalize_text_typography():
    assert normalize_text("Don’t Look Back") == "don't look back"
    assert normalize_text("A‐ha") == "a-ha"


def test_normalize_text_keeps_case_when_asked():
    assert normalize_text(" Muse ", lowercase=False) == "Muse"


def test_normalize_text_none():
    assert normalize_text(None) == ""


def test_same_artist():
    assert same_artist("Radiohead", "  radiohead")
    assert not same_artist("Radiohead", "Muse")
    assert not same_artist("", "")


def test_tag_name_set_drops_blanks():
    assert tag_name_set(["Rock", "rock ", "", "Trip Hop"]) == {"rock", "trip hop"}


def test_query_hash_stable_and_normalized():
    assert query_hash("Paranoid Android") == query_hash("  paranoid   android ")
    assert query_hash("Paranoid Android") != query_hash("Karma Police")
    assert len(query_hash("x")) == 16
