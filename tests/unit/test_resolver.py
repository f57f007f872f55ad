"""Tests for seed query resolution."""

import pytest
import requests

from seedmix.errors import NotFoundError, RateLimitedError, UpstreamUnavailableError, ValidationError
from seedmix.lastfm_client import LastFMClient
from seedmix.musicbrainz_client import MusicBrainzClient
from seedmix.models import ResolvedTrack
from seedmix.pipeline.resolver import TrackResolver

from helpers import SEED, FakeLastFM, FakeMusicBrainz, FakeResponse, FakeSession, fast_limiter


def _real_clients(mb_responses, lastfm_responses):
    musicbrainz = MusicBrainzClient(
        rate_limiter=fast_limiter(), session=FakeSession(mb_responses), sleep=lambda s: None,
    )
    lastfm = LastFMClient(
        "key", rate_limiter=fast_limiter(), session=FakeSession(lastfm_responses), sleep=lambda s: None,
    )
    return musicbrainz, lastfm


class TestTrackResolver:

    def test_paranoid_android_scenario(self):
        """'Paranoid Android by Radiohead' resolves through the targeted search."""
        musicbrainz = FakeMusicBrainz(targeted={("Paranoid Android", "Radiohead"): [SEED]})
        resolved = TrackResolver(musicbrainz, FakeLastFM()).resolve("Paranoid Android by Radiohead")

        assert resolved.title == "Paranoid Android"
        assert resolved.artist == "Radiohead"
        assert resolved.id == SEED.id
        assert musicbrainz.calls == [("targeted", "Paranoid Android", "Radiohead", None)]

    def test_first_result_wins(self):
        other = ResolvedTrack(id="other", title="Paranoid Android (Live)", artist="Radiohead")
        musicbrainz = FakeMusicBrainz(targeted={("Paranoid Android", "Radiohead"): [SEED, other]})
        assert TrackResolver(musicbrainz).resolve("Radiohead - Paranoid Android").id == SEED.id

    def test_falls_back_to_general_search(self):
        musicbrainz = FakeMusicBrainz(general={"Paranoid Android by Radiohead": [SEED]})
        resolved = TrackResolver(musicbrainz).resolve("Paranoid Android by Radiohead")
        assert resolved == SEED
        assert [c[0] for c in musicbrainz.calls] == ["targeted", "general"]

    def test_unparsed_query_skips_targeted_search(self):
        musicbrainz = FakeMusicBrainz(general={"paranoid android": [SEED]})
        TrackResolver(musicbrainz).resolve("Paranoid Android")
        assert [c[0] for c in musicbrainz.calls] == ["general"]

    def test_falls_back_to_lastfm_with_parsed_parts(self):
        lastfm_hit = ResolvedTrack(id="", title="Paranoid Android", artist="Radiohead")
        lastfm = FakeLastFM(search=[lastfm_hit])
        resolved = TrackResolver(FakeMusicBrainz(), lastfm).resolve("Paranoid Android by Radiohead")

        assert resolved == lastfm_hit
        assert lastfm.called("search_track") == [("search_track", "Paranoid Android", "Radiohead")]

    def test_not_found_everywhere(self):
        with pytest.raises(NotFoundError) as exc_info:
            TrackResolver(FakeMusicBrainz(), FakeLastFM()).resolve("asdkjhqwe by zzzz")
        assert exc_info.value.code == "TRACK_NOT_FOUND"
        assert exc_info.value.retryable is False

    @pytest.mark.parametrize("query", ["", "   "])
    def test_blank_query(self, query):
        with pytest.raises(ValidationError):
            TrackResolver(FakeMusicBrainz()).resolve(query)

    def test_throttling_propagates(self):
        musicbrainz = FakeMusicBrainz(error=RateLimitedError("slow down"))
        with pytest.raises(RateLimitedError) as exc_info:
            TrackResolver(musicbrainz).resolve("Paranoid Android by Radiohead")
        assert exc_info.value.retryable is True

    def test_direct_recording_id(self):
        mbid = "6b9a509f-6907-4a6e-9345-2f12da09ba4b"
        musicbrainz = FakeMusicBrainz(recordings={mbid: SEED})
        assert TrackResolver(musicbrainz).resolve(mbid) == SEED
        assert musicbrainz.calls == [("recording", mbid)]

    def test_direct_isrc(self):
        musicbrainz = FakeMusicBrainz(isrcs={"GBAYE9700140": SEED})
        assert TrackResolver(musicbrainz).resolve("gb-aye-97-00140") == SEED
        assert musicbrainz.calls == [("isrc", "GBAYE9700140")]

    def test_unknown_isrc_falls_through_to_search(self):
        musicbrainz = FakeMusicBrainz(general={"GBAYE9700140": [SEED]})
        assert TrackResolver(musicbrainz).resolve("GBAYE9700140") == SEED
        assert [c[0] for c in musicbrainz.calls] == ["isrc", "general"]


class TestSourceOutages:

    def test_all_sources_down_is_retryable(self):
        musicbrainz, lastfm = _real_clients(
            [requests.exceptions.ConnectionError("reset"), requests.exceptions.ConnectionError("reset")],
            [FakeResponse(500)],
        )
        with pytest.raises(UpstreamUnavailableError) as exc_info:
            TrackResolver(musicbrainz, lastfm).resolve("Paranoid Android by Radiohead")
        assert exc_info.value.code == "UPSTREAM_UNAVAILABLE"
        assert exc_info.value.retryable is True

    def test_throttling_not_masked_by_outage(self):
        payload = {"results": {"trackmatches": {"track": [
            {"name": "Paranoid Android", "artist": "Radiohead", "mbid": "mb-pa"},
        ]}}}
        musicbrainz, lastfm = _real_clients(
            [requests.exceptions.ConnectionError("reset"), FakeResponse(503), FakeResponse(503)],
            [FakeResponse(200, payload)],
        )
        with pytest.raises(RateLimitedError):
            TrackResolver(musicbrainz, lastfm).resolve("Paranoid Android by Radiohead")

    def test_outage_then_lastfm_match(self):
        payload = {"results": {"trackmatches": {"track": [
            {"name": "Paranoid Android", "artist": "Radiohead", "mbid": "mb-pa"},
        ]}}}
        musicbrainz, lastfm = _real_clients(
            [requests.exceptions.ConnectionError("reset"), FakeResponse(502)],
            [FakeResponse(200, payload)],
        )
        resolved = TrackResolver(musicbrainz, lastfm).resolve("Paranoid Android by Radiohead")
        assert (resolved.id, resolved.title) == ("mb-pa", "Paranoid Android")

    def test_empty_answers_still_not_found(self):
        musicbrainz, lastfm = _real_clients(
            [FakeResponse(200, {"recordings": []}), FakeResponse(200, {"recordings": []})],
            [FakeResponse(200, {"results": {"trackmatches": {"track": []}}})],
        )
        with pytest.raises(NotFoundError):
            TrackResolver(musicbrainz, lastfm).resolve("Paranoid Android by Radiohead")
