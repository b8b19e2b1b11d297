"""Tests for the stream compatibility report."""

from __future__ import annotations

import pytest

from camcast.media.compat import CompatStatus, analyze


def _by_label(items):
    return {item.label: item for item in items}


class TestAnalyze:
    def test_ideal_stream_is_all_ok(self) -> None:
        items, suggestions = analyze("h264", "aac", 1920, 1080, 30)
        assert all(item.status is CompatStatus.OK for item in items)
        assert suggestions == []
        assert items[-1].label == "READY"
        assert items[-1].value == "YES"

    def test_hevc_warns_but_stays_ready(self) -> None:
        items, suggestions = analyze("hevc", "aac", 1280, 720, 30)
        found = _by_label(items)
        assert found["VIDEO"].status is CompatStatus.WARN
        assert [i.status for i in items].count(CompatStatus.WARN) == 1
        assert suggestions
        assert found["READY"].status is CompatStatus.OK

    def test_mjpeg_blocks_readiness(self) -> None:
        items, suggestions = analyze("mjpeg", "aac", 640, 480, 10)
        found = _by_label(items)
        assert found["VIDEO"].status is CompatStatus.ERROR
        assert found["FPS"].status is CompatStatus.WARN
        assert found["RES"].status is CompatStatus.OK
        assert found["READY"].status is CompatStatus.ERROR
        assert found["READY"].value == "NEEDS FIX"
        assert len(suggestions) == 2

    def test_item_order(self) -> None:
        items, _ = analyze("h264", "pcm_alaw", 1280, 720, 25)
        assert [i.label for i in items] == ["VIDEO", "RES", "FPS", "AUDIO", "READY"]

    def test_low_resolution_warns(self) -> None:
        items, suggestions = analyze("h264", "aac", 352, 288, 25)
        assert _by_label(items)["RES"].status is CompatStatus.WARN
        assert _by_label(items)["RES"].value == "352x288"
        assert any("resolution" in s.lower() for s in suggestions)

    def test_zero_dimensions_and_fps_are_skipped(self) -> None:
        items, _ = analyze("h264", "aac", 0, 0, 0)
        assert [i.label for i in items] == ["VIDEO", "AUDIO", "READY"]

    def test_blank_codecs_produce_no_items(self) -> None:
        items, suggestions = analyze("", "", 0, 0, 0)
        assert [i.label for i in items] == ["READY"]
        assert items[0].status is CompatStatus.OK
        assert suggestions == []

    @pytest.mark.parametrize("codec", ["pcm_mulaw", "pcm_alaw", "adpcm_g726", "g711"])
    def test_telephony_audio_is_transcoded(self, codec) -> None:
        items, suggestions = analyze("h264", codec, 1280, 720, 25)
        audio = _by_label(items)["AUDIO"]
        assert audio.status is CompatStatus.WARN
        assert audio.value.endswith("-> AAC")
        assert any("transcoded" in s for s in suggestions)

    def test_unknown_audio_warns_without_suggestion(self) -> None:
        items, suggestions = analyze("h264", "opus", 1280, 720, 25)
        assert _by_label(items)["AUDIO"].status is CompatStatus.WARN
        assert suggestions == []

    def test_unknown_video_codec(self) -> None:
        items, suggestions = analyze("vendor_private_codec", "aac", 1280, 720, 25)
        video = _by_label(items)["VIDEO"]
        assert video.status is CompatStatus.WARN
        assert video.value == "PRIVATE"
        assert len(suggestions) == 1

    def test_short_unknown_video_codec_is_named(self) -> None:
        items, _ = analyze("vp8", "aac", 1280, 720, 25)
        assert _by_label(items)["VIDEO"].value == "VP8"

    def test_codec_match_is_case_insensitive(self) -> None:
        items, _ = analyze("H264", "AAC", 1920, 1080, 30)
        assert all(item.status is CompatStatus.OK for item in items)
