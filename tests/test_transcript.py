"""Tests for timestamp unit inference, the ordered merge and SRT/VTT output."""

import asyncio
import itertools
import random

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from lingosub.asr.base import RawSegment
from lingosub.transcript.merger import SubtitleSegment, Transcript, clean_text, to_subtitle_segments
from lingosub.transcript.scale import TimestampScaleDetector
from lingosub.transcript.writer import TranscriptWriter, format_srt, format_vtt
from tests.fakes import assert_consistent

SECONDS = [(0.0, 2.5, "one"), (3.0, 6.0, "two"), (7.0, 9.5, "three")]


def raw(rows, factor=1.0):
    return [RawSegment(start=s * factor, end=e * factor, text=t) for s, e, t in rows]


def seg(start, end, text):
    return SubtitleSegment(id=-1, start=start, end=end, text=text)


SEGMENTS = st.builds(
    lambda start, length, text: seg(start, start + length, text),
    st.floats(min_value=0, max_value=30),
    st.floats(min_value=-0.5, max_value=5),
    st.sampled_from(["yes", "no", "Yes.", "maybe so", "so"]),
)


class TestTimestampScaleDetector:
    @pytest.mark.parametrize("factor,expected", [(1.0, 1.0), (100.0, 0.01), (1000.0, 0.001)])
    def test_recovers_unit(self, factor, expected):
        assert TimestampScaleDetector().detect(raw(SECONDS, factor), 20.0) == expected

    @pytest.mark.parametrize("factor,expected", [(1.0, 1.0), (100.0, 0.01), (1000.0, 0.001)])
    def test_recovers_unit_on_long_chunk(self, factor, expected):
        assert TimestampScaleDetector().detect(raw(SECONDS, factor), 180.0) == expected

    def test_no_segments(self):
        assert TimestampScaleDetector().detect([], 20.0) == 1.0

    def test_implausible_falls_back_to_chunk_length(self):
        segments = [RawSegment(0.0, 100000.0, "hallucinated")]
        assert TimestampScaleDetector().detect(segments, 20.0) == 0.001

    @pytest.mark.parametrize("duration", [20.0, 120.0])
    def test_known_seconds_kept(self, duration):
        segments = [RawSegment(0.0, duration, "whole chunk", in_seconds=True)]
        assert TimestampScaleDetector().detect(segments, duration) == 1.0

    def test_candidates_configurable(self):
        deciseconds = raw(SECONDS, 10.0)
        assert TimestampScaleDetector().detect(deciseconds, 20.0) == 0.01
        assert TimestampScaleDetector(candidates=(1.0, 0.1)).detect(deciseconds, 20.0) == 0.1

    def test_deterministic(self):
        segments = raw(SECONDS, 100.0)
        detector = TimestampScaleDetector()
        assert len({detector.detect(segments, 20.0) for _ in range(5)}) == 1


class TestToSubtitleSegments:
    def test_scale_and_offset(self):
        out = to_subtitle_segments(raw([(100.0, 250.0, " hi ")]), 0.01, 60.0)
        assert out[0].start == pytest.approx(61.0)
        assert out[0].end == pytest.approx(62.5)
        assert out[0].text == "hi"


class TestTranscriptMerge:
    def test_in_order_append_and_reindex(self):
        t = Transcript()
        t.fold([seg(0, 2, "a"), seg(3, 4, "b")])
        t.fold([seg(5, 6, "c")])
        snap = t.snapshot()
        assert [s.text for s in snap] == ["a", "b", "c"]
        assert [s.id for s in snap] == [0, 1, 2]

    def test_exact_repeat_dropped(self):
        t = Transcript()
        t.fold([seg(0, 2, "Hello there.")])
        assert t.fold([seg(2.5, 4, "Hello there.")]) == 0
        assert len(t) == 1

    def test_suffix_echo_dropped(self):
        t = Transcript()
        t.fold([seg(0, 3, "We went to the market.")])
        assert t.fold([seg(3.2, 4, "the Market!")]) == 0
        assert len(t) == 1

    def test_small_overlap_clamped(self):
        t = Transcript(overlap_tolerance=1.0)
        t.fold([seg(0, 5, "first")])
        t.fold([seg(4.5, 8, "second")])
        snap = t.snapshot()
        assert snap[1].start == 5
        assert snap[1].end == 8

    def test_contained_segment_dropped(self):
        t = Transcript(overlap_tolerance=1.0)
        t.fold([seg(0, 10, "first")])
        assert t.fold([seg(2, 6, "inside")]) == 0

    def test_large_overlap_not_contained_is_clamped(self):
        t = Transcript(overlap_tolerance=0.5)
        t.fold([seg(0, 5, "first")])
        t.fold([seg(3, 9, "second")])
        assert [(s.start, s.end) for s in t.snapshot()] == [(0, 5), (5, 9)]

    def test_empty_after_clamp_dropped(self):
        t = Transcript()
        t.fold([seg(0, 5, "first")])
        assert t.fold([seg(4.6, 5, "tail")]) == 0

    def test_late_earlier_chunk_trimmed_against_next(self):
        t = Transcript()
        t.fold([seg(20, 25, "later chunk")])
        t.fold([seg(15, 21, "earlier chunk")])
        snap = t.snapshot()
        assert [s.text for s in snap] == ["earlier chunk", "later chunk"]
        assert snap[0].end == 20

    def test_blank_text_dropped(self):
        t = Transcript()
        assert t.fold([seg(0, 1, "   ")]) == 0

    def test_empty_increment_is_noop(self):
        t = Transcript()
        t.fold([seg(0, 2, "a"), seg(1.5, 4, "b"), seg(6, 7, "c")])
        before = t.snapshot()
        t.fold([])
        assert t.snapshot() == before

    def test_repeat_after_next_survives_second_delivery(self):
        t = Transcript()
        t.fold([seg(2, 3, "yes")])
        increment = [seg(0, 1, "yes"), seg(1, 2, "no")]
        t.fold(increment)
        once = t.snapshot()
        assert [(s.start, s.end, s.text) for s in once] == [(0, 1, "yes"), (1, 2, "no"), (2, 3, "yes")]
        assert t.fold(increment) == 0
        assert t.snapshot() == once

    @settings(max_examples=200, deadline=None)
    @given(
        history=st.lists(st.lists(SEGMENTS, max_size=4), max_size=4),
        increment=st.lists(SEGMENTS, max_size=5),
        tolerance=st.sampled_from([0.5, 1.0]),
    )
    def test_duplicate_delivery_is_idempotent(self, history, increment, tolerance):
        once = Transcript(overlap_tolerance=tolerance)
        twice = Transcript(overlap_tolerance=tolerance)
        for chunk in history:
            once.fold(chunk)
            twice.fold(chunk)
        once.fold(increment)
        twice.fold(increment)
        twice.fold(increment)
        assert twice.snapshot() == once.snapshot()

    def test_snapshot_is_a_copy(self):
        t = Transcript()
        t.fold([seg(0, 2, "a")])
        snap = t.snapshot()
        snap[0].text = "changed"
        t.fold([seg(5, 6, "b")])
        assert t.snapshot()[0].text == "a"

    def test_no_overlap_in_any_completion_order(self):
        chunks = [
            [seg(0.0, 4.0, "a0"), seg(4.5, 9.8, "a1")],
            [seg(9.3, 14.0, "b0"), seg(14.0, 19.9, "b1")],
            [seg(19.0, 25.0, "c0"), seg(24.0, 30.0, "c1"), seg(26.0, 27.0, "c2")],
            [seg(29.5, 31.0, "d0")],
        ]
        for order in itertools.permutations(chunks):
            t = Transcript()
            for chunk in order:
                t.fold(chunk)
                assert_consistent(t.snapshot())

    def test_random_folds_stay_consistent(self):
        rng = random.Random(1234)
        for _ in range(50):
            t = Transcript(overlap_tolerance=rng.choice([0.5, 1.0]))
            for _ in range(8):
                increment = []
                for _ in range(rng.randint(0, 4)):
                    start = rng.uniform(0, 60)
                    increment.append(seg(start, start + rng.uniform(-0.5, 6), f"w{rng.randint(0, 15)}"))
                t.fold(increment)
                assert_consistent(t.snapshot())

    def test_clean_text(self):
        assert clean_text("  Hello, World!! ") == "hello, world"


class TestSubtitleFormats:
    SEGMENTS = [
        SubtitleSegment(id=0, start=0.0, end=2.5, text="Hello"),
        SubtitleSegment(id=1, start=61.25, end=3725.0, text="World"),
    ]

    def test_srt(self):
        assert format_srt(self.SEGMENTS) == (
            "1\n00:00:00,000 --> 00:00:02,500\nHello\n"
            "\n"
            "2\n00:01:01,250 --> 01:02:05,000\nWorld\n"
        )

    def test_vtt(self):
        assert format_vtt(self.SEGMENTS) == (
            "WEBVTT\n"
            "\n"
            "00:00:00.000 --> 00:00:02.500\nHello\n"
            "\n"
            "00:01:01.250 --> 01:02:05.000\nWorld\n"
        )

    def test_empty(self):
        assert format_srt([]) == ""
        assert format_vtt([]) == "WEBVTT\n"


class TestTranscriptWriter:
    def test_rewrites_file_with_latest_snapshot(self, tmp_path):
        async def scenario():
            writer = TranscriptWriter("job1", transcript_dir=str(tmp_path), fmt="srt")
            await writer.start()
            writer.update([SubtitleSegment(0, 0.0, 1.0, "first")])
            writer.update([SubtitleSegment(0, 0.0, 1.0, "first"), SubtitleSegment(1, 2.0, 3.0, "second")])
            return await writer.close()

        path = asyncio.run(scenario())
        assert path == str(tmp_path / "job1.srt")
        content = (tmp_path / "job1.srt").read_text(encoding="utf-8")
        assert "first" in content and "second" in content
        assert content.startswith("1\n")

    def test_no_snapshot_no_file(self, tmp_path):
        async def scenario():
            writer = TranscriptWriter("job2", transcript_dir=str(tmp_path), fmt="vtt")
            await writer.start()
            return await writer.close()

        assert asyncio.run(scenario()) is None
        assert not (tmp_path / "job2.vtt").exists()

    def test_unknown_format(self, tmp_path):
        with pytest.raises(ValueError):
            TranscriptWriter("job3", transcript_dir=str(tmp_path), fmt="txt")
