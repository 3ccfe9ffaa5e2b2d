"""
Transcript: the merged, time-ordered subtitle track of one job.

Chunks finish out of order, so every incoming segment is folded in at its
sorted position and compared with its neighbours there, not only with the
newest segment:

- a segment whose span already holds the start of one with the same text was
  kept by an earlier delivery and is dropped;
- the same text as the segment before it is a repeat and is dropped;
- text that the previous segment already ends with (case and terminal
  punctuation ignored) is a boundary echo and is dropped;
- a start inside the previous segment is clamped to its end; a segment that
  overlaps by more than the tolerance and ends inside the previous one is
  contained and dropped;
- an end past the next segment's start is trimmed to it.

What is left is kept only when end > start. Ids are re-assigned 0..N-1 after
every fold. Folding the same segments twice leaves the transcript unchanged.
"""
from __future__ import annotations

import logging
from bisect import bisect_left, bisect_right
from dataclasses import asdict, dataclass, replace
from typing import Iterable, Sequence

from lingosub.asr.base import RawSegment

logger = logging.getLogger(__name__)

TERMINAL_PUNCTUATION = ".,!?;:…。！？、\"'»”"


@dataclass
class SubtitleSegment:
    """One subtitle: absolute start/end in seconds, display id."""

    id: int
    start: float
    end: float
    text: str

    def to_dict(self) -> dict:
        return asdict(self)


def clean_text(text: str) -> str:
    """Lowercase, trimmed, without terminal punctuation. Used for echo detection only."""
    return text.strip().lower().rstrip(TERMINAL_PUNCTUATION).strip()


def to_subtitle_segments(raw: Iterable[RawSegment], scale: float, offset: float) -> list[SubtitleSegment]:
    """Scale chunk-relative raw times to seconds and shift them to file time."""
    return [
        SubtitleSegment(id=-1, start=offset + r.start * scale, end=offset + r.end * scale, text=r.text.strip())
        for r in raw
    ]


class Transcript:
    """Sorted, non-overlapping, deduplicated SubtitleSegments. Not thread-safe; the pipeline serializes folds."""

    def __init__(self, overlap_tolerance: float = 1.0) -> None:
        self.overlap_tolerance = overlap_tolerance
        self._segments: list[SubtitleSegment] = []

    def __len__(self) -> int:
        return len(self._segments)

    def _fold_one(self, seg: SubtitleSegment) -> bool:
        text = seg.text.strip()
        if not text:
            return False
        start, end = seg.start, seg.end
        starts = [s.start for s in self._segments]
        for k in range(bisect_left(starts, start), bisect_right(starts, end)):
            if self._segments[k].text == text:
                return False
        i = bisect_right(starts, start)

        if i > 0:
            prev = self._segments[i - 1]
            if text == prev.text:
                return False
            cleaned = clean_text(text)
            if clean_text(prev.text).endswith(cleaned):
                logger.debug("Dropping boundary echo %r (previous: %r)", text, prev.text)
                return False
            if start < prev.end:
                overlap = prev.end - start
                if overlap >= self.overlap_tolerance and end <= prev.end:
                    logger.debug("Dropping %r: contained in %r", text, prev.text)
                    return False
                start = prev.end

        if i < len(self._segments):
            end = min(end, self._segments[i].start)

        if end <= start:
            return False
        self._segments.insert(i, SubtitleSegment(id=-1, start=start, end=end, text=text))
        return True

    def fold(self, segments: Sequence[SubtitleSegment]) -> int:
        """Merge one chunk's segments. Returns how many were kept."""
        kept = 0
        for seg in sorted(segments, key=lambda s: (s.start, s.end)):
            if self._fold_one(seg):
                kept += 1
        self._segments.sort(key=lambda s: s.start)
        for index, seg in enumerate(self._segments):
            seg.id = index
        return kept

    def snapshot(self) -> list[SubtitleSegment]:
        """Copies; later folds never change a published snapshot."""
        return [replace(s) for s in self._segments]
