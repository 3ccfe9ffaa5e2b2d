"""
TimestampScaleDetector: decide whether a chunk's raw times are s, cs or ms.

Backends do not declare the unit. Each candidate scale is checked against what
is physically plausible for speech: one utterance lasts between 0.2 and 30
seconds, and nothing can end well past the chunk. Deterministic, per chunk.
"""
from __future__ import annotations

from typing import Sequence

from lingosub.asr.base import RawSegment

CANDIDATE_SCALES = (1.0, 0.01, 0.001)


class TimestampScaleDetector:
    def __init__(
        self,
        candidates: Sequence[float] = CANDIDATE_SCALES,
        min_mean_duration: float = 0.2,
        max_mean_duration: float = 30.0,
        max_end_ratio: float = 1.5,
        typical_duration: float = 3.0,
    ) -> None:
        if not candidates:
            raise ValueError("at least one candidate scale is required")
        self.candidates = tuple(candidates)
        self.min_mean_duration = min_mean_duration
        self.max_mean_duration = max_mean_duration
        self.max_end_ratio = max_end_ratio
        self.typical_duration = typical_duration

    def _plausible(self, scale: float, mean_duration: float, max_end: float, chunk_duration: float) -> bool:
        scaled_mean = mean_duration * scale
        if not self.min_mean_duration <= scaled_mean <= self.max_mean_duration:
            return False
        return max_end * scale <= self.max_end_ratio * chunk_duration

    def detect(self, segments: Sequence[RawSegment], chunk_duration: float) -> float:
        """Multiplier that turns raw values into seconds. 1.0 when there is nothing to judge or the unit is known."""
        if not segments:
            return 1.0
        if all(s.in_seconds for s in segments):
            # A text-only reply stretched over the chunk: there is no unit to guess
            return 1.0
        mean_duration = sum(s.end - s.start for s in segments) / len(segments)
        max_end = max(s.end for s in segments)

        survivors = [
            scale
            for scale in self.candidates
            if self._plausible(scale, mean_duration, max_end, chunk_duration)
        ]
        if len(survivors) == 1:
            return survivors[0]
        if survivors:
            return min(survivors, key=lambda scale: abs(mean_duration * scale - self.typical_duration))
        # Nothing plausible: hallucinated or malformed times, stay closest to the chunk length
        return min(self.candidates, key=lambda scale: abs(max_end * scale - chunk_duration))
