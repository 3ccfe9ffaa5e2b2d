"""
SilenceScanner: windowed RMS energy scan.

The buffer is cut into fixed windows (default 50ms). A run of consecutive
windows whose RMS is below the threshold, lasting at least min_silence
seconds, is a silence run. Its midpoint is a candidate split offset.
"""
from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class SilenceRun:
    """Silence between start and end (sample offsets into the scanned buffer, end exclusive)."""

    start: int
    end: int

    @property
    def midpoint(self) -> int:
        return (self.start + self.end) // 2

    @property
    def length(self) -> int:
        return self.end - self.start


class SilenceScanner:
    """Finds silence runs in a float32 buffer."""

    def __init__(
        self,
        sample_rate: int = 16000,
        window_seconds: float = 0.05,
        silence_threshold: float = 0.02,
        min_silence_seconds: float = 0.4,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")
        if min_silence_seconds <= 0:
            raise ValueError(f"min_silence_seconds must be positive, got {min_silence_seconds}")
        self.sample_rate = sample_rate
        self.window_samples = max(1, int(round(window_seconds * sample_rate)))
        self.silence_threshold = silence_threshold
        self.min_silence_samples = int(round(min_silence_seconds * sample_rate))

    def window_rms(self, audio: np.ndarray) -> np.ndarray:
        """RMS per window. A trailing partial window is measured on its own."""
        n = len(audio)
        if n == 0:
            return np.zeros(0, dtype=np.float32)
        w = self.window_samples
        full = n // w
        x = np.asarray(audio, dtype=np.float32)
        parts = []
        if full:
            frames = x[: full * w].reshape(full, w).astype(np.float64)
            parts.append(np.sqrt(np.mean(frames**2, axis=1)))
        if n % w:
            tail = x[full * w :].astype(np.float64)
            parts.append(np.array([np.sqrt(np.mean(tail**2))]))
        return np.concatenate(parts).astype(np.float32)

    def find_silences(self, audio: np.ndarray) -> list[SilenceRun]:
        """All silence runs at least min_silence long, in order."""
        rms = self.window_rms(audio)
        if len(rms) == 0:
            return []
        quiet = (rms < self.silence_threshold).astype(np.int8)
        # Edges of quiet runs: +1 where a run starts, -1 one past where it ends
        edges = np.diff(np.concatenate(([0], quiet, [0])))
        starts = np.flatnonzero(edges == 1)
        ends = np.flatnonzero(edges == -1)

        n = len(audio)
        w = self.window_samples
        runs: list[SilenceRun] = []
        for s, e in zip(starts, ends):
            run = SilenceRun(start=int(s) * w, end=min(int(e) * w, n))
            if run.length >= self.min_silence_samples:
                runs.append(run)
        return runs
