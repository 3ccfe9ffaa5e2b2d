"""
Segmenter: turns one long waveform into an ordered stream of ChunkDefinitions.

Two strategies:

- FixedScheduleSegmenter: boundaries at 0, 20, 60, 180 seconds, then every
  180 seconds. The first chunk is short so the first subtitles show up fast;
  windows grow once start-up latency no longer matters.
- VADSegmenter: only cuts inside silence. Audio is appended to a "bank" one
  batch at a time; every silence run found in the bank ends a chunk at the
  run's midpoint. Whatever follows the last cut is carried over to the next
  batch. If no silence shows up for too long the bank is cut anyway.

Both are lazy, finite, forward-only generators. Chunks cover [0, total)
exactly once: each chunk starts where the previous one ended.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator

import numpy as np

from lingosub.audio.filters import VocalFilter
from lingosub.audio.silence import SilenceScanner
from lingosub.config import SegmentationConfig

logger = logging.getLogger(__name__)

# Absolute boundaries (seconds) of the progressive schedule; FIXED_STEP_SECONDS after the last one
FIXED_SCHEDULE_SECONDS = (0.0, 20.0, 60.0, 180.0)
FIXED_STEP_SECONDS = 180.0


@dataclass(frozen=True)
class ChunkDefinition:
    """One window of the waveform: samples [start_sample, end_sample)."""

    index: int
    start_sample: int
    end_sample: int

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ValueError(f"index must be non-negative, got {self.index}")
        if self.start_sample >= self.end_sample:
            raise ValueError(
                f"start_sample ({self.start_sample}) must be less than end_sample ({self.end_sample})"
            )

    @property
    def num_samples(self) -> int:
        return self.end_sample - self.start_sample

    def start_time(self, sample_rate: int) -> float:
        return self.start_sample / sample_rate

    def end_time(self, sample_rate: int) -> float:
        return self.end_sample / sample_rate

    def duration(self, sample_rate: int) -> float:
        return self.num_samples / sample_rate


def _effective_length(total_samples: int, sample_rate: int, limit_seconds: float | None) -> int:
    if limit_seconds is None:
        return total_samples
    return min(total_samples, int(round(limit_seconds * sample_rate)))


class FixedScheduleSegmenter:
    """Progressive fixed windows: [0,20), [20,60), [60,180), then 180s each."""

    def __init__(
        self,
        total_samples: int,
        sample_rate: int = 16000,
        limit_seconds: float | None = None,
    ) -> None:
        if total_samples < 0:
            raise ValueError(f"total_samples must be non-negative, got {total_samples}")
        self.sample_rate = sample_rate
        self.total_samples = _effective_length(total_samples, sample_rate, limit_seconds)

    def boundaries(self) -> Iterator[int]:
        """Schedule boundaries in samples, starting at 0, without end."""
        for t in FIXED_SCHEDULE_SECONDS:
            yield int(round(t * self.sample_rate))
        t = FIXED_SCHEDULE_SECONDS[-1]
        while True:
            t += FIXED_STEP_SECONDS
            yield int(round(t * self.sample_rate))

    def __iter__(self) -> Iterator[ChunkDefinition]:
        total = self.total_samples
        index = 0
        start = 0
        for boundary in self.boundaries():
            if boundary <= start:
                continue
            end = min(boundary, total)
            if end <= start:
                break
            yield ChunkDefinition(index=index, start_sample=start, end_sample=end)
            index += 1
            start = end
            if start >= total:
                break


class VADSegmenter:
    """
    Silence-aware chunking with a growing bank.

    Split rules, in order, per bank:
    - a silence run that touches the end of the bank is not trusted yet (it may
      continue into the next batch), unless the waveform ends there;
    - a run at the very start of a bank that begins right after a silence cut
      is the second half of that same silence, not a new one;
    - a cut that would leave a chunk shorter than min_chunk_seconds is skipped,
      so the audio joins the next chunk;
    - carry-over longer than force_split_multiplier x batch is cut at the bank end.
    The tail is flushed as a final chunk regardless of silence or length.
    """

    def __init__(
        self,
        waveform: np.ndarray,
        config: SegmentationConfig,
        sample_rate: int = 16000,
    ) -> None:
        self.waveform = waveform
        self.config = config
        self.sample_rate = sample_rate
        self.total_samples = _effective_length(len(waveform), sample_rate, config.limit_seconds)

        self.batch_samples = max(1, int(round(config.batch_size_seconds * sample_rate)))
        self.force_split_samples = int(round(config.force_split_multiplier * self.batch_samples))
        self.min_chunk_samples = int(round(config.min_chunk_seconds * sample_rate))

        self.scanner = SilenceScanner(
            sample_rate=sample_rate,
            window_seconds=config.window_seconds,
            silence_threshold=config.silence_threshold,
            min_silence_seconds=config.min_silence_seconds,
        )
        self.filter = (
            VocalFilter(sample_rate, config.highpass_hz, config.lowpass_hz)
            if config.vocal_filter_enabled
            else None
        )

    def __iter__(self) -> Iterator[ChunkDefinition]:
        total = self.total_samples
        index = 0
        chunk_start = 0  # also the bank start: the bank is everything not yet emitted
        read_pos = 0
        after_silence_cut = False

        while read_pos < total:
            read_pos = min(read_pos + self.batch_samples, total)
            at_end = read_pos >= total
            bank = self.waveform[chunk_start:read_pos]
            analysed = self.filter.apply(bank) if self.filter is not None else bank
            bank_start = chunk_start

            for run in self.scanner.find_silences(analysed):
                if run.end >= len(bank) and not at_end:
                    continue
                if run.start == 0 and after_silence_cut:
                    continue
                split = bank_start + run.midpoint
                if split - chunk_start < self.min_chunk_samples:
                    continue
                if split >= total:
                    continue
                logger.debug(
                    "Silence %.2fs-%.2fs: split at %.2fs",
                    (bank_start + run.start) / self.sample_rate,
                    (bank_start + run.end) / self.sample_rate,
                    split / self.sample_rate,
                )
                yield ChunkDefinition(index=index, start_sample=chunk_start, end_sample=split)
                index += 1
                chunk_start = split
                after_silence_cut = True

            if not at_end and read_pos - chunk_start > self.force_split_samples:
                logger.info(
                    "No silence for %.1fs, forcing split at %.2fs",
                    (read_pos - chunk_start) / self.sample_rate,
                    read_pos / self.sample_rate,
                )
                yield ChunkDefinition(index=index, start_sample=chunk_start, end_sample=read_pos)
                index += 1
                chunk_start = read_pos
                after_silence_cut = False

        if chunk_start < total:
            yield ChunkDefinition(index=index, start_sample=chunk_start, end_sample=total)


def create_segmenter(
    waveform: np.ndarray,
    config: SegmentationConfig,
    sample_rate: int = 16000,
) -> Iterator[ChunkDefinition]:
    """Return a fresh chunk iterator for this waveform. Non-restartable."""
    if config.method == "vad":
        return iter(VADSegmenter(waveform, config, sample_rate))
    return iter(FixedScheduleSegmenter(len(waveform), sample_rate, config.limit_seconds))
