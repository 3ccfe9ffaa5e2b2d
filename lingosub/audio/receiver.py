"""
WaveformReceiver: accumulates raw PCM audio from a WebSocket into one waveform.

- Expects PCM 16-bit mono at the configured sample rate.
- A trailing odd byte is kept until its partner arrives.
"""
from __future__ import annotations

import numpy as np

from lingosub.audio.waveform import SAMPLE_WIDTH, pcm_bytes_to_float32
from lingosub.config import get_settings


class WaveformReceiver:
    """Buffers incoming binary WebSocket messages. Snapshot with to_waveform()."""

    def __init__(self, sample_rate: int | None = None) -> None:
        self._sample_rate = sample_rate or get_settings().SAMPLE_RATE
        self._buffer = bytearray()

    def feed(self, data: bytes) -> None:
        """Append raw PCM bytes. Call from WebSocket handler."""
        self._buffer.extend(data)

    def clear(self) -> None:
        self._buffer.clear()

    def to_waveform(self) -> np.ndarray:
        """All complete samples received so far as float32. The buffer is left intact."""
        usable = len(self._buffer) - (len(self._buffer) % SAMPLE_WIDTH)
        return pcm_bytes_to_float32(bytes(self._buffer[:usable]))

    def remaining_bytes(self) -> int:
        """Bytes left over after the last complete sample."""
        return len(self._buffer) % SAMPLE_WIDTH

    @property
    def duration_seconds(self) -> float:
        return (len(self._buffer) // SAMPLE_WIDTH) / self._sample_rate
