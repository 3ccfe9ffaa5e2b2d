"""
LocalWhisperTranscriber: in-process Whisper using faster-whisper.

- Model loaded ONCE at startup (singleton, injected at construction).
- Audio: float32 mono [-1, 1], passed straight to the model (no WAV round trip).
- Runs in executor so event loop stays responsive.
- Segment boundaries from an in-process model are tighter, so a smaller
  overlap is tolerated at chunk seams (IN_PROCESS_OVERLAP_TOLERANCE).
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

import numpy as np

from lingosub.asr.base import ChunkTranscriber, InProcessResult, RawSegment, to_raw_segments
from lingosub.config import Settings, get_settings
from lingosub.exceptions import ConfigError, FatalTranscriptionError

logger = logging.getLogger(__name__)

# Type for shared WhisperModel (loaded at startup)
WhisperModelT = Any


def load_whisper_model(settings: Settings | None = None) -> WhisperModelT:
    """Load faster-whisper model once. Called at startup when ASR_BACKEND=in_process."""
    try:
        from faster_whisper import WhisperModel
    except ImportError as err:
        raise ConfigError(
            "faster-whisper is required for ASR_BACKEND=in_process. "
            "Install with: pip install 'lingosub[local]'"
        ) from err
    s = settings or get_settings()
    logger.info("Loading Whisper model '%s' on %s (%s)", s.LOCAL_WHISPER_MODEL, s.LOCAL_WHISPER_DEVICE, s.LOCAL_WHISPER_COMPUTE_TYPE)
    return WhisperModel(
        s.LOCAL_WHISPER_MODEL,
        device=s.LOCAL_WHISPER_DEVICE,
        compute_type=s.LOCAL_WHISPER_COMPUTE_TYPE,
    )


class LocalWhisperTranscriber(ChunkTranscriber):
    """
    Local Whisper via faster-whisper. Uses shared model (singleton).
    transcribe() is async; heavy work runs in executor.
    """

    name = "in_process"

    def __init__(
        self,
        model: WhisperModelT,
        beam_size: int = 5,
        language: str | None = None,
        overlap_tolerance: float = 0.5,
    ) -> None:
        if model is None:
            raise ConfigError("LocalWhisperTranscriber needs a loaded model (see load_whisper_model)")
        self._model = model
        self.beam_size = beam_size
        self.language = language or None
        self.overlap_tolerance = overlap_tolerance

    def _transcribe_sync(self, audio: np.ndarray, sample_rate: int) -> InProcessResult:
        """Synchronous transcribe; run from executor."""
        if sample_rate != 16000:
            raise FatalTranscriptionError(
                f"faster-whisper expects 16000 Hz audio, got {sample_rate} Hz", backend=self.name
            )
        try:
            segments, info = self._model.transcribe(
                np.ascontiguousarray(audio, dtype=np.float32),
                beam_size=self.beam_size,
                language=self.language,
                condition_on_previous_text=False,
            )
            # segments is a lazy generator; decoding happens while iterating
            seg_ts = [
                RawSegment(start=seg.start, end=seg.end, text=(seg.text or "").strip())
                for seg in segments
            ]
        except RuntimeError as e:
            raise FatalTranscriptionError(f"Model inference failed: {e}", backend=self.name) from e
        return InProcessResult(segments=seg_ts, language=getattr(info, "language", None))

    async def transcribe(self, samples: np.ndarray, sample_rate: int) -> list[RawSegment]:
        """Run _transcribe_sync in executor so event loop is not blocked."""
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, self._transcribe_sync, samples, sample_rate)
        return to_raw_segments(result, len(samples) / sample_rate)
