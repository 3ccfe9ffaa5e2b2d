"""ASR: swappable speech-to-text backends behind one ChunkTranscriber contract."""
from __future__ import annotations

from lingosub.config import Settings, get_settings

from .base import (
    BackendResult,
    ChunkTranscriber,
    CloudResult,
    InProcessResult,
    LocalServerResult,
    RawSegment,
    to_raw_segments,
)
from .cloudflare import CloudflareTranscriber
from .local_server import LocalServerTranscriber
from .local_whisper import LocalWhisperTranscriber, load_whisper_model


def create_transcriber(settings: Settings | None = None, model=None) -> ChunkTranscriber:
    """
    Return the backend selected by ASR_BACKEND.
    in_process uses the shared model when given, otherwise loads one.
    Raises ConfigError when the backend cannot be set up.
    """
    s = settings or get_settings()
    if s.ASR_BACKEND == "cloudflare":
        return CloudflareTranscriber.from_settings(s)
    if s.ASR_BACKEND == "in_process":
        return LocalWhisperTranscriber(
            model=model if model is not None else load_whisper_model(s),
            beam_size=s.LOCAL_WHISPER_BEAM_SIZE,
            language=s.LOCAL_ASR_LANGUAGE or None,
            overlap_tolerance=s.IN_PROCESS_OVERLAP_TOLERANCE,
        )
    return LocalServerTranscriber.from_settings(s)


__all__ = [
    "BackendResult",
    "ChunkTranscriber",
    "CloudResult",
    "CloudflareTranscriber",
    "InProcessResult",
    "LocalServerResult",
    "LocalServerTranscriber",
    "LocalWhisperTranscriber",
    "RawSegment",
    "create_transcriber",
    "load_whisper_model",
    "to_raw_segments",
]
