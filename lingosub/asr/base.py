"""
ChunkTranscriber: abstract interface for speech-to-text backends.

Implementations: CloudflareTranscriber (cloud API), LocalServerTranscriber
(OpenAI-compatible HTTP server), LocalWhisperTranscriber (in-process model).
Each backend parses its own response into a tagged result type and
normalizes it to RawSegments before returning; nothing loosely typed leaves
the backend module.

RawSegment times are relative to the chunk start and their unit is unknown
(seconds, centiseconds or milliseconds). TimestampScaleDetector sorts that out.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal, Union

if TYPE_CHECKING:
    import numpy as np


@dataclass
class RawSegment:
    """
    One backend segment: chunk-relative start/end and text.
    The unit is unknown unless in_seconds is set, which only happens when we
    built the times ourselves.
    """

    start: float
    end: float
    text: str
    in_seconds: bool = False


@dataclass
class CloudResult:
    """Parsed Cloudflare Workers AI response."""

    kind: Literal["cloud"] = field(default="cloud", init=False)
    text: str = ""
    segments: list[RawSegment] = field(default_factory=list)
    language: str | None = None


@dataclass
class LocalServerResult:
    """Parsed OpenAI-compatible /v1/audio/transcriptions response."""

    kind: Literal["local_server"] = field(default="local_server", init=False)
    text: str = ""
    segments: list[RawSegment] = field(default_factory=list)
    language: str | None = None
    duration: float | None = None


@dataclass
class InProcessResult:
    """Output of the in-process Whisper model."""

    kind: Literal["in_process"] = field(default="in_process", init=False)
    segments: list[RawSegment] = field(default_factory=list)
    language: str | None = None


BackendResult = Union[CloudResult, LocalServerResult, InProcessResult]


def to_raw_segments(result: BackendResult, chunk_duration: float) -> list[RawSegment]:
    """
    Normalize any backend result to RawSegments.
    Empty texts are dropped. A result with text but no segments becomes one
    segment spanning the whole chunk, in seconds.
    """
    segments = [
        RawSegment(start=s.start, end=s.end, text=s.text.strip())
        for s in result.segments
        if s.text and s.text.strip()
    ]
    if result.segments:
        return segments
    text = getattr(result, "text", "") or ""
    if text.strip():
        return [RawSegment(start=0.0, end=chunk_duration, text=text.strip(), in_seconds=True)]
    return []


class ChunkTranscriber(ABC):
    """
    Abstract backend. Accepts float32 mono audio (normalized [-1, 1]).
    transcribe() is async; implementations run blocking work in an executor.

    Raise TransientTranscriptionError for anything worth retrying and
    FatalTranscriptionError when the chunk can never succeed.
    """

    #: Backend name used in logs and errors
    name: str = "backend"
    #: Overlap (seconds) at a chunk seam that is clamped instead of treated as a duplicate
    overlap_tolerance: float = 1.0

    @abstractmethod
    async def transcribe(self, samples: "np.ndarray", sample_rate: int) -> list[RawSegment]:
        """Transcribe one chunk. Returns zero or more chunk-relative segments."""
        ...

    async def aclose(self) -> None:
        """Release connections or models. Default: nothing to release."""
        return None
