"""
Schemas for the subtitle API (HTTP and WebSocket).

Segmentation parameters mirror SegmentationConfig; anything left unset falls
back to the env defaults. Segments are always sent as the full, re-indexed
transcript, never as a delta.
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from lingosub.config import SegmentationConfig


class SegmentationRequest(BaseModel):
    """Per-job overrides of the segmentation defaults."""

    method: Literal["fixed", "vad"] | None = Field(None, description="fixed schedule or split at silence")
    batch_size_seconds: float | None = Field(None, gt=0.0, description="Audio appended to the VAD bank per step")
    min_silence_seconds: float | None = Field(None, gt=0.0, description="Shortest silence that may end a chunk")
    silence_threshold: float | None = Field(None, ge=0.0, description="RMS below which a 50 ms window is silent")
    vocal_filter_enabled: bool | None = Field(None, description="Band-pass a copy of the audio before the scan")
    limit_seconds: float | None = Field(None, gt=0.0, description="Only transcribe the first N seconds")

    def to_config(self, base: SegmentationConfig | None = None) -> SegmentationConfig:
        """Overlay the fields that were set on base (env defaults when omitted)."""
        base = base or SegmentationConfig.from_settings()
        return base.model_copy(update=self.model_dump(exclude_none=True))


class StartMessage(BaseModel):
    """WebSocket control message that starts a job on the audio received so far."""

    type: Literal["start"] = "start"
    segmentation: SegmentationRequest = Field(default_factory=SegmentationRequest)
    test_mode: bool = Field(False, description="First batch only, with debug export of the chunks sent")


class SubtitleSegmentModel(BaseModel):
    """One subtitle as sent to clients."""

    id: int
    start: float = Field(..., description="Seconds from the start of the file")
    end: float = Field(..., description="Seconds from the start of the file")
    text: str


class SubtitleResponse(BaseModel):
    """Response body for POST /api/subtitles."""

    job_id: str
    segments: list[SubtitleSegmentModel] = Field(default_factory=list)
    cancelled: bool = Field(False, description="True when a newer job superseded this one")
    chunks_failed: int = Field(0, description="Chunks that contributed nothing after retries")
    srt: str = Field("", description="The same segments rendered as SubRip")
    debug_export_path: str | None = Field(None, description="Zip of the chunk WAVs (test mode)")
