"""Pydantic schemas for API request/response."""
from lingosub.schemas.subtitles import (
    SegmentationRequest,
    StartMessage,
    SubtitleResponse,
    SubtitleSegmentModel,
)

__all__ = [
    "SegmentationRequest",
    "StartMessage",
    "SubtitleResponse",
    "SubtitleSegmentModel",
]
