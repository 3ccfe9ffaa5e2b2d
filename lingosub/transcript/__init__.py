"""Transcript handling: timestamp scale, ordered merge, SRT/VTT output."""
from .merger import SubtitleSegment, Transcript, to_subtitle_segments
from .scale import TimestampScaleDetector
from .writer import TranscriptWriterBase, create_transcript_writer, format_srt, format_vtt

__all__ = [
    "SubtitleSegment",
    "TimestampScaleDetector",
    "Transcript",
    "TranscriptWriterBase",
    "create_transcript_writer",
    "format_srt",
    "format_vtt",
    "to_subtitle_segments",
]
