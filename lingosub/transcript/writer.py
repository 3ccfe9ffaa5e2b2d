"""
Subtitle rendering (SRT, WebVTT) and the per-job subtitle file writer.

The writer rewrites the whole file on every snapshot: segment ids and times
may change between snapshots (out-of-order chunks, clamping), so appending
would leave stale cues behind. Writes go through a queue drained by a worker
task so the pipeline never waits on disk.
"""
from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from lingosub.config import get_settings
from lingosub.transcript.merger import SubtitleSegment

logger = logging.getLogger(__name__)


def _format_timestamp(seconds: float, separator: str) -> str:
    """HH:MM:SS{sep}mmm, rounded to the millisecond."""
    total_ms = max(0, int(round(seconds * 1000)))
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, ms = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}{separator}{ms:03d}"


def format_srt(segments: Sequence[SubtitleSegment]) -> str:
    """SubRip: 1-based cue numbers, comma before milliseconds, blank line between cues."""
    blocks = []
    for number, seg in enumerate(segments, start=1):
        blocks.append(
            f"{number}\n"
            f"{_format_timestamp(seg.start, ',')} --> {_format_timestamp(seg.end, ',')}\n"
            f"{seg.text}\n"
        )
    return "\n".join(blocks)


def format_vtt(segments: Sequence[SubtitleSegment]) -> str:
    """WebVTT: WEBVTT header, dot before milliseconds."""
    blocks = ["WEBVTT\n"]
    for seg in segments:
        blocks.append(
            f"{_format_timestamp(seg.start, '.')} --> {_format_timestamp(seg.end, '.')}\n"
            f"{seg.text}\n"
        )
    return "\n".join(blocks)


FORMATTERS = {"srt": format_srt, "vtt": format_vtt}


class TranscriptWriterBase(ABC):
    """Base for the subtitle file writer. update() never blocks."""

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    def update(self, segments: Sequence[SubtitleSegment]) -> None:
        """Replace the file content with this snapshot."""
        ...

    @abstractmethod
    async def close(self) -> Optional[str]:
        """Flush pending writes. Returns the file path, or None when nothing was written."""
        ...


class NoOpTranscriptWriter(TranscriptWriterBase):
    """When subtitle saving is disabled. No file I/O."""

    async def start(self) -> None:
        pass

    def update(self, segments: Sequence[SubtitleSegment]) -> None:
        pass

    async def close(self) -> Optional[str]:
        return None


class TranscriptWriter(TranscriptWriterBase):
    """
    One file per job: {transcript_dir}/{job_id}.{srt|vtt}.
    Each write goes to a temp file then os.replace, so readers never see half a file.
    """

    def __init__(self, job_id: str, transcript_dir: Optional[str] = None, fmt: Optional[str] = None) -> None:
        settings = get_settings()
        self._job_id = job_id
        self._format = fmt or settings.TRANSCRIPT_FORMAT
        if self._format not in FORMATTERS:
            raise ValueError(f"Unsupported subtitle format: {self._format}")
        self._transcript_dir = transcript_dir or settings.TRANSCRIPT_DIR
        self.path = os.path.join(self._transcript_dir, f"{job_id}.{self._format}")
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._worker_task: Optional[asyncio.Task] = None
        self._written = False

    def _write_sync(self, content: str) -> None:
        tmp_path = self.path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_path, self.path)

    async def _worker(self) -> None:
        """Drain queue, skipping to the newest snapshot. None = close. Log errors, never crash."""
        loop = asyncio.get_running_loop()
        while True:
            content = await self._queue.get()
            closing = content is None
            while not self._queue.empty():
                newer = self._queue.get_nowait()
                if newer is None:
                    closing = True
                else:
                    content = newer
            if content is not None:
                try:
                    await loop.run_in_executor(None, self._write_sync, content)
                    self._written = True
                except OSError as e:
                    logger.warning("Subtitle write failed for %s: %s", self.path, e)
            if closing:
                break

    async def start(self) -> None:
        if self._worker_task is not None:
            return
        try:
            os.makedirs(self._transcript_dir, exist_ok=True)
        except OSError as e:
            logger.warning("Subtitle directory create failed for %s: %s", self._transcript_dir, e)
        self._worker_task = asyncio.create_task(self._worker())

    def update(self, segments: Sequence[SubtitleSegment]) -> None:
        if self._worker_task is None:
            return
        self._queue.put_nowait(FORMATTERS[self._format](segments))

    async def close(self) -> Optional[str]:
        if self._worker_task is None:
            return None
        self._queue.put_nowait(None)
        try:
            await asyncio.wait_for(self._worker_task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Subtitle writer for job %s did not finish in time", self._job_id)
            self._worker_task.cancel()
        self._worker_task = None
        return self.path if self._written else None


def create_transcript_writer(job_id: str, enabled: Optional[bool] = None) -> TranscriptWriterBase:
    """Create writer when TRANSCRIPT_SAVE_ENABLED is true; else no-op."""
    settings = get_settings()
    if enabled is None:
        enabled = settings.TRANSCRIPT_SAVE_ENABLED
    if not enabled:
        return NoOpTranscriptWriter()
    return TranscriptWriter(job_id=job_id)
