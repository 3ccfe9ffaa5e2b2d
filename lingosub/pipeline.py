"""
SubtitlePipeline: segment, transcribe under bounded concurrency, merge.

Flow per job:
  waveform -> Segmenter (lazy) -> N workers -> ChunkTranscriber (retry/backoff)
           -> TimestampScaleDetector -> Transcript.fold -> snapshot callback

Cancellation is epoch-based. The pipeline owns a counter; starting a job (or
calling cancel()) bumps it, and a job whose epoch is no longer current stops
taking chunks, discards in-flight results and never publishes again. In-flight
backend calls are not interrupted.

All merging happens on the event loop with no await between fold and publish,
so consumers only ever see complete snapshots.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Iterator, Optional

import numpy as np

from lingosub.asr.base import ChunkTranscriber, RawSegment
from lingosub.audio.recorder import ChunkRecorderBase, create_chunk_recorder
from lingosub.audio.segmenter import ChunkDefinition, create_segmenter
from lingosub.audio.waveform import validate_waveform
from lingosub.config import SegmentationConfig, Settings, get_settings
from lingosub.exceptions import FatalTranscriptionError, TranscriptionError
from lingosub.transcript.merger import SubtitleSegment, Transcript, to_subtitle_segments
from lingosub.transcript.scale import TimestampScaleDetector

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[list[SubtitleSegment]], None]
StatusCallback = Callable[[str], None]

STATUS_SEGMENTING = "segmenting"
STATUS_TRANSCRIBING = "transcribing"
STATUS_DONE = "done"
STATUS_CANCELLED = "cancelled"


@dataclass
class JobResult:
    """Terminal resolution of a job. A cancelled job still reports what it merged."""

    job_id: str
    segments: list[SubtitleSegment] = field(default_factory=list)
    cancelled: bool = False
    chunks_done: int = 0
    chunks_failed: int = 0
    debug_export_path: Optional[str] = None


class PipelineJob:
    """
    One run of the pipeline over one waveform. Owns its Transcript.
    Created by SubtitlePipeline.start(); run() exactly once.
    """

    def __init__(
        self,
        pipeline: "SubtitlePipeline",
        epoch: int,
        waveform,
        config: SegmentationConfig,
        on_snapshot: Optional[SnapshotCallback] = None,
        on_status: Optional[StatusCallback] = None,
        recorder: Optional[ChunkRecorderBase] = None,
        job_id: Optional[str] = None,
    ) -> None:
        self._pipeline = pipeline
        self.epoch = epoch
        self.job_id = job_id or uuid.uuid4().hex[:12]
        self.config = config
        self._waveform = waveform
        self._on_snapshot = on_snapshot
        self._on_status = on_status
        self._recorder = recorder or create_chunk_recorder(enabled=False)
        self._transcript = Transcript(overlap_tolerance=pipeline.overlap_tolerance)
        self._chunks_done = 0
        self._chunks_failed = 0
        self._ran = False

    @property
    def cancelled(self) -> bool:
        return self._pipeline.epoch != self.epoch

    def cancel(self) -> None:
        """Stop this job. No effect when a newer job already superseded it."""
        self._pipeline._cancel_epoch(self.epoch)

    def _status(self, status: str) -> None:
        if self._on_status is not None:
            self._on_status(status)

    async def _next_chunk(self, chunks: Iterator[ChunkDefinition], lock: asyncio.Lock) -> Optional[ChunkDefinition]:
        """Segmentation is CPU work (filter + scan per batch); keep it off the loop, one caller at a time."""
        async with lock:
            if self.cancelled:
                return None
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, next, chunks, None)

    async def _transcribe_with_retry(self, chunk: ChunkDefinition, samples: np.ndarray) -> Optional[list[RawSegment]]:
        """None when the chunk failed for good; the job goes on without it."""
        pipeline = self._pipeline
        transcriber = pipeline.transcriber
        attempts = 1 + pipeline.max_retries
        for attempt in range(attempts):
            if self.cancelled:
                return None
            try:
                return await transcriber.transcribe(samples, pipeline.sample_rate)
            except FatalTranscriptionError as e:
                logger.warning("Chunk %d failed, not retrying: %s", chunk.index, e)
                return None
            except TranscriptionError as e:
                if attempt + 1 >= attempts:
                    logger.warning("Chunk %d failed after %d attempt(s): %s", chunk.index, attempts, e)
                    return None
                delay = pipeline.retry_base_delay * (2 ** attempt)
                logger.info(
                    "Chunk %d attempt %d/%d failed (%s), retrying in %.1fs",
                    chunk.index, attempt + 1, attempts, e, delay,
                )
                await asyncio.sleep(delay)
        return None

    def _merge(self, chunk: ChunkDefinition, raw: list[RawSegment]) -> None:
        sr = self._pipeline.sample_rate
        scale = self._pipeline.scale_detector.detect(raw, chunk.duration(sr))
        kept = self._transcript.fold(to_subtitle_segments(raw, scale, chunk.start_time(sr)))
        self._chunks_done += 1
        logger.debug(
            "Chunk %d (%.2fs-%.2fs): %d raw segment(s), scale %g, %d kept",
            chunk.index, chunk.start_time(sr), chunk.end_time(sr), len(raw), scale, kept,
        )
        self._status(
            f"Transcribed chunk {chunk.index + 1} "
            f"({chunk.start_time(sr):.1f}s-{chunk.end_time(sr):.1f}s), {len(self._transcript)} subtitle(s)"
        )
        if self._on_snapshot is not None:
            self._on_snapshot(self._transcript.snapshot())

    async def _worker(self, waveform: np.ndarray, chunks: Iterator[ChunkDefinition], lock: asyncio.Lock) -> None:
        sr = self._pipeline.sample_rate
        while not self.cancelled:
            chunk = await self._next_chunk(chunks, lock)
            if chunk is None:
                return
            samples = waveform[chunk.start_sample:chunk.end_sample]
            self._recorder.append(chunk, samples, sr)
            raw = await self._transcribe_with_retry(chunk, samples)
            if self.cancelled:
                logger.debug("Discarding chunk %d result of superseded job %s", chunk.index, self.job_id)
                return
            if raw is None:
                self._chunks_failed += 1
                raw = []
            self._merge(chunk, raw)

    async def run(self) -> JobResult:
        """
        Run to completion or cancellation.
        Raises WaveformError before any chunk is dispatched if the waveform is unusable.
        """
        if self._ran:
            raise RuntimeError(f"Job {self.job_id} has already run")
        self._ran = True
        waveform = validate_waveform(self._waveform)
        pipeline = self._pipeline
        logger.info(
            "Job %s (epoch %d): %.1fs of audio, method=%s, %d worker(s), backend=%s",
            self.job_id, self.epoch, len(waveform) / pipeline.sample_rate,
            self.config.method, pipeline.concurrency, pipeline.transcriber.name,
        )

        self._status(STATUS_SEGMENTING)
        chunks = create_segmenter(waveform, self.config, pipeline.sample_rate)
        self._status(STATUS_TRANSCRIBING)
        lock = asyncio.Lock()
        workers = [
            asyncio.create_task(self._worker(waveform, chunks, lock))
            for _ in range(pipeline.concurrency)
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        loop = asyncio.get_running_loop()
        export_path = await loop.run_in_executor(None, self._recorder.finalize)

        cancelled = self.cancelled
        if cancelled:
            logger.info("Job %s superseded after %d chunk(s)", self.job_id, self._chunks_done)
            self._status(STATUS_CANCELLED)
        else:
            logger.info(
                "Job %s done: %d chunk(s), %d failed, %d subtitle(s)",
                self.job_id, self._chunks_done, self._chunks_failed, len(self._transcript),
            )
            self._status(STATUS_DONE)
        return JobResult(
            job_id=self.job_id,
            segments=self._transcript.snapshot(),
            cancelled=cancelled,
            chunks_done=self._chunks_done,
            chunks_failed=self._chunks_failed,
            debug_export_path=export_path,
        )


_DONE = object()


class SubtitlePipeline:
    """
    Holds the backend, the worker settings and the job epoch.
    One pipeline runs at most one current job; starting another supersedes it.
    """

    def __init__(
        self,
        transcriber: ChunkTranscriber,
        *,
        concurrency: int = 2,
        sample_rate: int = 16000,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        overlap_tolerance: Optional[float] = None,
        scale_detector: Optional[TimestampScaleDetector] = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        if max_retries < 0:
            raise ValueError(f"max_retries must be non-negative, got {max_retries}")
        self.transcriber = transcriber
        self.concurrency = concurrency
        self.sample_rate = sample_rate
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.overlap_tolerance = (
            overlap_tolerance if overlap_tolerance is not None else transcriber.overlap_tolerance
        )
        self.scale_detector = scale_detector or TimestampScaleDetector()
        self._epoch = 0

    @classmethod
    def from_settings(cls, transcriber: ChunkTranscriber, settings: Settings | None = None) -> "SubtitlePipeline":
        s = settings or get_settings()
        return cls(
            transcriber,
            concurrency=s.PIPELINE_CONCURRENCY,
            sample_rate=s.SAMPLE_RATE,
            max_retries=s.PIPELINE_MAX_RETRIES,
            retry_base_delay=s.PIPELINE_RETRY_BASE_DELAY,
        )

    @property
    def epoch(self) -> int:
        return self._epoch

    def _cancel_epoch(self, epoch: int) -> None:
        if self._epoch == epoch:
            self._epoch += 1
            logger.info("Job epoch %d cancelled", epoch)

    def cancel(self) -> None:
        """Stop whatever job is current without starting a new one."""
        self._cancel_epoch(self._epoch)

    def start(
        self,
        waveform,
        config: SegmentationConfig | None = None,
        *,
        on_snapshot: Optional[SnapshotCallback] = None,
        on_status: Optional[StatusCallback] = None,
        test_mode: bool = False,
        recorder: Optional[ChunkRecorderBase] = None,
        job_id: Optional[str] = None,
    ) -> PipelineJob:
        """
        Create the next job; any running job is superseded from this moment on.
        test_mode: transcribe the first batch only and export the chunks sent.
        """
        config = config or SegmentationConfig.from_settings()
        job_id = job_id or uuid.uuid4().hex[:12]
        if test_mode:
            config = config.for_test_run()
            recorder = recorder or create_chunk_recorder(enabled=True, job_id=job_id)
        else:
            recorder = recorder or create_chunk_recorder(job_id=job_id)
        if self._epoch > 0:
            logger.debug("Superseding epoch %d", self._epoch)
        self._epoch += 1
        return PipelineJob(
            self,
            self._epoch,
            waveform,
            config,
            on_snapshot=on_snapshot,
            on_status=on_status,
            recorder=recorder,
            job_id=job_id,
        )

    async def run(self, waveform, config: SegmentationConfig | None = None, **kwargs) -> JobResult:
        """Start a job and wait for it."""
        return await self.start(waveform, config, **kwargs).run()

    async def stream(
        self,
        waveform,
        config: SegmentationConfig | None = None,
        **kwargs,
    ) -> AsyncIterator[list[SubtitleSegment]]:
        """
        Yield a full Transcript snapshot after every chunk.
        Re-raises the job's error at the end. Closing the iterator early cancels the job.
        """
        queue: asyncio.Queue = asyncio.Queue()
        job = self.start(waveform, config, on_snapshot=queue.put_nowait, **kwargs)
        task = asyncio.create_task(job.run())
        task.add_done_callback(lambda _: queue.put_nowait(_DONE))
        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    break
                yield item
            task.result()
        finally:
            if not task.done():
                job.cancel()
                await asyncio.gather(task, return_exceptions=True)
