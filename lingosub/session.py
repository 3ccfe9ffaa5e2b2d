"""
SubtitleSession: one WebSocket = one audio buffer and one pipeline.

Binary messages are PCM 16-bit mono at SAMPLE_RATE and are appended to the
buffer. Text messages are JSON control messages:
  {"type": "start", "segmentation": {...}, "test_mode": false}
  {"type": "cancel"}
  {"type": "reset"}
A start supersedes the job that is running, if any. Outgoing messages go
through one queue drained by a sender task, so pipeline callbacks never await.
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Optional

from fastapi import WebSocket
from pydantic import ValidationError

from lingosub.asr.base import ChunkTranscriber
from lingosub.audio.receiver import WaveformReceiver
from lingosub.config import Settings, SegmentationConfig, get_settings
from lingosub.exceptions import WaveformError
from lingosub.pipeline import PipelineJob, SubtitlePipeline
from lingosub.schemas.subtitles import StartMessage
from lingosub.transcript.merger import SubtitleSegment
from lingosub.transcript.writer import TranscriptWriterBase, create_transcript_writer

logger = logging.getLogger(__name__)


def _segments_payload(segments: list[SubtitleSegment]) -> list[dict]:
    return [s.to_dict() for s in segments]


class SubtitleSession:
    """Receives audio, runs jobs on demand, streams full snapshots back."""

    def __init__(
        self,
        websocket: WebSocket,
        transcriber: ChunkTranscriber,
        settings: Settings | None = None,
    ) -> None:
        self._ws = websocket
        self._settings = settings or get_settings()
        self._receiver = WaveformReceiver(self._settings.SAMPLE_RATE)
        self._pipeline = SubtitlePipeline.from_settings(transcriber, self._settings)
        self._outbox: asyncio.Queue[Optional[dict[str, Any]]] = asyncio.Queue()
        self._sender_task: asyncio.Task | None = None
        self._job_tasks: set[asyncio.Task] = set()
        self._closed = False
        self.session_id = uuid.uuid4().hex[:12]

    def _send(self, payload: dict[str, Any]) -> None:
        if not self._closed:
            self._outbox.put_nowait(payload)

    async def _sender(self) -> None:
        while True:
            payload = await self._outbox.get()
            if payload is None:
                break
            try:
                await self._ws.send_text(json.dumps(payload))
            except Exception as e:
                logger.debug("Session %s: send failed (%s), closing", self.session_id, e)
                self._closed = True
                break

    async def _run_job(self, job: PipelineJob, writer: TranscriptWriterBase) -> None:
        await writer.start()
        try:
            result = await job.run()
        except WaveformError as e:
            logger.warning("Session %s: job %s rejected: %s", self.session_id, job.job_id, e)
            self._send({"type": "error", "job": job.job_id, "detail": str(e)})
            return
        except Exception:
            logger.exception("Session %s: job %s failed", self.session_id, job.job_id)
            self._send({"type": "error", "job": job.job_id, "detail": "Job failed"})
            return
        finally:
            path = await writer.close()
            if path:
                logger.info("Session %s: subtitles saved to %s", self.session_id, path)
        if result.cancelled:
            return
        self._send({
            "type": "done",
            "job": job.job_id,
            "segments": _segments_payload(result.segments),
            "chunks_failed": result.chunks_failed,
            "debug_export_path": result.debug_export_path,
        })

    def _start_job(self, message: StartMessage) -> None:
        config = message.segmentation.to_config(SegmentationConfig.from_settings(self._settings))
        waveform = self._receiver.to_waveform()
        if self._receiver.remaining_bytes():
            logger.warning(
                "Session %s: ignoring %d trailing byte(s) of an incomplete sample",
                self.session_id, self._receiver.remaining_bytes(),
            )
        job_id = uuid.uuid4().hex[:12]
        writer = create_transcript_writer(job_id, enabled=self._settings.TRANSCRIPT_SAVE_ENABLED)

        def on_snapshot(segments: list[SubtitleSegment]) -> None:
            writer.update(segments)
            self._send({"type": "subtitles", "job": job_id, "segments": _segments_payload(segments)})

        def on_status(status: str) -> None:
            self._send({"type": "status", "job": job_id, "status": status})

        job = self._pipeline.start(
            waveform,
            config,
            on_snapshot=on_snapshot,
            on_status=on_status,
            test_mode=message.test_mode,
            job_id=job_id,
        )
        logger.info(
            "Session %s: job %s on %.1fs of audio (test_mode=%s)",
            self.session_id, job_id, self._receiver.duration_seconds, message.test_mode,
        )
        task = asyncio.create_task(self._run_job(job, writer))
        self._job_tasks.add(task)
        task.add_done_callback(self._job_tasks.discard)

    def _handle_control(self, text: str) -> None:
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            self._send({"type": "error", "detail": "Control messages must be JSON"})
            return
        kind = data.get("type") if isinstance(data, dict) else None
        if kind == "start":
            try:
                message = StartMessage.model_validate(data)
            except ValidationError as e:
                self._send({"type": "error", "detail": e.errors(include_url=False, include_context=False)})
                return
            self._start_job(message)
        elif kind == "cancel":
            self._pipeline.cancel()
        elif kind == "reset":
            self._pipeline.cancel()
            self._receiver.clear()
        else:
            self._send({"type": "error", "detail": f"Unknown message type: {kind!r}"})

    async def run(self) -> None:
        """Main loop: receive audio and control messages until the client disconnects."""
        self._sender_task = asyncio.create_task(self._sender())
        self._send({"type": "session", "session_id": self.session_id})
        try:
            while not self._closed:
                msg = await self._ws.receive()
                if msg.get("type") == "websocket.disconnect":
                    break
                data = msg.get("bytes")
                if data is not None:
                    self._receiver.feed(data)
                    continue
                text = msg.get("text")
                if text is not None:
                    self._handle_control(text)
        finally:
            self._pipeline.cancel()
            if self._job_tasks:
                _, pending = await asyncio.wait(set(self._job_tasks), timeout=30.0)
                for task in pending:
                    logger.warning("Session %s: job did not stop in time", self.session_id)
                    task.cancel()
            self._outbox.put_nowait(None)
            await self._sender_task
            self._closed = True
