"""
FastAPI app: subtitles for a whole audio track, over HTTP or WebSocket.

HTTP:  POST /api/subtitles with a 16 kHz mono 16-bit WAV body; returns the
       final transcript (JSON segments + SRT) once every chunk is done.
WS:    /ws/subtitles; client streams binary PCM 16-bit mono 16kHz, then sends
       {"type": "start", ...}. Server pushes the full transcript after every chunk:
       { "type": "subtitles", "job": "...", "segments": [{id, start, end, text}, ...] }
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Literal, Optional

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect

from lingosub.asr import create_transcriber, load_whisper_model
from lingosub.asr.base import ChunkTranscriber
from lingosub.audio.waveform import decode_wav
from lingosub.config import SegmentationConfig, get_settings
from lingosub.exceptions import ConfigError, WaveformError
from lingosub.logging import configure_logging
from lingosub.pipeline import SubtitlePipeline
from lingosub.schemas.subtitles import SegmentationRequest, SubtitleResponse, SubtitleSegmentModel
from lingosub.session import SubtitleSession
from lingosub.transcript.writer import format_srt

logger = logging.getLogger(__name__)


def get_transcriber(app: FastAPI) -> ChunkTranscriber:
    """Return the backend for ASR_BACKEND, created once per app. in_process uses the model from app.state."""
    transcriber = getattr(app.state, "transcriber", None)
    if transcriber is None:
        model = getattr(app.state, "whisper_model", None)
        transcriber = create_transcriber(get_settings(), model=model)
        app.state.transcriber = transcriber
    return transcriber


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings)
    # Load Whisper model once at startup when using the in-process backend (singleton)
    if settings.ASR_BACKEND == "in_process":
        app.state.whisper_model = load_whisper_model(settings)
    else:
        app.state.whisper_model = None
    app.state.transcriber = None
    logger.info("lingosub started: backend=%s, segmentation=%s", settings.ASR_BACKEND, settings.SEGMENTATION_METHOD)
    yield
    transcriber = getattr(app.state, "transcriber", None)
    if transcriber is not None:
        await transcriber.aclose()
    app.state.transcriber = None
    app.state.whisper_model = None


app = FastAPI(
    title="lingosub",
    description="Chunked speech-to-text subtitles with silence-aware segmentation",
    lifespan=lifespan,
)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.post("/api/subtitles", response_model=SubtitleResponse)
async def create_subtitles(
    request: Request,
    method: Optional[Literal["fixed", "vad"]] = Query(None),
    batch_size_seconds: Optional[float] = Query(None, gt=0.0),
    min_silence_seconds: Optional[float] = Query(None, gt=0.0),
    silence_threshold: Optional[float] = Query(None, ge=0.0),
    vocal_filter_enabled: Optional[bool] = Query(None),
    limit_seconds: Optional[float] = Query(None, gt=0.0),
    test_mode: bool = Query(False),
) -> SubtitleResponse:
    """
    Run one job over the uploaded WAV and return the final transcript.
    Each request gets its own pipeline, so concurrent requests never supersede each other.
    """
    settings = get_settings()
    overrides = SegmentationRequest(
        method=method,
        batch_size_seconds=batch_size_seconds,
        min_silence_seconds=min_silence_seconds,
        silence_threshold=silence_threshold,
        vocal_filter_enabled=vocal_filter_enabled,
        limit_seconds=limit_seconds,
    )
    config = overrides.to_config(SegmentationConfig.from_settings(settings))

    body = await request.body()
    if not body:
        raise HTTPException(status_code=400, detail="Request body must be a WAV file")
    try:
        waveform = decode_wav(body, settings.SAMPLE_RATE)
    except WaveformError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        transcriber = get_transcriber(request.app)
    except ConfigError as e:
        logger.error("Backend unavailable: %s", e)
        raise HTTPException(status_code=503, detail=str(e))

    pipeline = SubtitlePipeline.from_settings(transcriber, settings)
    try:
        result = await pipeline.run(waveform, config, test_mode=test_mode)
    except WaveformError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return SubtitleResponse(
        job_id=result.job_id,
        segments=[SubtitleSegmentModel(**s.to_dict()) for s in result.segments],
        cancelled=result.cancelled,
        chunks_failed=result.chunks_failed,
        srt=format_srt(result.segments),
        debug_export_path=result.debug_export_path,
    )


@app.websocket("/ws/subtitles")
async def websocket_subtitles(websocket: WebSocket) -> None:
    """
    WebSocket: client sends raw PCM 16-bit mono 16kHz (binary) and JSON control messages.
    Server sends JSON: session, status, subtitles, done, error.
    """
    await websocket.accept()
    try:
        transcriber = get_transcriber(websocket.app)
    except ConfigError as e:
        logger.error("Backend unavailable: %s", e)
        await websocket.send_json({"type": "error", "detail": str(e)})
        await websocket.close(code=1011)
        return
    session = SubtitleSession(websocket, transcriber)
    try:
        await session.run()
    except WebSocketDisconnect:
        pass
