"""
LocalServerTranscriber: OpenAI-compatible /v1/audio/transcriptions endpoint.

Works with LocalAI, whisper.cpp server and faster-whisper-server. Each chunk
is posted as a 16 kHz mono 16-bit WAV file with response_format=verbose_json.
Servers disagree on the unit of segment times; some only return text, in
which case the text becomes one segment spanning the chunk.
"""
from __future__ import annotations

import json
import logging
from typing import Any

import httpx
import numpy as np

from lingosub.asr.base import ChunkTranscriber, LocalServerResult, RawSegment, to_raw_segments
from lingosub.asr.http_errors import check_response, transport_error
from lingosub.asr.parsing import parse_segments, segments_from_items
from lingosub.audio.waveform import encode_wav
from lingosub.config import Settings, get_settings

logger = logging.getLogger(__name__)


def parse_local_server_response(resp: httpx.Response) -> LocalServerResult:
    """verbose_json when the server honours it; JSON-ish or plain text otherwise."""
    try:
        data: Any = resp.json()
    except json.JSONDecodeError:
        body = resp.text.strip()
        segments = parse_segments(body)
        if segments:
            return LocalServerResult(segments=segments)
        return LocalServerResult(text=body)

    if isinstance(data, list):
        return LocalServerResult(segments=segments_from_items(data))
    if not isinstance(data, dict):
        return LocalServerResult()
    duration = data.get("duration")
    return LocalServerResult(
        text=str(data.get("text") or "").strip(),
        segments=segments_from_items(data.get("segments")),
        language=data.get("language"),
        duration=float(duration) if isinstance(duration, (int, float)) else None,
    )


class LocalServerTranscriber(ChunkTranscriber):
    """Local Whisper-compatible HTTP server. Async HTTP, no executor needed."""

    name = "local_server"

    def __init__(
        self,
        endpoint: str = "http://127.0.0.1:8080/v1/audio/transcriptions",
        model: str = "whisper-large",
        language: str = "",
        timeout: float = 300.0,
        overlap_tolerance: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.model = model
        self.language = language
        self._timeout = timeout
        self._transport = transport
        self.overlap_tolerance = overlap_tolerance

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "LocalServerTranscriber":
        s = settings or get_settings()
        return cls(
            endpoint=s.LOCAL_ASR_ENDPOINT,
            model=s.LOCAL_ASR_MODEL,
            language=s.LOCAL_ASR_LANGUAGE,
            timeout=s.LOCAL_ASR_TIMEOUT_SECONDS,
            overlap_tolerance=s.NETWORK_OVERLAP_TOLERANCE,
        )

    def _form_fields(self) -> dict[str, str]:
        fields = {
            "model": self.model,
            "response_format": "verbose_json",
            "timestamp_granularities[]": "segment",
        }
        if self.language:
            fields["language"] = self.language
        return fields

    async def transcribe(self, samples: np.ndarray, sample_rate: int) -> list[RawSegment]:
        wav_bytes = encode_wav(samples, sample_rate)
        files = {"file": ("chunk.wav", wav_bytes, "audio/wav")}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self.endpoint, data=self._form_fields(), files=files)
        except httpx.HTTPError as e:
            raise transport_error(e, self.name) from e
        check_response(resp, self.name)
        result = parse_local_server_response(resp)
        logger.debug(
            "Local server returned %d segment(s), %d chars of text",
            len(result.segments),
            len(result.text),
        )
        return to_raw_segments(result, len(samples) / sample_rate)
