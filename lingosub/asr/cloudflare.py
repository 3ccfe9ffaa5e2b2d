"""
CloudflareTranscriber: Whisper via Cloudflare Workers AI.

Accepts float32 audio; sends it as base64 WAV. Segment times come back in
seconds for this model, but nothing relies on it: the pipeline infers the unit.
Runs the HTTP call in an executor to avoid blocking the event loop.
"""
from __future__ import annotations

import asyncio
import base64
import json
from typing import Any

import httpx
import numpy as np

from lingosub.asr.base import ChunkTranscriber, CloudResult, RawSegment, to_raw_segments
from lingosub.asr.http_errors import check_response, transport_error
from lingosub.asr.parsing import parse_segments, segments_from_items
from lingosub.audio.waveform import encode_wav
from lingosub.config import Settings, get_settings
from lingosub.exceptions import ConfigError, TransientTranscriptionError

API_URL = "https://api.cloudflare.com/client/v4/accounts/{account_id}/ai/run/{model}"


def parse_cloudflare_response(data: Any) -> CloudResult:
    """Pick text and segments out of a Workers AI envelope ({"result": {...}, "success": ...})."""
    result = data.get("result", data) if isinstance(data, dict) else data
    if isinstance(result, str):
        # Some models answer with a bare string, possibly JSON-in-a-string
        segments = parse_segments(result)
        return CloudResult(text="" if segments else result.strip(), segments=segments)
    if not isinstance(result, dict):
        return CloudResult()
    text = result.get("text", result.get("transcript", "")) or ""
    info = result.get("transcription_info") or {}
    return CloudResult(
        text=str(text).strip(),
        segments=segments_from_items(result.get("segments")),
        language=info.get("language") if isinstance(info, dict) else None,
    )


class CloudflareTranscriber(ChunkTranscriber):
    """
    Remote Whisper via Cloudflare Workers AI.
    async transcribe() runs HTTP in executor; one request per chunk.
    """

    name = "cloudflare"

    def __init__(
        self,
        account_id: str,
        api_token: str,
        model: str = "@cf/openai/whisper-large-v3-turbo",
        timeout: float = 120.0,
        overlap_tolerance: float = 1.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not account_id or not api_token:
            raise ConfigError("CLOUDFLARE_ACCOUNT_ID and CLOUDFLARE_API_TOKEN are required for the cloud backend")
        self._url = API_URL.format(account_id=account_id, model=model)
        self._token = api_token
        self._timeout = timeout
        self._transport = transport
        self.overlap_tolerance = overlap_tolerance

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "CloudflareTranscriber":
        s = settings or get_settings()
        return cls(
            account_id=s.CLOUDFLARE_ACCOUNT_ID,
            api_token=s.CLOUDFLARE_API_TOKEN,
            model=s.CLOUDFLARE_WHISPER_MODEL,
            timeout=s.CLOUD_TIMEOUT_SECONDS,
            overlap_tolerance=s.NETWORK_OVERLAP_TOLERANCE,
        )

    def _transcribe_sync(self, wav_bytes: bytes) -> CloudResult:
        """Blocking HTTP call; run in executor."""
        headers = {"Authorization": f"Bearer {self._token}"}
        body = {"audio": base64.b64encode(wav_bytes).decode("ascii")}
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.post(self._url, headers=headers, json=body)
        except httpx.HTTPError as e:
            raise transport_error(e, self.name) from e
        check_response(resp, self.name)
        try:
            data = resp.json()
        except json.JSONDecodeError as e:
            raise TransientTranscriptionError(f"Malformed JSON response: {e}", backend=self.name) from e
        if isinstance(data, dict) and data.get("success") is False:
            raise TransientTranscriptionError(f"API reported failure: {data.get('errors')}", backend=self.name)
        return parse_cloudflare_response(data)

    async def transcribe(self, samples: np.ndarray, sample_rate: int) -> list[RawSegment]:
        """Encode to WAV, run HTTP in executor, normalize to RawSegments."""
        wav_bytes = encode_wav(samples, sample_rate)
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, self._transcribe_sync, wav_bytes)
        return to_raw_segments(result, len(samples) / sample_rate)
