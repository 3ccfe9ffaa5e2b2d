"""Translate httpx responses and errors into transcription errors."""
from __future__ import annotations

import httpx

from lingosub.exceptions import FatalTranscriptionError, TransientTranscriptionError

# Retry these: timeouts, rate limiting and server-side failures
RETRYABLE_STATUS = {408, 425, 429, 500, 502, 503, 504}


def check_response(resp: httpx.Response, backend: str) -> None:
    """Raise the matching TranscriptionError for a non-2xx response."""
    if resp.is_success:
        return
    detail = resp.text[:200].strip()
    message = f"HTTP {resp.status_code}" + (f": {detail}" if detail else "")
    if resp.status_code in RETRYABLE_STATUS or resp.status_code >= 500:
        raise TransientTranscriptionError(message, backend=backend)
    raise FatalTranscriptionError(message, backend=backend)


def transport_error(e: httpx.HTTPError, backend: str) -> TransientTranscriptionError:
    """Connection refused, DNS failure, timeout: all transient."""
    return TransientTranscriptionError(f"{type(e).__name__}: {e}", backend=backend)
